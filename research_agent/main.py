from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from research_agent.api.routes import research
from research_agent.config import settings
from research_agent.services import execution_mode
from research_agent.services import logger as log_service


@asynccontextmanager
async def lifespan(app: FastAPI):
    log_service.log_event(
        event_type="app_started",
        message="Research agent started",
        execution_mode=execution_mode.decide(settings=settings).value,
    )
    yield


app = FastAPI(
    title="Research Agent",
    description="Topic to cited research report: plan, search with Exa, write with Claude",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routes
app.include_router(research.router)


@app.get("/api/health")
async def health():
    return {
        "status": "ok",
        "service": "research-agent",
        "execution_mode": execution_mode.decide(settings=settings).value,
    }
