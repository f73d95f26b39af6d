from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Anthropic (required per request, checked by the research route)
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-haiku-4-5-20251001"
    planner_max_tokens: int = 2048
    writer_max_tokens: int = 8192

    # Exa (required per request, checked by the research route)
    exa_api_key: str = ""
    exa_base_url: str = "https://api.exa.ai"
    search_timeout_seconds: float = 30.0
    search_results_per_query: int = 5
    content_fetch_limit: int = 8
    content_max_characters: int = 8000
    snippet_chars: int = 200

    # Vercel Sandbox (remote execution)
    vercel_token: str = ""
    vercel_project_id: str = ""
    vercel_team_id: str = ""
    vercel_api_base_url: str = "https://api.vercel.com"
    sandbox_runtime: str = "python3.13"
    sandbox_program: str = "pipeline"  # pipeline | agent
    sandbox_workdir: str = "/vercel/sandbox"
    sandbox_timeout_seconds: int = 300
    sandbox_install_timeout_seconds: int = 120

    # App
    cors_origins: str = "http://localhost:3000"
    app_log_level: str = "INFO"
    noisy_log_level: str = "WARNING"
    log_dir: str = "logs"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",")]

    def missing_credentials(self) -> list[str]:
        """Names of required API keys that are not configured."""
        missing: list[str] = []
        if not self.anthropic_api_key.strip():
            missing.append("ANTHROPIC_API_KEY")
        if not self.exa_api_key.strip():
            missing.append("EXA_API_KEY")
        return missing


settings = Settings()
