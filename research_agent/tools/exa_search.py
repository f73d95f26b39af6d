from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any

import httpx

from research_agent.config import Settings
from research_agent.services import logger as log_service

EXA_SEARCH_PATH = "/search"
EXA_CONTENTS_PATH = "/contents"
EXA_FIND_SIMILAR_PATH = "/findSimilar"


@dataclass
class SearchHit:
    id: str
    title: str
    url: str
    published_date: str | None = None
    author: str | None = None
    score: float | None = None
    text: str | None = None


@dataclass
class ContentDocument:
    url: str
    title: str
    text: str
    published_date: str | None = None
    author: str | None = None


@dataclass
class SearchOutcome:
    results: list[SearchHit] = field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class ContentsOutcome:
    documents: list[ContentDocument] = field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _describe_error(exc: Exception) -> str:
    if isinstance(exc, httpx.HTTPStatusError):
        body = exc.response.text[:200] if exc.response is not None else ""
        return f"Exa returned HTTP {exc.response.status_code}: {body}".strip()
    return str(exc) or exc.__class__.__name__


def _map_hit(item: dict[str, Any]) -> SearchHit:
    return SearchHit(
        id=str(item.get("id") or item.get("url", "")),
        title=item.get("title") or "Untitled",
        url=item.get("url", ""),
        published_date=item.get("publishedDate"),
        author=item.get("author"),
        score=item.get("score"),
        text=item.get("text"),
    )


class ExaSearchClient:
    """Exa search/contents adapter.

    Provider and network failures are returned as tagged outcomes
    (`outcome.error`); this class never raises for them.
    """

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://api.exa.ai",
        timeout: float = 30.0,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Settings) -> "ExaSearchClient":
        return cls(
            settings.exa_api_key,
            base_url=settings.exa_base_url,
            timeout=settings.search_timeout_seconds,
        )

    async def _post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        if not self.api_key:
            raise RuntimeError("EXA_API_KEY is not configured")

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                f"{self.base_url}{path}",
                json=body,
                headers={
                    "Accept": "application/json",
                    "Content-Type": "application/json",
                    "x-api-key": self.api_key,
                },
            )
            response.raise_for_status()
            return response.json()

    async def search(
        self,
        query: str,
        *,
        search_type: str = "neural",
        num_results: int = 5,
        start_published_date: date | str | None = None,
        end_published_date: date | str | None = None,
        include_domains: list[str] | None = None,
        exclude_domains: list[str] | None = None,
    ) -> SearchOutcome:
        """Search the web with Exa neural or keyword search."""
        body: dict[str, Any] = {
            "query": query,
            "type": search_type,
            "numResults": num_results,
            "useAutoprompt": search_type == "neural",
        }
        if start_published_date:
            body["startPublishedDate"] = str(start_published_date)
        if end_published_date:
            body["endPublishedDate"] = str(end_published_date)
        if include_domains:
            body["includeDomains"] = include_domains
        if exclude_domains:
            body["excludeDomains"] = exclude_domains

        try:
            payload = await self._post(EXA_SEARCH_PATH, body)
        except Exception as e:
            message = _describe_error(e)
            log_service.log_event(
                event_type="search_failed",
                message=f"Exa search failed for '{query[:80]}'",
                error=message,
            )
            return SearchOutcome(error=message)

        results = [
            _map_hit(item)
            for item in payload.get("results", []) or []
            if isinstance(item, dict) and item.get("url")
        ]
        return SearchOutcome(results=results)

    async def fetch_contents(
        self,
        urls: list[str],
        *,
        max_characters: int = 10000,
    ) -> ContentsOutcome:
        """Fetch full page text for the given URLs."""
        if not urls:
            return ContentsOutcome()

        try:
            payload = await self._post(
                EXA_CONTENTS_PATH,
                {"urls": urls, "text": {"maxCharacters": max_characters}},
            )
        except Exception as e:
            message = _describe_error(e)
            log_service.log_event(
                event_type="contents_failed",
                message=f"Exa contents fetch failed for {len(urls)} urls",
                error=message,
            )
            return ContentsOutcome(error=message)

        documents = [
            ContentDocument(
                url=item.get("url", ""),
                title=item.get("title") or "Untitled",
                text=item.get("text") or "",
                published_date=item.get("publishedDate"),
                author=item.get("author"),
            )
            for item in payload.get("results", []) or []
            if isinstance(item, dict) and item.get("url")
        ]
        return ContentsOutcome(documents=documents)

    async def find_similar(
        self,
        url: str,
        *,
        num_results: int = 5,
        exclude_source_domain: bool = True,
    ) -> SearchOutcome:
        """Find pages similar to a given URL."""
        try:
            payload = await self._post(
                EXA_FIND_SIMILAR_PATH,
                {
                    "url": url,
                    "numResults": num_results,
                    "excludeSourceDomain": exclude_source_domain,
                },
            )
        except Exception as e:
            message = _describe_error(e)
            log_service.log_event(
                event_type="find_similar_failed",
                message=f"Exa find_similar failed for {url}",
                error=message,
            )
            return SearchOutcome(error=message)

        results = [
            _map_hit(item)
            for item in payload.get("results", []) or []
            if isinstance(item, dict) and item.get("url")
        ]
        return SearchOutcome(results=results)
