from __future__ import annotations

import uuid

from research_agent.agents.base import BaseStage
from research_agent.models.research import SearchFindings, SearchPlan, Source, Stage
from research_agent.services import logger as log_service
from research_agent.services.progress import ProgressTracker
from research_agent.tools.exa_search import ContentDocument, ExaSearchClient, SearchHit


def format_document(document: ContentDocument) -> str:
    return f"## {document.title}\nURL: {document.url}\n\n{document.text}"


def make_snippet(text: str, limit: int) -> str:
    return text[:limit] + "..."


def source_from_hit(hit: SearchHit) -> Source:
    return Source(
        id=hit.id or uuid.uuid5(uuid.NAMESPACE_URL, hit.url).hex,
        title=hit.title or "Untitled",
        url=hit.url,
        published_date=hit.published_date,
        author=hit.author,
    )


class SearcherStage(BaseStage[SearchFindings]):
    """SearchPlan -> deduplicated sources plus fetched document text.

    Queries run one at a time in plan order. A failed query or content
    fetch is skipped; only an exception from the adapter fails the stage.
    """

    stage = Stage.SEARCHING
    start_message = "Starting web searches"
    failure_message = "Search failed"

    def __init__(
        self,
        search_client: ExaSearchClient,
        *,
        results_per_query: int = 5,
        fetch_limit: int = 8,
        max_characters: int = 8000,
        snippet_chars: int = 200,
    ):
        self.search_client = search_client
        self.results_per_query = results_per_query
        self.fetch_limit = fetch_limit
        self.max_characters = max_characters
        self.snippet_chars = snippet_chars

    async def _run(
        self,
        tracker: ProgressTracker,
        topic: str,
        plan: SearchPlan,
    ) -> SearchFindings:
        session = tracker.session
        date_range = plan.date_range
        failed_queries = 0

        for query, search_type in zip(plan.queries, plan.search_types):
            tracker.status(f'Searching: "{query}"', self.stage)
            outcome = await self.search_client.search(
                query,
                search_type=search_type,
                num_results=self.results_per_query,
                start_published_date=date_range.start_date if date_range else None,
                end_published_date=date_range.end_date if date_range else None,
            )
            if not outcome.ok:
                failed_queries += 1
                log_service.log_event(
                    event_type="search_query_skipped",
                    message=f'Skipping failed query "{query}"',
                    error=outcome.error,
                    session_id=session.id,
                )
                tracker.status(f'Search failed for "{query}": {outcome.error}', self.stage)
                continue

            for hit in outcome.results:
                if session.has_source(hit.url):
                    continue
                tracker.source(source_from_hit(hit))

        tracker.status(
            f"Found {len(session.sources)} unique sources, fetching content...", self.stage
        )

        contents: list[str] = []
        urls = [s.url for s in session.sources[: self.fetch_limit]]
        if urls:
            fetched = await self.search_client.fetch_contents(
                urls, max_characters=self.max_characters
            )
            if fetched.ok:
                for document in fetched.documents:
                    contents.append(format_document(document))
                    session.enrich_source(
                        document.url,
                        snippet=make_snippet(document.text, self.snippet_chars),
                    )
            else:
                log_service.log_event(
                    event_type="contents_skipped",
                    message="Continuing without fetched content",
                    error=fetched.error,
                    session_id=session.id,
                )
                tracker.status(f"Could not fetch source content: {fetched.error}", self.stage)

        tracker.status(f"Gathered content from {len(contents)} sources", self.stage)
        message = f"Collected {len(session.sources)} sources"
        if failed_queries:
            message += f" ({failed_queries} of {len(plan.queries)} searches failed)"
        tracker.complete(self.stage, message)
        return SearchFindings(sources=list(session.sources), contents=contents)
