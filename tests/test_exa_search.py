from __future__ import annotations

from datetime import date
from unittest.mock import patch

import httpx
import pytest

from research_agent.tools.exa_search import ExaSearchClient


def fake_async_client(responder, calls: list):
    """Stand-in for httpx.AsyncClient that answers POSTs with `responder`."""

    class FakeAsyncClient:
        def __init__(self, *args, **kwargs):
            self.kwargs = kwargs

        async def __aenter__(self):
            return self

        async def __aexit__(self, *exc):
            return False

        async def post(self, url, json=None, headers=None):
            calls.append({"url": url, "json": json, "headers": headers})
            result = responder(url, json)
            if isinstance(result, Exception):
                raise result
            status, payload = result
            return httpx.Response(status, json=payload, request=httpx.Request("POST", url))

    return FakeAsyncClient


@pytest.mark.asyncio
async def test_search_sends_exa_request_and_maps_results():
    calls: list = []
    payload = {
        "results": [
            {
                "id": "abc",
                "title": "Surface codes explained",
                "url": "https://a.example",
                "publishedDate": "2026-01-05",
                "author": "Ada",
                "score": 0.91,
            },
            {"title": "no url"},
            {"url": "https://b.example"},
        ]
    }
    client_cls = fake_async_client(lambda url, body: (200, payload), calls)

    with patch("research_agent.tools.exa_search.httpx.AsyncClient", client_cls):
        outcome = await ExaSearchClient("key", base_url="https://exa.test/").search(
            "surface codes",
            search_type="keyword",
            num_results=5,
            start_published_date=date(2026, 1, 1),
            end_published_date=date(2026, 1, 31),
        )

    assert outcome.ok
    assert [hit.url for hit in outcome.results] == ["https://a.example", "https://b.example"]
    first = outcome.results[0]
    assert (first.id, first.title, first.published_date, first.author) == (
        "abc",
        "Surface codes explained",
        "2026-01-05",
        "Ada",
    )
    assert outcome.results[1].title == "Untitled"

    call = calls[0]
    assert call["url"] == "https://exa.test/search"
    assert call["headers"]["x-api-key"] == "key"
    assert call["json"] == {
        "query": "surface codes",
        "type": "keyword",
        "numResults": 5,
        "useAutoprompt": False,
        "startPublishedDate": "2026-01-01",
        "endPublishedDate": "2026-01-31",
    }


@pytest.mark.asyncio
async def test_search_returns_tagged_error_for_http_failure():
    calls: list = []
    client_cls = fake_async_client(lambda url, body: (429, {"error": "rate limited"}), calls)

    with patch("research_agent.tools.exa_search.httpx.AsyncClient", client_cls):
        outcome = await ExaSearchClient("key").search("q")

    assert not outcome.ok
    assert outcome.results == []
    assert "HTTP 429" in outcome.error


@pytest.mark.asyncio
async def test_search_returns_tagged_error_for_network_failure():
    calls: list = []
    client_cls = fake_async_client(lambda url, body: httpx.ConnectError("refused"), calls)

    with patch("research_agent.tools.exa_search.httpx.AsyncClient", client_cls):
        outcome = await ExaSearchClient("key").search("q")

    assert outcome.error == "refused"


@pytest.mark.asyncio
async def test_missing_api_key_is_a_tagged_error():
    outcome = await ExaSearchClient("").search("q")
    assert outcome.error == "EXA_API_KEY is not configured"


@pytest.mark.asyncio
async def test_fetch_contents_requests_text_with_character_cap():
    calls: list = []
    payload = {"results": [{"url": "https://a.example", "title": "A", "text": "body"}]}
    client_cls = fake_async_client(lambda url, body: (200, payload), calls)

    with patch("research_agent.tools.exa_search.httpx.AsyncClient", client_cls):
        outcome = await ExaSearchClient("key").fetch_contents(["https://a.example"], max_characters=8000)

    assert calls[0]["url"].endswith("/contents")
    assert calls[0]["json"] == {"urls": ["https://a.example"], "text": {"maxCharacters": 8000}}
    assert outcome.documents[0].text == "body"


@pytest.mark.asyncio
async def test_fetch_contents_with_no_urls_makes_no_request():
    calls: list = []
    client_cls = fake_async_client(lambda url, body: (200, {}), calls)

    with patch("research_agent.tools.exa_search.httpx.AsyncClient", client_cls):
        outcome = await ExaSearchClient("key").fetch_contents([])

    assert outcome.ok and outcome.documents == []
    assert calls == []


@pytest.mark.asyncio
async def test_find_similar_excludes_source_domain():
    calls: list = []
    payload = {"results": [{"url": "https://c.example", "title": "C"}]}
    client_cls = fake_async_client(lambda url, body: (200, payload), calls)

    with patch("research_agent.tools.exa_search.httpx.AsyncClient", client_cls):
        outcome = await ExaSearchClient("key").find_similar("https://a.example", num_results=3)

    assert calls[0]["url"].endswith("/findSimilar")
    assert calls[0]["json"] == {"url": "https://a.example", "numResults": 3, "excludeSourceDomain": True}
    assert [hit.url for hit in outcome.results] == ["https://c.example"]
