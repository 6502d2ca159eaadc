import asyncio
import json

import httpx

from woodshop_rag.config import EnrichmentConfig
from woodshop_rag.retrieval.enrichment import EnrichmentClient


def test_prefetch_posts_context_and_query() -> None:
    seen: list[dict] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        seen.append(json.loads(request.content))
        return httpx.Response(200, json={"videoReferences": []})

    client = EnrichmentClient("http://links.test/api/links", transport=httpx.MockTransport(_handler))

    asyncio.run(client.prefetch("Source: A", "end grain glue"))

    assert seen == [{"context": "Source: A", "query": "end grain glue"}]


def test_prefetch_swallows_http_failures() -> None:
    def _handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503)

    client = EnrichmentClient("http://links.test/api/links", transport=httpx.MockTransport(_handler))

    assert asyncio.run(client.prefetch("ctx", "q")) is None


def test_disabled_or_unaddressed_config_builds_no_client() -> None:
    assert EnrichmentClient.from_config(EnrichmentConfig()) is None
    assert EnrichmentClient.from_config(EnrichmentConfig(enabled=True)) is None
    assert EnrichmentClient.from_config(
        EnrichmentConfig(enabled=True, url="http://links.test")
    ) is not None
