from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from vetro.config import Settings
from vetro.errors import EnrichmentError
from vetro.services.openrouter import OpenRouterClient


def _completion(content: str) -> httpx.Response:
    return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})


def _call(responses: list[httpx.Response], *, api_key: str = "test-key", **kwargs):
    """Run ``generate`` against scripted responses and record the requests."""

    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return responses[min(len(requests), len(responses)) - 1]

    async def runner() -> str | EnrichmentError:
        settings = Settings(_env_file=None, OPENROUTER_API_KEY=api_key)
        async with httpx.AsyncClient(
            base_url="https://openrouter.test/api/v1",
            transport=httpx.MockTransport(handler),
        ) as http_client:
            client = OpenRouterClient(settings, http_client)
            try:
                return await client.generate("Describe Heat (1995)", **kwargs)
            except EnrichmentError as exc:
                return exc

    return asyncio.run(runner()), requests


def test_generate_posts_chat_completion() -> None:
    outcome, requests = _call([_completion('{"title": "Heat"}')])

    assert outcome == '{"title": "Heat"}'
    (request,) = requests
    assert request.url.path == "/api/v1/chat/completions"
    assert request.headers["Authorization"] == "Bearer test-key"
    body = json.loads(request.content)
    assert body["model"] == "google/gemini-2.5-flash-lite"
    assert body["messages"][-1]["content"] == "Describe Heat (1995)"


def test_transient_failures_are_retried() -> None:
    outcome, requests = _call(
        [httpx.Response(503), httpx.Response(429), _completion("ok")],
        retry_delay=0,
    )

    assert outcome == "ok"
    assert len(requests) == 3


def test_retries_stop_at_the_limit() -> None:
    outcome, requests = _call([httpx.Response(502)], retry_limit=2, retry_delay=0)

    assert isinstance(outcome, EnrichmentError)
    assert outcome.transient
    assert len(requests) == 2


def test_client_errors_fail_immediately() -> None:
    outcome, requests = _call([httpx.Response(400, text="bad request")], retry_delay=0)

    assert isinstance(outcome, EnrichmentError)
    assert not outcome.transient
    assert len(requests) == 1


def test_empty_content_is_not_retried() -> None:
    outcome, requests = _call([_completion("   ")], retry_delay=0)

    assert isinstance(outcome, EnrichmentError)
    assert len(requests) == 1


def test_missing_api_key_fails_without_network() -> None:
    outcome, requests = _call([_completion("unused")], api_key="")

    assert isinstance(outcome, EnrichmentError)
    assert requests == []


def test_network_errors_are_transient() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        raise httpx.ConnectError("refused", request=request)

    async def runner() -> None:
        settings = Settings(_env_file=None, OPENROUTER_API_KEY="key")
        async with httpx.AsyncClient(
            base_url="https://openrouter.test/api/v1",
            transport=httpx.MockTransport(handler),
        ) as http_client:
            client = OpenRouterClient(settings, http_client)
            with pytest.raises(EnrichmentError, match="after 3 attempt"):
                await client.generate("prompt", retry_limit=3, retry_delay=0)

    asyncio.run(runner())

    assert calls == 3
