"""Tests for the embedding client."""

import asyncio
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from pagerag.services.embeddings import EmbeddingClient
from pagerag.services.errors import (
    ConfigurationError,
    EmbeddingProviderError,
    MalformedResponseError,
    ProviderRequestError,
)
from tests.helpers import embedding_response, mock_http_client, request_json


def _client(settings, handler):
    return EmbeddingClient(settings, http_client=mock_http_client(handler))


async def test_embed_sends_openai_style_request(settings):
    requests = []

    def handler(request):
        requests.append(request)
        return embedding_response([0.1, 0.2, 0.3, 0.4])

    client = _client(settings, handler)
    vector = await client.embed("  안녕하세요   여러분  ")

    assert vector == [0.1, 0.2, 0.3, 0.4]
    assert len(requests) == 1
    assert str(requests[0].url) == settings.EMBEDDING_API_URL
    assert requests[0].headers["Authorization"] == "Bearer test-embedding-key"
    assert request_json(requests[0]) == {"input": "안녕하세요 여러분", "model": "embedding-query"}


async def test_embed_truncates_long_input(settings):
    seen = []

    def handler(request):
        seen.append(request_json(request)["input"])
        return embedding_response([0.1, 0.2, 0.3, 0.4])

    await _client(settings, handler).embed("가" * 9000)

    assert len(seen[0]) == 8000


async def test_embed_query_uses_query_model(settings):
    settings.QUERY_EMBEDDING_MODEL = "embedding-query-v2"
    models = []

    def handler(request):
        models.append(request_json(request)["model"])
        return embedding_response([0.1, 0.2, 0.3, 0.4])

    await _client(settings, handler).embed_query("질문")

    assert models == ["embedding-query-v2"]


async def test_missing_api_key_fails_without_request(settings):
    settings.EMBEDDING_API_KEY = None
    handler = AsyncMock()

    with pytest.raises(ConfigurationError):
        await _client(settings, handler).embed("text")

    handler.assert_not_called()


async def test_retries_then_succeeds(settings):
    responses = [
        httpx.Response(500, text="busy"),
        httpx.Response(200, json={"unexpected": True}),
        embedding_response([1.0, 0.0, 0.0, 0.0]),
    ]

    def handler(request):
        return responses.pop(0)

    vector = await _client(settings, handler).embed("text")

    assert vector == [1.0, 0.0, 0.0, 0.0]
    assert responses == []


async def test_retry_delay_grows_linearly(settings):
    settings.EMBEDDING_RETRY_DELAY = 1.0

    def handler(request):
        return httpx.Response(503, text="unavailable")

    with patch("pagerag.services.embeddings.asyncio.sleep", new=AsyncMock()) as sleep:
        with pytest.raises(EmbeddingProviderError):
            await _client(settings, handler).embed("text")

    assert [call.args[0] for call in sleep.await_args_list] == [1.0, 2.0]


async def test_exhausted_retries_chain_last_cause(settings):
    attempts = []

    def handler(request):
        attempts.append(request)
        return httpx.Response(429, text="rate limited")

    with pytest.raises(EmbeddingProviderError) as exc_info:
        await _client(settings, handler).embed("text")

    assert len(attempts) == settings.EMBEDDING_MAX_RETRIES
    assert isinstance(exc_info.value.cause, ProviderRequestError)
    assert exc_info.value.cause.status_code == 429
    assert exc_info.value.__cause__ is exc_info.value.cause


async def test_transport_errors_are_retried(settings):
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) == 1:
            raise httpx.ConnectTimeout("timed out", request=request)
        return embedding_response([0.5, 0.5, 0.5, 0.5])

    assert await _client(settings, handler).embed("text") == [0.5, 0.5, 0.5, 0.5]
    assert len(calls) == 2


async def test_non_finite_vector_is_malformed(settings):
    def handler(request):
        return httpx.Response(
            200,
            content=b'{"data": [{"embedding": [0.1, NaN, 0.3, 0.4]}]}',
            headers={"content-type": "application/json"}
        )

    with pytest.raises(EmbeddingProviderError) as exc_info:
        await _client(settings, handler).embed("text")

    assert isinstance(exc_info.value.cause, MalformedResponseError)


async def test_embed_batch_preserves_order_and_paces(settings):
    settings.EMBEDDING_BATCH_SIZE = 2
    settings.EMBEDDING_BATCH_DELAY = 0.5

    def handler(request):
        value = float(request_json(request)["input"])
        return embedding_response([value, 0.0, 0.0, 1.0])

    texts = [str(i) for i in range(5)]
    with patch("pagerag.services.embeddings.asyncio.sleep", new=AsyncMock()) as sleep:
        vectors = await _client(settings, handler).embed_batch(texts)

    assert [v[0] for v in vectors] == [0.0, 1.0, 2.0, 3.0, 4.0]
    # Three groups, paced twice
    assert [call.args[0] for call in sleep.await_args_list] == [0.5, 0.5]


async def test_embed_batch_failure_aborts(settings):
    settings.EMBEDDING_BATCH_SIZE = 2
    inputs = []

    def handler(request):
        text = request_json(request)["input"]
        inputs.append(text)
        if text == "bad":
            return httpx.Response(400, text="bad input")
        return embedding_response([0.1, 0.2, 0.3, 0.4])

    with pytest.raises(EmbeddingProviderError):
        await _client(settings, handler).embed_batch(["ok", "bad", "later"])

    assert "later" not in inputs


async def test_embed_batch_failure_reaps_cancelled_siblings(settings):
    settings.EMBEDDING_BATCH_SIZE = 2
    settings.EMBEDDING_MAX_RETRIES = 1
    cancelled = []

    async def handler(request):
        text = request_json(request)["input"]
        if text == "bad":
            return httpx.Response(400, text="bad input")
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            cancelled.append(text)
            raise
        return embedding_response([0.1, 0.2, 0.3, 0.4])

    with pytest.raises(EmbeddingProviderError):
        await _client(settings, handler).embed_batch(["slow", "bad"])

    # The sibling has finished unwinding by the time the error surfaces
    assert cancelled == ["slow"]


async def test_embed_batch_empty(settings):
    assert await _client(settings, AsyncMock()).embed_batch([]) == []


async def test_cancellation_propagates(settings):
    started = asyncio.Event()

    async def handler(request):
        started.set()
        await asyncio.sleep(10)
        return embedding_response([0.1, 0.2, 0.3, 0.4])

    client = _client(settings, handler)
    task = asyncio.ensure_future(client.embed_batch(["a", "b"]))
    await started.wait()
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task


def test_validate_embedding(settings):
    client = EmbeddingClient(settings, http_client=httpx.AsyncClient())

    assert client.validate_embedding([0.1, -0.2, 0.0, 1])
    assert not client.validate_embedding([])
    assert not client.validate_embedding(None)
    assert not client.validate_embedding([0.1, float("nan"), 0.2, 0.3])
    assert not client.validate_embedding([0.1, float("inf"), 0.2, 0.3])
    assert not client.validate_embedding([0.1, "0.2", 0.3, 0.4])
    assert not client.validate_embedding([True, 0.2, 0.3, 0.4])


def test_validate_embedding_dimension_only_warns(settings):
    client = EmbeddingClient(settings, http_client=httpx.AsyncClient())

    with patch("pagerag.services.embeddings.logger") as logger:
        assert client.validate_embedding([0.1, 0.2])

    logger.warning.assert_called_once()
