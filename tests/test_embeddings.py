from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from tablerag.embeddings.service import (
    EmbeddingBackendError,
    EmbeddingConfig,
    HashEmbeddingBackend,
    OllamaEmbeddingClient,
)


def _client(handler, **config: object) -> OllamaEmbeddingClient:
    options = {"retry_base_delay": 0.0, **config}
    return OllamaEmbeddingClient(
        EmbeddingConfig(base_url="http://ollama.test", **options),
        transport=httpx.MockTransport(handler),
    )


def _vector_for(text: str) -> list[float]:
    return [float(len(text)), float(ord(text[0])) if text else 0.0]


@pytest.mark.asyncio
async def test_hash_embedding_dim_matches_config():
    backend = HashEmbeddingBackend(EmbeddingConfig(dim=64))
    vector = await backend.embed("hello world")
    assert len(vector) == 64
    assert vector == await backend.embed("hello world")


@pytest.mark.asyncio
async def test_embed_posts_model_and_prompt():
    seen: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/embeddings"
        seen.append(json.loads(request.content))
        return httpx.Response(200, json={"embedding": [0.1, 0.2, 0.3]})

    async with _client(handler, model="nomic-embed-text") as client:
        vector = await client.embed("live animals")

    assert vector == [0.1, 0.2, 0.3]
    assert seen == [{"model": "nomic-embed-text", "prompt": "live animals"}]


@pytest.mark.asyncio
@pytest.mark.parametrize("failures", [0, 1, 2])
async def test_embed_retries_transient_failures(failures: int):
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        if calls <= failures:
            return httpx.Response(503, json={"error": "model loading"})
        return httpx.Response(200, json={"embedding": [1.0, 2.0]})

    async with _client(handler) as client:
        assert await client.embed("text") == [1.0, 2.0]
    assert calls == failures + 1


@pytest.mark.asyncio
async def test_embed_raises_after_exhausting_retries():
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        raise httpx.ConnectError("connection refused", request=request)

    async with _client(handler) as client:
        with pytest.raises(EmbeddingBackendError, match="after 3 attempts: connection refused") as excinfo:
            await client.embed("text")
    assert calls == 3
    assert excinfo.value.attempts == 3


@pytest.mark.asyncio
async def test_empty_embedding_counts_as_failure():
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(200, json={"embedding": []})

    async with _client(handler, max_retries=2) as client:
        with pytest.raises(EmbeddingBackendError):
            await client.embed("text")
    assert calls == 2


@pytest.mark.asyncio
async def test_embed_batch_preserves_input_order():
    texts = ["slowest", "mid", "f", "second slowest!"]
    delays = {"slowest": 0.05, "mid": 0.02, "f": 0.0, "second slowest!": 0.04}

    async def handler(request: httpx.Request) -> httpx.Response:
        prompt = json.loads(request.content)["prompt"]
        await asyncio.sleep(delays[prompt])
        return httpx.Response(200, json={"embedding": _vector_for(prompt)})

    async with _client(handler) as client:
        vectors = await client.embed_batch(texts)

    assert vectors == [_vector_for(text) for text in texts]


@pytest.mark.asyncio
async def test_embed_batch_caps_concurrency():
    in_flight = 0
    peak = 0

    async def handler(request: httpx.Request) -> httpx.Response:
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1
        return httpx.Response(200, json={"embedding": [1.0]})

    async with _client(handler, concurrency=3) as client:
        vectors = await client.embed_batch([f"t{i}" for i in range(12)])

    assert len(vectors) == 12
    assert peak == 3


@pytest.mark.asyncio
async def test_embed_batch_fails_whole_batch_on_one_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        if json.loads(request.content)["prompt"] == "bad":
            return httpx.Response(500)
        return httpx.Response(200, json={"embedding": [1.0]})

    async with _client(handler) as client:
        with pytest.raises(EmbeddingBackendError):
            await client.embed_batch(["ok", "bad", "ok too"])


@pytest.mark.asyncio
async def test_embed_batch_of_nothing_makes_no_calls():
    def handler(request: httpx.Request) -> httpx.Response:  # pragma: no cover - must not be called
        raise AssertionError("unexpected request")

    async with _client(handler) as client:
        assert await client.embed_batch([]) == []


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [{"embedding": [0.1, None]}, {"embedding": "0.1,0.2"}, {"embedding": {"a": 1}}])
async def test_malformed_embedding_is_retried_then_reported(payload: dict):
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(200, json=payload)

    async with _client(handler) as client:
        with pytest.raises(EmbeddingBackendError, match="Malformed embedding") as excinfo:
            await client.embed("text")
    assert calls == 3
    assert excinfo.value.attempts == 3


@pytest.mark.asyncio
async def test_retry_delay_grows_linearly_with_attempt(monkeypatch: pytest.MonkeyPatch):
    delays: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        delays.append(seconds)

    monkeypatch.setattr("tablerag.embeddings.service.asyncio.sleep", fake_sleep)

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503)

    async with _client(handler, retry_base_delay=1.0, max_retries=3) as client:
        with pytest.raises(EmbeddingBackendError):
            await client.embed("text")

    assert delays == [1.0, 2.0]
