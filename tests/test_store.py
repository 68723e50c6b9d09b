from __future__ import annotations

import warnings
from uuid import uuid4

import chromadb
import pytest

from tablerag.embeddings.store import (
    EXTERNAL_EMBEDDING_FUNCTION_NAME,
    ChromaVectorStore,
    ExternalEmbeddingFunction,
    VectorStoreError,
)


def _store() -> ChromaVectorStore:
    return ChromaVectorStore(f"test-store-{uuid4().hex[:8]}", client=chromadb.EphemeralClient())


@pytest.mark.asyncio
async def test_add_query_returns_nearest_first():
    store = _store()
    await store.add(
        ["row_0", "row_1", "row_2"],
        [[1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.7, 0.7, 0.0]],
        ["horses", "cotton", "mules"],
        [{"rowIndex": 0, "origin": "Germany"}, {"rowIndex": 1}, {"rowIndex": 2, "active": True}],
    )
    assert await store.count() == 3

    results = await store.query([1.0, 0.05, 0.0], k=2)
    assert [row.id for row in results] == ["row_0", "row_2"]
    assert results[0].text == "horses"
    assert results[0].metadata["origin"] == "Germany"
    assert results[0].distance is not None and results[0].distance <= results[1].distance


@pytest.mark.asyncio
async def test_query_on_empty_collection_returns_nothing():
    store = _store()
    assert await store.query([0.1, 0.2], k=5) == []
    assert await store.query([0.1, 0.2], k=0) == []


@pytest.mark.asyncio
async def test_query_k_larger_than_collection_is_clamped():
    store = _store()
    await store.add(["row_0"], [[1.0, 0.0]], ["only"], [{"rowIndex": 0}])
    results = await store.query([1.0, 0.0], k=10)
    assert [row.id for row in results] == ["row_0"]


@pytest.mark.asyncio
async def test_add_overwrites_existing_ids():
    store = _store()
    await store.add(["row_0"], [[1.0, 0.0]], ["old"], [{"rowIndex": 0}])
    await store.add(["row_0", "row_1"], [[1.0, 0.0], [0.0, 1.0]], ["new", "other"], [{"rowIndex": 0}, {"rowIndex": 1}])
    assert await store.count() == 2
    results = await store.query([1.0, 0.0], k=1)
    assert results[0].text == "new"


@pytest.mark.asyncio
async def test_add_rejects_mismatched_lengths():
    store = _store()
    with pytest.raises(VectorStoreError, match="Mismatched"):
        await store.add(["row_0", "row_1"], [[1.0]], ["a", "b"], [{"rowIndex": 0}, {"rowIndex": 1}])


@pytest.mark.asyncio
async def test_dimension_mismatch_surfaces_as_store_error():
    store = _store()
    await store.add(["row_0"], [[1.0, 0.0]], ["two dims"], [{"rowIndex": 0}])
    with pytest.raises(VectorStoreError):
        await store.add(["row_1"], [[1.0, 0.0, 0.0]], ["three dims"], [{"rowIndex": 1}])


@pytest.mark.asyncio
async def test_clear_resets_collection_and_keeps_it_usable():
    store = _store()
    await store.add(["row_0", "row_1"], [[1.0, 0.0], [0.0, 1.0]], ["a", "b"], [{"rowIndex": 0}, {"rowIndex": 1}])
    await store.clear()
    assert await store.count() == 0
    # A fresh collection accepts a different dimensionality.
    await store.add(["row_0"], [[1.0, 0.0, 0.0]], ["a"], [{"rowIndex": 0}])
    assert await store.count() == 1


@pytest.mark.asyncio
async def test_clear_on_never_created_collection():
    store = _store()
    await store.clear()
    assert await store.count() == 0


def test_builtin_embedding_function_refuses_to_embed():
    with pytest.raises(VectorStoreError, match="provided externally"):
        ExternalEmbeddingFunction()(["some text"])


def test_external_embedding_function_implements_config_protocol():
    with warnings.catch_warnings():
        warnings.simplefilter("error", DeprecationWarning)
        function = ExternalEmbeddingFunction()
        assert not function.is_legacy()
        assert function.name() == EXTERNAL_EMBEDDING_FUNCTION_NAME
        assert function.get_config() == {}
        assert isinstance(ExternalEmbeddingFunction.build_from_config({}), ExternalEmbeddingFunction)


@pytest.mark.asyncio
async def test_collection_persists_external_function_and_reopens():
    client = chromadb.EphemeralClient()
    name = f"test-store-{uuid4().hex[:8]}"
    await ChromaVectorStore(name, client=client).add(["row_0"], [[1.0, 0.0]], ["a"], [{"rowIndex": 0}])

    configuration = client.get_collection(name).configuration_json
    assert configuration["embedding_function"]["name"] == EXTERNAL_EMBEDDING_FUNCTION_NAME

    reopened = ChromaVectorStore(name, client=client)
    assert await reopened.count() == 1
