"""Vector store implementations."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Protocol, Sequence, TypeVar

import chromadb
from chromadb.api import ClientAPI
from chromadb.api.models.Collection import Collection
from chromadb.api.types import Documents, EmbeddingFunction, Embeddings, Space
from chromadb.utils.embedding_functions import register_embedding_function

from tablerag.config import Settings
from tablerag.metrics.observability import get_logger
from tablerag.models import MetadataValue, RetrievedRow

T = TypeVar("T")

DEFAULT_COLLECTION_METADATA: Mapping[str, Any] = {"hnsw:space": "cosine"}
EXTERNAL_EMBEDDING_FUNCTION_NAME = "tablerag_external"


class VectorStoreError(RuntimeError):
    """Raised when an operation against the vector store fails."""


@register_embedding_function
class ExternalEmbeddingFunction(EmbeddingFunction[Documents]):
    """Embedding function registered on every collection; vectors always come from the caller.

    Registered under a stable name with an empty config, so collections persist
    it as a known function and reopen it without a conflict.
    """

    def __init__(self) -> None:
        pass

    @staticmethod
    def name() -> str:
        return EXTERNAL_EMBEDDING_FUNCTION_NAME

    @staticmethod
    def build_from_config(config: Dict[str, Any]) -> "ExternalEmbeddingFunction":
        return ExternalEmbeddingFunction()

    def get_config(self) -> Dict[str, Any]:
        return {}

    def default_space(self) -> Space:
        return "cosine"

    def __call__(self, input: Documents) -> Embeddings:  # noqa: A002 - chroma protocol signature
        raise VectorStoreError(
            "Embedding function should not be called - embeddings are provided externally",
        )


class VectorStore(Protocol):
    """Protocol for id -> vector + text + metadata stores."""

    async def add(
        self,
        ids: Sequence[str],
        vectors: Sequence[Sequence[float]],
        documents: Sequence[str],
        metadatas: Sequence[Mapping[str, MetadataValue]],
    ) -> None:
        """Write entries; existing ids are overwritten."""

    async def query(self, vector: Sequence[float], k: int = 5) -> Sequence[RetrievedRow]:
        """Return up to ``k`` nearest entries, nearest first."""

    async def count(self) -> int:
        """Return the number of stored entries."""

    async def clear(self) -> None:
        """Drop and recreate the collection."""


class ChromaVectorStore:
    """Chroma-backed vector store over a single lazily-created collection."""

    def __init__(
        self,
        collection_name: str = "excel_data",
        *,
        client: ClientAPI | None = None,
        persist_directory: str | Path | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> None:
        if client is not None:
            self._client = client
        elif persist_directory is not None:
            self._client = chromadb.PersistentClient(path=str(persist_directory))
        else:
            self._client = chromadb.EphemeralClient()
        self._collection_name = collection_name
        self._metadata = dict(metadata or DEFAULT_COLLECTION_METADATA)
        self._embedding_function = ExternalEmbeddingFunction()
        self._collection: Collection | None = None
        self._init_lock = asyncio.Lock()
        self._logger = get_logger("store")

    @property
    def collection_name(self) -> str:
        return self._collection_name

    async def add(
        self,
        ids: Sequence[str],
        vectors: Sequence[Sequence[float]],
        documents: Sequence[str],
        metadatas: Sequence[Mapping[str, MetadataValue]],
    ) -> None:
        if not (len(ids) == len(vectors) == len(documents) == len(metadatas)):
            raise VectorStoreError(
                "Mismatched add payload: "
                f"{len(ids)} ids, {len(vectors)} vectors, {len(documents)} documents, {len(metadatas)} metadatas",
            )
        if not ids:
            return
        collection = await self._get_collection()
        await self._run(
            "adding embeddings to",
            collection.upsert,
            ids=list(ids),
            embeddings=[list(vector) for vector in vectors],
            documents=list(documents),
            metadatas=[dict(metadata) for metadata in metadatas],
        )

    async def query(self, vector: Sequence[float], k: int = 5) -> Sequence[RetrievedRow]:
        if k <= 0:
            return []
        collection = await self._get_collection()
        available = await self._run("counting", collection.count)
        if not available:
            return []
        results = await self._run(
            "querying",
            collection.query,
            query_embeddings=[list(vector)],
            n_results=min(k, int(available)),
            include=["documents", "metadatas", "distances"],
        )
        return self._deserialize_results(results)

    async def count(self) -> int:
        collection = await self._get_collection()
        return int(await self._run("getting count of", collection.count))

    async def clear(self) -> None:
        async with self._init_lock:
            try:
                await asyncio.to_thread(self._client.delete_collection, self._collection_name)
            except Exception as exc:
                # Missing collection; an unreachable backend fails again on recreate below.
                self._logger.debug("store.clear.delete_failed", collection=self._collection_name, error=str(exc))
            self._collection = None
            self._collection = await self._create_collection()
        self._logger.info("store.cleared", collection=self._collection_name)

    async def _get_collection(self) -> Collection:
        if self._collection is not None:
            return self._collection
        async with self._init_lock:
            if self._collection is None:
                self._collection = await self._create_collection()
        return self._collection

    async def _create_collection(self) -> Collection:
        try:
            collection = await asyncio.to_thread(
                self._client.get_or_create_collection,
                name=self._collection_name,
                metadata=self._metadata,
                embedding_function=self._embedding_function,
            )
        except Exception as exc:
            raise VectorStoreError(f"Error initializing collection {self._collection_name}: {exc}") from exc
        self._logger.info("store.collection.ready", collection=self._collection_name)
        return collection

    async def _run(self, action: str, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except VectorStoreError:
            raise
        except Exception as exc:
            raise VectorStoreError(f"Error {action} collection {self._collection_name}: {exc}") from exc

    @staticmethod
    def _deserialize_results(results: Mapping[str, Any]) -> list[RetrievedRow]:
        ids = _first(results.get("ids"))
        documents = _first(results.get("documents"))
        metadatas = _first(results.get("metadatas"))
        distances = _first(results.get("distances"))
        rows: list[RetrievedRow] = []
        for index, row_id in enumerate(ids):
            distance = distances[index] if index < len(distances) else None
            rows.append(
                RetrievedRow(
                    id=str(row_id),
                    text=documents[index] if index < len(documents) and documents[index] is not None else "",
                    metadata=dict(metadatas[index] or {}) if index < len(metadatas) else {},
                    distance=float(distance) if distance is not None else None,
                ),
            )
        rows.sort(key=lambda row: float("inf") if row.distance is None else row.distance)
        return rows


def _first(value: object) -> list:
    if isinstance(value, list) and value:
        first = value[0]
        return list(first) if first is not None else []
    return []


def build_chroma_client(settings: Settings) -> ClientAPI:
    """Return an HTTP client for a configured Chroma server, else a persistent local one."""

    endpoint = settings.chroma_endpoint
    if endpoint is not None:
        host, port, ssl = endpoint
        return chromadb.HttpClient(host=host, port=port, ssl=ssl)
    return chromadb.PersistentClient(path=str(settings.chroma_persist_dir))
