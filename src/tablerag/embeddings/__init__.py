"""Embedding clients and vector stores."""

from .service import (
    EmbeddingBackend,
    EmbeddingBackendError,
    EmbeddingConfig,
    HashEmbeddingBackend,
    OllamaEmbeddingClient,
)
from .store import ChromaVectorStore, ExternalEmbeddingFunction, VectorStore, VectorStoreError, build_chroma_client

__all__ = [
    "ChromaVectorStore",
    "EmbeddingBackend",
    "EmbeddingBackendError",
    "EmbeddingConfig",
    "ExternalEmbeddingFunction",
    "HashEmbeddingBackend",
    "OllamaEmbeddingClient",
    "VectorStore",
    "VectorStoreError",
    "build_chroma_client",
]
