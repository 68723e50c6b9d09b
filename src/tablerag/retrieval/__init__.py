"""Retrieval components."""

from .service import NO_CONTEXT_PLACEHOLDER, Retriever

__all__ = ["NO_CONTEXT_PLACEHOLDER", "Retriever"]
