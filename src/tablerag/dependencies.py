"""Wiring of the TableRAG components from settings."""

from __future__ import annotations

from dataclasses import dataclass

from chromadb.api import ClientAPI

from tablerag.config import Settings, get_settings
from tablerag.embeddings import (
    ChromaVectorStore,
    EmbeddingBackend,
    EmbeddingConfig,
    HashEmbeddingBackend,
    OllamaEmbeddingClient,
    build_chroma_client,
)
from tablerag.ingestion import DocumentExtractor, IngestionOrchestrator
from tablerag.retrieval import Retriever
from tablerag.services import (
    ChatDefaults,
    ChatService,
    GenerationBackend,
    GenerationConfig,
    OpenAICompatibleGenerator,
    PromptBuilder,
    TemplateGenerator,
)


@dataclass(frozen=True)
class AppDependencies:
    embedder: EmbeddingBackend
    store: ChromaVectorStore
    retriever: Retriever
    orchestrator: IngestionOrchestrator
    chat_service: ChatService | None

    async def aclose(self) -> None:
        aclose = getattr(self.embedder, "aclose", None)
        if aclose is not None:
            await aclose()


def build_embedder(settings: Settings) -> EmbeddingBackend:
    config = EmbeddingConfig(
        model=settings.embedding_model,
        base_url=settings.ollama_base_url,
        timeout_seconds=settings.embedding_timeout_seconds,
        max_retries=settings.embedding_max_retries,
        retry_base_delay=settings.embedding_retry_base_delay,
        concurrency=settings.embedding_concurrency,
        dim=settings.embedding_dim,
    )
    if settings.embedding_backend == "hash":
        return HashEmbeddingBackend(config)
    return OllamaEmbeddingClient(config)


def build_generator(settings: Settings) -> GenerationBackend:
    if settings.generator_backend == "template":
        return TemplateGenerator()
    api_key = settings.require_generator_credentials()
    return OpenAICompatibleGenerator(
        GenerationConfig(
            model=settings.generator_model,
            base_url=settings.generator_base_url,
            api_key=api_key,
        ),
    )


def build_dependencies(
    settings: Settings | None = None,
    *,
    chroma_client: ClientAPI | None = None,
    chat: bool = True,
) -> AppDependencies:
    """Build the components; raises ``ConfigurationError`` for missing credentials.

    With ``chat=False`` no generation backend is built, so commands that never
    generate run without generator credentials.
    """

    settings = settings or get_settings()
    generator = build_generator(settings) if chat else None
    embedder = build_embedder(settings)
    store = ChromaVectorStore(
        settings.chroma_collection,
        client=chroma_client or build_chroma_client(settings),
    )
    retriever = Retriever(embedder, store, default_top_k=settings.top_k)
    chat_service = None
    if generator is not None:
        chat_service = ChatService(
            retriever,
            generator=generator,
            prompt_builder=PromptBuilder(),
            defaults=ChatDefaults(
                top_k=settings.top_k,
                max_tokens=settings.max_tokens,
                temperature=settings.temperature,
            ),
        )
    orchestrator = IngestionOrchestrator(embedder, store, DocumentExtractor())
    return AppDependencies(
        embedder=embedder,
        store=store,
        retriever=retriever,
        orchestrator=orchestrator,
        chat_service=chat_service,
    )
