"""Chat orchestration combining retrieval and generation."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Literal

from tablerag.metrics.observability import PipelineMetrics, get_logger
from tablerag.models import ChatAnswer, RetrievalContext, StreamSummary
from tablerag.retrieval.service import Retriever
from tablerag.services.generation import GenerationBackend, TemplateGenerator

DEFAULT_SYSTEM_TEMPLATE = (
    "You are a helpful assistant that answers questions about Pakistan's import and export data.\n"
    "You have access to detailed trade records including HS codes, item descriptions, importers, "
    "suppliers, origins, ports, quantities, and values.\n\n"
    "Use the following context to answer the user's question. "
    "If the context doesn't contain enough information, say so.\n\n"
    "Context:\n{context}"
)


@dataclass(frozen=True)
class PromptBuilderConfig:
    """Configuration for prompt construction."""

    system_template: str = DEFAULT_SYSTEM_TEMPLATE


class PromptBuilder:
    """Builds the grounded system prompt for the generation backend."""

    def __init__(self, config: PromptBuilderConfig | None = None) -> None:
        self._config = config or PromptBuilderConfig()

    def build_system_prompt(self, context: RetrievalContext) -> str:
        return self._config.system_template.format(context=context.context_text)


@dataclass(frozen=True)
class ChatDefaults:
    top_k: int = 5
    max_tokens: int = 1000
    temperature: float = 0.7


@dataclass(frozen=True)
class StreamEvent:
    kind: Literal["token", "done"]
    data: str
    summary: StreamSummary | None = None


class ChatStream:
    """Single-consumer, forward-only stream of answer fragments.

    Nothing runs, and the response clock does not start, until the first
    fragment is requested. Once the fragments are exhausted, :attr:`summary`
    holds the completion accounting. Closing the stream early abandons the
    producer and releases the backend stream; a failing producer ends the
    stream with its error and no summary.
    """

    def __init__(self, producer: Callable[["ChatStream"], AsyncIterator[str]]) -> None:
        self.contexts_used = 0
        self.abandoned = False
        self._started: float | None = None
        self._fragment_count = 0
        self._summary: StreamSummary | None = None
        self._closed = False
        self._fragments = producer(self)

    @property
    def fragment_count(self) -> int:
        return self._fragment_count

    @property
    def summary(self) -> StreamSummary:
        if self._summary is None:
            raise RuntimeError("Stream has not completed")
        return self._summary

    @property
    def completed(self) -> bool:
        return self._summary is not None

    def __aiter__(self) -> "ChatStream":
        return self

    async def __anext__(self) -> str:
        if self._closed:
            raise StopAsyncIteration
        if self._started is None:
            self._started = time.perf_counter()
        try:
            fragment = await self._fragments.__anext__()
        except StopAsyncIteration:
            self._closed = True
            self._summary = StreamSummary(
                response_time_ms=(time.perf_counter() - self._started) * 1000,
                fragment_count=self._fragment_count,
                contexts_used=self.contexts_used,
            )
            raise
        except BaseException:
            self._closed = True
            raise
        self._fragment_count += 1
        return fragment

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.abandoned = True
        await self._fragments.aclose()

    async def __aenter__(self) -> "ChatStream":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def events(self) -> AsyncIterator[StreamEvent]:
        async for fragment in self:
            yield StreamEvent(kind="token", data=fragment)
        yield StreamEvent(kind="done", data="", summary=self.summary)


class ChatService:
    """Answers questions over the stored rows, streamed or buffered."""

    def __init__(
        self,
        retriever: Retriever,
        generator: GenerationBackend | None = None,
        prompt_builder: PromptBuilder | None = None,
        defaults: ChatDefaults | None = None,
    ) -> None:
        self._retriever = retriever
        self._generator = generator or TemplateGenerator()
        self._prompt_builder = prompt_builder or PromptBuilder()
        self._defaults = defaults or ChatDefaults()
        self._logger = get_logger("chat")

    def stream(
        self,
        question: str,
        *,
        top_k: int | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> ChatStream:
        max_tokens, temperature = self._generation_params(max_tokens, temperature)

        async def produce(chat_stream: ChatStream) -> AsyncIterator[str]:
            context = await self._retriever.retrieve(question, top_k or self._defaults.top_k)
            chat_stream.contexts_used = context.contexts_used
            system_prompt = self._prompt_builder.build_system_prompt(context)
            generation_start = time.perf_counter()
            fragments = self._generator.stream(
                system_prompt,
                question,
                max_tokens=max_tokens,
                temperature=temperature,
            )
            try:
                async for fragment in fragments:
                    yield fragment
            finally:
                aclose = getattr(fragments, "aclose", None)
                if aclose is not None:
                    await aclose()
            duration = time.perf_counter() - generation_start
            PipelineMetrics.observe_generation(duration, chat_stream.fragment_count)
            self._logger.info(
                "chat.stream.complete",
                contexts_used=context.contexts_used,
                fragment_count=chat_stream.fragment_count,
                duration_seconds=duration,
            )

        return ChatStream(produce)

    async def generate(
        self,
        question: str,
        *,
        top_k: int | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> ChatAnswer:
        start = time.perf_counter()
        max_tokens, temperature = self._generation_params(max_tokens, temperature)
        context = await self._retriever.retrieve(question, top_k or self._defaults.top_k)
        system_prompt = self._prompt_builder.build_system_prompt(context)
        generation_start = time.perf_counter()
        response = await self._generator.complete(
            system_prompt,
            question,
            max_tokens=max_tokens,
            temperature=temperature,
        )
        generation_duration = time.perf_counter() - generation_start
        PipelineMetrics.observe_generation(generation_duration)
        self._logger.info(
            "chat.generate.complete",
            contexts_used=context.contexts_used,
            response_length=len(response),
            duration_seconds=generation_duration,
        )
        return ChatAnswer(
            response=response,
            contexts_used=context.contexts_used,
            response_time_ms=(time.perf_counter() - start) * 1000,
        )

    def _generation_params(self, max_tokens: int | None, temperature: float | None) -> tuple[int, float]:
        return (
            self._defaults.max_tokens if max_tokens is None else max_tokens,
            self._defaults.temperature if temperature is None else temperature,
        )
