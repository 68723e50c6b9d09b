"""Service layer orchestrations for TableRAG."""

from .chat import ChatDefaults, ChatService, ChatStream, PromptBuilder, PromptBuilderConfig, StreamEvent
from .generation import (
    GenerationBackend,
    GenerationBackendError,
    GenerationConfig,
    OpenAICompatibleGenerator,
    TemplateGenerator,
)

__all__ = [
    "ChatDefaults",
    "ChatService",
    "ChatStream",
    "GenerationBackend",
    "GenerationBackendError",
    "GenerationConfig",
    "OpenAICompatibleGenerator",
    "PromptBuilder",
    "PromptBuilderConfig",
    "StreamEvent",
    "TemplateGenerator",
]
