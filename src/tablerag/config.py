"""Runtime configuration for the TableRAG pipelines."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional
from urllib.parse import urlparse

from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(RuntimeError):
    """Raised when a required credential or endpoint is missing."""


class Settings(BaseSettings):
    """Environment-backed configuration model."""

    model_config = SettingsConfigDict(env_prefix="tablerag_", env_file=".env", case_sensitive=False)

    environment: Literal["dev", "test", "prod"] = "dev"
    log_level: str = "INFO"

    # Source dataset
    data_dir: Path = Path("./data")
    data_file: str | None = None

    # Embedding backend (Ollama-compatible)
    embedding_backend: Literal["ollama", "hash"] = "ollama"
    ollama_base_url: str = "http://localhost:11434"
    embedding_model: str = "nomic-embed-text"
    embedding_dim: int = 768  # only used by the hash backend
    embedding_timeout_seconds: float = 30.0
    embedding_max_retries: int = 3
    embedding_retry_base_delay: float = 1.0
    embedding_concurrency: int = 32

    # Vector store
    chroma_url: str | None = None
    chroma_host: str | None = None
    chroma_port: int | None = None
    chroma_ssl: bool = False
    chroma_persist_dir: Path = Path("./.chroma")
    chroma_collection: str = "excel_data"

    # Generation backend (OpenAI-compatible chat completions)
    generator_backend: Literal["groq", "template"] = "groq"
    groq_api_key: str | None = None
    generator_base_url: str = "https://api.groq.com/openai/v1"
    generator_model: str = "llama-3.3-70b-versatile"

    # Ingestion
    batch_size: int = 1000
    skip_rows: int = 0
    use_full_record: bool = True
    text_field: str | None = None

    # Chat
    top_k: int = 5
    max_tokens: int = 1000
    temperature: float = 0.7

    @property
    def is_test(self) -> bool:
        return self.environment == "test"

    @property
    def chroma_endpoint(self) -> tuple[str, int, bool] | None:
        """Return ``(host, port, ssl)`` for a remote Chroma server, if configured."""

        if self.chroma_host:
            return self.chroma_host, self.chroma_port or 8000, self.chroma_ssl
        if self.chroma_url:
            parsed = urlparse(self.chroma_url)
            if not parsed.hostname:
                raise ConfigurationError(f"Invalid chroma_url: {self.chroma_url!r}")
            return parsed.hostname, parsed.port or 8000, parsed.scheme == "https"
        return None

    def data_file_path(self) -> Path:
        if not self.data_file:
            raise ConfigurationError("TABLERAG_DATA_FILE is not set")
        return self.data_dir / self.data_file

    def require_generator_credentials(self) -> str:
        if self.generator_backend != "groq":
            return ""
        if not self.groq_api_key:
            raise ConfigurationError("TABLERAG_GROQ_API_KEY is required for the groq generator")
        return self.groq_api_key


@lru_cache(maxsize=1)
def _cached_settings() -> Settings:
    return Settings()


def get_settings(override: Optional[dict[str, object]] = None) -> Settings:
    """Return settings, optionally overriding values without mutating cache."""

    if override:
        return Settings(**override)
    return _cached_settings()
