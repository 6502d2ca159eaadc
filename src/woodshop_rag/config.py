"""Configuration models for the woodshop assistant."""

from __future__ import annotations

import os
from collections.abc import Mapping

from pydantic import BaseModel, Field, SecretStr

_TRUE_VALUES = {"1", "true", "yes", "on"}


class LLMConfig(BaseModel):
    """Chat completion provider settings."""

    api_key: SecretStr | None = None
    model: str = "gpt-4o-mini"
    request_timeout_seconds: float = Field(default=20.0, gt=0.0)
    max_attempts: int = Field(default=1, ge=1)


class EmbeddingConfig(BaseModel):
    """Embedding provider settings. Bounded to 2 retries inside 5 seconds."""

    api_key: SecretStr | None = None
    model: str = "text-embedding-ada-002"
    max_retries: int = Field(default=2, ge=0)
    timeout_seconds: float = Field(default=5.0, gt=0.0)


class VectorStoreConfig(BaseModel):
    """Postgres/pgvector connection and search settings."""

    dsn: SecretStr | None = None
    table: str = "bents"
    top_k: int = Field(default=10, ge=1)
    pool_max_size: int = Field(default=20, ge=1)
    idle_timeout_seconds: float = Field(default=30.0, gt=0.0)
    connect_timeout_seconds: float = Field(default=10.0, gt=0.0)


class TracingConfig(BaseModel):
    """LangSmith settings. Every field is optional."""

    api_key: SecretStr | None = None
    project: str = "default"
    endpoint: str = "https://api.smith.langchain.com"
    history_limit: int = Field(default=500, ge=1)

    @property
    def enabled(self) -> bool:
        return self.api_key is not None


class EnrichmentConfig(BaseModel):
    """Related links/products pre-warming call, off unless explicitly enabled."""

    enabled: bool = False
    url: str | None = None
    timeout_seconds: float = Field(default=5.0, gt=0.0)


class PipelineConfig(BaseModel):
    history_window: int = Field(default=5, ge=1)
    request_timeout_seconds: float = Field(default=30.0, gt=0.0)
    restream_answer: bool = True
    format_retries: int = Field(default=0, ge=0, le=3)


class Settings(BaseModel):
    llm: LLMConfig = Field(default_factory=LLMConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    vector_store: VectorStoreConfig = Field(default_factory=VectorStoreConfig)
    tracing: TracingConfig = Field(default_factory=TracingConfig)
    enrichment: EnrichmentConfig = Field(default_factory=EnrichmentConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    log_level: str = "INFO"
    log_json: bool = True

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        """Build settings from environment variables, keeping defaults for unset keys."""
        env = os.environ if environ is None else environ

        def _get(name: str) -> str | None:
            value = env.get(name)
            if value is None or not value.strip():
                return None
            return value.strip()

        def _section(**values: str | None) -> dict[str, str]:
            return {key: value for key, value in values.items() if value is not None}

        openai_key = _get("OPENAI_API_KEY")
        enrichment_flag = _get("ENRICHMENT_ENABLED")
        restream_flag = _get("RESTREAM_ANSWER")
        log_json = _get("LOG_JSON")

        pipeline = _section(
            history_window=_get("HISTORY_WINDOW"),
            request_timeout_seconds=_get("REQUEST_TIMEOUT_SECONDS"),
            format_retries=_get("FORMAT_RETRIES"),
        )
        if restream_flag is not None:
            pipeline["restream_answer"] = restream_flag.lower() in _TRUE_VALUES

        return cls.model_validate(
            {
                "llm": _section(api_key=openai_key, model=_get("OPENAI_MODEL")),
                "embedding": _section(
                    api_key=_get("EMBEDDING_API_KEY") or openai_key,
                    model=_get("EMBEDDING_MODEL"),
                ),
                "vector_store": _section(
                    dsn=_get("POSTGRES_URL"),
                    table=_get("VECTOR_TABLE"),
                    pool_max_size=_get("PG_POOL_MAX_SIZE"),
                    idle_timeout_seconds=_get("PG_IDLE_TIMEOUT_SECONDS"),
                    connect_timeout_seconds=_get("PG_CONNECT_TIMEOUT_SECONDS"),
                ),
                "tracing": _section(
                    api_key=_get("LANGSMITH_API_KEY"),
                    project=_get("LANGSMITH_PROJECT"),
                    endpoint=_get("LANGSMITH_ENDPOINT"),
                ),
                "enrichment": {
                    **_section(url=_get("ENRICHMENT_URL")),
                    "enabled": (enrichment_flag or "").lower() in _TRUE_VALUES,
                },
                "pipeline": pipeline,
                **_section(log_level=_get("LOG_LEVEL")),
                "log_json": log_json is None or log_json.lower() in _TRUE_VALUES,
            }
        )
