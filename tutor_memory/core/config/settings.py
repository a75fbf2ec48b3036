# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Application configuration settings using Pydantic Settings.

Settings are loaded from environment variables with sensible defaults.
The Settings class aggregates all subsettings; a singleton instance is
provided via get_settings() for dependency injection.

Example:
    >>> from tutor_memory.core.config.settings import get_settings
    >>> settings = get_settings()
    >>> settings.memory.total_token_budget
    2000
"""

from functools import lru_cache
from typing import Literal, Self

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Database configuration for the durable memory store.

    Attributes:
        user: PostgreSQL username.
        password: PostgreSQL password.
        host: Database host address.
        port: Database port number.
        database: Database name.
        url_override: Full async connection URL; takes precedence over components.
        pool_size: Connection pool size.
        max_overflow: Maximum overflow connections.
        echo: Log emitted SQL.
    """

    model_config = SettingsConfigDict(
        env_prefix="DATABASE_",
        extra="ignore",
    )

    user: str = "tutor"
    password: SecretStr = SecretStr("tutor_memory_password")
    host: str = "localhost"
    port: int = 5432
    database: str = "tutor_memory"
    url_override: str | None = Field(default=None, validation_alias="DATABASE_URL")
    pool_size: int = 10
    max_overflow: int = 20
    echo: bool = False

    @property
    def url(self) -> str:
        """Build the async database URL from components."""
        if self.url_override:
            return self.url_override
        pwd = self.password.get_secret_value()
        return f"postgresql+asyncpg://{self.user}:{pwd}@{self.host}:{self.port}/{self.database}"


class RedisSettings(BaseSettings):
    """Redis configuration for caching and message brokering.

    Attributes:
        host: Redis server host.
        port: Redis server port.
        password: Redis password.
        database: Redis database number.
        max_connections: Maximum connection pool size.
    """

    model_config = SettingsConfigDict(
        env_prefix="REDIS_",
        extra="ignore",
    )

    host: str = "localhost"
    port: int = 6379
    password: SecretStr | None = None
    database: int = 0
    max_connections: int = 50

    @property
    def url(self) -> str:
        """Build the Redis connection URL."""
        if self.password is None:
            return f"redis://{self.host}:{self.port}/{self.database}"
        pwd = self.password.get_secret_value()
        return f"redis://:{pwd}@{self.host}:{self.port}/{self.database}"


class QdrantSettings(BaseSettings):
    """Qdrant vector database configuration.

    User isolation is achieved via collection naming: user_{user_id}_{collection}

    Attributes:
        host: Qdrant server host.
        http_port: HTTP API port.
        grpc_port: gRPC API port.
        api_key: Optional API key for authentication.
        prefer_grpc: Whether to prefer gRPC over HTTP.
        timeout: Request timeout in seconds.
    """

    model_config = SettingsConfigDict(
        env_prefix="QDRANT_",
        extra="ignore",
    )

    host: str = "localhost"
    http_port: int = 6333
    grpc_port: int = 6334
    api_key: SecretStr | None = None
    prefer_grpc: bool = False
    timeout: float = 10.0

    @property
    def url(self) -> str:
        """Build the Qdrant HTTP URL."""
        return f"http://{self.host}:{self.http_port}"


class LLMSettings(BaseSettings):
    """LLM provider configuration using LiteLLM.

    LiteLLM handles provider routing based on model prefix.

    Attributes:
        default_provider: Default LLM provider to use.
        ollama_base_url: Base URL for the Ollama server.
        ollama_api_key: API key for remote Ollama instances.
        ollama_default_model: Default Ollama model.
        openai_api_key: OpenAI API key.
        openai_default_model: Default OpenAI model.
        anthropic_api_key: Anthropic API key.
        anthropic_default_model: Default Anthropic model.
        request_timeout: Request timeout in seconds.
        max_retries: Maximum retry attempts.
    """

    model_config = SettingsConfigDict(
        extra="ignore",
    )

    default_provider: Literal["ollama", "openai", "anthropic"] = "ollama"

    ollama_base_url: str = Field(
        default="http://localhost:11434",
        validation_alias="OLLAMA_BASE_URL",
    )
    ollama_api_key: SecretStr | None = Field(
        default=None,
        validation_alias="OLLAMA_API_KEY",
    )
    ollama_default_model: str = Field(
        default="qwen2.5:7b",
        validation_alias="OLLAMA_DEFAULT_MODEL",
    )

    openai_api_key: SecretStr | None = Field(
        default=None,
        validation_alias="OPENAI_API_KEY",
    )
    openai_default_model: str = Field(
        default="gpt-4o-mini",
        validation_alias="OPENAI_DEFAULT_MODEL",
    )

    anthropic_api_key: SecretStr | None = Field(
        default=None,
        validation_alias="ANTHROPIC_API_KEY",
    )
    anthropic_default_model: str = Field(
        default="claude-3-5-haiku-20241022",
        validation_alias="ANTHROPIC_DEFAULT_MODEL",
    )

    request_timeout: float = 30.0
    max_retries: int = 2

    def get_default_model(self) -> str:
        """Get the default model for the configured provider.

        Returns:
            Model identifier string for the default provider.
        """
        models = {
            "ollama": f"ollama/{self.ollama_default_model}",
            "openai": self.openai_default_model,
            "anthropic": self.anthropic_default_model,
        }
        return models[self.default_provider]


class EmbeddingSettings(BaseSettings):
    """Embedding model configuration.

    Attributes:
        model: Model name in LiteLLM format (e.g., 'ollama/nomic-embed-text').
        dimension: Vector dimension (must match model output).
        batch_size: Batch size for embedding generation.
    """

    model_config = SettingsConfigDict(
        env_prefix="EMBEDDING_",
        extra="ignore",
    )

    model: str = "ollama/nomic-embed-text"
    dimension: int = 768
    batch_size: int = 32


class WorkerSettings(BaseSettings):
    """Background worker configuration.

    Attributes:
        processes: Number of worker processes.
        threads: Number of threads per process.
    """

    model_config = SettingsConfigDict(
        env_prefix="WORKER_",
        extra="ignore",
    )

    processes: int = 2
    threads: int = 4


class MemorySettings(BaseSettings):
    """Tunables for the tiered memory subsystem.

    Attributes:
        short_term_limit: Verbatim turns kept in the short-term window.
        summarization_threshold: Session length above which older turns are summarized.
        working_memory_ttl: Seconds a working-memory summary stays cached.
        cache_ttl: Seconds an assembled tier bundle stays cached.
        memory_cache_max_entries: Capacity of the in-process cache tier.
        total_token_budget: Token budget the context is assembled under.
        long_term_top_k: Facts returned by long-term retrieval.
        long_term_timeout: Seconds before long-term retrieval degrades to empty.
        summarizer_temperature: Sampling temperature for session digests.
        summarizer_max_tokens: Output cap for session digests.
        forget_threshold: Importance below which unpinned facts are archived.
        forget_min_age_days: Days since creation before a low-importance fact can be archived.
        stale_after_days: Days without access before the weekly cleanup archives a fact.
        consolidation_idle_hours: Hours of inactivity before a conversation is swept.
        consolidation_batch_size: Conversations per consolidation sweep.
        consolidation_lock_ttl: Seconds a consolidation lease is held before
            another worker may take it over.
        consolidation_lock_wait: Seconds a run waits for the lease before giving up.
        decay_batch_size: Users per decay sweep.
        low_cache_hit_rate: Hit rate below which the health check warns.
        health_min_cache_lookups: Lookups needed before the hit rate is judged.
        high_forgetting_rate: Forgotten facts per consolidation above which the
            health check reports an issue.
    """

    model_config = SettingsConfigDict(
        env_prefix="MEMORY_",
        extra="ignore",
    )

    short_term_limit: int = Field(default=5, ge=1)
    summarization_threshold: int = Field(default=10, ge=1)
    working_memory_ttl: int = 7200
    cache_ttl: int = 300
    memory_cache_max_entries: int = 1024
    total_token_budget: int = Field(default=2000, ge=1)
    long_term_top_k: int = Field(default=5, ge=1)
    long_term_timeout: float = 2.0
    summarizer_temperature: float = 0.3
    summarizer_max_tokens: int = 256
    forget_threshold: float = Field(default=0.2, ge=0.0, le=1.0)
    forget_min_age_days: float = Field(default=90, ge=0)
    stale_after_days: int = 90
    consolidation_idle_hours: int = 24
    consolidation_batch_size: int = 10
    consolidation_lock_ttl: int = Field(default=300, ge=1)
    consolidation_lock_wait: float = Field(default=30.0, ge=0)
    decay_batch_size: int = 50
    low_cache_hit_rate: float = 0.5
    health_min_cache_lookups: int = 100
    high_forgetting_rate: float = 0.5

    @model_validator(mode="after")
    def validate_windows(self) -> Self:
        """Ensure the verbatim window fits inside the summarization threshold.

        Raises:
            ValueError: If short_term_limit exceeds summarization_threshold.
        """
        if self.short_term_limit > self.summarization_threshold:
            raise ValueError(
                "MEMORY_SHORT_TERM_LIMIT must not exceed MEMORY_SUMMARIZATION_THRESHOLD"
            )
        return self


class Settings(BaseSettings):
    """Main application settings aggregating all subsettings.

    Use get_settings() to obtain a cached singleton instance.

    Attributes:
        environment: Current environment (development, staging, production).
        debug: Enable debug mode.
        log_level: Logging level.
        database: Memory store database settings.
        redis: Redis settings.
        qdrant: Qdrant settings.
        llm: LLM provider settings.
        embedding: Embedding model settings.
        worker: Background worker settings.
        memory: Memory subsystem tunables.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "DEBUG"

    # Subsettings - loaded with their own env prefixes
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    qdrant: QdrantSettings = Field(default_factory=QdrantSettings)
    llm: LLMSettings = Field(default_factory=LLMSettings)
    embedding: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    worker: WorkerSettings = Field(default_factory=WorkerSettings)
    memory: MemorySettings = Field(default_factory=MemorySettings)

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance.

    Call clear_settings_cache() if you need to reload settings.

    Returns:
        Cached Settings instance.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing or dynamic configuration updates.
    """
    get_settings.cache_clear()
