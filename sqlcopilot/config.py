"""
Application Configuration

Pydantic-based settings management using environment variables.
Each concern gets its own settings class and env prefix; ``Settings``
aggregates them and ``get_settings()`` caches the result.

Usage:
    from sqlcopilot.config import get_settings

    settings = get_settings()
    print(settings.linking.relevance_threshold)
    print(settings.optimizer.max_iterations)
"""

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LLMSettings(BaseSettings):
    """Text-generation provider configuration."""

    default_provider: Literal["openai", "local"] = Field(
        default="openai", description="Provider used for SQL drafting and repair"
    )

    # OpenAI configuration
    openai_api_key: str | None = Field(
        None,
        description="OpenAI API key",
        min_length=20,
    )
    openai_model: str = Field(default="gpt-4o", description="OpenAI model for SQL generation")

    # Local model configuration
    local_base_url: str = Field(
        default="http://localhost:11434",
        description="Base URL for local model server (Ollama, vLLM, etc.)",
    )
    local_model: str = Field(default="llama3.1:8b", description="Local model name")

    # Common settings
    temperature: float = Field(
        default=0.0,
        ge=0.0,
        le=2.0,
        description="Temperature for LLM responses (0.0 = deterministic)",
    )
    max_tokens: int = Field(
        default=2000,
        gt=0,
        le=16000,
        description="Maximum tokens per LLM response",
    )
    timeout: int = Field(
        default=30,
        gt=0,
        description="Request timeout in seconds",
    )

    model_config = SettingsConfigDict(
        env_prefix="LLM_",
        env_file=".env",
        extra="ignore",
    )

    @field_validator("openai_api_key")
    @classmethod
    def validate_openai_key(cls, v: str | None) -> str | None:
        """Validate OpenAI API key format."""
        if v and not v.startswith("sk-"):
            raise ValueError("OpenAI API key must start with 'sk-'")
        return v

    @model_validator(mode="after")
    def validate_provider_keys(self) -> "LLMSettings":
        """Ensure an API key is set when a hosted provider is selected."""
        if self.default_provider == "openai" and not self.openai_api_key:
            raise ValueError("API key required for openai provider. Set LLM_OPENAI_API_KEY")
        return self


class ChromaSettings(BaseSettings):
    """Chroma vector store configuration."""

    persist_dir: Path = Field(
        default=Path("./chroma_data"),
        description="Directory for Chroma vector store persistence",
    )
    collection_prefix: str = Field(
        default="schema",
        description="Prefix for per-connection Chroma collections",
    )
    embedding_model: str = Field(
        default="text-embedding-3-small",
        description="OpenAI embedding model",
    )

    model_config = SettingsConfigDict(
        env_prefix="CHROMA_",
        env_file=".env",
        extra="ignore",
    )


class DatabaseSettings(BaseSettings):
    """Target databases the generated SQL runs against."""

    connections: dict[str, str] = Field(
        default_factory=dict,
        description="Connection id -> PostgreSQL DSN (JSON object in DATABASE_CONNECTIONS)",
    )
    pool_size: int = Field(
        default=5,
        gt=0,
        le=20,
        description="Connection pool size per connection id",
    )
    statement_timeout: int = Field(
        default=30,
        gt=0,
        description="Per-statement timeout in seconds",
    )

    model_config = SettingsConfigDict(
        env_prefix="DATABASE_",
        env_file=".env",
        extra="ignore",
    )


class SchemaStoreSettings(BaseSettings):
    """Where trained schema snapshots are persisted."""

    directory: Path = Field(
        default=Path("./schema_store"),
        description="Directory holding one JSON schema file per connection",
    )

    model_config = SettingsConfigDict(
        env_prefix="SCHEMA_STORE_",
        env_file=".env",
        extra="ignore",
    )


class LinkingSettings(BaseSettings):
    """Schema linking: dynamic-threshold search and relationship expansion."""

    relevance_threshold: float = Field(
        default=0.7, ge=0.0, le=1.0, description="Starting similarity threshold"
    )
    threshold_floor: float = Field(
        default=0.4, ge=0.0, le=1.0, description="Lowest threshold ever queried"
    )
    threshold_step: float = Field(
        default=0.1, gt=0.0, le=1.0, description="Decrement applied per empty search round"
    )
    min_tables_required: int = Field(
        default=1, ge=1, description="Tables needed before the descent stops"
    )
    max_tables: int = Field(default=5, gt=0, le=50, description="Search result limit")
    max_related_tables: int = Field(
        default=10, ge=0, description="Cap on tables added by foreign-key expansion"
    )

    model_config = SettingsConfigDict(
        env_prefix="LINKING_",
        env_file=".env",
        extra="ignore",
    )

    @model_validator(mode="after")
    def validate_threshold_range(self) -> "LinkingSettings":
        """Ensure the floor does not exceed the starting threshold."""
        if self.threshold_floor > self.relevance_threshold:
            raise ValueError(
                f"threshold_floor ({self.threshold_floor}) must not exceed "
                f"relevance_threshold ({self.relevance_threshold})"
            )
        return self


class OptimizerSettings(BaseSettings):
    """Execute -> validate -> repair loop settings."""

    max_iterations: int = Field(default=3, gt=0, le=10, description="Iteration budget")
    iteration_timeout_seconds: float = Field(
        default=60.0, gt=0, description="Upper bound for a single iteration"
    )
    repair_temperature: float = Field(
        default=0.1, ge=0.0, le=2.0, description="Temperature used for repair requests"
    )
    max_result_rows: int = Field(
        default=10000, gt=0, description="Largest plausible result for an unqualified question"
    )
    top_result_limit: int = Field(
        default=100, gt=0, description="Largest plausible result for a top-N question"
    )

    model_config = SettingsConfigDict(
        env_prefix="OPTIMIZER_",
        env_file=".env",
        extra="ignore",
    )


class ConversationSettings(BaseSettings):
    """Multi-turn context settings."""

    max_turns: int = Field(default=10, gt=0, description="Turns retained per connection")
    entity_lookback_turns: int = Field(
        default=3, gt=0, description="Turns scanned when resolving a pronoun"
    )

    model_config = SettingsConfigDict(
        env_prefix="CONVERSATION_",
        env_file=".env",
        extra="ignore",
    )


class ExampleSettings(BaseSettings):
    """Question/SQL few-shot example settings."""

    enabled: bool = Field(default=True, description="Retrieve examples for SQL generation")
    limit: int = Field(default=3, gt=0, le=20, description="Examples added to a prompt")
    min_relevance_score: float = Field(
        default=0.7, ge=0.0, le=1.0, description="Minimum similarity for an example"
    )
    record_corrections: bool = Field(
        default=True, description="Store repaired queries as correction examples"
    )
    collection_prefix: str = Field(
        default="qa_examples", min_length=1, description="Vector collection prefix"
    )

    model_config = SettingsConfigDict(
        env_prefix="EXAMPLES_",
        env_file=".env",
        extra="ignore",
    )


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Application log level",
    )
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log message format",
    )
    date_format: str = Field(
        default="%Y-%m-%d %H:%M:%S",
        description="Log timestamp format",
    )
    file: Path | None = Field(
        default=None,
        description="Optional log file path (None = stdout only)",
    )

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        env_file=".env",
        extra="ignore",
    )

    def configure(self) -> None:
        """Configure Python logging with these settings."""
        handlers: list[logging.Handler] = [logging.StreamHandler()]

        if self.file:
            self.file.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(self.file))

        logging.basicConfig(
            level=getattr(logging, self.level),
            format=self.format,
            datefmt=self.date_format,
            handlers=handlers,
            force=True,  # Override any existing configuration
        )


class Settings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    Settings are nested by concern.

    Environment Variables:
        APP_NAME: Application name for logging
        LLM_*: Text-generation provider (see LLMSettings)
        CHROMA_*: Vector store (see ChromaSettings)
        DATABASE_*: Target databases (see DatabaseSettings)
        SCHEMA_STORE_*: Stored schema snapshots (see SchemaStoreSettings)
        LINKING_*: Schema linking (see LinkingSettings)
        OPTIMIZER_*: Feedback loop (see OptimizerSettings)
        CONVERSATION_*: Conversation context (see ConversationSettings)
        EXAMPLES_*: Few-shot examples (see ExampleSettings)
        LOG_*: Logging (see LoggingSettings)
    """

    app_name: str = Field(
        default="SQLCopilot",
        description="Application name",
    )

    llm: LLMSettings = Field(default_factory=LLMSettings)
    chroma: ChromaSettings = Field(default_factory=ChromaSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    schema_store: SchemaStoreSettings = Field(default_factory=SchemaStoreSettings)
    linking: LinkingSettings = Field(default_factory=LinkingSettings)
    optimizer: OptimizerSettings = Field(default_factory=OptimizerSettings)
    conversation: ConversationSettings = Field(default_factory=ConversationSettings)
    examples: ExampleSettings = Field(default_factory=ExampleSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @model_validator(mode="after")
    def validate_collection_prefixes(self) -> "Settings":
        """Keep example collections apart from schema collections."""
        if self.examples.collection_prefix == self.chroma.collection_prefix:
            raise ValueError(
                f"examples.collection_prefix must differ from chroma.collection_prefix "
                f"({self.chroma.collection_prefix!r})"
            )
        return self

    @model_validator(mode="after")
    def configure_logging(self) -> "Settings":
        """Configure logging when settings are loaded."""
        self.logging.configure()
        return self

    def model_post_init(self, __context) -> None:
        """Log configuration on initialization."""
        logger = logging.getLogger(__name__)
        logger.info(
            f"Settings loaded for {self.app_name}",
            extra={
                "llm_provider": self.llm.default_provider,
                "connections": sorted(self.database.connections),
                "max_iterations": self.optimizer.max_iterations,
            },
        )


_DOTENV_PATH = Path.cwd() / ".env"


def _apply_dotenv_precedence() -> None:
    env_source = os.getenv("SQLCOPILOT_ENV_SOURCE", "dotenv").lower()
    if env_source not in {"dotenv", "envfile", "file"}:
        return
    if _DOTENV_PATH.exists():
        load_dotenv(_DOTENV_PATH, override=True)


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Returns:
        Settings: Singleton settings instance
    """
    _apply_dotenv_precedence()
    return Settings()


def clear_settings_cache() -> None:
    """
    Clear the settings cache.

    Useful for testing when you need to reload settings with different
    environment variables.
    """
    get_settings.cache_clear()
