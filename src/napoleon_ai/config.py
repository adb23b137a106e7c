"""Configuration management for Napoleon AI."""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

VALID_ANALYSIS_BACKENDS = frozenset({"heuristic", "ollama", "openai"})


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    environment: str = Field(default="production", description="Environment name")
    log_level: str = Field(default="INFO", description="Logging level")

    # File logging
    log_to_file: bool = Field(default=False, description="Also write logs to rotating files")
    log_directory: str = Field(default="logs", description="Directory for log files")
    log_file_max_bytes: int = Field(default=10 * 1024 * 1024, ge=1024)
    log_file_backup_count: int = Field(default=5, ge=0)
    log_error_file_enabled: bool = Field(
        default=True, description="Write WARNING+ records to a separate file"
    )

    # PostgreSQL (optional; in-memory stores are used when unset)
    postgres_dsn: str | None = Field(default=None, description="asyncpg DSN")
    postgres_pool_min_size: int = Field(default=1, ge=1)
    postgres_pool_max_size: int = Field(default=10, ge=1)

    # Upstream analysis model
    analysis_backend: str = Field(
        default="heuristic", description="heuristic, ollama or openai"
    )
    ollama_host: str = Field(default="ollama", description="Ollama server host")
    ollama_port: int = Field(default=11434, description="Ollama server port")
    ollama_analysis_model: str = Field(default="llama3.1:8b")
    ollama_timeout: float = Field(default=30.0, gt=0)
    openai_api_key: SecretStr | None = Field(default=None, description="OpenAI API key")
    openai_model: str = Field(default="gpt-4o-mini")

    # Analysis behaviour
    upstream_timeout_seconds: float = Field(
        default=30.0, gt=0, description="Bound on any single model call"
    )
    claim_wait_timeout: float = Field(
        default=60.0, gt=0, description="How long a duplicate submission waits for the winner"
    )
    urgent_threshold: int = Field(default=80, ge=0, le=100)
    recency_window_hours: float = Field(default=24.0, gt=0)
    summary_max_length: int = Field(default=200, ge=40)

    # Real-time notifications
    event_webhook_url: str | None = Field(
        default=None, description="Broadcast endpoint for message_processed events"
    )
    event_webhook_secret: SecretStr | None = Field(default=None)
    event_publish_timeout: float = Field(default=5.0, gt=0)

    # Batch processing
    batch_chunk_size: int = Field(default=3, ge=1)
    max_batch_size: int = Field(default=10, ge=1)
    rate_limit_max_messages: int = Field(default=100, ge=1)
    rate_limit_window_seconds: float = Field(default=3600.0, gt=0)
    max_retries: int = Field(default=3, ge=1)
    retry_base_delay: float = Field(default=1.0, ge=0)

    @field_validator("analysis_backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        """Only known analysis backends are accepted."""
        backend = v.strip().lower()
        if backend not in VALID_ANALYSIS_BACKENDS:
            raise ValueError(
                f"analysis_backend must be one of {sorted(VALID_ANALYSIS_BACKENDS)}, got: {v}"
            )
        return backend

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment.lower() == "development"

    @property
    def ollama_url(self) -> str:
        """Get the full Ollama URL."""
        return f"http://{self.ollama_host}:{self.ollama_port}"

    @property
    def log_file_path(self) -> str:
        """Path of the main rotating log file."""
        return str(Path(self.log_directory) / "napoleon_ai.log")

    @property
    def error_log_file_path(self) -> str:
        """Path of the WARNING+ rotating log file."""
        return str(Path(self.log_directory) / "napoleon_ai_error.log")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
