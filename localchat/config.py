"""Application configuration using Pydantic Settings."""

from functools import lru_cache
from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_SHELL_WHITELIST = ["ls", "cat", "grep", "echo", "pwd", "sed", "awk"]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Application
    APP_NAME: str = "localchat-agent"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Security
    API_KEY: str | None = None
    CORS_ORIGINS: list[str] = Field(
        default=["http://localhost:1420", "http://localhost:3000", "tauri://localhost"],
        description="Allowed CORS origins"
    )

    # Model service
    OLLAMA_BASE_URL: str = Field(
        default="http://127.0.0.1:11434",
        description="Base URL of the local model service",
    )
    OLLAMA_API_TOKEN: str | None = None
    CHAT_TIMEOUT: float = 300.0
    MAX_TOOL_ROUNDS: int = Field(
        default=8,
        description="Maximum number of tool-call rounds in a single turn"
    )

    # Embedding Service
    EMBEDDING_MODEL: str = "nomic-embed-text"
    EMBEDDING_DIMENSION: int = 768
    EMBEDDING_TIMEOUT: float = 30.0

    # Summarization Settings
    SUMMARIZATION_ENABLED: bool = Field(
        default=True,
        description="Try the model-assisted summarizer before the extractive fallback"
    )
    SUMMARIZATION_MODEL: str = Field(
        default="qwen2.5:0.5b",
        description="Model to use for summarization (should be small and fast)"
    )
    SUMMARIZATION_TIMEOUT: float = Field(
        default=15.0,
        description="Timeout for summarization requests in seconds"
    )
    SUMMARIZATION_MAX_INPUT_CHARS: int = Field(
        default=2000,
        description="Maximum characters sent to the summarization model"
    )
    SUMMARY_MAX_CHARS: int = Field(
        default=200,
        description="Character budget for extractive summaries"
    )

    # Vector store
    VECTOR_STORE_HOST: str = "127.0.0.1"
    VECTOR_STORE_PORT: int = 6333
    VECTOR_STORE_AUTO_START: bool = True
    VECTOR_STORE_USE_DOCKER: bool = True
    VECTOR_STORE_DATA_PATH: str | None = None
    VECTOR_STORE_CONTAINER_NAME: str = "localchat-qdrant"
    VECTOR_STORE_IMAGE: str = "qdrant/qdrant"
    VECTOR_STORE_BINARY: str = "qdrant"
    VECTOR_STORE_HEALTH_TTL: float = 30.0  # seconds
    VECTOR_STORE_PROBE_TIMEOUT: float = 2.0
    VECTOR_STORE_READY_ATTEMPTS: int = 15
    VECTOR_STORE_READY_INTERVAL: float = 2.0
    VECTOR_STORE_STOP_ON_SHUTDOWN: bool = False
    VECTOR_STORE_TIMEOUT: float = 10.0

    # Retrieval
    DOCUMENTS_COLLECTION: str = "chat"
    CONVERSATIONS_COLLECTION: str = "conversations"
    RAG_CROSS_THREAD_ENABLED: bool = True
    DEFAULT_TOP_K: int = 4
    DEFAULT_CONTEXT_TOKENS: int = 1024
    CHUNK_MAX_TOKENS: int = 512

    # Tool sandbox
    WORKSPACE_DIR: str = "./workspace"
    FILE_READ_MAX_CHARS: int = 10_000
    SHELL_TIMEOUT: float = 5.0
    SHELL_OUTPUT_LIMIT: int = 30 * 1024  # bytes
    SHELL_WHITELIST: list[str] = Field(default_factory=lambda: list(DEFAULT_SHELL_WHITELIST))
    WEB_SEARCH_ENDPOINT: str = "https://api.duckduckgo.com/"
    WEB_SEARCH_TIMEOUT: float = 10.0
    WEB_SEARCH_MAX_RESULTS: int = 5

    # OpenTelemetry Configuration
    OTEL_EXPORTER_OTLP_ENDPOINT: str | None = None
    OTEL_SERVICE_NAME: str = "localchat-agent"
    OTEL_SERVICE_VERSION: str = "1.0.0"
    OTEL_ENABLED: bool = False

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v) -> list[str]:
        """Parse CORS origins from list or comma-separated string."""
        if isinstance(v, str):
            if v == "*":
                return ["*"]
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        if isinstance(v, list):
            return [str(origin).rstrip("/") for origin in v if origin]
        return []

    @field_validator("SHELL_WHITELIST", mode="before")
    @classmethod
    def parse_shell_whitelist(cls, v: Any) -> list[str]:
        """Parse the command whitelist from list or comma-separated string."""
        if isinstance(v, str):
            return [cmd.strip() for cmd in v.split(",") if cmd.strip()]
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"LOG_LEVEL must be one of {valid_levels}")
        return v_upper

    @field_validator("OLLAMA_BASE_URL", "WEB_SEARCH_ENDPOINT")
    @classmethod
    def validate_http_url(cls, v: str) -> str:
        """Validate service URL format."""
        if not v:
            raise ValueError("URL is required")
        if not v.startswith(("http://", "https://")):
            raise ValueError("URL must be a valid HTTP(S) URL")
        return v

    @field_validator("VECTOR_STORE_PORT")
    @classmethod
    def validate_port(cls, v: int) -> int:
        """Validate TCP port range."""
        if not 1 <= v <= 65535:
            raise ValueError("VECTOR_STORE_PORT must be between 1 and 65535")
        return v

    @field_validator("EMBEDDING_DIMENSION")
    @classmethod
    def validate_embedding_dimension(cls, v: int) -> int:
        """Validate embedding dimension is reasonable."""
        if v < 1 or v > 10000:
            raise ValueError("EMBEDDING_DIMENSION must be between 1 and 10000")
        return v

    @field_validator(
        "CHAT_TIMEOUT",
        "EMBEDDING_TIMEOUT",
        "SHELL_TIMEOUT",
        "WEB_SEARCH_TIMEOUT",
        "VECTOR_STORE_TIMEOUT",
        "VECTOR_STORE_PROBE_TIMEOUT",
    )
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        """Validate timeout values are positive."""
        if v <= 0:
            raise ValueError("Timeout must be a positive number")
        if v > 600:
            raise ValueError("Timeout should not exceed 600 seconds")
        return v

    @field_validator("SUMMARIZATION_TIMEOUT")
    @classmethod
    def validate_summarization_timeout(cls, v: float) -> float:
        """Validate summarization timeout is reasonable."""
        if v <= 0:
            raise ValueError("SUMMARIZATION_TIMEOUT must be positive")
        if v > 120:
            raise ValueError("SUMMARIZATION_TIMEOUT should not exceed 120 seconds")
        return v

    @field_validator("MAX_TOOL_ROUNDS")
    @classmethod
    def validate_max_tool_rounds(cls, v: int) -> int:
        """Validate the tool loop cap."""
        if v < 1:
            raise ValueError("MAX_TOOL_ROUNDS must be at least 1")
        if v > 50:
            raise ValueError("MAX_TOOL_ROUNDS should not exceed 50")
        return v

    @field_validator("DEFAULT_TOP_K", "DEFAULT_CONTEXT_TOKENS", "CHUNK_MAX_TOKENS", "VECTOR_STORE_READY_ATTEMPTS")
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        """Validate positive integer values."""
        if v < 1:
            raise ValueError("Value must be a positive integer")
        return v

    @field_validator("SHELL_OUTPUT_LIMIT", "FILE_READ_MAX_CHARS")
    @classmethod
    def validate_output_limit(cls, v: int) -> int:
        """Validate output caps."""
        if v < 1024:
            raise ValueError("Output limit must be at least 1024")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()
