"""Application settings using Pydantic Settings for configuration management."""

from functools import lru_cache
from typing import Annotated, Literal

from pydantic import Field, SecretStr, computed_field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # Application
    app_name: str = "LeadSync"
    app_version: str = "0.1.0"
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = False
    log_level: str = "INFO"
    log_dir: str = "logs"

    # API Server
    api_host: str = "0.0.0.0"
    api_port: int = 8080

    # Local message / tenant store
    sqlite_db_path: str = "/app/data/leadsync.db"

    # Token encryption (64 hex chars = 32 bytes)
    token_encryption_key: SecretStr | None = None

    # Google OAuth
    google_client_id: str | None = None
    google_client_secret: SecretStr | None = None
    google_redirect_uri: str | None = None
    google_token_url: str = "https://oauth2.googleapis.com/token"
    google_auth_url: str = "https://accounts.google.com/o/oauth2/v2/auth"
    google_scopes: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["https://www.googleapis.com/auth/spreadsheets"]
    )

    # LLM Configuration (OpenAI-compatible chat completions, Groq by default)
    llm_base_url: str = "https://api.groq.com/openai/v1"
    llm_api_key: SecretStr | None = None
    llm_primary_model: str = "llama-3.3-70b-versatile"
    llm_fallback_model: str | None = "llama-3.1-8b-instant"
    llm_temperature: float = 0.1
    llm_max_tokens: int = 1024
    llm_timeout_seconds: float = 30.0

    # Processing
    allowed_sender_roles: Annotated[list[str], NoDecode] = Field(default_factory=lambda: ["user", "customer"])
    credential_refresh_window_seconds: int = 300
    feed_poll_interval_seconds: float = 2.0
    listener_enabled: bool = True

    @field_validator("allowed_sender_roles", "google_scopes", mode="before")
    @classmethod
    def _split_csv(cls, value):
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value

    @computed_field
    @property
    def is_production(self) -> bool:
        """Whether production-only behaviour (file logging) is enabled."""
        return self.environment == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
