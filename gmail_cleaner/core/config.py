"""
Configuration Management

Centralized configuration using Pydantic Settings.
All settings loaded from environment variables with sensible defaults.
"""
from typing import Optional, List
from pydantic_settings import BaseSettings
from pydantic import Field, ConfigDict, field_validator


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Ignore extra environment variables that aren't defined in the model
    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # ============================================================
    # Database Configuration
    # ============================================================
    database_url: str = Field("sqlite:///./gmail_cleaner.db", description="SQLAlchemy database URL")
    database_pool_size: int = Field(5, description="Database connection pool size")
    database_max_overflow: int = Field(10, description="Max overflow connections")

    # ============================================================
    # LLM Configuration
    # ============================================================
    llm_provider: str = Field("openai", description="LLM provider: openai or anthropic")

    # OpenAI (or any OpenAI-compatible endpoint via openai_base_url)
    openai_api_key: Optional[str] = Field(None, description="OpenAI API key")
    openai_model: str = Field("gpt-4o-mini", description="OpenAI model for classification")
    openai_base_url: Optional[str] = Field(None, description="Override for OpenAI-compatible endpoints")
    openai_temperature: float = Field(0.4, description="Temperature for classification (0-1)")

    # Anthropic (alternative)
    anthropic_api_key: Optional[str] = Field(None, description="Anthropic API key")
    anthropic_model: str = Field("claude-3-haiku-20240307", description="Anthropic model")

    llm_timeout_seconds: int = Field(60, description="Timeout for a single completion call")

    # ============================================================
    # Classification Configuration
    # ============================================================
    classification_batch_size: int = Field(20, ge=1, description="Max unanalyzed messages sent per request")
    classification_snippet_chars: int = Field(200, ge=0, description="Snippet length included in the prompt")

    # ============================================================
    # Sync Configuration
    # ============================================================
    sync_page_size: int = Field(50, ge=1, le=500, description="Message ids requested per sync page")
    sync_max_concurrency: int = Field(10, ge=1, description="Parallel metadata fetches per page")
    sync_label_ids: str = Field("INBOX", description="Comma-separated label ids to mirror")
    snippet_max_chars: int = Field(500, ge=1, description="Max snippet length stored locally")

    # ============================================================
    # Gmail Labels (for batch actions: archive/delete)
    # ============================================================
    label_inbox: str = Field("INBOX", description="Label removed on archive/delete")
    label_trash: str = Field("TRASH", description="Label added on delete")
    gmail_batch_modify_limit: int = Field(1000, ge=1, le=1000, description="Max ids per batchModify call")

    # ============================================================
    # API Configuration
    # ============================================================
    default_user_id: str = Field("user-123", description="Local user the API acts for")
    list_page_size: int = Field(20, ge=1, le=100, description="Default page size for local listing")
    allowed_origins: str = Field(
        "http://localhost:5173,http://localhost:3000",
        description="Comma-separated CORS allowed origins"
    )
    api_port: int = Field(3000, description="API server port")

    # ============================================================
    # Logging Configuration
    # ============================================================
    log_level: str = Field("INFO", description="Logging level (DEBUG/INFO/WARNING/ERROR)")
    log_format: str = Field(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Log format string"
    )

    @field_validator("database_url")
    @classmethod
    def _normalize_postgres_scheme(cls, value: str) -> str:
        # Some hosts hand out postgres:// which SQLAlchemy no longer accepts
        if value.startswith("postgres://"):
            return value.replace("postgres://", "postgresql://", 1)
        return value

    @field_validator("llm_provider")
    @classmethod
    def _lowercase_provider(cls, value: str) -> str:
        return value.strip().lower()

    @property
    def allowed_origins_list(self) -> List[str]:
        """Parse allowed origins into list."""
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]

    @property
    def sync_label_ids_list(self) -> List[str]:
        """Parse mirrored label ids into list."""
        return [label.strip() for label in self.sync_label_ids.split(",") if label.strip()]


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get application settings (singleton).

    Returns:
        Settings instance
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """Reload settings from environment (useful for testing)."""
    global _settings
    _settings = Settings()
    return _settings
