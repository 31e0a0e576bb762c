"""Zenux Chat API configuration using Pydantic Settings.

Provides centralized configuration for the relay service including:
- Upstream AI gateway URL, API key and sampling defaults
- Supabase auth settings used to verify bearer tokens
- Database and HTTP connection pool settings
- Logging and CORS settings

Configuration is loaded from environment variables and .env files using
Pydantic Settings. The @lru_cache decorator ensures a single settings
instance is shared across the application.

Last Grunted: 10/12/2026 09:40:00 AM UTC
"""
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


# Upstream model per chat mode. Anything else resolves to "auto".
MODE_MODELS: dict[str, str] = {
    "fast": "zenux-1o-fast",
    "heavy": "zenux-1o-heavy",
    "auto": "zenux-1o-alpha",
}


class Settings(BaseSettings):
    """Core service configuration for the Zenux relay.

    Settings are grouped by category:
    - Upstream: AI gateway endpoint and request defaults
    - Auth: Supabase project used to verify bearer tokens
    - Database: async SQLAlchemy connection settings
    - HTTP: shared httpx client pool and timeouts
    - Service: logging, CORS, audit buffer

    Example:
        >>> settings = get_settings()
        >>> settings.zenux_chat_api_url
        "http://localhost:8001/v1/chat/completions"

    Last Grunted: 10/12/2026 09:40:00 AM UTC
    """
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="",
        case_sensitive=False,
        extra="ignore"
    )

    # Upstream AI gateway
    zenux_chat_api_url: str = Field(
        default="http://localhost:8001/v1/chat/completions",
        description="Upstream chat-completions endpoint",
    )
    zenux_api_key: Optional[str] = Field(default=None, description="Bearer key for the upstream gateway")
    upstream_temperature: float = Field(default=0.7, description="Sampling temperature sent upstream")
    upstream_max_tokens: int = Field(default=1000, description="max_tokens sent upstream")

    # Auth provider (Supabase)
    supabase_url: Optional[str] = Field(default=None, description="Supabase project URL")
    supabase_service_role_key: Optional[str] = Field(default=None, description="Supabase service role key")
    require_auth: bool = Field(
        default=False,
        description="Reject relay requests without a bearer token instead of trusting user_id",
    )

    # Database
    database_url: str = Field(
        default="postgresql+asyncpg://localhost/zenuxdb",
        description="Async SQLAlchemy database URL",
    )
    sql_echo: bool = Field(default=False, description="Log SQL statements")
    db_pool_size: int = Field(default=5)
    db_max_overflow: int = Field(default=10)
    db_pool_timeout: int = Field(default=30)
    db_pool_recycle: int = Field(default=3600)

    # Shared HTTP client
    http_max_connections: int = Field(default=100)
    http_max_keepalive: int = Field(default=20)
    http_timeout_connect: float = Field(default=5.0)
    http_timeout_read: float = Field(default=120.0)
    http_timeout_write: float = Field(default=30.0)
    http_timeout_pool: float = Field(default=10.0)

    # Service
    cors_origins: str = Field(default="http://localhost:8080", description="Comma-separated origins")
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json", description="json or console")
    audit_event_buffer: int = Field(default=1000)

    def model_for_mode(self, mode: Optional[str]) -> str:
        """Resolve the upstream model for a chat mode (fast/heavy/auto)."""
        return MODE_MODELS.get((mode or "auto").lower(), MODE_MODELS["auto"])

    def get_cors_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Get cached singleton settings instance.

    Returns:
        Settings: Cached configuration instance.

    Note:
        To reload settings (e.g., after env changes), call get_settings.cache_clear()
        before calling get_settings() again.
    """
    return Settings()
