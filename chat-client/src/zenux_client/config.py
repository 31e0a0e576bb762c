"""Client configuration loaded from environment variables and ``.env``."""
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class ClientSettings(BaseSettings):
    """Settings for the Zenux chat client.

    Attributes:
        zenux_api_url: Base URL of the Zenux Chat API.
        zenux_api_timeout: HTTP read timeout in seconds; streams can be long.
        max_retries: Attempts for retryable GET requests.
        retry_backoff_base: Base delay (seconds) for exponential backoff.
        offline_queue_path: JSON file holding messages queued while offline.
        log_level: Python logging level name.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    zenux_api_url: str = "http://localhost:8000"
    zenux_api_timeout: float = 120.0

    max_retries: int = 3
    retry_backoff_base: float = 1.0

    offline_queue_path: str = ".zenux/offline_queue.json"

    log_level: str = "INFO"


@lru_cache()
def get_client_settings() -> ClientSettings:
    return ClientSettings()
