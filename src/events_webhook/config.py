"""Centralised application settings loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings

ADOBE_IOEVENTS_SECURITY_DOMAIN = "https://static.adobeioevents.com"


class Settings(BaseSettings):
    """Application settings populated from environment / .env file."""

    # Public key retrieval
    security_domain: str = ADOBE_IOEVENTS_SECURITY_DOMAIN
    key_fetch_timeout: float = 10.0
    cache_public_keys: bool = True

    # Expected ``recipient_client_id`` of incoming events
    webhook_api_key: str = ""

    # Webhook consumer
    webhook_host: str = "0.0.0.0"
    webhook_port: int = 9000
    webhook_path: str = "/webhook"

    # Logging
    log_level: str = "INFO"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }


@lru_cache
def get_settings() -> Settings:
    """Return a cached *Settings* instance."""
    return Settings()
