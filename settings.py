# settings.py
from __future__ import annotations

import os
import tempfile

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_OPENNODE_BASE_URL = "https://api.opennode.co"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    # -----------------------
    # DB
    # -----------------------
    DATABASE_URL: str = ""

    # -----------------------
    # OpenNode
    # -----------------------
    # empty key => mock provider, webhook endpoint answers 503
    OPENNODE_API_KEY: str = ""
    OPENNODE_BASE_URL: str = ""
    OPENNODE_WITHDRAWAL_CALLBACK_URL: str = ""

    # -----------------------
    # Payout worker
    # -----------------------
    # kept as str so a typo in the env falls back to the default instead of crashing startup
    PAYOUT_MAX_ATTEMPTS: str = str(DEFAULT_MAX_ATTEMPTS)
    PAYOUT_WORKER_LOCK_PATH: str = Field(
        default_factory=lambda: os.path.join(tempfile.gettempdir(), "marketplace-payout-worker.lock")
    )
    PAYOUT_WORKER_LOCK_STALE_SECONDS: int = 600

    # HTTP timeouts (provider + LNURL)
    HTTP_TIMEOUT_S: float = 20.0

    LOG_LEVEL: str = "INFO"


settings = Settings()


def max_attempts() -> int:
    raw = (settings.PAYOUT_MAX_ATTEMPTS or "").strip()
    try:
        value = int(raw)
    except ValueError:
        return DEFAULT_MAX_ATTEMPTS
    if value < 1:
        return DEFAULT_MAX_ATTEMPTS
    return value


def opennode_api_key(s: Settings | None = None) -> str:
    s = settings if s is None else s
    return (s.OPENNODE_API_KEY or "").strip()


def opennode_base_url(s: Settings | None = None) -> str:
    """Configured base URL, or the OpenNode default, without a trailing slash."""
    s = settings if s is None else s
    return ((s.OPENNODE_BASE_URL or "").strip() or DEFAULT_OPENNODE_BASE_URL).rstrip("/")


def opennode_callback_url(s: Settings | None = None) -> str:
    s = settings if s is None else s
    return (s.OPENNODE_WITHDRAWAL_CALLBACK_URL or "").strip()
