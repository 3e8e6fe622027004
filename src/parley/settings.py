"""Service configuration loaded from PARLEY_* environment variables."""

from __future__ import annotations

from functools import lru_cache

from pydantic import AliasChoices, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from parley.provider import NEAR_AI_CLOUD_URL


class ParleySettings(BaseSettings):
    """Parley settings.

    All fields are read from environment variables with the ``PARLEY_``
    prefix, e.g. ``PARLEY_LOG_LEVEL=DEBUG`` maps to ``log_level``.  The
    upstream key also falls back to ``NEAR_AI_CLOUD_API_KEY``.
    """

    model_config = SettingsConfigDict(
        env_prefix="PARLEY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # -- Logging ---------------------------------------------------------------
    log_level: str = "INFO"

    # -- Server ----------------------------------------------------------------
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8000

    # -- Upstream completions --------------------------------------------------
    upstream_base_url: str = NEAR_AI_CLOUD_URL
    upstream_api_key: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices("PARLEY_UPSTREAM_API_KEY", "NEAR_AI_CLOUD_API_KEY"),
    )
    model: str = "deepseek-ai/DeepSeek-V3.1"
    request_timeout: float = 600.0
    """Seconds allowed per network operation against the upstream."""

    # -- Run loop --------------------------------------------------------------
    max_rounds: int = 10
    stream_chunk_size: int = 50
    """Deltas longer than this are re-split for display; 0 disables."""
    stream_chunk_delay: float = 0.015

    # -- Tool backends ---------------------------------------------------------
    services_base_url: str = "http://localhost:3000"
    """Host application serving the screening and summary endpoints."""


@lru_cache(maxsize=1)
def get_settings() -> ParleySettings:
    """Return a cached settings instance.

    Call ``get_settings.cache_clear()`` in tests to force a re-read after
    overriding env vars.
    """
    return ParleySettings()
