"""Settings for the limiter, its counter stores and the demo app.

Every group reads its own environment prefix:

- ``APP_*``: application metadata
- ``RATE_LIMIT_*``: defaults for the rate limiter middleware
- ``CACHE_*``: counter store backends
- ``LOG_*``: logging output

Values may also come from ``.env.<APP_ENV>`` at the project root
(``APP_ENV`` defaults to ``development``), or from the file named by
``APP_ENV_FILE``. The file is loaded into ``os.environ`` before any
settings object is built, so nested groups see it too.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

APP_ENV = os.getenv("APP_ENV", "development")

PROJECT_ROOT = Path(__file__).resolve().parents[2]

ENV_FILES = {
    "development": ".env.development",
    "testing": ".env.testing",
    "staging": ".env.staging",
    "production": ".env.production",
}


def load_env_file(app_env: str = APP_ENV) -> Path | None:
    """Load the dotenv file for ``app_env`` into ``os.environ``.

    Returns:
        The loaded path, or None when there is no file (production usually
        injects plain environment variables).
    """

    explicit = os.getenv("APP_ENV_FILE")
    path = Path(explicit) if explicit else PROJECT_ROOT / ENV_FILES.get(app_env, ENV_FILES["development"])
    if not path.is_file():
        return None
    load_dotenv(path, override=True)
    return path


ENV_FILE = load_env_file()

IdentifierSource = Literal["remote_address", "forwarded_address", "api_key_or_address"]


class AppSettings(BaseSettings):
    debug: bool = Field(False, description="Enable FastAPI debug mode")
    title: str = Field("throttlegate", description="Title reported by the OpenAPI schema")

    model_config = SettingsConfigDict(env_prefix="APP_", case_sensitive=False)


class RateLimitSettings(BaseSettings):
    """Defaults for the rate limiter installed by the app factory.

    ``exempt_paths`` is read from the environment as a JSON list, e.g.
    ``RATE_LIMIT_EXEMPT_PATHS='["/health", "/metrics"]'``.
    """

    enabled: bool = Field(True, description="Install the rate limiter middleware")
    cache_config: str = Field(
        "ratelimiter",
        min_length=1,
        description="Cache namespace holding the per-identifier window state",
    )
    limit: int = Field(60, ge=1, description="Maximum number of admitted requests per window")
    period: int = Field(60, ge=1, description="Window length in seconds")
    message: str = Field("Rate limit exceeded", description="Body text of the 429 response")
    include_headers: bool = Field(True, description="Add X-RateLimit-* headers to responses")
    header_limit: str = Field("X-RateLimit-Limit", min_length=1)
    header_remaining: str = Field("X-RateLimit-Remaining", min_length=1)
    header_reset: str = Field("X-RateLimit-Reset", min_length=1)
    identifier: IdentifierSource = Field(
        "remote_address",
        description="How requests are bucketed (client address, proxy address or API key)",
    )
    exempt_paths: list[str] = Field(
        default_factory=lambda: ["/health"],
        description="Request paths that bypass rate limiting",
    )
    serialize_updates: bool = Field(
        True,
        description="Hold a per-key lock across the counter read-modify-write",
    )

    model_config = SettingsConfigDict(env_prefix="RATE_LIMIT_", case_sensitive=False)

    @model_validator(mode="after")
    def _check_headers(self) -> RateLimitSettings:
        names = [self.header_limit, self.header_remaining, self.header_reset]
        if len({name.lower() for name in names}) != len(names):
            raise ValueError("rate limit header names must be distinct")
        return self


class CacheSettings(BaseSettings):
    """Counter store backend configuration."""

    default_backend: Literal["memory", "file", "redis"] = Field(
        "memory",
        description="Backend registered for cache namespaces that are not configured explicitly",
    )
    file_path: str = Field("cache", description="Directory used by the file backend")
    max_entries: int | None = Field(
        10000,
        ge=1,
        description="Maximum number of entries kept by the memory backend (None for unlimited)",
    )
    redis_url: str = Field("redis://localhost:6379/0", description="Connection URL used by the redis backend")

    model_config = SettingsConfigDict(env_prefix="CACHE_", case_sensitive=False)


class LogSettings(BaseSettings):
    level: str = Field("INFO", description="Root log level")
    format: Literal["json", "plain"] = Field("json", description="Log line format")
    output: Literal["stdout", "file"] = Field("stdout", description="Log destination")
    file_path: str | None = Field(None, description="Log file path when output=file")
    max_bytes: int = Field(
        10 * 1024 * 1024,
        ge=0,
        description="Rotate the log file after this many bytes (0 disables rotation)",
    )
    backup_count: int = Field(5, ge=0, description="Number of rotated log files to keep")
    request_id_header: str = Field("X-Request-ID", description="Header carrying the request correlation id")

    model_config = SettingsConfigDict(env_prefix="LOG_", case_sensitive=False)


class Settings(BaseSettings):
    """All settings groups; invalid values fail at startup."""

    app_env: str = APP_ENV
    app: AppSettings = Field(default_factory=AppSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    log: LogSettings = Field(default_factory=LogSettings)

    model_config = SettingsConfigDict(case_sensitive=False)


settings = Settings()
