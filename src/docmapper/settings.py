"""Settings for docmapper.

``DocMapperSettings`` reads ``DOCMAPPER_*`` environment variables (and a
``.env`` file) into a validated object. Nothing in the library reads it
implicitly: pass it to :meth:`ConnectionRegistry.from_settings` to build the
context object that queries and entities share.

Examples:
    >>> settings = DocMapperSettings(database="blog", default_timezone="Europe/Berlin")
    >>> settings.default_timezone
    'Europe/Berlin'

Tags:
    settings, configuration, pydantic, environment, docmapper
"""

from __future__ import annotations

import logging
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DocMapperSettings(BaseSettings):
    """Connection and behaviour settings.

    Fields
    ──────
    mongodb_url                 : MongoDB connection string
    database                    : Database selected for all collections
    default_timezone            : IANA zone used to display stored timestamps
    server_selection_timeout_ms : Driver server-selection timeout
    log_level                   : Structlog log level
    log_format                  : ``json`` or ``console``
    setup_logging               : Let the registry factories configure logging
    """

    model_config = SettingsConfigDict(
        env_prefix="DOCMAPPER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Database ─────────────────────────────────────────────────
    mongodb_url: str = Field(default="mongodb://localhost:27017")
    database: str = Field(default="docmapper")
    server_selection_timeout_ms: int = Field(default=30000, gt=0)

    # ── Entities ─────────────────────────────────────────────────
    default_timezone: str = Field(default="UTC")

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")
    setup_logging: bool = Field(default=False)

    @field_validator("default_timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown time zone: {value!r}") from exc
        return value

    @field_validator("log_level")
    @classmethod
    def _known_log_level(cls, value: str) -> str:
        value = value.upper()
        if value not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown log level: {value!r}")
        return value

    @field_validator("log_format")
    @classmethod
    def _known_log_format(cls, value: str) -> str:
        if value not in ("json", "console"):
            raise ValueError(f"log_format must be 'json' or 'console', got {value!r}")
        return value

    @property
    def json_logs(self) -> bool:
        return self.log_format == "json"


# ── Settings factory with caching ────────────────────────────────────────

_settings_cache: dict[str, DocMapperSettings] = {}


def get_settings(*, _force_reload: bool = False) -> DocMapperSettings:
    """Load, validate, and cache a :class:`DocMapperSettings` instance."""
    if _force_reload or "default" not in _settings_cache:
        _settings_cache["default"] = DocMapperSettings()
    return _settings_cache["default"]


def clear_settings_cache() -> None:
    """Drop the cached settings (used by tests)."""
    _settings_cache.clear()


__all__ = ["DocMapperSettings", "get_settings", "clear_settings_cache"]
