"""
Structured logging for docmapper.

Library modules only emit events through loggers from :func:`get_logger`.
Rendering is set up once, either by the application calling
:func:`configure_logging` or from settings: with
``DOCMAPPER_SETUP_LOGGING=true`` the registry factories hand the settings to
:func:`configure_logging_from_settings`.

Query and removal events carry MongoDB filter documents, which hold BSON
values (``ObjectId``, ``DBRef``, compiled patterns, naive UTC datetimes). In
JSON mode those payloads are rewritten as relaxed Extended JSON so every line
stays parseable and identifiers keep their ``{"$oid": ...}`` shape.

Architecture:
    ::

        DocMapperSettings(log_level, log_format, setup_logging)
            │
            ▼
        configure_logging_from_settings(settings)
            │
            ▼
        configure_logging(level, json_format)
            │
            ▼
        processor chain:
          1. TimeStamper (ISO, UTC)
          2. merge_contextvars
          3. add_log_level / add_logger_name
          4. tag_library        (library="docmapper" on docmapper.* loggers)
          5. bson_payloads      (JSON only: filter/sort/projection → Extended JSON)
          6. JSONRenderer | ConsoleRenderer

        logger = get_logger(__name__)
        logger.debug("query_executed", collection="users", filter={"_id": ObjectId(...)})

Examples:
    >>> from docmapper.logging import configure_logging, get_logger
    >>> configure_logging(level="DEBUG", json_format=False)
    >>> logger = get_logger(__name__)
    >>> logger.info("entity_saved", collection="users")

Tags:
    logging, structlog, bson, extended-json, docmapper
"""

from __future__ import annotations

import json
import logging
import sys
from typing import TYPE_CHECKING, Any

import structlog
from bson import json_util
from structlog.types import EventDict, Processor, WrappedLogger

from docmapper.errors import ConfigError

if TYPE_CHECKING:
    from docmapper.settings import DocMapperSettings

LIBRARY_NAME = "docmapper"

# Event keys whose values are MongoDB documents.
BSON_PAYLOAD_KEYS = ("filter", "sort", "projection")


def _tag_library(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Mark events emitted by docmapper's own loggers."""
    name = event_dict.get("logger") or ""
    if name == LIBRARY_NAME or name.startswith(LIBRARY_NAME + "."):
        event_dict.setdefault("library", LIBRARY_NAME)
    return event_dict


def _bson_payloads(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Rewrite MongoDB documents in the event as relaxed Extended JSON."""
    for key in BSON_PAYLOAD_KEYS:
        value = event_dict.get(key)
        if value:
            event_dict[key] = json.loads(
                json_util.dumps(value, json_options=json_util.RELAXED_JSON_OPTIONS)
            )
    return event_dict


def resolve_level(level: str | int) -> int:
    """Map a level name (any case) or number to a stdlib logging level.

    Raises:
        ConfigError: If *level* names no known level.
    """
    if isinstance(level, int):
        return level
    levels = logging.getLevelNamesMapping()
    try:
        return levels[level.upper()]
    except KeyError:
        raise ConfigError(
            f"Unknown log level {level!r}; expected one of {sorted(levels)}"
        ).with_context(operation="configure_logging") from None


def configure_logging(
    level: str | int = "INFO",
    json_format: bool | None = None,
    *,
    add_timestamp: bool = True,
) -> None:
    """Configure structlog and the stdlib root handler.

    Args:
        level: Minimum level, by name or number.
        json_format: True for JSON lines, False for the console renderer,
            None to pick JSON when stdout is not a terminal.
        add_timestamp: Include an ISO UTC timestamp in each event.

    Raises:
        ConfigError: If *level* is unknown.
    """
    numeric_level = resolve_level(level)

    if json_format is None:
        json_format = not sys.stdout.isatty()

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        _tag_library,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
    ]

    if add_timestamp:
        processors.insert(0, structlog.processors.TimeStamper(fmt="iso", utc=True))

    if json_format:
        processors += [_bson_payloads, structlog.processors.format_exc_info]
        renderer: Processor = structlog.processors.JSONRenderer(default=str)
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=processors + [renderer],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=numeric_level)


def configure_logging_from_settings(settings: DocMapperSettings) -> None:
    """Apply ``log_level`` and ``log_format`` from *settings*."""
    configure_logging(level=settings.log_level, json_format=settings.json_logs)


def get_logger(name: str | None = None) -> Any:
    """Get a structured logger.

    Args:
        name: Logger name (usually __name__)
    """
    return structlog.get_logger(name)


__all__ = [
    "LIBRARY_NAME",
    "configure_logging",
    "configure_logging_from_settings",
    "get_logger",
    "resolve_level",
]
