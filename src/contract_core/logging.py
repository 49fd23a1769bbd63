"""Structured logging shared by the analysis components.

Components log events with keyword fields through structlog (or a stdlib
logger, which receives the fields as ``extra``). Contract text never reaches
a sink: the redaction processor replaces it with its length and masks
credentials.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Callable, Iterable, Mapping
from functools import partial
from typing import Literal, Protocol

import structlog
from structlog.typing import EventDict, Processor

LOG_LEVEL_NAMES = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
CONTRACT_TEXT_FIELDS = frozenset({"text", "extracted_text"})
CREDENTIAL_FIELDS = frozenset({"api_key", "authorization"})
MASK = "***"

_StdlibLogger = logging.Logger | logging.LoggerAdapter[logging.Logger]


class StructuredLogger(Protocol):
    """Logger with structlog-style ``level(event, **fields)`` methods."""

    def info(self, event: str, **kwargs: object) -> None: ...

    def warning(self, event: str, **kwargs: object) -> None: ...

    def error(self, event: str, **kwargs: object) -> None: ...

    def exception(self, event: str, **kwargs: object) -> None: ...


def get_log_level_value(level: str) -> int:
    """Map a case-insensitive level name to its stdlib constant."""
    normalized = level.strip().upper()
    if normalized not in LOG_LEVEL_NAMES:
        choices = ", ".join(sorted(LOG_LEVEL_NAMES))
        raise ValueError(f"log_level must be one of: {choices}")
    return logging.getLevelNamesMapping()[normalized]


def _scrub(
    fields: Mapping[str, object],
    *,
    text_fields: frozenset[str],
    credential_fields: frozenset[str],
) -> dict[str, object]:
    scrubbed: dict[str, object] = {}
    for key, value in fields.items():
        if key in credential_fields:
            scrubbed[key] = MASK
        elif key not in text_fields:
            scrubbed[key] = value
        elif isinstance(value, str) and f"{key}_length" not in fields:
            scrubbed[f"{key}_length"] = len(value)
    return scrubbed


def build_redaction_processor(
    *,
    text_fields: Iterable[str] = CONTRACT_TEXT_FIELDS,
    credential_fields: Iterable[str] = CREDENTIAL_FIELDS,
) -> Processor:
    """Build a processor that keeps contract text and credentials out of logs.

    Text fields are replaced by ``<field>_length`` unless the event already
    carries that key; credential fields are masked. A stdlib ``extra`` mapping
    is scrubbed the same way.
    """
    scrub = partial(
        _scrub,
        text_fields=frozenset(text_fields),
        credential_fields=frozenset(credential_fields),
    )

    def _redact(_: object, __: str, event_dict: EventDict) -> EventDict:
        redacted = scrub(event_dict)
        extra = redacted.get("extra")
        if isinstance(extra, Mapping):
            redacted["extra"] = scrub(extra)
        return redacted

    return _redact


def _emit(
    level: Literal["info", "warning", "error", "exception"],
    logger: StructuredLogger | _StdlibLogger,
    event: str,
    **fields: object,
) -> None:
    method = getattr(logger, level)
    if isinstance(logger, (logging.Logger, logging.LoggerAdapter)):
        method(event, extra=fields)
    else:
        method(event, **fields)


LogHelper = Callable[..., None]

log_info: LogHelper = partial(_emit, "info")
log_warning: LogHelper = partial(_emit, "warning")
log_error: LogHelper = partial(_emit, "error")
log_exception: LogHelper = partial(_emit, "exception")


def _renderer(json_logs: bool | None) -> Processor:
    if json_logs is None:
        json_logs = not sys.stderr.isatty()
    if json_logs:
        return structlog.processors.JSONRenderer(ensure_ascii=False)
    return structlog.dev.ConsoleRenderer()


def configure_structlog(
    *, log_level: str, json_logs: bool | None = None
) -> structlog.stdlib.BoundLogger:
    """Route structlog and stdlib logging through one redacting stderr handler.

    Calling it again replaces the previous configuration.

    Args:
        log_level: Level name such as ``INFO``.
        json_logs: Force JSON (``True``) or console (``False``) rendering.
            By default JSON is used unless stderr is a terminal.
    """
    pre_chain: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        build_redaction_processor(),
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _renderer(json_logs),
            ],
        )
    )
    logging.basicConfig(
        format="%(message)s",
        handlers=[handler],
        level=get_log_level_value(log_level),
        force=True,
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            *pre_chain,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    return structlog.stdlib.get_logger()
