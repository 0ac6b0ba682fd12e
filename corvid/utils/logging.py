"""Structured logging setup using structlog.

Backend credentials pass through request headers and error bodies, so every
record is scrubbed before it is rendered.
"""

from __future__ import annotations

import logging
import re
import sys
from typing import Any

import structlog

REDACTED = "***REDACTED***"

# Event fields whose whole value is a credential.
_SENSITIVE_FIELDS = frozenset({"api_key", "authorization", "token", "password", "secret", "x-api-key", "api-key"})

_SENSITIVE_PATTERNS: list[tuple[re.Pattern[str], str]] = [
    (
        re.compile(
            r"(api[_-]?key|token|secret|password|authorization)([\"']?\s*[:=]\s*[\"']?)(?:bearer\s+)?[\w\-\.]+",
            re.IGNORECASE,
        ),
        rf"\1\2{REDACTED}",
    ),
    (re.compile(r"(bearer)\s+[\w\-\.]+", re.IGNORECASE), rf"\1 {REDACTED}"),
    # Raw keys in the formats the hosted backends issue.
    (re.compile(r"\b(?:sk-ant-|sk-or-|sk-|xai-|gsk_|ghp_|github_pat_)[\w\-]{8,}"), REDACTED),
    (re.compile(r"\bAIza[\w\-]{20,}"), REDACTED),
    # Google takes its key as a query parameter.
    (re.compile(r"([?&]key=)[^&\s\"']+"), rf"\1{REDACTED}"),
]


def redact(text: str) -> str:
    for pattern, replacement in _SENSITIVE_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def _scrub(value: Any) -> Any:
    if isinstance(value, str):
        return redact(value)
    if isinstance(value, dict):
        return {
            k: REDACTED if str(k).lower() in _SENSITIVE_FIELDS and v else _scrub(v)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return type(value)(_scrub(v) for v in value)
    return value


def _filter_sensitive(
    _logger: structlog.types.WrappedLogger,
    _method: str,
    event_dict: structlog.types.EventDict,
) -> structlog.types.EventDict:
    for key, value in list(event_dict.items()):
        if key.lower() in _SENSITIVE_FIELDS and value:
            event_dict[key] = REDACTED
        else:
            event_dict[key] = _scrub(value)
    return event_dict


def setup_logging(level: str = "WARNING", json_output: bool = False) -> None:
    """Configure structlog with optional JSON output.

    Logs go to stderr so streamed model output on stdout stays clean.
    """
    numeric_level = getattr(logging, level.upper(), logging.WARNING)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        _filter_sensitive,
    ]

    if json_output:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(numeric_level)

    # httpx logs every request URL at INFO, query-string keys included.
    for name in ("httpx", "httpcore", "aiosqlite", "asyncio"):
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
