"""
Structured logging configuration for greater-cli.

Every log line passes through the same field filter:
- credential-bearing fields are dropped (tokens, auth headers, cookies)
- fetched file content and checksum maps are replaced by a placeholder
- URLs keep their path only, so query strings never reach a log line

Usage:
    from greater_cli.logging_config import setup_logging, get_logger

    setup_logging(json_format=False)  # Call once at startup
    logger = get_logger(__name__)
    logger.info("fetched index", extra={"ref": "greater-v4.2.0"})
"""

from __future__ import annotations

import logging
import re
import sys
from datetime import UTC, datetime
from typing import Any, TextIO
from urllib.parse import urlsplit

import orjson

_URL_PATTERN = re.compile(r"https?://[^\s\"'<>]+")
_TOKEN_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\b(?:gh[pousr]_[A-Za-z0-9]{20,}|github_pat_[A-Za-z0-9_]{20,})\b"), "[TOKEN]"),
    (re.compile(r"\b(?:bearer|token)[=:\s]+['\"]?[\w\-.]+['\"]?", re.I), "[TOKEN]"),
    (re.compile(r"\bauth(?:orization)?[=:\s]+['\"]?[\w\-.\s]+['\"]?", re.I), "[AUTH]"),
)

# Substrings that disqualify a field name
BLOCKED_FIELDS: frozenset[str] = frozenset(
    {
        "token",
        "github_token",
        "secret",
        "password",
        "auth",
        "authorization",
        "cookie",
        "credential",
    }
)

# Payload fields replaced by a placeholder
REDACTED_FIELDS: dict[str, str] = {
    "content": "[CONTENT]",
    "body": "[BODY]",
    "checksums": "[CHECKSUMS]",
}

# Attributes every LogRecord carries; anything else came in through extra=
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


def _normalize_url(url: str) -> str:
    """Reduce a URL to its path."""
    return urlsplit(url).path or "/"


def _sanitize_text(text: str) -> str:
    """Strip URL query strings and credential-looking substrings from free text."""
    if not text:
        return text

    def _url_path(match: re.Match[str]) -> str:
        path = _normalize_url(match.group(0))
        return path if path != "/" else "[URL]"

    result = _URL_PATTERN.sub(_url_path, text)
    for pattern, replacement in _TOKEN_PATTERNS:
        result = pattern.sub(replacement, result)
    return result


def _is_blocked(name: str) -> bool:
    lowered = name.lower()
    return any(blocked in lowered for blocked in BLOCKED_FIELDS)


def _filter_log_record(record: dict[str, Any]) -> dict[str, Any]:
    """Apply field blocking and redaction to a flat mapping of extra fields.

    Scalars pass through; anything else is rendered with str() and sanitized.
    """
    filtered: dict[str, Any] = {}
    for key, value in record.items():
        if _is_blocked(key):
            continue
        lowered = key.lower()
        if lowered == "url" and isinstance(value, str):
            filtered["endpoint"] = _normalize_url(value)
        elif lowered in REDACTED_FIELDS:
            filtered[key] = REDACTED_FIELDS[lowered]
        elif value is None or isinstance(value, (bool, int, float)):
            filtered[key] = value
        else:
            filtered[key] = _sanitize_text(str(value))
    return filtered


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    extra = {k: v for k, v in vars(record).items() if k not in _RECORD_ATTRS}
    return _filter_log_record(extra) if extra else {}


class JsonFormatter(logging.Formatter):
    """One JSON object per line.

    {"ts":"2026-01-01T00:00:00.000+00:00","level":"INFO","logger":"module","msg":"...", ...}

    WARNING and above also carry the source file and line.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "msg": _sanitize_text(record.getMessage()),
        }
        if record.levelno >= logging.WARNING:
            payload["file"] = record.filename
            payload["line"] = record.lineno
        if record.exc_info:
            payload["exc"] = _sanitize_text(self.formatException(record.exc_info))
        payload.update(_extra_fields(record))
        return orjson.dumps(payload, default=str).decode()


class SimpleFormatter(logging.Formatter):
    """`LEVEL    logger: message | key=value ...` for interactive use."""

    def format(self, record: logging.LogRecord) -> str:
        line = f"{record.levelname:8s} {record.name}: {_sanitize_text(record.getMessage())}"
        extra = _extra_fields(record)
        if extra:
            line += " | " + " ".join(f"{k}={v}" for k, v in extra.items())
        if record.exc_info:
            line += "\n" + _sanitize_text(self.formatException(record.exc_info))
        return line


def setup_logging(
    *,
    level: int | str = logging.INFO,
    json_format: bool = False,
    stream: TextIO | None = None,
) -> None:
    """Replace root handlers with a single stream handler.

    Args:
        level: Root log level.
        json_format: JSON lines instead of the human-readable format.
        stream: Output stream (default stderr, so stdout stays free for command output).
    """
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(JsonFormatter() if json_format else SimpleFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for noisy in ("aiohttp", "asyncio"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance (typically get_logger(__name__))."""
    return logging.getLogger(name)
