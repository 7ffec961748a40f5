"""
Security warnings.

Each constructor builds a SecurityWarning and emits it immediately, whether
or not the operation that triggered it goes on to succeed. Emission goes
through logging; the message is colored by severity when stderr is a TTY.
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from greater_cli.metrics import PipelineMetrics

logger = logging.getLogger(__name__)


class Severity(str, Enum):
    """Warning severity."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class WarningType(str, Enum):
    """What triggered the warning."""

    FORCE_OVERWRITE = "force_overwrite"
    SKIP_VERIFICATION = "skip_verification"
    UNSIGNED_TAG = "unsigned_tag"
    NETWORK_ERROR = "network_error"
    CHECKSUM_MISMATCH = "checksum_mismatch"
    UNKNOWN_SOURCE = "unknown_source"


_SEVERITY_COLORS: dict[Severity, tuple[str, str]] = {
    Severity.LOW: ("", ""),
    Severity.MEDIUM: ("\x1b[33m", "\x1b[0m"),
    Severity.HIGH: ("\x1b[31m", "\x1b[0m"),
    Severity.CRITICAL: ("\x1b[1m\x1b[31m", "\x1b[0m"),
}

_SEVERITY_LEVELS: dict[Severity, int] = {
    Severity.LOW: logging.INFO,
    Severity.MEDIUM: logging.WARNING,
    Severity.HIGH: logging.WARNING,
    Severity.CRITICAL: logging.ERROR,
}


@dataclass(frozen=True)
class SecurityWarning:
    """A security-relevant event surfaced to the user.

    Attributes:
        type: What triggered the warning.
        message: Human-readable message.
        severity: low / medium / high / critical.
        timestamp: When the warning was raised (UTC).
        context: Structured details (file path, ref, retry counters, ...).
    """

    type: WarningType
    message: str
    severity: Severity
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    context: dict[str, Any] = field(default_factory=dict)


def format_warning(warning: SecurityWarning, *, color: bool) -> str:
    """Render a warning line, optionally wrapped in ANSI color codes."""
    text = f"Security Warning [{warning.severity.value}]: {warning.message}"
    if not color:
        return text
    start, end = _SEVERITY_COLORS[warning.severity]
    return f"{start}{text}{end}"


def emit_security_warning(
    warning: SecurityWarning,
    *,
    color: bool | None = None,
    metrics: PipelineMetrics | None = None,
) -> None:
    """Emit a warning through logging.

    Args:
        warning: Warning to emit.
        color: Force ANSI colors on/off. Defaults to whether stderr is a TTY.
        metrics: Optional metrics sink.
    """
    if color is None:
        color = sys.stderr.isatty()
    logger.log(
        _SEVERITY_LEVELS[warning.severity],
        format_warning(warning, color=color),
        extra={"warning_type": warning.type.value, "severity": warning.severity.value},
    )
    if metrics is not None:
        metrics.record_warning(warning.severity.value)


def _raise_warning(
    warning_type: WarningType,
    message: str,
    severity: Severity,
    context: dict[str, Any] | None = None,
    metrics: PipelineMetrics | None = None,
) -> SecurityWarning:
    warning = SecurityWarning(
        type=warning_type,
        message=message,
        severity=severity,
        context=context or {},
    )
    emit_security_warning(warning, metrics=metrics)
    return warning


def warn_force_overwrite(
    file_path: str, *, metrics: PipelineMetrics | None = None
) -> SecurityWarning:
    """An existing file is about to be overwritten."""
    return _raise_warning(
        WarningType.FORCE_OVERWRITE,
        f"Overwriting existing file: {file_path}",
        Severity.MEDIUM,
        {"file_path": file_path},
        metrics,
    )


def warn_skip_verification(*, metrics: PipelineMetrics | None = None) -> SecurityWarning:
    """Integrity verification has been disabled by the caller."""
    return _raise_warning(
        WarningType.SKIP_VERIFICATION,
        "Integrity verification is disabled. Files will not be verified against checksums.",
        Severity.HIGH,
        metrics=metrics,
    )


def warn_unsigned_tag(ref: str, *, metrics: PipelineMetrics | None = None) -> SecurityWarning:
    """The ref being installed from carries no signature."""
    return _raise_warning(
        WarningType.UNSIGNED_TAG,
        f'Git tag "{ref}" is not signed. Consider using signed releases for better security.',
        Severity.MEDIUM,
        {"ref": ref},
        metrics,
    )


def warn_network_error(
    error: BaseException,
    attempt: int,
    max_attempts: int,
    *,
    metrics: PipelineMetrics | None = None,
) -> SecurityWarning:
    """A remote fetch attempt failed.

    Args:
        error: The failure.
        attempt: 1-based attempt number, tracked by the remote provider.
        max_attempts: Attempt budget. Reaching it makes the warning high severity.
    """
    return _raise_warning(
        WarningType.NETWORK_ERROR,
        f"Network error (attempt {attempt}/{max_attempts}): {error}",
        Severity.HIGH if attempt >= max_attempts else Severity.MEDIUM,
        {"error": str(error), "attempt": attempt, "max_attempts": max_attempts},
        metrics,
    )


def warn_checksum_mismatch(
    file_path: str,
    expected: str,
    actual: str,
    *,
    metrics: PipelineMetrics | None = None,
) -> SecurityWarning:
    """A fetched file does not match its manifest checksum."""
    return _raise_warning(
        WarningType.CHECKSUM_MISMATCH,
        f"Checksum mismatch for {file_path}",
        Severity.CRITICAL,
        {"file_path": file_path, "expected": expected, "actual": actual},
        metrics,
    )


def should_verify(
    skip_verification: bool = False, *, metrics: PipelineMetrics | None = None
) -> bool:
    """Verification is on by default; turning it off always warns."""
    if skip_verification:
        warn_skip_verification(metrics=metrics)
        return False
    return True
