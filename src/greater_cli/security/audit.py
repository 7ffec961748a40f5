"""
Append-only audit trail of install, verify and warning events.

One JSON object per line in <log_dir>/audit.log. Once the live file reaches
max_size_bytes it is rotated before the next append:

    audit.log.N  -> dropped
    audit.log.i  -> audit.log.i+1   (i = N-1 .. 1)
    audit.log    -> audit.log.1

No file locking: callers serialize install operations themselves.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

import orjson
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from greater_cli.config import AUDIT_LOG_RETENTION, MAX_AUDIT_LOG_SIZE
from greater_cli.errors import AuditLogError

if TYPE_CHECKING:
    from greater_cli.metrics import PipelineMetrics
    from greater_cli.security.warnings import SecurityWarning

logger = logging.getLogger(__name__)

AUDIT_LOG_FILE = "audit.log"


class AuditAction(str, Enum):
    INSTALL = "install"
    UPDATE = "update"
    REMOVE = "remove"
    VERIFY = "verify"
    FETCH = "fetch"
    CONFIG_CHANGE = "config_change"
    SECURITY_WARNING = "security_warning"


def _utc(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


class AuditLogEntry(BaseModel):
    """One audit record. Written once, never edited."""

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    timestamp: datetime
    action: AuditAction
    component: str | None = None
    ref: str | None = None
    checksums: dict[str, str] | None = None
    verified: bool | None = None
    signature_status: str | None = Field(default=None, alias="signatureStatus")
    warnings: list[str] | None = None
    details: dict[str, Any] | None = None
    success: bool
    error_message: str | None = Field(default=None, alias="errorMessage")

    @field_validator("timestamp")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        return _utc(value)

    def to_json_line(self) -> bytes:
        return orjson.dumps(self.model_dump(mode="json", by_alias=True, exclude_none=True)) + b"\n"


class AuditLog:
    """Rotating newline-delimited JSON audit log."""

    def __init__(
        self,
        log_dir: Path,
        *,
        file_name: str = AUDIT_LOG_FILE,
        max_size_bytes: int = MAX_AUDIT_LOG_SIZE,
        retention: int = AUDIT_LOG_RETENTION,
        metrics: PipelineMetrics | None = None,
    ) -> None:
        """
        Args:
            log_dir: Directory holding the log and its rotations.
            file_name: Live log file name.
            max_size_bytes: Size at or above which the live log is rotated.
            retention: Number of rotated files kept.
            metrics: Optional metrics sink.
        """
        if max_size_bytes <= 0:
            raise ValueError(f"max_size_bytes must be > 0, got {max_size_bytes}")
        if retention < 1:
            raise ValueError(f"retention must be >= 1, got {retention}")
        self.log_dir = Path(log_dir)
        self.path = self.log_dir / file_name
        self.max_size_bytes = max_size_bytes
        self.retention = retention
        self._metrics = metrics

    def rotated_path(self, index: int) -> Path:
        return self.path.with_name(f"{self.path.name}.{index}")

    def write(self, entry: AuditLogEntry) -> None:
        """
        Append an entry, rotating first when the live log is full.

        Raises:
            AuditLogError: If the directory, rotation or append fails.
        """
        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise AuditLogError(f"Cannot create audit log directory: {e}", str(self.log_dir)) from e

        self._rotate_if_needed()

        try:
            with self.path.open("ab") as f:
                f.write(entry.to_json_line())
        except OSError as e:
            raise AuditLogError(f"Cannot append to audit log: {e}", str(self.path)) from e

    def _rotate_if_needed(self) -> None:
        try:
            size = self.path.stat().st_size
        except FileNotFoundError:
            return
        except OSError as e:
            raise AuditLogError(f"Cannot stat audit log: {e}", str(self.path)) from e
        if size < self.max_size_bytes:
            return

        try:
            self.rotated_path(self.retention).unlink(missing_ok=True)
            for i in range(self.retention - 1, 0, -1):
                src = self.rotated_path(i)
                if src.exists():
                    src.replace(self.rotated_path(i + 1))
            self.path.replace(self.rotated_path(1))
        except OSError as e:
            raise AuditLogError(f"Audit log rotation failed: {e}", str(self.path)) from e

        logger.info("Rotated audit log", extra={"size": size, "retention": self.retention})
        if self._metrics is not None:
            self._metrics.record_audit_rotation()

    def read(
        self,
        *,
        limit: int | None = None,
        action: AuditAction | str | None = None,
        component: str | None = None,
        since: datetime | None = None,
    ) -> list[AuditLogEntry]:
        """
        Read entries from the live log, newest first.

        Malformed lines are skipped. Filters apply before the limit.

        Args:
            limit: Maximum entries returned (None or <= 0 for all).
            action: Keep only this action.
            component: Keep only this component.
            since: Keep entries at or after this time (naive = UTC).
        """
        try:
            raw = self.path.read_bytes()
        except FileNotFoundError:
            return []
        except OSError as e:
            raise AuditLogError(f"Cannot read audit log: {e}", str(self.path)) from e

        entries: list[AuditLogEntry] = []
        skipped = 0
        for line in raw.splitlines():
            if not line.strip():
                continue
            try:
                entries.append(AuditLogEntry.model_validate(orjson.loads(line)))
            except (orjson.JSONDecodeError, ValidationError):
                skipped += 1
        if skipped:
            logger.debug("Skipped malformed audit lines", extra={"count": skipped})

        if action is not None:
            wanted = AuditAction(action)
            entries = [e for e in entries if e.action == wanted]
        if component is not None:
            entries = [e for e in entries if e.component == component]
        if since is not None:
            since = _utc(since)
            entries = [e for e in entries if e.timestamp >= since]

        entries.sort(key=lambda e: e.timestamp, reverse=True)
        if limit is not None and limit > 0:
            entries = entries[:limit]
        return entries

    def clear(self) -> None:
        """Remove the live log and every rotation.

        Raises:
            AuditLogError: If a file cannot be removed.
        """
        for path in [self.path, *(self.rotated_path(i) for i in range(1, self.retention + 1))]:
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                raise AuditLogError(f"Cannot remove audit file: {e}", str(path)) from e

    # ------------------------------------------------------------------
    # Typed constructors
    # ------------------------------------------------------------------

    def log_installation(
        self,
        component: str,
        ref: str,
        checksums: dict[str, str],
        verified: bool,
        signature_status: str | None = None,
    ) -> AuditLogEntry:
        entry = AuditLogEntry(
            timestamp=datetime.now(UTC),
            action=AuditAction.INSTALL,
            component=component,
            ref=ref,
            checksums=checksums,
            verified=verified,
            signature_status=signature_status,
            success=True,
        )
        self.write(entry)
        return entry

    def log_security_warning(self, warning: SecurityWarning) -> AuditLogEntry:
        entry = AuditLogEntry(
            timestamp=warning.timestamp,
            action=AuditAction.SECURITY_WARNING,
            warnings=[warning.message],
            details={
                "type": warning.type.value,
                "severity": warning.severity.value,
                "context": warning.context,
            },
            success=True,
        )
        self.write(entry)
        return entry

    def log_failure(
        self,
        action: AuditAction | str,
        error: BaseException | str,
        *,
        component: str | None = None,
        ref: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> AuditLogEntry:
        """Record a failed operation."""
        entry = AuditLogEntry(
            timestamp=datetime.now(UTC),
            action=AuditAction(action),
            component=component,
            ref=ref,
            details=details,
            success=False,
            error_message=str(error),
        )
        self.write(entry)
        return entry
