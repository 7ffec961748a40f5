"""
Typed error taxonomy for the registry installation pipeline.

Every fallible filesystem, network or subprocess step raises one of these so
the CLI layer can tell failures apart without string matching.
"""

from __future__ import annotations

from typing import Any


class GreaterCliError(Exception):
    """Base exception for all pipeline errors."""


class NetworkError(GreaterCliError):
    """Raised when the remote content provider cannot deliver a file."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        url: str | None = None,
        retry_after_ms: int | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.url = url
        self.retry_after_ms = retry_after_ms

    @property
    def is_retryable(self) -> bool:
        """Transport failures, 5xx and 429 are worth another attempt."""
        if self.status_code is None:
            return True
        return self.status_code >= 500 or self.status_code == 429


class CacheError(GreaterCliError):
    """Raised by explicit cache management operations."""

    def __init__(self, message: str, cache_path: str | None = None) -> None:
        super().__init__(message)
        self.cache_path = cache_path


class RegistryIndexError(GreaterCliError):
    """Raised when the registry index cannot be fetched, parsed or validated."""

    def __init__(self, message: str, ref: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.ref = ref
        self.cause = cause


class SecurityError(GreaterCliError):
    """Base class for provenance and integrity failures."""

    def __init__(
        self,
        message: str,
        code: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.details = details or {}


class SignatureVerificationError(SecurityError):
    """Raised when a caller requires a valid tag signature and does not get one."""

    def __init__(
        self,
        message: str,
        ref: str,
        signature_status: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message,
            "SIGNATURE_VERIFICATION_FAILED",
            {"ref": ref, "signature_status": signature_status, **(details or {})},
        )
        self.ref = ref
        self.signature_status = signature_status


class ChecksumVerificationError(SecurityError):
    """Raised in fail-fast mode on the first checksum mismatch."""

    def __init__(self, message: str, file_path: str, expected: str, actual: str) -> None:
        super().__init__(
            message,
            "CHECKSUM_VERIFICATION_FAILED",
            {"file_path": file_path, "expected": expected, "actual": actual},
        )
        self.file_path = file_path
        self.expected = expected
        self.actual = actual


class AuditLogError(GreaterCliError):
    """Raised when the audit log cannot be rotated or appended to."""

    def __init__(self, message: str, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path


class CommandError(GreaterCliError):
    """Raised when a version-control command cannot be executed."""

    def __init__(
        self,
        message: str,
        args: list[str] | None = None,
        returncode: int | None = None,
    ) -> None:
        super().__init__(message)
        self.command = list(args or [])
        self.returncode = returncode


class CommandTimeoutError(CommandError):
    """Raised when a version-control command exceeds its timeout."""

    def __init__(self, args: list[str], timeout_s: float) -> None:
        super().__init__(f"Command timed out after {timeout_s}s: {' '.join(args)}", args)
        self.timeout_s = timeout_s


class InstallConfigError(GreaterCliError):
    """Raised when the consumer install configuration is missing or invalid."""


class ComponentNotFoundError(GreaterCliError):
    """Raised when a requested entry is not present in the registry index."""

    def __init__(self, name: str, ref: str) -> None:
        super().__init__(f"{name!r} not found in registry index for {ref}")
        self.name = name
        self.ref = ref
