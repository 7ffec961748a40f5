"""Provenance, integrity, warnings and audit trail for registry installs."""

from greater_cli.security.audit import AuditAction, AuditLog, AuditLogEntry
from greater_cli.security.integrity import (
    FetchedFile,
    FileIntegrityResult,
    IntegrityReport,
    compute_checksum,
    verify_file_integrity,
)
from greater_cli.security.signature import (
    CommandOutput,
    CommandRunner,
    GitTagProbe,
    GitTagVerificationResult,
    SignatureStatus,
    SignatureType,
    SubprocessCommandRunner,
    TagSignatureProbe,
    parse_tag_verification_output,
    verify_git_tag,
)
from greater_cli.security.warnings import (
    SecurityWarning,
    Severity,
    WarningType,
    emit_security_warning,
    should_verify,
    warn_checksum_mismatch,
    warn_force_overwrite,
    warn_network_error,
    warn_skip_verification,
    warn_unsigned_tag,
)

__all__ = [
    "AuditAction",
    "AuditLog",
    "AuditLogEntry",
    "CommandOutput",
    "CommandRunner",
    "FetchedFile",
    "FileIntegrityResult",
    "GitTagProbe",
    "GitTagVerificationResult",
    "IntegrityReport",
    "SecurityWarning",
    "Severity",
    "SignatureStatus",
    "SignatureType",
    "SubprocessCommandRunner",
    "TagSignatureProbe",
    "WarningType",
    "compute_checksum",
    "emit_security_warning",
    "parse_tag_verification_output",
    "should_verify",
    "verify_file_integrity",
    "verify_git_tag",
    "warn_checksum_mismatch",
    "warn_force_overwrite",
    "warn_network_error",
    "warn_skip_verification",
    "warn_unsigned_tag",
]
