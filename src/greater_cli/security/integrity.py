"""
File content integrity verification.

Checksums use the manifest format "sha256-" + standard base64 of the raw
SHA-256 digest (the same shape as Subresource Integrity). Comparison is exact:
no case folding, no whitespace trimming.
"""

from __future__ import annotations

import base64
import hashlib
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from greater_cli.errors import ChecksumVerificationError
from greater_cli.security.warnings import warn_checksum_mismatch

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from greater_cli.metrics import PipelineMetrics

logger = logging.getLogger(__name__)

CHECKSUM_PREFIX = "sha256-"


def compute_checksum(content: bytes | str) -> str:
    """Checksum of content as "sha256-<base64>". Text is hashed as UTF-8."""
    if isinstance(content, str):
        content = content.encode("utf-8")
    digest = hashlib.sha256(content).digest()
    return CHECKSUM_PREFIX + base64.b64encode(digest).decode("ascii")


@dataclass(frozen=True)
class FetchedFile:
    """A fetched file awaiting verification.

    Attributes:
        path: Repository path, used as the key into the checksum map.
        content: Raw bytes as fetched.
        expected_checksum: Per-file override of the manifest checksum.
    """

    path: str
    content: bytes
    expected_checksum: str | None = None


@dataclass(frozen=True)
class FileIntegrityResult:
    """Outcome for one file."""

    path: str
    expected: str
    actual: str
    verified: bool
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "path": self.path,
            "expected": self.expected,
            "actual": self.actual,
            "verified": self.verified,
        }
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class IntegrityReport:
    """Aggregate outcome of a verification batch.

    Skipped files count toward total_files and skipped_files but produce no
    result row.
    """

    total_files: int = 0
    verified_files: int = 0
    failed_files: int = 0
    skipped_files: int = 0
    results: list[FileIntegrityResult] = field(default_factory=list)

    @property
    def all_verified(self) -> bool:
        return self.failed_files == 0 and self.skipped_files == 0

    @property
    def failures(self) -> list[FileIntegrityResult]:
        return [r for r in self.results if not r.verified]

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalFiles": self.total_files,
            "verifiedFiles": self.verified_files,
            "failedFiles": self.failed_files,
            "skippedFiles": self.skipped_files,
            "results": [r.to_dict() for r in self.results],
            "allVerified": self.all_verified,
        }


def verify_file_integrity(
    files: Iterable[FetchedFile],
    checksums: Mapping[str, str] | None = None,
    *,
    fail_fast: bool = False,
    skip_missing: bool = False,
    metrics: PipelineMetrics | None = None,
) -> IntegrityReport:
    """
    Verify fetched files against expected checksums.

    Args:
        files: Files to check.
        checksums: Manifest map of path -> checksum.
        fail_fast: Raise on the first mismatch instead of accumulating.
        skip_missing: Skip files with no expected checksum instead of failing them.
        metrics: Optional metrics sink.

    Returns:
        IntegrityReport over the whole batch.

    Raises:
        ChecksumVerificationError: In fail_fast mode, on the first mismatch.
            A missing expectation never raises.
    """
    checksums = checksums or {}
    report = IntegrityReport()

    try:
        for file in files:
            report.total_files += 1
            expected = file.expected_checksum or checksums.get(file.path)

            if not expected:
                if skip_missing:
                    report.skipped_files += 1
                    logger.debug("No checksum, skipping", extra={"path": file.path})
                    continue
                report.failed_files += 1
                report.results.append(
                    FileIntegrityResult(
                        path=file.path,
                        expected="",
                        actual=compute_checksum(file.content),
                        verified=False,
                        error="No checksum found for file",
                    )
                )
                continue

            actual = compute_checksum(file.content)
            if actual == expected:
                report.verified_files += 1
                report.results.append(
                    FileIntegrityResult(
                        path=file.path, expected=expected, actual=actual, verified=True
                    )
                )
                continue

            warn_checksum_mismatch(file.path, expected, actual, metrics=metrics)
            report.failed_files += 1
            if fail_fast:
                raise ChecksumVerificationError(
                    f"Checksum mismatch for {file.path}",
                    file_path=file.path,
                    expected=expected,
                    actual=actual,
                )
            report.results.append(
                FileIntegrityResult(
                    path=file.path,
                    expected=expected,
                    actual=actual,
                    verified=False,
                    error="Checksum mismatch",
                )
            )
    finally:
        if metrics is not None:
            metrics.record_integrity(
                report.verified_files, report.failed_files, report.skipped_files
            )

    logger.info(
        "Integrity verification complete",
        extra={
            "total": report.total_files,
            "verified": report.verified_files,
            "failed": report.failed_files,
            "skipped": report.skipped_files,
        },
    )
    return report
