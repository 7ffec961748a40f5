"""
End-to-end component fetch.

    resolve ref -> registry index -> select entry -> fetch files
        -> tag signature (optional) -> integrity -> rewrite imports -> audit

Writing files into the consumer project is a separate, explicit step
(write_files) so callers can inspect a FetchResult first. Every failure is
recorded in the audit log with success=False and re-raised.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING

from greater_cli.config import InstallConfig
from greater_cli.errors import (
    AuditLogError,
    ChecksumVerificationError,
    ComponentNotFoundError,
    GreaterCliError,
    SignatureVerificationError,
)
from greater_cli.security.audit import AuditAction
from greater_cli.security.integrity import FetchedFile, verify_file_integrity
from greater_cli.security.signature import GitTagProbe, SignatureStatus
from greater_cli.security.warnings import (
    warn_force_overwrite,
    warn_skip_verification,
    warn_unsigned_tag,
)
from greater_cli.transform.rewriter import CSS_EXTENSIONS, SCRIPT_EXTENSIONS, transform_imports

if TYPE_CHECKING:
    from greater_cli.connectors.github import RemoteFileProvider
    from greater_cli.metrics import PipelineMetrics
    from greater_cli.registry.index import RegistryIndexClient, ResolvedRef
    from greater_cli.registry.schema import ComponentManifest, RegistryIndex
    from greater_cli.security.audit import AuditLog
    from greater_cli.security.integrity import IntegrityReport
    from greater_cli.security.signature import GitTagVerificationResult, TagSignatureProbe
    from greater_cli.security.warnings import SecurityWarning

logger = logging.getLogger(__name__)

TRANSFORMABLE_EXTENSIONS = SCRIPT_EXTENSIONS | CSS_EXTENSIONS | {"svelte"}


class EntryKind(str, Enum):
    """Registry section an entry lives in."""

    COMPONENT = "component"
    FACE = "face"
    SHARED = "shared"


@dataclass
class InstalledFile:
    """A fetched file after import rewriting."""

    path: str
    content: bytes
    transformed_count: int = 0


@dataclass
class FetchResult:
    """Outcome of ComponentFetcher.fetch."""

    name: str
    kind: EntryKind
    ref: ResolvedRef
    files: list[InstalledFile] = field(default_factory=list)
    verified: bool = False
    integrity_report: IntegrityReport | None = None
    signature: GitTagVerificationResult | None = None
    warnings: list[SecurityWarning] = field(default_factory=list)


def select_entry(
    index: RegistryIndex,
    name: str,
    kind: EntryKind | None = None,
) -> tuple[EntryKind, ComponentManifest]:
    """Find name in the index, searching components, faces, then shared.

    Raises:
        ComponentNotFoundError: If the entry is absent.
    """
    sections: list[tuple[EntryKind, dict[str, ComponentManifest]]] = [
        (EntryKind.COMPONENT, dict(index.components)),
        (EntryKind.FACE, dict(index.faces)),
        (EntryKind.SHARED, dict(index.shared)),
    ]
    for section_kind, entries in sections:
        if kind is not None and section_kind != kind:
            continue
        if name in entries:
            return section_kind, entries[name]
    raise ComponentNotFoundError(name, index.ref)


def _is_transformable(path: str) -> bool:
    name = path.rsplit("/", 1)[-1]
    return "." in name and name.rsplit(".", 1)[-1].lower() in TRANSFORMABLE_EXTENSIONS


class ComponentFetcher:
    """Runs the fetch/verify/rewrite/audit sequence for one entry at a time.

    Not safe for concurrent use against the same audit log.
    """

    def __init__(
        self,
        index_client: RegistryIndexClient,
        provider: RemoteFileProvider,
        audit_log: AuditLog,
        install_config: InstallConfig | None = None,
        *,
        signature_probe: TagSignatureProbe | None = None,
        metrics: PipelineMetrics | None = None,
    ) -> None:
        self._index_client = index_client
        self._provider = provider
        self._audit = audit_log
        self._install_config = install_config or InstallConfig()
        self._probe = signature_probe
        self._metrics = metrics

    def _signature_probe(self) -> TagSignatureProbe:
        if self._probe is None:
            self._probe = GitTagProbe(metrics=self._metrics)
        return self._probe

    def _audit_warning(self, warning: SecurityWarning) -> None:
        try:
            self._audit.log_security_warning(warning)
        except AuditLogError as e:
            logger.warning("Could not record security warning", extra={"error": str(e)})

    async def fetch(
        self,
        name: str,
        *,
        ref: str | None = None,
        kind: EntryKind | None = None,
        skip_verification: bool = False,
        verify_signature: bool = False,
        require_signature: bool = False,
        fail_fast: bool = False,
        transform: bool = True,
    ) -> FetchResult:
        """
        Fetch, verify and rewrite one registry entry.

        Args:
            name: Component, face or shared module name.
            ref: Explicit ref. Falls back to the install config ref, then the
                latest pointer, then the pinned fallback.
            kind: Restrict the lookup to one registry section.
            skip_verification: Skip checksum verification (emits a high warning).
            verify_signature: Check the tag signature and warn if unsigned.
            require_signature: Fail unless the tag signature is valid.
            fail_fast: Abort on the first checksum mismatch.
            transform: Rewrite import paths per the install config.

        Returns:
            FetchResult with file contents ready to be written.

        Raises:
            RegistryIndexError: Index unavailable or invalid.
            ComponentNotFoundError: Entry not in the index.
            NetworkError: A component file could not be fetched.
            SignatureVerificationError: require_signature and the tag is not validly signed.
            ChecksumVerificationError: A file failed integrity verification.
        """
        resolved = await self._index_client.resolve_ref(ref, self._install_config.ref)
        try:
            return await self._fetch(
                name,
                resolved,
                kind=kind,
                skip_verification=skip_verification,
                verify_signature=verify_signature or require_signature,
                require_signature=require_signature,
                fail_fast=fail_fast,
                transform=transform,
            )
        except GreaterCliError as e:
            logger.error(
                "Component fetch failed",
                extra={"component": name, "ref": resolved.ref, "error": str(e)},
            )
            try:
                self._audit.log_failure(AuditAction.FETCH, e, component=name, ref=resolved.ref)
            except AuditLogError as audit_error:
                logger.warning(
                    "Could not record failure in audit log", extra={"error": str(audit_error)}
                )
            raise

    async def _fetch(
        self,
        name: str,
        resolved: ResolvedRef,
        *,
        kind: EntryKind | None,
        skip_verification: bool,
        verify_signature: bool,
        require_signature: bool,
        fail_fast: bool,
        transform: bool,
    ) -> FetchResult:
        index = await self._index_client.fetch_registry_index(resolved.ref)
        entry_kind, manifest = select_entry(index, name, kind)
        result = FetchResult(name=name, kind=entry_kind, ref=resolved)

        if verify_signature:
            result.signature = self._check_signature(resolved.ref, require_signature, result)

        fetched: list[FetchedFile] = []
        for file in manifest.files:
            content = await self._provider.fetch_file(resolved.ref, file.path)
            fetched.append(FetchedFile(file.path, content, expected_checksum=file.checksum))

        if skip_verification:
            warning = warn_skip_verification(metrics=self._metrics)
            result.warnings.append(warning)
            self._audit_warning(warning)
        else:
            report = verify_file_integrity(
                fetched, index.checksums, fail_fast=fail_fast, metrics=self._metrics
            )
            result.integrity_report = report
            if not report.all_verified:
                failure = report.failures[0]
                raise ChecksumVerificationError(
                    f"{report.failed_files} file(s) failed integrity verification",
                    file_path=failure.path,
                    expected=failure.expected,
                    actual=failure.actual,
                )
            result.verified = True

        for file in fetched:
            result.files.append(self._rewrite(file, transform))

        signature_status = result.signature.signature_status.value if result.signature else None
        self._audit.log_installation(
            name,
            resolved.ref,
            manifest.checksum_map(),
            result.verified,
            signature_status,
        )
        logger.info(
            "Fetched registry entry",
            extra={
                "component": name,
                "kind": entry_kind.value,
                "ref": resolved.ref,
                "files": len(result.files),
                "verified": result.verified,
            },
        )
        return result

    def _check_signature(
        self, ref: str, required: bool, result: FetchResult
    ) -> GitTagVerificationResult:
        signature = self._signature_probe().verify(ref)
        if signature.signature_status is SignatureStatus.UNSIGNED:
            warning = warn_unsigned_tag(ref, metrics=self._metrics)
            result.warnings.append(warning)
            self._audit_warning(warning)
        if required and not signature.verified:
            raise SignatureVerificationError(
                signature.error_message or f"Tag {ref} is not validly signed",
                ref=ref,
                signature_status=signature.signature_status.value,
            )
        return signature

    def _rewrite(self, file: FetchedFile, transform: bool) -> InstalledFile:
        if not transform or not _is_transformable(file.path):
            return InstalledFile(file.path, file.content)
        try:
            text = file.content.decode("utf-8")
        except UnicodeDecodeError:
            logger.debug("Not rewriting non-UTF-8 file", extra={"path": file.path})
            return InstalledFile(file.path, file.content)
        rewritten = transform_imports(text, self._install_config, file.path)
        if not rewritten.has_changes:
            return InstalledFile(file.path, file.content)
        return InstalledFile(
            file.path, rewritten.content.encode("utf-8"), rewritten.transformed_count
        )


def write_files(
    result: FetchResult,
    dest_dir: Path,
    *,
    force: bool = False,
    metrics: PipelineMetrics | None = None,
) -> list[Path]:
    """
    Write fetched files below dest_dir, keeping their repository paths.

    Existing files are left alone unless force is set, in which case each
    overwrite emits a warning.

    Returns:
        Paths actually written.

    Raises:
        ValueError: If a file path would escape dest_dir.
        OSError: If a file cannot be written.
    """
    root = Path(dest_dir).resolve()
    written: list[Path] = []
    for file in result.files:
        target = (root / PurePosixPath(file.path)).resolve()
        if not target.is_relative_to(root):
            raise ValueError(f"Refusing to write outside {root}: {file.path}")
        if target.exists():
            if not force:
                logger.info("Skipping existing file", extra={"path": str(target)})
                continue
            result.warnings.append(warn_force_overwrite(str(target), metrics=metrics))
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(file.content)
        written.append(target)
    return written
