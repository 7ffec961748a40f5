"""
Git tag signature verification.

Shells out to `git tag -v <ref>` and classifies its combined output. The
parsing is tied to human-readable gpg/ssh-keygen text, so the subprocess sits
behind the CommandRunner protocol and the whole check behind
TagSignatureProbe. Tests inject a fake runner instead of invoking git.

Outcomes are data, not exceptions: an unsigned or badly signed tag produces a
result with the matching status. Only a failure to run git yields "error".
"""

from __future__ import annotations

import logging
import re
import subprocess
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

from greater_cli.errors import CommandError, CommandTimeoutError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from greater_cli.metrics import PipelineMetrics

logger = logging.getLogger(__name__)

DEFAULT_GIT_TIMEOUT_S = 30.0

_GPG_SIGNER = re.compile(r'Good signature from "([^"]+)"')
_GPG_KEY_ID = re.compile(r"using \w+ key ([A-F0-9]+)", re.IGNORECASE)
_SSH_SIGNER = re.compile(r'with "([^"]+)" key')
_TAG_NOT_FOUND = re.compile(r"error: tag '[^']*' not found")
_UNSAFE_REF = re.compile(r"[\s\x00-\x1f\x7f]")


class SignatureStatus(str, Enum):
    VALID = "valid"
    INVALID = "invalid"
    UNSIGNED = "unsigned"
    UNKNOWN_KEY = "unknown_key"
    EXPIRED = "expired"
    ERROR = "error"


class SignatureType(str, Enum):
    GPG = "gpg"
    SSH = "ssh"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class CommandOutput:
    """Captured output of a finished command."""

    stdout: str
    stderr: str
    returncode: int = 0

    @property
    def combined(self) -> str:
        return self.stdout + self.stderr


class CommandRunner(Protocol):
    """Runs a version-control command and captures its output."""

    def run(self, args: Sequence[str], *, timeout_s: float) -> CommandOutput:
        """
        Raises:
            CommandError: If the command cannot be started.
            CommandTimeoutError: If it does not finish within timeout_s.
        """
        ...


class SubprocessCommandRunner:
    """CommandRunner backed by subprocess.run. A non-zero exit is not an error."""

    def __init__(self, cwd: Path | None = None) -> None:
        self.cwd = cwd

    def run(self, args: Sequence[str], *, timeout_s: float) -> CommandOutput:
        argv = list(args)
        try:
            result = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                check=False,
                timeout=timeout_s,
                cwd=self.cwd,
            )
        except subprocess.TimeoutExpired as e:
            raise CommandTimeoutError(argv, timeout_s) from e
        except FileNotFoundError as e:
            raise CommandError(f"Executable not found: {argv[0]}", argv) from e
        except OSError as e:
            raise CommandError(f"Failed to run {argv[0]}: {e}", argv) from e
        return CommandOutput(result.stdout or "", result.stderr or "", result.returncode)


@dataclass(frozen=True)
class GitTagVerificationResult:
    """Outcome of a tag signature check."""

    ref: str
    verified: bool = False
    signature_status: SignatureStatus = SignatureStatus.UNSIGNED
    signature_type: SignatureType = SignatureType.UNKNOWN
    signer: str | None = None
    key_id: str | None = None
    error_message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "ref": self.ref,
            "verified": self.verified,
            "signatureStatus": self.signature_status.value,
            "signatureType": self.signature_type.value,
        }
        if self.signer is not None:
            data["signer"] = self.signer
        if self.key_id is not None:
            data["keyId"] = self.key_id
        if self.error_message is not None:
            data["errorMessage"] = self.error_message
        return data


class TagSignatureProbe(Protocol):
    """Checks the signature of a tag."""

    def verify(self, ref: str) -> GitTagVerificationResult: ...


def parse_tag_verification_output(ref: str, output: str) -> GitTagVerificationResult:
    """
    Classify combined `git tag -v` output.

    GPG markers are checked before SSH markers. Output carrying neither and no
    explicit "no signature" message is treated as unsigned.
    """
    if "gpg:" in output or "Good signature" in output:
        if "Good signature" in output:
            signer = _GPG_SIGNER.search(output)
            key_id = _GPG_KEY_ID.search(output)
            return GitTagVerificationResult(
                ref=ref,
                verified=True,
                signature_status=SignatureStatus.VALID,
                signature_type=SignatureType.GPG,
                signer=signer.group(1) if signer else None,
                key_id=key_id.group(1) if key_id else None,
            )
        if "BAD signature" in output:
            status, message = SignatureStatus.INVALID, "Tag signature is invalid"
        elif "Can't check signature: No public key" in output:
            status, message = SignatureStatus.UNKNOWN_KEY, "Public key not found in keyring"
        elif "expired" in output:
            status, message = SignatureStatus.EXPIRED, "Tag signature has expired"
        else:
            status, message = SignatureStatus.UNSIGNED, None
        return GitTagVerificationResult(
            ref=ref,
            signature_status=status,
            signature_type=SignatureType.GPG,
            error_message=message,
        )

    if "ssh-" in output or 'Good "git" signature' in output:
        if 'Good "git" signature' in output:
            signer = _SSH_SIGNER.search(output)
            return GitTagVerificationResult(
                ref=ref,
                verified=True,
                signature_status=SignatureStatus.VALID,
                signature_type=SignatureType.SSH,
                signer=signer.group(1) if signer else None,
            )
        return GitTagVerificationResult(
            ref=ref,
            signature_status=SignatureStatus.INVALID,
            signature_type=SignatureType.SSH,
            error_message="SSH signature verification failed",
        )

    if _TAG_NOT_FOUND.search(output):
        return GitTagVerificationResult(
            ref=ref,
            signature_status=SignatureStatus.ERROR,
            error_message=f"Tag not found: {ref}",
        )

    if "error: no signature found" in output or ("object" in output and "signature" not in output):
        return GitTagVerificationResult(ref=ref, error_message="Tag is not signed")

    return GitTagVerificationResult(ref=ref)


class GitTagProbe:
    """TagSignatureProbe that runs git through a CommandRunner."""

    def __init__(
        self,
        runner: CommandRunner | None = None,
        timeout_s: float = DEFAULT_GIT_TIMEOUT_S,
        metrics: PipelineMetrics | None = None,
    ) -> None:
        self._runner = runner or SubprocessCommandRunner()
        self._timeout_s = timeout_s
        self._metrics = metrics

    def verify(self, ref: str) -> GitTagVerificationResult:
        """
        Verify the signature of ref.

        Args:
            ref: Tag name.

        Returns:
            GitTagVerificationResult. Never raises for unsigned or invalid tags.
        """
        result = self._verify(ref)
        logger.info(
            "Tag signature checked",
            extra={
                "ref": ref,
                "status": result.signature_status.value,
                "signature_type": result.signature_type.value,
            },
        )
        if self._metrics is not None:
            self._metrics.record_signature(result.signature_status.value)
        return result

    def _verify(self, ref: str) -> GitTagVerificationResult:
        # Refuse anything git could read as an option or that embeds control chars
        if not ref or ref.startswith("-") or _UNSAFE_REF.search(ref):
            return GitTagVerificationResult(
                ref=ref,
                signature_status=SignatureStatus.ERROR,
                error_message=f"Invalid tag name: {ref!r}",
            )

        try:
            self._runner.run(["git", "--version"], timeout_s=self._timeout_s)
        except CommandError:
            return GitTagVerificationResult(
                ref=ref,
                signature_status=SignatureStatus.ERROR,
                error_message="Git is not installed or not in PATH",
            )

        try:
            output = self._runner.run(["git", "tag", "-v", ref], timeout_s=self._timeout_s)
        except CommandError as e:
            return GitTagVerificationResult(
                ref=ref,
                signature_status=SignatureStatus.ERROR,
                error_message=str(e),
            )

        return parse_tag_verification_output(ref, output.combined)


def verify_git_tag(
    ref: str,
    *,
    runner: CommandRunner | None = None,
    timeout_s: float = DEFAULT_GIT_TIMEOUT_S,
    metrics: PipelineMetrics | None = None,
) -> GitTagVerificationResult:
    """Verify a tag signature with a one-off GitTagProbe."""
    return GitTagProbe(runner, timeout_s, metrics).verify(ref)
