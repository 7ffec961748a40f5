"""Tests for git tag signature verification."""

from __future__ import annotations

import subprocess
from typing import TYPE_CHECKING
from unittest.mock import patch

import pytest

from greater_cli.errors import CommandError, CommandTimeoutError
from greater_cli.metrics import PipelineMetrics
from greater_cli.security.signature import (
    CommandOutput,
    GitTagProbe,
    GitTagVerificationResult,
    SignatureStatus,
    SignatureType,
    SubprocessCommandRunner,
    parse_tag_verification_output,
    verify_git_tag,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

GPG_GOOD = """object 1234567890abcdef
type commit
tag greater-v4.2.0

gpg: Signature made Mon 25 Jan 2026 12:00:00 UTC
gpg:                using RSA key ABCDEF0123456789
gpg: Good signature from "Release Bot <release@example.com>" [ultimate]
"""

SSH_GOOD = 'Good "git" signature for release@example.com with ED25519 key SHA256:abc\n'


class FakeRunner:
    """CommandRunner returning canned output per subcommand."""

    def __init__(
        self,
        tag_output: CommandOutput | None = None,
        *,
        version_error: CommandError | None = None,
        tag_error: CommandError | None = None,
    ) -> None:
        self.tag_output = tag_output or CommandOutput("", "")
        self.version_error = version_error
        self.tag_error = tag_error
        self.calls: list[list[str]] = []

    def run(self, args: Sequence[str], *, timeout_s: float) -> CommandOutput:
        self.calls.append(list(args))
        if args[1] == "--version":
            if self.version_error is not None:
                raise self.version_error
            return CommandOutput("git version 2.45.0\n", "")
        if self.tag_error is not None:
            raise self.tag_error
        return self.tag_output


class TestParseTagVerificationOutput:
    """Tests for classifying git tag -v output."""

    def test_gpg_good_signature(self) -> None:
        """Good GPG signature extracts signer and key id."""
        result = parse_tag_verification_output("greater-v4.2.0", GPG_GOOD)

        assert result.verified
        assert result.signature_status is SignatureStatus.VALID
        assert result.signature_type is SignatureType.GPG
        assert result.signer == "Release Bot <release@example.com>"
        assert result.key_id == "ABCDEF0123456789"

    def test_gpg_bad_signature(self) -> None:
        """BAD signature is invalid."""
        result = parse_tag_verification_output("t", 'gpg: BAD signature from "x"\n')
        assert result.signature_status is SignatureStatus.INVALID
        assert result.error_message == "Tag signature is invalid"
        assert not result.verified

    def test_gpg_unknown_key(self) -> None:
        """Missing public key is unknown_key."""
        output = "gpg: Can't check signature: No public key\n"
        result = parse_tag_verification_output("t", output)
        assert result.signature_status is SignatureStatus.UNKNOWN_KEY

    def test_gpg_expired(self) -> None:
        """Expired key or signature is expired."""
        result = parse_tag_verification_output("t", "gpg: Note: This key has expired!\n")
        assert result.signature_status is SignatureStatus.EXPIRED

    def test_gpg_unrecognized_is_unsigned(self) -> None:
        """GPG output with no known marker is unsigned without a message."""
        result = parse_tag_verification_output("t", "gpg: something unexpected\n")
        assert result.signature_status is SignatureStatus.UNSIGNED
        assert result.signature_type is SignatureType.GPG
        assert result.error_message is None

    def test_ssh_good_signature(self) -> None:
        """Good SSH signature extracts the key type as signer."""
        result = parse_tag_verification_output("t", SSH_GOOD)
        assert result.verified
        assert result.signature_type is SignatureType.SSH

    def test_ssh_failure(self) -> None:
        """Any other ssh output is invalid."""
        result = parse_tag_verification_output("t", "error: ssh-keygen: bad signature\n")
        assert result.signature_status is SignatureStatus.INVALID
        assert result.error_message == "SSH signature verification failed"

    def test_no_signature_found(self) -> None:
        """Explicit no-signature message is unsigned."""
        result = parse_tag_verification_output("t", "error: no signature found\n")
        assert result.signature_status is SignatureStatus.UNSIGNED
        assert result.error_message == "Tag is not signed"

    def test_bare_tag_object_is_unsigned(self) -> None:
        """A tag object dump with no signature lines is unsigned."""
        result = parse_tag_verification_output("t", "object abc\ntype commit\ntag t\n")
        assert result.signature_status is SignatureStatus.UNSIGNED
        assert result.error_message == "Tag is not signed"

    def test_missing_tag_is_error(self) -> None:
        """A nonexistent tag is an error, not an unsigned tag."""
        result = parse_tag_verification_output("nope", "error: tag 'nope' not found.\n")
        assert result.signature_status is SignatureStatus.ERROR
        assert result.error_message == "Tag not found: nope"

    def test_empty_output_is_unsigned(self) -> None:
        """Nothing recognizable defaults to unsigned."""
        result = parse_tag_verification_output("t", "")
        assert result.signature_status is SignatureStatus.UNSIGNED
        assert result.error_message is None


class TestGitTagProbe:
    """Tests for GitTagProbe with an injected runner."""

    def test_valid_signature(self) -> None:
        """Combined stdout and stderr are parsed."""
        runner = FakeRunner(CommandOutput("object abc\n", GPG_GOOD))
        result = GitTagProbe(runner).verify("greater-v4.2.0")

        assert result.verified
        assert runner.calls == [["git", "--version"], ["git", "tag", "-v", "greater-v4.2.0"]]

    def test_git_missing(self) -> None:
        """A failing git --version reports git as unavailable."""
        runner = FakeRunner(version_error=CommandError("Executable not found: git"))
        result = GitTagProbe(runner).verify("greater-v4.2.0")

        assert result.signature_status is SignatureStatus.ERROR
        assert result.error_message == "Git is not installed or not in PATH"
        assert len(runner.calls) == 1

    def test_timeout_is_error(self) -> None:
        """A timed-out verification is an error result, not an exception."""
        runner = FakeRunner(tag_error=CommandTimeoutError(["git", "tag", "-v", "t"], 30))
        result = GitTagProbe(runner).verify("t")

        assert result.signature_status is SignatureStatus.ERROR
        assert "timed out" in (result.error_message or "")

    @pytest.mark.parametrize("ref", ["", "--help", "tag name", "tag\x00"])
    def test_unsafe_ref_never_runs_git(self, ref: str) -> None:
        """Option-like or control-character refs are refused up front."""
        runner = FakeRunner()
        result = GitTagProbe(runner).verify(ref)

        assert result.signature_status is SignatureStatus.ERROR
        assert runner.calls == []

    def test_metrics_recorded(self) -> None:
        """Each check increments the status counter."""
        metrics = PipelineMetrics()
        GitTagProbe(FakeRunner(), metrics=metrics).verify("t")
        assert metrics.sample("greater_signature_checks_total", {"status": "unsigned"}) == 1

    def test_verify_git_tag_helper(self) -> None:
        """verify_git_tag builds a one-off probe."""
        result = verify_git_tag("t", runner=FakeRunner(CommandOutput(SSH_GOOD, "")))
        assert result.signature_status is SignatureStatus.VALID


class TestSubprocessCommandRunner:
    """Tests for the subprocess-backed runner."""

    def test_captures_output(self) -> None:
        """stdout, stderr and return code are captured."""
        completed = subprocess.CompletedProcess(["git"], 1, stdout="out", stderr="err")
        with patch("subprocess.run", return_value=completed) as run:
            output = SubprocessCommandRunner().run(["git", "tag", "-v", "t"], timeout_s=5)

        assert output == CommandOutput("out", "err", 1)
        assert run.call_args.kwargs["timeout"] == 5

    def test_timeout_mapped(self) -> None:
        """TimeoutExpired becomes CommandTimeoutError."""
        with (
            patch("subprocess.run", side_effect=subprocess.TimeoutExpired(["git"], 5)),
            pytest.raises(CommandTimeoutError),
        ):
            SubprocessCommandRunner().run(["git", "--version"], timeout_s=5)

    def test_missing_executable_mapped(self) -> None:
        """FileNotFoundError becomes CommandError."""
        with (
            patch("subprocess.run", side_effect=FileNotFoundError("git")),
            pytest.raises(CommandError, match="Executable not found"),
        ):
            SubprocessCommandRunner().run(["git", "--version"], timeout_s=5)


class TestGitTagVerificationResult:
    """Tests for result serialization."""

    def test_to_dict_camel_case(self) -> None:
        """Optional fields are omitted when unset."""
        result = GitTagVerificationResult(ref="t", error_message="Tag is not signed")
        assert result.to_dict() == {
            "ref": "t",
            "verified": False,
            "signatureStatus": "unsigned",
            "signatureType": "unknown",
            "errorMessage": "Tag is not signed",
        }


class TestGoodSignatureScenario:
    """A tag signed by a known GPG key."""

    def test_signer_extracted(self) -> None:
        """verified, gpg, and the quoted signer are reported."""
        output = 'gpg: Good signature from "Alice <a@example.com>" [full]\n'
        result = GitTagProbe(FakeRunner(CommandOutput("", output))).verify("greater-v4.2.0")

        assert result.to_dict()["verified"] is True
        assert result.to_dict()["signatureType"] == "gpg"
        assert result.signer == "Alice <a@example.com>"
