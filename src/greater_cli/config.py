"""
Configuration for the registry installation pipeline.

Two layers:
- CliConfig: where the CLI keeps its caches and audit trail, and how it
  talks to the registry host. Defaults can be overridden from the environment.
- InstallConfig: the consumer project's components.json (install mode and
  import aliases), consumed by the import path rewriter.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

import orjson
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from greater_cli.errors import InstallConfigError

if TYPE_CHECKING:
    from collections.abc import Mapping

GITHUB_REPO = "equaltoai/greater-components"
DEFAULT_BRANCH = "main"
REGISTRY_INDEX_PATH = "registry/index.json"
LATEST_POINTER_PATH = "registry/latest.json"

# Used when neither an explicit ref, a config ref nor the latest pointer is available
FALLBACK_REF = "greater-v4.2.0"

DEFAULT_INDEX_TTL_MS = 60 * 60 * 1000
LATEST_TTL_MS = 5 * 60 * 1000

MAX_AUDIT_LOG_SIZE = 5 * 1024 * 1024
AUDIT_LOG_RETENTION = 3

# Environment overrides
ENV_HOME = "GREATER_CLI_HOME"
ENV_LOCAL_REPO_ROOT = "GREATER_CLI_LOCAL_REPO_ROOT"
ENV_GIT_TIMEOUT = "GREATER_CLI_GIT_TIMEOUT_S"


def _default_home() -> Path:
    return Path.home() / ".greater-components"


@dataclass
class CliConfig:
    """Pipeline configuration.

    Attributes:
        home_dir: Root of all CLI state (~/.greater-components).
        github_repo: owner/name of the registry repository.
        raw_base_url: Base URL for raw file downloads.
        default_branch: Branch holding the latest-pointer file.
        index_path: Repository path of the registry manifest.
        latest_path: Repository path of the latest-pointer file.
        index_ttl_ms: Registry index cache TTL.
        latest_ttl_ms: Latest-pointer cache TTL.
        fallback_ref: Ref used when nothing else resolves.
        request_timeout_s: Per-request HTTP timeout.
        max_retries: Attempts per remote file before giving up.
        git_timeout_s: Timeout for version-control subprocesses.
        audit_max_size_bytes: Audit log size that triggers rotation.
        audit_retention: Number of rotated audit logs kept.
        local_repo_root: Read files from a local checkout instead of the network.
    """

    home_dir: Path = field(default_factory=_default_home)
    github_repo: str = GITHUB_REPO
    raw_base_url: str = ""
    default_branch: str = DEFAULT_BRANCH
    index_path: str = REGISTRY_INDEX_PATH
    latest_path: str = LATEST_POINTER_PATH
    index_ttl_ms: int = DEFAULT_INDEX_TTL_MS
    latest_ttl_ms: int = LATEST_TTL_MS
    fallback_ref: str = FALLBACK_REF
    request_timeout_s: float = 30.0
    max_retries: int = 3
    git_timeout_s: float = 30.0
    audit_max_size_bytes: int = MAX_AUDIT_LOG_SIZE
    audit_retention: int = AUDIT_LOG_RETENTION
    local_repo_root: Path | None = None

    def __post_init__(self) -> None:
        self.home_dir = Path(self.home_dir).expanduser()
        if not self.raw_base_url:
            self.raw_base_url = f"https://github.com/{self.github_repo}/raw"
        if not self.raw_base_url.startswith("https://"):
            raise ValueError(f"raw_base_url must use https, got {self.raw_base_url!r}")
        if self.index_ttl_ms <= 0:
            raise ValueError(f"index_ttl_ms must be > 0, got {self.index_ttl_ms}")
        if self.latest_ttl_ms <= 0:
            raise ValueError(f"latest_ttl_ms must be > 0, got {self.latest_ttl_ms}")
        if self.request_timeout_s <= 0:
            raise ValueError(f"request_timeout_s must be > 0, got {self.request_timeout_s}")
        if self.max_retries < 1:
            raise ValueError(f"max_retries must be >= 1, got {self.max_retries}")
        if self.git_timeout_s <= 0:
            raise ValueError(f"git_timeout_s must be > 0, got {self.git_timeout_s}")
        if self.audit_max_size_bytes <= 0:
            raise ValueError(
                f"audit_max_size_bytes must be > 0, got {self.audit_max_size_bytes}"
            )
        if self.audit_retention < 1:
            raise ValueError(f"audit_retention must be >= 1, got {self.audit_retention}")
        if self.local_repo_root is not None:
            self.local_repo_root = Path(self.local_repo_root).expanduser()

    @property
    def registry_cache_dir(self) -> Path:
        """Directory holding cached registry indexes and the latest pointer."""
        return self.home_dir / "registry"

    @property
    def file_cache_dir(self) -> Path:
        """Directory holding cached component files, one subdirectory per ref."""
        return self.home_dir / "cache"

    @property
    def audit_log_dir(self) -> Path:
        """Directory holding audit.log and its rotations."""
        return self.home_dir

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None, **overrides: object) -> CliConfig:
        """Build a config from environment variables plus explicit overrides."""
        env = os.environ if env is None else env
        kwargs: dict[str, object] = {}
        if env.get(ENV_HOME):
            kwargs["home_dir"] = Path(env[ENV_HOME])
        if env.get(ENV_LOCAL_REPO_ROOT):
            kwargs["local_repo_root"] = Path(env[ENV_LOCAL_REPO_ROOT])
        if env.get(ENV_GIT_TIMEOUT):
            try:
                kwargs["git_timeout_s"] = float(env[ENV_GIT_TIMEOUT])
            except ValueError as e:
                raise ValueError(
                    f"{ENV_GIT_TIMEOUT} must be a number, got {env[ENV_GIT_TIMEOUT]!r}"
                ) from e
        kwargs.update(overrides)
        return cls(**kwargs)  # type: ignore[arg-type]


class InstallMode(str, Enum):
    """How the consumer project consumes Greater packages."""

    VENDORED = "vendored"  # Every package copied locally under one alias
    HYBRID = "hybrid"  # Core packages imported from npm, the rest copied locally


class Aliases(BaseModel):
    """Import aliases from components.json."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    components: str = Field(default="$lib/components")
    utils: str = Field(default="$lib/utils")
    ui: str = Field(default="$lib/components/ui")
    lib: str = Field(default="$lib")
    hooks: str = Field(default="$lib/primitives")
    greater: str = Field(default="$lib/greater")


class InstallConfig(BaseModel):
    """Consumer project install configuration (components.json)."""

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    install_mode: InstallMode = Field(default=InstallMode.VENDORED, alias="installMode")
    ref: str | None = None
    aliases: Aliases = Field(default_factory=Aliases)


def load_install_config(path: Path) -> InstallConfig:
    """Load and validate components.json.

    Args:
        path: Path to the consumer's components.json.

    Returns:
        Parsed InstallConfig.

    Raises:
        InstallConfigError: If the file is missing, not JSON, or invalid.
    """
    try:
        raw = path.read_bytes()
    except OSError as e:
        raise InstallConfigError(f"Cannot read install config {path}: {e}") from e
    try:
        data = orjson.loads(raw)
    except orjson.JSONDecodeError as e:
        raise InstallConfigError(f"Install config {path} is not valid JSON: {e}") from e
    try:
        return InstallConfig.model_validate(data)
    except ValidationError as e:
        raise InstallConfigError(f"Install config {path} is invalid: {e}") from e
