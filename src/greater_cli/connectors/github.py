"""
Remote file providers for registry content.

Every provider answers fetch_file(ref, path) with raw bytes or raises
NetworkError. Retries live here, not in the registry core: GitHubRawClient
counts its own attempts and reports each failure through warn_network_error.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import shutil
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Protocol
from urllib.parse import quote

import aiohttp

from greater_cli.config import CliConfig
from greater_cli.connectors.backoff import BackoffConfig, BackoffState, compute_backoff_delay
from greater_cli.errors import NetworkError
from greater_cli.registry.cache import ref_cache_key
from greater_cli.security.warnings import warn_network_error

if TYPE_CHECKING:
    import random
    from collections.abc import Awaitable, Callable, Iterable

    from greater_cli.metrics import PipelineMetrics

logger = logging.getLogger(__name__)


class RemoteFileProvider(Protocol):
    """Source of raw repository files at a ref."""

    async def fetch_file(self, ref: str, path: str) -> bytes:
        """Return the bytes of path at ref.

        Raises:
            NetworkError: If the file cannot be delivered.
        """
        ...

    async def close(self) -> None: ...


def _validate_repo_path(path: str) -> str:
    """Reject absolute paths and parent-directory segments."""
    if not path or path.startswith("/") or "\\" in path:
        raise ValueError(f"Invalid repository path: {path!r}")
    if any(part in ("", "..") for part in path.split("/")):
        raise ValueError(f"Invalid repository path: {path!r}")
    return path


class GitHubRawClient:
    """
    Fetch files from GitHub's raw endpoint over HTTPS.

    URL shape: {raw_base_url}/{ref}/{path}, e.g.
    https://github.com/equaltoai/greater-components/raw/greater-v4.2.0/registry/index.json

    Retry policy:
    - Transport errors, timeouts, 5xx and 429 are retried with exponential backoff.
    - Any other 4xx (404 included) fails immediately.
    - Every retryable failure emits a network security warning carrying the
      attempt counter; the last one is high severity.
    """

    def __init__(
        self,
        config: CliConfig | None = None,
        *,
        backoff_config: BackoffConfig | None = None,
        metrics: PipelineMetrics | None = None,
        sleep: Callable[[float], Awaitable[None]] | None = None,
        rng: random.Random | None = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            config: CLI configuration (base URL, timeouts, retry budget).
            backoff_config: Override of the backoff schedule.
            metrics: Optional metrics sink for emitted warnings.
            sleep: Awaitable sleep, injectable for tests.
            rng: Seeded RNG for deterministic jitter.
        """
        self._config = config or CliConfig()
        self._backoff_config = backoff_config or BackoffConfig(
            max_attempts=self._config.max_retries
        )
        self._metrics = metrics
        self._sleep = sleep or asyncio.sleep
        self._rng = rng
        self._session: aiohttp.ClientSession | None = None

    @property
    def max_attempts(self) -> int:
        return self._backoff_config.max_attempts

    def build_url(self, ref: str, path: str) -> str:
        """Raw file URL for path at ref."""
        if not ref or ref.startswith("-") or ".." in ref.split("/"):
            raise ValueError(f"Invalid ref: {ref!r}")
        _validate_repo_path(path)
        url = f"{self._config.raw_base_url}/{quote(ref, safe='/')}/{quote(path, safe='/')}"
        if not url.startswith("https://"):
            raise ValueError(f"Refusing non-HTTPS URL: {url}")
        return url

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self._config.request_timeout_s)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def fetch_file(self, ref: str, path: str) -> bytes:
        """
        Fetch a file with retry.

        Args:
            ref: Tag or branch.
            path: Repository-relative file path.

        Returns:
            Raw file bytes.

        Raises:
            NetworkError: On a non-retryable status, a malformed ref or path, or
                once the attempt budget is spent.
        """
        try:
            url = self.build_url(ref, path)
        except ValueError as e:
            raise NetworkError(str(e), status_code=400) from e
        state = BackoffState()

        while True:
            try:
                content = await self._fetch_once(url)
            except NetworkError as e:
                if not e.is_retryable:
                    logger.warning(
                        "Remote file unavailable",
                        extra={"url": url, "status": e.status_code},
                    )
                    raise
                state.record_error()
                warn_network_error(e, state.attempt, self.max_attempts, metrics=self._metrics)
                if state.exhausted(self._backoff_config):
                    raise
                delay_ms = compute_backoff_delay(
                    self._backoff_config, state, e.retry_after_ms, rng=self._rng
                )
                logger.debug(
                    "Backing off before retry",
                    extra={"delay_ms": delay_ms, "attempt": state.attempt},
                )
                await self._sleep(delay_ms / 1000)
                continue

            logger.debug("Fetched remote file", extra={"url": url, "bytes": len(content)})
            return content

    async def _fetch_once(self, url: str) -> bytes:
        """Single GET. Maps every failure to NetworkError."""
        try:
            session = await self._get_session()
            async with session.get(url) as response:
                if response.status != 200:
                    retry_after_ms = None
                    if "Retry-After" in response.headers:
                        with contextlib.suppress(ValueError):
                            retry_after_ms = int(response.headers["Retry-After"]) * 1000
                    raise NetworkError(
                        f"HTTP {response.status} for {url}",
                        status_code=response.status,
                        url=url,
                        retry_after_ms=retry_after_ms,
                    )
                return await response.read()
        except aiohttp.ClientError as e:
            raise NetworkError(f"Request failed: {e}", url=url) from e
        except asyncio.TimeoutError as e:
            raise NetworkError(
                f"Request timed out after {self._config.request_timeout_s}s", url=url
            ) from e


class LocalRepoProvider:
    """
    Serve files from a local checkout of the registry repository.

    The ref is ignored: whatever is checked out is what gets served. Useful
    for developing the registry itself.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root).resolve()

    def _resolve(self, path: str) -> Path:
        try:
            _validate_repo_path(path)
        except ValueError as e:
            raise NetworkError(str(e), status_code=400) from e
        target = (self.root / PurePosixPath(path)).resolve()
        if not target.is_relative_to(self.root):
            raise NetworkError(f"Path escapes repository root: {path}", status_code=403)
        return target

    async def fetch_file(self, ref: str, path: str) -> bytes:
        target = self._resolve(path)
        try:
            return target.read_bytes()
        except FileNotFoundError as e:
            raise NetworkError(f"File not found in local repo: {path}", status_code=404) from e
        except OSError as e:
            raise NetworkError(f"Cannot read {path} from local repo: {e}", status_code=500) from e

    async def close(self) -> None:
        return None


class CachingFileProvider:
    """
    Cache-first wrapper around another provider.

    Files land under <cache_dir>/<ref key>/<path>. Refs listed in
    uncached_refs (the default branch, whose content moves) and paths listed in
    uncached_paths (registry documents, which have their own TTL cache) always
    go to the inner provider. Cache I/O failures are logged and swallowed.
    """

    def __init__(
        self,
        inner: RemoteFileProvider,
        cache_dir: Path,
        *,
        uncached_refs: Iterable[str] = (),
        uncached_paths: Iterable[str] = (),
    ) -> None:
        self._inner = inner
        self.cache_dir = Path(cache_dir)
        self._uncached_refs = frozenset(uncached_refs)
        self._uncached_paths = frozenset(uncached_paths)

    def _cache_path(self, ref: str, path: str) -> Path | None:
        try:
            _validate_repo_path(path)
        except ValueError:
            return None
        ref_dir = self.cache_dir / ref_cache_key(ref)
        target = ref_dir / PurePosixPath(path)
        if not target.resolve().is_relative_to(ref_dir.resolve()):
            return None
        return target

    async def fetch_file(self, ref: str, path: str) -> bytes:
        if ref in self._uncached_refs or path in self._uncached_paths:
            return await self._inner.fetch_file(ref, path)

        cache_path = self._cache_path(ref, path)
        if cache_path is not None:
            try:
                content = cache_path.read_bytes()
                logger.debug("File cache hit", extra={"ref": ref, "path": path})
                return content
            except OSError:
                pass

        content = await self._inner.fetch_file(ref, path)

        if cache_path is not None:
            try:
                cache_path.parent.mkdir(parents=True, exist_ok=True)
                cache_path.write_bytes(content)
            except OSError as e:
                logger.warning(
                    "Failed to cache fetched file",
                    extra={"ref": ref, "path": path, "error": str(e)},
                )
        return content

    def clear(self, ref: str) -> None:
        """Drop cached files for one ref."""
        shutil.rmtree(self.cache_dir / ref_cache_key(ref), ignore_errors=True)

    def clear_all(self) -> None:
        """Drop every cached file."""
        shutil.rmtree(self.cache_dir, ignore_errors=True)

    async def close(self) -> None:
        await self._inner.close()


def create_provider(
    config: CliConfig | None = None,
    *,
    metrics: PipelineMetrics | None = None,
    use_file_cache: bool = True,
) -> RemoteFileProvider:
    """Pick the provider for a configuration.

    A configured local repository wins over the network. Network access goes
    through the file cache unless use_file_cache is False.
    """
    config = config or CliConfig()
    if config.local_repo_root is not None:
        logger.info("Using local registry checkout", extra={"root": str(config.local_repo_root)})
        return LocalRepoProvider(config.local_repo_root)

    client = GitHubRawClient(config, metrics=metrics)
    if not use_file_cache:
        return client
    return CachingFileProvider(
        client,
        config.file_cache_dir,
        uncached_refs={config.default_branch},
        uncached_paths={config.index_path, config.latest_path},
    )
