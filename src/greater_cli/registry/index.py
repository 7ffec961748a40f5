"""
Registry index retrieval and ref resolution.

fetch_registry_index() serves a fresh cached index when allowed and otherwise
fetches registry/index.json at the ref, parses and validates it. Any network,
parse or schema failure raises RegistryIndexError; a stale cache entry is never
used as a fallback. Cache writes are best-effort.

resolve_ref() picks a ref by priority:
    explicit > config > remote latest pointer > configured fallback ref
The literal "latest" is never used as a ref; it always triggers the lookup.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

import orjson
from pydantic import ValidationError

from greater_cli.config import CliConfig
from greater_cli.errors import NetworkError, RegistryIndexError
from greater_cli.registry.schema import LatestRef, RegistryIndex

if TYPE_CHECKING:
    from greater_cli.connectors.github import RemoteFileProvider
    from greater_cli.metrics import PipelineMetrics
    from greater_cli.registry.cache import IndexCache
    from greater_cli.registry.schema import CachedIndexMetadata

logger = logging.getLogger(__name__)

LATEST_ALIAS = "latest"


class RefSource(str, Enum):
    """Where a resolved ref came from."""

    EXPLICIT = "explicit"
    CONFIG = "config"
    LATEST = "latest"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class ResolvedRef:
    """A concrete ref and the rule that produced it."""

    ref: str
    source: RefSource


def _usable_ref(ref: str | None) -> str | None:
    if ref is None:
        return None
    ref = ref.strip()
    if not ref or ref == LATEST_ALIAS:
        return None
    return ref


class RegistryIndexClient:
    """
    Fetches, validates and caches registry indexes.

    Performs no retries itself: the provider owns retry and backoff.
    """

    def __init__(
        self,
        provider: RemoteFileProvider,
        cache: IndexCache,
        config: CliConfig | None = None,
        metrics: PipelineMetrics | None = None,
    ) -> None:
        """
        Args:
            provider: Remote file source.
            cache: On-disk TTL cache.
            config: CLI configuration (paths, TTLs, default branch).
            metrics: Optional metrics sink.
        """
        self._provider = provider
        self._cache = cache
        self._config = config or CliConfig()
        self._metrics = metrics

    @property
    def cache(self) -> IndexCache:
        return self._cache

    def _record(self, outcome: str) -> None:
        if self._metrics is not None:
            self._metrics.record_index_fetch(outcome)

    async def fetch_registry_index(
        self,
        ref: str,
        *,
        skip_cache: bool = False,
        force_refresh: bool = False,
        ttl_ms: int | None = None,
    ) -> RegistryIndex:
        """
        Return the registry index for ref.

        Args:
            ref: Concrete tag or branch. "latest" must be resolved first.
            skip_cache: Neither read nor write the cache.
            force_refresh: Ignore cached data but store the fresh result.
            ttl_ms: Cache validity window (default: configured index TTL).

        Returns:
            Validated RegistryIndex.

        Raises:
            RegistryIndexError: On network, parse or schema failure.
            ValueError: If ttl_ms is given and not positive.
        """
        if not ref or ref.strip() == LATEST_ALIAS:
            raise RegistryIndexError(
                f"Cannot fetch registry index for unresolved ref {ref!r}", ref=ref
            )
        if ttl_ms is not None and ttl_ms <= 0:
            raise ValueError(f"ttl_ms must be positive, got {ttl_ms}")
        ttl = ttl_ms if ttl_ms is not None else self._config.index_ttl_ms

        if not skip_cache and not force_refresh:
            cached = self._cache.read(ref, ttl)
            if cached is not None:
                logger.debug("Registry index cache hit", extra={"ref": ref})
                self._record("cache")
                return cached

        index = await self._fetch_remote(ref)
        self._record("network")

        if not skip_cache:
            try:
                self._cache.write(ref, index, ttl)
            except (OSError, ValueError) as e:
                logger.warning(
                    "Failed to cache registry index",
                    extra={"ref": ref, "error": str(e)},
                )

        logger.info(
            "Fetched registry index",
            extra={"ref": ref, "version": index.version, "components": len(index.components)},
        )
        return index

    async def _fetch_remote(self, ref: str) -> RegistryIndex:
        try:
            raw = await self._provider.fetch_file(ref, self._config.index_path)
        except NetworkError as e:
            self._record("error")
            raise RegistryIndexError(
                f"Failed to fetch registry index for {ref}: {e}", ref=ref, cause=e
            ) from e

        try:
            data = orjson.loads(raw)
        except orjson.JSONDecodeError as e:
            self._record("error")
            raise RegistryIndexError(
                f"Registry index for {ref} is not valid JSON: {e}", ref=ref, cause=e
            ) from e

        try:
            return RegistryIndex.model_validate(data)
        except ValidationError as e:
            self._record("error")
            raise RegistryIndexError(
                f"Registry index for {ref} failed schema validation: {e}", ref=ref, cause=e
            ) from e

    async def fetch_latest_ref(self) -> LatestRef | None:
        """
        Read the latest pointer from the default branch.

        Cached separately with the latest-pointer TTL. Returns None on any
        failure so ref resolution can fall through.
        """
        ttl = self._config.latest_ttl_ms
        cached = self._cache.read_latest(ttl)
        if cached is not None:
            return cached

        try:
            raw = await self._provider.fetch_file(
                self._config.default_branch, self._config.latest_path
            )
            latest = LatestRef.model_validate(orjson.loads(raw))
        except (NetworkError, orjson.JSONDecodeError, ValidationError) as e:
            logger.warning("Could not read latest registry pointer", extra={"error": str(e)})
            return None

        try:
            self._cache.write_latest(latest, ttl)
        except (OSError, ValueError) as e:
            logger.warning("Failed to cache latest pointer", extra={"error": str(e)})
        return latest

    async def resolve_ref(
        self,
        explicit: str | None = None,
        config_ref: str | None = None,
        fallback: str | None = None,
    ) -> ResolvedRef:
        """
        Decide which ref to install from.

        Args:
            explicit: Ref passed on the command line.
            config_ref: Ref pinned in the consumer's components.json.
            fallback: Used when nothing else resolves (default: the configured
                fallback ref).

        Returns:
            ResolvedRef with the ref and its source.
        """
        ref = _usable_ref(explicit)
        if ref is not None:
            return ResolvedRef(ref, RefSource.EXPLICIT)

        ref = _usable_ref(config_ref)
        if ref is not None:
            return ResolvedRef(ref, RefSource.CONFIG)

        latest = await self.fetch_latest_ref()
        if latest is not None and _usable_ref(latest.ref) is not None:
            return ResolvedRef(latest.ref, RefSource.LATEST)

        if fallback is None:
            fallback = self._config.fallback_ref
        logger.info("Falling back to pinned registry ref", extra={"ref": fallback})
        return ResolvedRef(fallback, RefSource.FALLBACK)

    def clear_registry_cache(self, ref: str) -> None:
        """Drop the cached index for one ref.

        Raises:
            CacheError: If cache files cannot be removed.
        """
        self._cache.clear(ref)

    def clear_all_registry_cache(self) -> None:
        """Drop every cached index and the latest pointer.

        Raises:
            CacheError: If the cache directory cannot be removed.
        """
        self._cache.clear_all()

    def cached_refs(self) -> list[CachedIndexMetadata]:
        return self._cache.cached_refs()


# ----------------------------------------------------------------------
# Pure lookups
# ----------------------------------------------------------------------


def get_component_checksums(index: RegistryIndex, name: str) -> dict[str, str] | None:
    """path -> checksum for a component, or None if absent."""
    component = index.components.get(name)
    return component.checksum_map() if component is not None else None


def get_face_checksums(index: RegistryIndex, name: str) -> dict[str, str] | None:
    face = index.faces.get(name)
    return face.checksum_map() if face is not None else None


def get_shared_checksums(index: RegistryIndex, name: str) -> dict[str, str] | None:
    shared = index.shared.get(name)
    return shared.checksum_map() if shared is not None else None


def get_component_file_paths(index: RegistryIndex, name: str) -> list[str]:
    """File paths of a component, empty if absent."""
    component = index.components.get(name)
    return [f.path for f in component.files] if component is not None else []


def has_component(index: RegistryIndex, name: str) -> bool:
    return name in index.components


def get_all_component_names(index: RegistryIndex) -> list[str]:
    return sorted(index.components)


def get_all_face_names(index: RegistryIndex) -> list[str]:
    return sorted(index.faces)


def get_all_shared_names(index: RegistryIndex) -> list[str]:
    return sorted(index.shared)
