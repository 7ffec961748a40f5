"""
On-disk TTL cache for registry indexes and the latest pointer.

Layout:
    <cache_dir>/<key>.json                  cached RegistryIndex
    <cache_dir>/<key>.meta.json             {"ref", "fetchedAt", "ttlMs"}
    <cache_dir>/latest.json                 cached LatestRef
    <cache_dir>/latest.meta.json            same metadata shape, 5 minute TTL

Reads never raise: a missing, corrupt, expired or schema-invalid entry is a
miss, as is metadata recorded for a different ref. Writes raise OSError, or
ValueError for a non-positive TTL, and leave the decision to swallow it to the
caller. Expiry is evaluated lazily on read; nothing is evicted in the background.
"""

from __future__ import annotations

import hashlib
import logging
import re
import shutil
import time
from pathlib import Path
from typing import TYPE_CHECKING

import orjson
from pydantic import ValidationError

from greater_cli.errors import CacheError
from greater_cli.registry.schema import CachedIndexMetadata, LatestRef, RegistryIndex

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

_UNSAFE_REF_CHARS = re.compile(r"[^a-zA-Z0-9._-]")

LATEST_CACHE_KEY = "latest"
META_SUFFIX = ".meta.json"


def sanitize_ref(ref: str) -> str:
    """Map a ref to a filename stem containing only [a-zA-Z0-9._-].

    Every other character (including path separators) becomes "_", so an
    attacker-controlled ref cannot escape the cache directory.
    """
    return _UNSAFE_REF_CHARS.sub("_", ref)


def ref_cache_key(ref: str) -> str:
    """Filesystem-safe key for ref that no other ref maps to.

    Refs that are already safe are used as-is. Anything sanitization changed,
    or that would clash with the latest pointer, a sidecar name or a dot-only
    path component, gets a short digest of the raw ref appended.
    """
    key = sanitize_ref(ref)
    if key != ref or key == LATEST_CACHE_KEY or key.endswith(".meta") or not key.strip("."):
        digest = hashlib.sha256(ref.encode("utf-8")).hexdigest()[:12]
        key = f"{key}-{digest}"
    return key


def _now_ms() -> int:
    return int(time.time() * 1000)


class IndexCache:
    """File-backed TTL cache for registry documents."""

    def __init__(self, cache_dir: Path, clock: Callable[[], int] | None = None) -> None:
        """
        Args:
            cache_dir: Directory holding cache files.
            clock: Millisecond time provider, injectable for deterministic tests.
        """
        self.cache_dir = Path(cache_dir)
        self._clock = clock or _now_ms

    def now_ms(self) -> int:
        return self._clock()

    def cache_key(self, ref: str) -> str:
        return ref_cache_key(ref)

    def index_path(self, ref: str) -> Path:
        return self.cache_dir / f"{self.cache_key(ref)}.json"

    def metadata_path(self, ref: str) -> Path:
        return self.cache_dir / f"{self.cache_key(ref)}{META_SUFFIX}"

    @property
    def latest_path(self) -> Path:
        return self.cache_dir / f"{LATEST_CACHE_KEY}.json"

    @property
    def latest_metadata_path(self) -> Path:
        return self.cache_dir / f"{LATEST_CACHE_KEY}{META_SUFFIX}"

    # ------------------------------------------------------------------
    # Registry index entries
    # ------------------------------------------------------------------

    def read(self, ref: str, ttl_ms: int) -> RegistryIndex | None:
        """Return the cached index for ref, or None on any miss."""
        if not self._is_fresh(self.metadata_path(ref), ref, ttl_ms):
            return None
        try:
            return RegistryIndex.from_json(self.index_path(ref).read_bytes())
        except (OSError, orjson.JSONDecodeError, ValidationError) as e:
            logger.debug("Discarding unreadable cached index", extra={"ref": ref, "error": str(e)})
            return None

    def write(self, ref: str, index: RegistryIndex, ttl_ms: int) -> None:
        """Persist index and sidecar metadata.

        Raises:
            OSError: If the cache directory or files cannot be written.
            ValueError: If ttl_ms is not positive. Nothing is written.
        """
        self._write_pair(
            self.index_path(ref), self.metadata_path(ref), index.to_json(), ref, ttl_ms
        )

    # ------------------------------------------------------------------
    # Latest pointer
    # ------------------------------------------------------------------

    def read_latest(self, ttl_ms: int) -> LatestRef | None:
        """Return the cached latest pointer, or None on any miss."""
        if not self._is_fresh(self.latest_metadata_path, LATEST_CACHE_KEY, ttl_ms):
            return None
        try:
            return LatestRef.model_validate(orjson.loads(self.latest_path.read_bytes()))
        except (OSError, orjson.JSONDecodeError, ValidationError):
            return None

    def write_latest(self, latest: LatestRef, ttl_ms: int) -> None:
        """Persist the latest pointer.

        Raises:
            OSError: If the cache files cannot be written.
            ValueError: If ttl_ms is not positive. Nothing is written.
        """
        self._write_pair(
            self.latest_path, self.latest_metadata_path, latest.to_json(), LATEST_CACHE_KEY, ttl_ms
        )

    # ------------------------------------------------------------------
    # Management
    # ------------------------------------------------------------------

    def clear(self, ref: str) -> None:
        """Remove the cached index for one ref.

        Raises:
            CacheError: If an existing cache file cannot be removed.
        """
        for path in (self.index_path(ref), self.metadata_path(ref)):
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                raise CacheError(f"Failed to remove cache file: {e}", str(path)) from e

    def clear_all(self) -> None:
        """Remove every cached index and the latest pointer.

        Raises:
            CacheError: If the cache directory cannot be removed.
        """
        if not self.cache_dir.exists():
            return
        try:
            shutil.rmtree(self.cache_dir)
        except OSError as e:
            raise CacheError(f"Failed to clear registry cache: {e}", str(self.cache_dir)) from e

    def cached_refs(self) -> list[CachedIndexMetadata]:
        """Metadata of every readable cached index, sorted by ref."""
        if not self.cache_dir.is_dir():
            return []
        entries: list[CachedIndexMetadata] = []
        for meta_path in self.cache_dir.glob(f"*{META_SUFFIX}"):
            if meta_path == self.latest_metadata_path:
                continue
            try:
                entries.append(CachedIndexMetadata.from_json(meta_path.read_bytes()))
            except (OSError, orjson.JSONDecodeError, ValidationError):
                continue
        return sorted(entries, key=lambda m: m.ref)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _is_fresh(self, meta_path: Path, ref: str, ttl_ms: int) -> bool:
        try:
            metadata = CachedIndexMetadata.from_json(meta_path.read_bytes())
        except (OSError, orjson.JSONDecodeError, ValidationError):
            return False
        if metadata.ref != ref:
            return False
        return metadata.is_valid(self.now_ms(), ttl_ms)

    def _write_pair(
        self,
        data_path: Path,
        meta_path: Path,
        payload: bytes,
        ref: str,
        ttl_ms: int,
    ) -> None:
        # Validate before touching disk so a bad TTL leaves no orphan data file
        metadata = CachedIndexMetadata(ref=ref, fetched_at=self.now_ms(), ttl_ms=ttl_ms)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        data_path.write_bytes(payload)
        meta_path.write_bytes(metadata.to_json())
