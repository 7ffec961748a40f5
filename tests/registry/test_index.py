"""Tests for registry index retrieval and ref resolution."""

from __future__ import annotations

from typing import TYPE_CHECKING

import orjson
import pytest

from greater_cli.config import FALLBACK_REF, CliConfig
from greater_cli.errors import NetworkError, RegistryIndexError
from greater_cli.metrics import PipelineMetrics
from greater_cli.registry.cache import IndexCache
from greater_cli.registry.index import (
    RefSource,
    RegistryIndexClient,
    get_all_component_names,
    get_all_face_names,
    get_all_shared_names,
    get_component_checksums,
    get_component_file_paths,
    get_face_checksums,
    get_shared_checksums,
    has_component,
)
from greater_cli.registry.schema import RegistryIndex

if TYPE_CHECKING:
    from pathlib import Path

HELLO_CHECKSUM = "sha256-uU0nuZNNPgilLlLX2n2r+sSE7+N6U4DukIj3rOLvzek="
INDEX_PATH = "registry/index.json"
LATEST_PATH = "registry/latest.json"


def index_payload(ref: str = "greater-v4.2.0") -> dict[str, object]:
    return {
        "version": "4.2.0",
        "ref": ref,
        "generatedAt": "2026-01-25T12:00:00Z",
        "components": {
            "modal": {
                "name": "modal",
                "version": "4.2.0",
                "files": [
                    {"path": "src/Modal.svelte", "checksum": HELLO_CHECKSUM},
                    {"path": "src/modal.ts", "checksum": HELLO_CHECKSUM},
                ],
            },
            "button": {"name": "button", "version": "4.2.0", "files": []},
        },
        "faces": {
            "social": {
                "name": "social",
                "version": "4.2.0",
                "files": [{"path": "faces/social/index.ts", "checksum": HELLO_CHECKSUM}],
            }
        },
        "shared": {
            "auth": {
                "name": "auth",
                "version": "4.2.0",
                "files": [{"path": "shared/auth/index.ts", "checksum": HELLO_CHECKSUM}],
            }
        },
    }


class FakeProvider:
    """In-memory provider keyed by (ref, path)."""

    def __init__(self, files: dict[tuple[str, str], bytes] | None = None) -> None:
        self.files = files or {}
        self.calls: list[tuple[str, str]] = []
        self.error: NetworkError | None = None

    async def fetch_file(self, ref: str, path: str) -> bytes:
        self.calls.append((ref, path))
        if self.error is not None:
            raise self.error
        try:
            return self.files[(ref, path)]
        except KeyError:
            raise NetworkError(f"HTTP 404 for {path}", status_code=404) from None

    async def close(self) -> None:
        return None


class FakeClock:
    def __init__(self, now_ms: int = 1_000_000) -> None:
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms


def make_client(
    tmp_path: Path,
    provider: FakeProvider,
    clock: FakeClock | None = None,
    metrics: PipelineMetrics | None = None,
) -> RegistryIndexClient:
    config = CliConfig(home_dir=tmp_path)
    cache = IndexCache(config.registry_cache_dir, clock=clock or FakeClock())
    return RegistryIndexClient(provider, cache, config, metrics=metrics)


class TestFetchRegistryIndex:
    """Tests for fetch_registry_index."""

    @pytest.mark.asyncio
    async def test_fetches_and_caches(self, tmp_path: Path) -> None:
        """Second call within TTL is served from cache."""
        provider = FakeProvider({("greater-v4.2.0", INDEX_PATH): orjson.dumps(index_payload())})
        metrics = PipelineMetrics()
        client = make_client(tmp_path, provider, metrics=metrics)

        first = await client.fetch_registry_index("greater-v4.2.0")
        second = await client.fetch_registry_index("greater-v4.2.0")

        assert first == second
        assert provider.calls == [("greater-v4.2.0", INDEX_PATH)]
        assert metrics.sample("greater_registry_index_fetches_total", {"outcome": "network"}) == 1
        assert metrics.sample("greater_registry_index_fetches_total", {"outcome": "cache"}) == 1

    @pytest.mark.asyncio
    async def test_expired_cache_refetches(self, tmp_path: Path) -> None:
        """An entry past its TTL triggers a network fetch."""
        provider = FakeProvider({("r1", INDEX_PATH): orjson.dumps(index_payload("r1"))})
        clock = FakeClock()
        client = make_client(tmp_path, provider, clock=clock)

        await client.fetch_registry_index("r1", ttl_ms=1000)
        clock.now_ms += 1000
        await client.fetch_registry_index("r1", ttl_ms=1000)

        assert len(provider.calls) == 2

    @pytest.mark.asyncio
    async def test_force_refresh_bypasses_read_but_writes(self, tmp_path: Path) -> None:
        """force_refresh always goes to the network and refreshes the cache."""
        provider = FakeProvider({("r1", INDEX_PATH): orjson.dumps(index_payload("r1"))})
        client = make_client(tmp_path, provider)

        await client.fetch_registry_index("r1")
        await client.fetch_registry_index("r1", force_refresh=True)
        await client.fetch_registry_index("r1")

        assert len(provider.calls) == 2

    @pytest.mark.asyncio
    async def test_skip_cache_neither_reads_nor_writes(self, tmp_path: Path) -> None:
        """skip_cache leaves the cache untouched."""
        provider = FakeProvider({("r1", INDEX_PATH): orjson.dumps(index_payload("r1"))})
        client = make_client(tmp_path, provider)

        await client.fetch_registry_index("r1", skip_cache=True)

        assert client.cached_refs() == []

    @pytest.mark.asyncio
    async def test_network_error_wrapped(self, tmp_path: Path) -> None:
        """A provider failure becomes RegistryIndexError with the cause kept."""
        provider = FakeProvider()
        metrics = PipelineMetrics()
        client = make_client(tmp_path, provider, metrics=metrics)

        with pytest.raises(RegistryIndexError) as exc_info:
            await client.fetch_registry_index("missing-ref")

        assert exc_info.value.ref == "missing-ref"
        assert isinstance(exc_info.value.cause, NetworkError)
        assert metrics.sample("greater_registry_index_fetches_total", {"outcome": "error"}) == 1

    @pytest.mark.asyncio
    async def test_invalid_json_rejected(self, tmp_path: Path) -> None:
        """Non-JSON content raises RegistryIndexError."""
        provider = FakeProvider({("r1", INDEX_PATH): b"<html>not json</html>"})
        client = make_client(tmp_path, provider)

        with pytest.raises(RegistryIndexError, match="not valid JSON"):
            await client.fetch_registry_index("r1")

    @pytest.mark.asyncio
    async def test_schema_violation_rejected(self, tmp_path: Path) -> None:
        """JSON missing required fields raises RegistryIndexError."""
        provider = FakeProvider({("r1", INDEX_PATH): orjson.dumps({"version": "1"})})
        client = make_client(tmp_path, provider)

        with pytest.raises(RegistryIndexError, match="schema validation"):
            await client.fetch_registry_index("r1")

    @pytest.mark.asyncio
    async def test_stale_cache_never_used_on_failure(self, tmp_path: Path) -> None:
        """An expired entry is not a fallback when the network fails."""
        provider = FakeProvider({("r1", INDEX_PATH): orjson.dumps(index_payload("r1"))})
        clock = FakeClock()
        client = make_client(tmp_path, provider, clock=clock)
        await client.fetch_registry_index("r1", ttl_ms=1000)

        clock.now_ms += 5000
        provider.error = NetworkError("boom", status_code=503)

        with pytest.raises(RegistryIndexError):
            await client.fetch_registry_index("r1", ttl_ms=1000)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("ref", ["", "latest", " latest "])
    async def test_unresolved_ref_rejected(self, tmp_path: Path, ref: str) -> None:
        """latest and empty refs must be resolved before fetching."""
        provider = FakeProvider()
        client = make_client(tmp_path, provider)

        with pytest.raises(RegistryIndexError):
            await client.fetch_registry_index(ref)
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_cache_write_failure_is_swallowed(self, tmp_path: Path) -> None:
        """An unwritable cache does not fail the fetch."""
        provider = FakeProvider({("r1", INDEX_PATH): orjson.dumps(index_payload("r1"))})
        blocker = tmp_path / "registry"
        blocker.write_text("not a directory")
        client = make_client(tmp_path, provider)

        index = await client.fetch_registry_index("r1")

        assert index.ref == "r1"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("ttl_ms", [0, -1])
    async def test_non_positive_ttl_rejected(self, tmp_path: Path, ttl_ms: int) -> None:
        """A TTL that could never be cached is refused before any fetch."""
        provider = FakeProvider({("r1", INDEX_PATH): orjson.dumps(index_payload("r1"))})
        client = make_client(tmp_path, provider)

        with pytest.raises(ValueError, match="ttl_ms"):
            await client.fetch_registry_index("r1", ttl_ms=ttl_ms)
        assert provider.calls == []
        assert not (tmp_path / "registry").exists()

    @pytest.mark.asyncio
    async def test_cache_validation_failure_is_swallowed(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """A cache write rejected by validation still returns the fetched index."""
        provider = FakeProvider({("r1", INDEX_PATH): orjson.dumps(index_payload("r1"))})
        client = make_client(tmp_path, provider)

        def reject(*args: object) -> None:
            raise ValueError("ttl_ms must be positive")

        monkeypatch.setattr(client.cache, "write", reject)

        index = await client.fetch_registry_index("r1")

        assert index.ref == "r1"

    @pytest.mark.asyncio
    async def test_lookalike_refs_get_their_own_index(self, tmp_path: Path) -> None:
        """Refs that differ only in separators never share a cached index."""
        provider = FakeProvider(
            {
                ("feature_x", INDEX_PATH): orjson.dumps(index_payload("feature_x")),
                ("feature/x", INDEX_PATH): orjson.dumps(index_payload("feature/x")),
            }
        )
        client = make_client(tmp_path, provider)

        assert (await client.fetch_registry_index("feature_x")).ref == "feature_x"
        assert (await client.fetch_registry_index("feature/x")).ref == "feature/x"
        assert (await client.fetch_registry_index("feature_x")).ref == "feature_x"
        assert (await client.fetch_registry_index("feature/x")).ref == "feature/x"
        assert len(provider.calls) == 2


class TestResolveRef:
    """Tests for ref resolution priority."""

    @pytest.mark.asyncio
    async def test_explicit_wins(self, tmp_path: Path) -> None:
        """Explicit ref beats config and never touches the network."""
        provider = FakeProvider()
        client = make_client(tmp_path, provider)

        resolved = await client.resolve_ref("greater-v1.0.0", "greater-v2.0.0")

        assert resolved.ref == "greater-v1.0.0"
        assert resolved.source is RefSource.EXPLICIT
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_config_when_no_explicit(self, tmp_path: Path) -> None:
        """Config ref is next."""
        client = make_client(tmp_path, FakeProvider())

        resolved = await client.resolve_ref(None, "greater-v2.0.0")

        assert resolved.ref == "greater-v2.0.0"
        assert resolved.source is RefSource.CONFIG

    @pytest.mark.asyncio
    async def test_latest_literal_triggers_lookup(self, tmp_path: Path) -> None:
        """latest is never returned as a ref; the pointer is read instead."""
        pointer = orjson.dumps({"ref": "greater-v4.3.0", "version": "4.3.0"})
        provider = FakeProvider({("main", LATEST_PATH): pointer})
        client = make_client(tmp_path, provider)

        resolved = await client.resolve_ref("latest", "latest")

        assert resolved.ref == "greater-v4.3.0"
        assert resolved.source is RefSource.LATEST

    @pytest.mark.asyncio
    async def test_latest_pointer_cached(self, tmp_path: Path) -> None:
        """The pointer is read from cache within its TTL."""
        pointer = orjson.dumps({"ref": "greater-v4.3.0", "version": "4.3.0"})
        provider = FakeProvider({("main", LATEST_PATH): pointer})
        client = make_client(tmp_path, provider)

        await client.resolve_ref()
        await client.resolve_ref()

        assert provider.calls == [("main", LATEST_PATH)]

    @pytest.mark.asyncio
    async def test_fallback_when_pointer_unavailable(self, tmp_path: Path) -> None:
        """Network failure on the pointer falls back to the pinned ref."""
        client = make_client(tmp_path, FakeProvider())

        resolved = await client.resolve_ref()

        assert resolved.ref == FALLBACK_REF
        assert resolved.source is RefSource.FALLBACK

    @pytest.mark.asyncio
    async def test_fallback_when_pointer_invalid(self, tmp_path: Path) -> None:
        """A malformed pointer falls back too."""
        provider = FakeProvider({("main", LATEST_PATH): b'{"version": "1"}'})
        client = make_client(tmp_path, provider)

        resolved = await client.resolve_ref(fallback="greater-v0.0.1")

        assert resolved.ref == "greater-v0.0.1"

    @pytest.mark.asyncio
    async def test_configured_fallback_used_by_default(self, tmp_path: Path) -> None:
        """Without an explicit fallback the configured one is used."""
        config = CliConfig(home_dir=tmp_path, fallback_ref="greater-v3.0.0")
        client = RegistryIndexClient(
            FakeProvider(), IndexCache(config.registry_cache_dir, clock=FakeClock()), config
        )

        resolved = await client.resolve_ref()

        assert resolved.ref == "greater-v3.0.0"
        assert resolved.source is RefSource.FALLBACK

    @pytest.mark.asyncio
    async def test_blank_refs_ignored(self, tmp_path: Path) -> None:
        """Whitespace-only explicit and config refs are skipped."""
        client = make_client(tmp_path, FakeProvider())

        resolved = await client.resolve_ref("  ", "")

        assert resolved.source is RefSource.FALLBACK


class TestFetchLatestRef:
    """Tests for the latest pointer."""

    @pytest.mark.asyncio
    async def test_reads_default_branch(self, tmp_path: Path) -> None:
        """The pointer comes from the default branch."""
        pointer = orjson.dumps({"ref": "greater-v4.3.0", "version": "4.3.0"})
        provider = FakeProvider({("main", LATEST_PATH): pointer})
        client = make_client(tmp_path, provider)

        latest = await client.fetch_latest_ref()

        assert latest is not None
        assert latest.ref == "greater-v4.3.0"
        assert latest.version == "4.3.0"

    @pytest.mark.asyncio
    async def test_expired_pointer_refetched(self, tmp_path: Path) -> None:
        """After the pointer TTL the default branch is read again."""
        pointer = orjson.dumps({"ref": "greater-v4.3.0", "version": "4.3.0"})
        provider = FakeProvider({("main", LATEST_PATH): pointer})
        clock = FakeClock()
        client = make_client(tmp_path, provider, clock)

        await client.fetch_latest_ref()
        clock.now_ms += 5 * 60 * 1000
        await client.fetch_latest_ref()

        assert provider.calls == [("main", LATEST_PATH), ("main", LATEST_PATH)]

    @pytest.mark.asyncio
    async def test_failure_returns_none(self, tmp_path: Path) -> None:
        """Errors are absorbed so resolution can fall through."""
        provider = FakeProvider({("main", LATEST_PATH): b"not json"})
        client = make_client(tmp_path, provider)

        assert await client.fetch_latest_ref() is None


class TestCacheManagement:
    """Tests for the client's cache management passthroughs."""

    @pytest.mark.asyncio
    async def test_clear_registry_cache(self, tmp_path: Path) -> None:
        """Clearing a ref forces a refetch."""
        provider = FakeProvider({("r1", INDEX_PATH): orjson.dumps(index_payload("r1"))})
        client = make_client(tmp_path, provider)

        await client.fetch_registry_index("r1")
        client.clear_registry_cache("r1")
        await client.fetch_registry_index("r1")

        assert len(provider.calls) == 2

    @pytest.mark.asyncio
    async def test_clear_all(self, tmp_path: Path) -> None:
        """clear_all_registry_cache empties the listing."""
        provider = FakeProvider({("r1", INDEX_PATH): orjson.dumps(index_payload("r1"))})
        client = make_client(tmp_path, provider)

        await client.fetch_registry_index("r1")
        assert [m.ref for m in client.cached_refs()] == ["r1"]

        client.clear_all_registry_cache()
        assert client.cached_refs() == []


class TestIndexLookups:
    """Tests for pure lookup helpers."""

    def test_component_checksums(self) -> None:
        """Known component returns its path map."""
        index = RegistryIndex.model_validate(index_payload())
        assert get_component_checksums(index, "modal") == {
            "src/Modal.svelte": HELLO_CHECKSUM,
            "src/modal.ts": HELLO_CHECKSUM,
        }

    def test_absent_entries_return_none(self) -> None:
        """Unknown names return None."""
        index = RegistryIndex.model_validate(index_payload())
        assert get_component_checksums(index, "nope") is None
        assert get_face_checksums(index, "nope") is None
        assert get_shared_checksums(index, "nope") is None

    def test_face_and_shared_checksums(self) -> None:
        """Face and shared sections are looked up separately."""
        index = RegistryIndex.model_validate(index_payload())
        assert get_face_checksums(index, "social") == {"faces/social/index.ts": HELLO_CHECKSUM}
        assert get_shared_checksums(index, "auth") == {"shared/auth/index.ts": HELLO_CHECKSUM}

    def test_file_paths(self) -> None:
        """File paths keep manifest order; absent is empty."""
        index = RegistryIndex.model_validate(index_payload())
        assert get_component_file_paths(index, "modal") == ["src/Modal.svelte", "src/modal.ts"]
        assert get_component_file_paths(index, "nope") == []

    def test_names_sorted(self) -> None:
        """Name listings are sorted."""
        index = RegistryIndex.model_validate(index_payload())
        assert get_all_component_names(index) == ["button", "modal"]
        assert get_all_face_names(index) == ["social"]
        assert get_all_shared_names(index) == ["auth"]
        assert has_component(index, "button")
        assert not has_component(index, "social")
