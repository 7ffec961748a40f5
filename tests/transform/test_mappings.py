"""Tests for install-mode path mappings."""

from __future__ import annotations

import pytest

from greater_cli.config import Aliases, InstallConfig, InstallMode
from greater_cli.transform.mappings import (
    CORE_PACKAGES,
    LEGACY_PREFIX,
    UMBRELLA_PACKAGE,
    MappingKind,
    PathMapping,
    build_hybrid_mappings,
    build_path_mappings,
    build_vendored_mappings,
    sort_mappings,
    transform_path,
)

VENDORED = InstallConfig(install_mode=InstallMode.VENDORED)
HYBRID = InstallConfig(install_mode=InstallMode.HYBRID)


class TestBuildPathMappings:
    """Tests for mode-gated mapping generation."""

    def test_dispatch_by_mode(self) -> None:
        """The install mode picks the builder."""
        assert build_path_mappings(VENDORED) == build_vendored_mappings(Aliases())
        assert build_path_mappings(HYBRID) == build_hybrid_mappings(Aliases())

    def test_vendored_has_no_legacy_rewrites(self) -> None:
        """Vendored mode never maps a package back onto the npm umbrella."""
        mappings = build_vendored_mappings(Aliases())
        assert all(m.kind is not MappingKind.LEGACY for m in mappings)
        assert all(m.kind is not MappingKind.HEADLESS for m in mappings)
        assert not any(m.to.startswith(UMBRELLA_PACKAGE) for m in mappings)

    def test_hybrid_has_no_core_vendoring(self) -> None:
        """Hybrid mode never maps a core package onto the greater alias."""
        aliases = Aliases()
        mappings = build_hybrid_mappings(aliases)
        assert all(m.kind is not MappingKind.CORE for m in mappings)
        assert not any(m.to.startswith(aliases.greater) for m in mappings)

    def test_shared_in_both_modes(self) -> None:
        """Shared-module rules are always present."""
        for config in (VENDORED, HYBRID):
            kinds = {m.kind for m in build_path_mappings(config)}
            assert MappingKind.SHARED in kinds

    def test_no_duplicate_sources(self) -> None:
        """Each source path appears in at most one rule per mode."""
        for config in (VENDORED, HYBRID):
            sources = [m.from_ for m in build_path_mappings(config)]
            assert len(sources) == len(set(sources))

    def test_trailing_slash_alias_normalized(self) -> None:
        """A trailing slash on an alias does not produce a double slash."""
        mappings = build_vendored_mappings(Aliases(greater="$lib/greater/"))
        assert all("//" not in m.to for m in mappings)


class TestTransformPathVendored:
    """Tests for rewriting under a vendored install."""

    @pytest.mark.parametrize(
        ("source", "expected"),
        [
            (f"{UMBRELLA_PACKAGE}/shared/auth", "$lib/components/auth"),
            (f"{LEGACY_PREFIX}auth", "$lib/components/auth"),
            (f"{UMBRELLA_PACKAGE}/primitives", "$lib/greater/primitives"),
            (f"{LEGACY_PREFIX}primitives/Button.svelte", "$lib/greater/primitives/Button.svelte"),
            (f"{UMBRELLA_PACKAGE}/faces/blog", "$lib/greater/faces/blog"),
            (f"{LEGACY_PREFIX}fediverse", "$lib/greater/faces/social"),
            (f"{UMBRELLA_PACKAGE}/headless/button", "$lib/greater/headless/button"),
        ],
    )
    def test_rewrites(self, source: str, expected: str) -> None:
        """Umbrella subpaths and hyphenated names both land under the aliases."""
        assert transform_path(source, build_path_mappings(VENDORED)) == expected

    @pytest.mark.parametrize(
        "source",
        ["svelte", "./local", f"{LEGACY_PREFIX}primitivesX", f"{UMBRELLA_PACKAGE}/unknown"],
    )
    def test_unmatched_returns_none(self, source: str) -> None:
        """Prefix matches require an exact name or a / boundary."""
        assert transform_path(source, build_path_mappings(VENDORED)) is None


class TestTransformPathHybrid:
    """Tests for rewriting under a hybrid install."""

    @pytest.mark.parametrize(
        ("source", "expected"),
        [
            (f"{UMBRELLA_PACKAGE}/headless/button", "$lib/primitives/button"),
            (f"{LEGACY_PREFIX}headless/modal", "$lib/primitives/modal"),
            (f"{LEGACY_PREFIX}utils", f"{UMBRELLA_PACKAGE}/utils"),
            (f"{LEGACY_PREFIX}icons/Star", f"{UMBRELLA_PACKAGE}/icons/Star"),
            (f"{LEGACY_PREFIX}fediverse", f"{UMBRELLA_PACKAGE}/faces/social"),
            (f"{UMBRELLA_PACKAGE}/shared/compose", "$lib/components/compose"),
        ],
    )
    def test_rewrites(self, source: str, expected: str) -> None:
        """Headless primitives are vendored, core packages stay on the umbrella."""
        assert transform_path(source, build_path_mappings(HYBRID)) == expected

    def test_umbrella_core_untouched(self) -> None:
        """Umbrella core imports are already in their final form."""
        assert transform_path(f"{UMBRELLA_PACKAGE}/utils", build_path_mappings(HYBRID)) is None


class TestTransformPathGeneral:
    """Tests for ordering, globs and idempotence."""

    def test_longest_mapping_wins(self) -> None:
        """A more specific rule beats a shorter prefix regardless of input order."""
        mappings = [PathMapping("@a/b", "$short"), PathMapping("@a/b/c", "$long")]
        assert transform_path("@a/b/c/d", mappings) == "$long/d"
        assert transform_path("@a/b/x", mappings) == "$short/x"

    def test_sort_mappings(self) -> None:
        """Sorted longest from_ first."""
        mappings = [PathMapping("a", "x"), PathMapping("abc", "y"), PathMapping("ab", "z")]
        assert [m.from_ for m in sort_mappings(mappings)] == ["abc", "ab", "a"]

    def test_glob_keeps_remainder(self) -> None:
        """The glob-matched prefix is replaced and the rest kept."""
        mappings = [PathMapping("@scope/*-icons", "$lib/icons", is_glob=True)]
        assert transform_path("@scope/brand-icons/Star", mappings) == "$lib/icons/Star"
        assert transform_path("@other/brand-icons", mappings) is None

    @pytest.mark.parametrize("config", [VENDORED, HYBRID])
    def test_no_rewrite_loops(self, config: InstallConfig) -> None:
        """A rewritten path is not rewritten again."""
        mappings = build_path_mappings(config)
        sources = [m.from_ for m in mappings] + [f"{m.from_}/sub/file.ts" for m in mappings]
        for source in sources:
            once = transform_path(source, mappings)
            assert once is not None
            assert transform_path(once, mappings) is None

    def test_every_core_package_vendored(self) -> None:
        """Each core package maps under the greater alias in vendored mode."""
        mappings = build_path_mappings(VENDORED)
        for package in CORE_PACKAGES:
            assert transform_path(f"{UMBRELLA_PACKAGE}/{package}", mappings) == (
                f"$lib/greater/{package}"
            )
