"""
Import path mappings derived from the consumer's install configuration.

Two install modes, two builders:

vendored (everything copied under the greater alias)
    shared modules   @equaltoai/greater-components/shared/auth -> {components}/auth
    core packages    @equaltoai/greater-components-utils       -> {greater}/utils
                     @equaltoai/greater-components/utils       -> {greater}/utils
    faces            @equaltoai/greater-components/faces/blog  -> {greater}/faces/blog

hybrid (core packages stay on npm, the rest is copied)
    shared modules   same as vendored
    headless         @equaltoai/greater-components/headless/button -> {hooks}/button
    legacy names     @equaltoai/greater-components-utils -> @equaltoai/greater-components/utils

Core-package and legacy rules never coexist: vendored mode already rewrites
the hyphenated names through the core rule.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from greater_cli.config import InstallMode

if TYPE_CHECKING:
    from collections.abc import Iterable

    from greater_cli.config import Aliases, InstallConfig

UMBRELLA_PACKAGE = "@equaltoai/greater-components"
LEGACY_PREFIX = f"{UMBRELLA_PACKAGE}-"

CORE_PACKAGES = ("primitives", "icons", "tokens", "utils", "content", "adapters", "headless")
SHARED_MODULES = ("auth", "admin", "compose", "messaging", "search", "notifications", "chat")
FACES = ("social", "blog", "community", "artist")
HEADLESS_PRIMITIVES = ("alert", "button", "menu", "modal", "tabs", "textfield", "tooltip")

# Pre-umbrella package names of faces
LEGACY_FACE_PACKAGES = {"fediverse": "social"}


class MappingKind(str, Enum):
    """Rule set that produced a mapping."""

    SHARED = "shared"
    HEADLESS = "headless"
    CORE = "core"
    LEGACY = "legacy"


@dataclass(frozen=True)
class PathMapping:
    """Rewrite rule: imports of from_ (or its subpaths) become to."""

    from_: str
    to: str
    is_glob: bool = False
    kind: MappingKind = MappingKind.CORE


def _strip_slash(alias: str) -> str:
    return alias.rstrip("/") or alias


def _shared_mappings(aliases: Aliases) -> list[PathMapping]:
    components = _strip_slash(aliases.components)
    mappings: list[PathMapping] = []
    for module in SHARED_MODULES:
        target = f"{components}/{module}"
        for source in (f"{UMBRELLA_PACKAGE}/shared/{module}", f"{LEGACY_PREFIX}{module}"):
            mappings.append(PathMapping(source, target, kind=MappingKind.SHARED))
    return mappings


def build_vendored_mappings(aliases: Aliases) -> list[PathMapping]:
    """Shared-module and core-package rules for a fully vendored install."""
    greater = _strip_slash(aliases.greater)
    mappings = _shared_mappings(aliases)

    for package in CORE_PACKAGES:
        target = f"{greater}/{package}"
        for source in (f"{UMBRELLA_PACKAGE}/{package}", f"{LEGACY_PREFIX}{package}"):
            mappings.append(PathMapping(source, target, kind=MappingKind.CORE))

    for face in FACES:
        mappings.append(
            PathMapping(
                f"{UMBRELLA_PACKAGE}/faces/{face}", f"{greater}/faces/{face}", kind=MappingKind.CORE
            )
        )
    for legacy, face in LEGACY_FACE_PACKAGES.items():
        mappings.append(
            PathMapping(
                f"{LEGACY_PREFIX}{legacy}", f"{greater}/faces/{face}", kind=MappingKind.CORE
            )
        )

    return mappings


def build_hybrid_mappings(aliases: Aliases) -> list[PathMapping]:
    """Shared-module, headless-primitive and legacy-name rules for a hybrid install."""
    hooks = _strip_slash(aliases.hooks)
    mappings = _shared_mappings(aliases)

    for primitive in HEADLESS_PRIMITIVES:
        target = f"{hooks}/{primitive}"
        for source in (
            f"{UMBRELLA_PACKAGE}/headless/{primitive}",
            f"{LEGACY_PREFIX}headless/{primitive}",
        ):
            mappings.append(PathMapping(source, target, kind=MappingKind.HEADLESS))

    for package in CORE_PACKAGES:
        mappings.append(
            PathMapping(
                f"{LEGACY_PREFIX}{package}",
                f"{UMBRELLA_PACKAGE}/{package}",
                kind=MappingKind.LEGACY,
            )
        )
    for legacy, face in LEGACY_FACE_PACKAGES.items():
        mappings.append(
            PathMapping(
                f"{LEGACY_PREFIX}{legacy}",
                f"{UMBRELLA_PACKAGE}/faces/{face}",
                kind=MappingKind.LEGACY,
            )
        )

    return mappings


_BUILDERS = {
    InstallMode.VENDORED: build_vendored_mappings,
    InstallMode.HYBRID: build_hybrid_mappings,
}


def build_path_mappings(config: InstallConfig) -> list[PathMapping]:
    """Mappings for the configured install mode."""
    return _BUILDERS[config.install_mode](config.aliases)


def sort_mappings(mappings: Iterable[PathMapping]) -> list[PathMapping]:
    """Longest from_ first, so the most specific rule wins."""
    return sorted(mappings, key=lambda m: len(m.from_), reverse=True)


def _glob_regex(pattern: str) -> re.Pattern[str]:
    return re.compile("^" + re.escape(pattern).replace(r"\*", ".*"))


def transform_path(import_path: str, mappings: Iterable[PathMapping]) -> str | None:
    """
    Rewrite one import path.

    A plain mapping matches the path itself or any "from_/" subpath; only the
    matched prefix is replaced. A glob mapping ("*" wildcards) replaces the
    matched prefix.

    Returns:
        The rewritten path, or None if no mapping applies.
    """
    for mapping in sort_mappings(mappings):
        if mapping.is_glob:
            regex = _glob_regex(mapping.from_)
            match = regex.match(import_path)
            if match:
                return mapping.to + import_path[match.end():]
            continue
        if import_path == mapping.from_:
            return mapping.to
        if import_path.startswith(mapping.from_ + "/"):
            return mapping.to + import_path[len(mapping.from_):]
    return None
