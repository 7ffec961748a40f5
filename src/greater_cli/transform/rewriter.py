"""
Import path rewriting for fetched component sources.

Only literals that are the operand of an import construct are touched:

    import { a } from '...'      import type { T } from '...'
    import '...'                 import('...')
    export { a } from '...'      export * from '...'
    @import '...'                @import url('...')

Each construct kind has its own regex. The regexes run over the blanked copy
produced by the scanner, so text inside comments and non-import strings
never matches; the literal is then read from, and spliced back into, the
original text by offset.

Svelte files are handled region by region: every <script> and <style> body
is rewritten on its own and spliced back last region first.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from greater_cli.transform.mappings import (
    UMBRELLA_PACKAGE,
    build_path_mappings,
    sort_mappings,
    transform_path,
)
from greater_cli.transform.scanner import blank_comments_and_strings

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from greater_cli.config import InstallConfig
    from greater_cli.transform.mappings import PathMapping

logger = logging.getLogger(__name__)

_NOT_MEMBER = r"(?<![\w$.])"
_IDENT = r"[\w$]+"
_IMPORT_CLAUSE = rf"(?:{_IDENT}\s*,\s*)?(?:\{{[^}}]*\}}|\*\s*as\s+{_IDENT}|{_IDENT})"
_LITERAL = r"(['\"])([^'\"\n]*)\1"

STATIC_IMPORT = re.compile(
    rf"{_NOT_MEMBER}import\s+(?:type\s+)?{_IMPORT_CLAUSE}\s*from\s*{_LITERAL}"
)
SIDE_EFFECT_IMPORT = re.compile(rf"{_NOT_MEMBER}import\s*{_LITERAL}")
DYNAMIC_IMPORT = re.compile(rf"{_NOT_MEMBER}import\s*\(\s*{_LITERAL}\s*\)")
RE_EXPORT = re.compile(
    rf"{_NOT_MEMBER}export\s+(?:type\s+)?"
    rf"(?:\{{[^}}]*\}}|\*(?:\s*as\s+{_IDENT})?)\s*from\s*{_LITERAL}"
)
CSS_IMPORT = re.compile(rf"@import\s+(?:url\s*\(\s*)?{_LITERAL}")

SCRIPT_PATTERNS = (STATIC_IMPORT, SIDE_EFFECT_IMPORT, DYNAMIC_IMPORT, RE_EXPORT)
CSS_PATTERNS = (CSS_IMPORT,)

_SCRIPT_BLOCK = re.compile(r"(<script\b[^>]*>)(.*?)(</script\s*>)", re.IGNORECASE | re.DOTALL)
_STYLE_BLOCK = re.compile(r"(<style\b[^>]*>)(.*?)(</style\s*>)", re.IGNORECASE | re.DOTALL)
_LANG_ATTR = re.compile(r"""\blang\s*=\s*["']?([\w-]+)""", re.IGNORECASE)

SCRIPT_EXTENSIONS = frozenset({"ts", "js", "mjs", "cjs", "mts", "cts", "tsx", "jsx"})
CSS_EXTENSIONS = frozenset({"css", "scss", "less", "pcss", "postcss"})
# Stylesheet dialects in which "//" starts a comment
_LINE_COMMENT_CSS = frozenset({"scss", "less"})


@dataclass
class TransformResult:
    """Rewritten content and what changed."""

    content: str
    transformed_count: int = 0
    transformed_paths: list[tuple[str, str]] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return self.transformed_count > 0


@dataclass(frozen=True)
class ImportTarget:
    """An import literal found in source text."""

    path: str
    start: int
    end: int


def _scan_targets(
    content: str,
    patterns: Sequence[re.Pattern[str]],
    *,
    line_comments: bool = True,
) -> list[ImportTarget]:
    blanked = blank_comments_and_strings(content, line_comments=line_comments)
    seen: set[int] = set()
    targets: list[ImportTarget] = []
    for pattern in patterns:
        for match in pattern.finditer(blanked):
            start, end = match.span(2)
            if start == end or start in seen:
                continue
            seen.add(start)
            targets.append(ImportTarget(content[start:end], start, end))
    targets.sort(key=lambda t: t.start)
    return targets


def _rewrite(
    content: str,
    targets: Iterable[ImportTarget],
    mappings: Sequence[PathMapping],
) -> TransformResult:
    pieces: list[str] = []
    cursor = 0
    result = TransformResult(content=content)
    for target in targets:
        new_path = transform_path(target.path, mappings)
        if new_path is None:
            continue
        pieces.append(content[cursor:target.start])
        pieces.append(new_path)
        cursor = target.end
        result.transformed_count += 1
        result.transformed_paths.append((target.path, new_path))
    if result.transformed_count:
        pieces.append(content[cursor:])
        result.content = "".join(pieces)
    return result


def transform_script_imports(
    content: str,
    mappings: Sequence[PathMapping],
) -> TransformResult:
    """Rewrite import, dynamic import and re-export literals in script text."""
    targets = _scan_targets(content, SCRIPT_PATTERNS)
    return _rewrite(content, targets, sort_mappings(mappings))


def transform_css_imports(
    content: str,
    mappings: Sequence[PathMapping],
    *,
    line_comments: bool = False,
) -> TransformResult:
    """Rewrite @import literals in stylesheet text."""
    targets = _scan_targets(content, CSS_PATTERNS, line_comments=line_comments)
    return _rewrite(content, targets, sort_mappings(mappings))


def _svelte_regions(content: str) -> list[tuple[re.Match[str], bool]]:
    """Script and style blocks in document order; overlapping matches are dropped."""
    found = [(m, True) for m in _SCRIPT_BLOCK.finditer(content)]
    found += [(m, False) for m in _STYLE_BLOCK.finditer(content)]
    found.sort(key=lambda item: item[0].start())

    regions: list[tuple[re.Match[str], bool]] = []
    last_end = -1
    for match, is_script in found:
        if match.start() < last_end:
            continue
        regions.append((match, is_script))
        last_end = match.end()
    return regions


def _style_line_comments(open_tag: str) -> bool:
    """Whether "//" starts a comment in a <style> block, judged by its lang attribute."""
    lang = _LANG_ATTR.search(open_tag)
    return lang is not None and lang.group(1).lower() in _LINE_COMMENT_CSS


def transform_svelte_imports(content: str, config: InstallConfig) -> TransformResult:
    """Rewrite imports inside every <script> and <style> block of a component file."""
    mappings = build_path_mappings(config)
    result = TransformResult(content=content)
    rewritten = content
    collected: list[list[tuple[str, str]]] = []

    # Last region first so earlier offsets stay valid
    for match, is_script in reversed(_svelte_regions(content)):
        body = match.group(2)
        if is_script:
            region = transform_script_imports(body, mappings)
        else:
            region = transform_css_imports(
                body, mappings, line_comments=_style_line_comments(match.group(1))
            )
        if not region.has_changes:
            continue
        start, end = match.span(2)
        rewritten = rewritten[:start] + region.content + rewritten[end:]
        result.transformed_count += region.transformed_count
        collected.append(region.transformed_paths)

    for paths in reversed(collected):
        result.transformed_paths.extend(paths)
    result.content = rewritten
    return result


def transform_typescript_imports(content: str, config: InstallConfig) -> TransformResult:
    return transform_script_imports(content, build_path_mappings(config))


def transform_css_file_imports(
    content: str,
    config: InstallConfig,
    *,
    line_comments: bool = False,
) -> TransformResult:
    return transform_css_imports(content, build_path_mappings(config), line_comments=line_comments)


def _extension(file_path: str | None) -> str | None:
    if not file_path:
        return None
    name = file_path.rsplit("/", 1)[-1]
    if "." not in name:
        return None
    return name.rsplit(".", 1)[-1].lower()


def detect_file_kind(content: str, file_path: str | None = None) -> str:
    """Classify as svelte, css or script: by extension, then by sniffing for <script."""
    ext = _extension(file_path)
    if ext == "svelte":
        return "svelte"
    if ext in CSS_EXTENSIONS:
        return "css"
    if ext in SCRIPT_EXTENSIONS:
        return "script"
    if "<script" in content.lower():
        return "svelte"
    return "script"


def transform_imports(
    content: str,
    config: InstallConfig,
    file_path: str | None = None,
) -> TransformResult:
    """
    Rewrite imports in a file, picking the handler from its kind.

    Args:
        content: File text.
        config: Consumer install configuration.
        file_path: Used for extension-based detection.

    Returns:
        TransformResult; content is unchanged when nothing matched.
    """
    kind = detect_file_kind(content, file_path)
    if kind == "svelte":
        result = transform_svelte_imports(content, config)
    elif kind == "css":
        result = transform_css_file_imports(
            content, config, line_comments=_extension(file_path) in _LINE_COMMENT_CSS
        )
    else:
        result = transform_typescript_imports(content, config)

    if result.has_changes:
        logger.debug(
            "Rewrote imports",
            extra={"file": file_path, "kind": kind, "count": result.transformed_count},
        )
    return result


def find_import_targets(content: str, file_path: str | None = None) -> list[ImportTarget]:
    """Every import literal in content, in document order."""
    kind = detect_file_kind(content, file_path)
    if kind == "css":
        return _scan_targets(
            content, CSS_PATTERNS, line_comments=_extension(file_path) in _LINE_COMMENT_CSS
        )
    if kind == "script":
        return _scan_targets(content, SCRIPT_PATTERNS)

    targets: list[ImportTarget] = []
    for match, is_script in _svelte_regions(content):
        offset = match.start(2)
        if is_script:
            found = _scan_targets(match.group(2), SCRIPT_PATTERNS)
        else:
            found = _scan_targets(
                match.group(2),
                CSS_PATTERNS,
                line_comments=_style_line_comments(match.group(1)),
            )
        targets.extend(ImportTarget(t.path, t.start + offset, t.end + offset) for t in found)
    return targets


def has_greater_imports(content: str, file_path: str | None = None) -> bool:
    """True if any actual import targets a Greater Components package."""
    return any(
        t.path == UMBRELLA_PACKAGE
        or t.path.startswith((f"{UMBRELLA_PACKAGE}/", f"{UMBRELLA_PACKAGE}-"))
        for t in find_import_targets(content, file_path)
    )


def get_transform_summary(results: Iterable[TransformResult]) -> str:
    """One-line summary across files."""
    results = list(results)
    total = sum(r.transformed_count for r in results)
    if total == 0:
        return "No import transformations needed"
    files = sum(1 for r in results if r.has_changes)
    return f"Transformed {total} import(s) across {files} file(s)"
