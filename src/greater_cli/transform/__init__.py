"""Import path rewriting for installed component sources."""

from greater_cli.transform.mappings import (
    MappingKind,
    PathMapping,
    build_hybrid_mappings,
    build_path_mappings,
    build_vendored_mappings,
    transform_path,
)
from greater_cli.transform.rewriter import (
    ImportTarget,
    TransformResult,
    find_import_targets,
    get_transform_summary,
    has_greater_imports,
    transform_css_file_imports,
    transform_css_imports,
    transform_imports,
    transform_script_imports,
    transform_svelte_imports,
    transform_typescript_imports,
)
from greater_cli.transform.scanner import ScanState, blank_comments_and_strings

__all__ = [
    "ImportTarget",
    "MappingKind",
    "PathMapping",
    "ScanState",
    "TransformResult",
    "blank_comments_and_strings",
    "build_hybrid_mappings",
    "build_path_mappings",
    "build_vendored_mappings",
    "find_import_targets",
    "get_transform_summary",
    "has_greater_imports",
    "transform_css_file_imports",
    "transform_css_imports",
    "transform_imports",
    "transform_path",
    "transform_script_imports",
    "transform_svelte_imports",
    "transform_typescript_imports",
]
