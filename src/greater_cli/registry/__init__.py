"""Registry index retrieval, validation and caching.

- Manifest schema (RegistryIndex, ComponentManifest, ...)
- On-disk TTL cache keyed by sanitized ref
- Ref resolution: explicit > config > latest pointer > fallback
"""

from greater_cli.registry.cache import IndexCache, ref_cache_key, sanitize_ref
from greater_cli.registry.index import (
    RefSource,
    RegistryIndexClient,
    ResolvedRef,
    get_all_component_names,
    get_all_face_names,
    get_all_shared_names,
    get_component_checksums,
    get_component_file_paths,
    get_face_checksums,
    get_shared_checksums,
    has_component,
)
from greater_cli.registry.schema import (
    CachedIndexMetadata,
    ComponentManifest,
    FaceManifest,
    FileChecksum,
    LatestRef,
    RegistryIndex,
    SharedManifest,
)

__all__ = [
    "CachedIndexMetadata",
    "ComponentManifest",
    "FaceManifest",
    "FileChecksum",
    "IndexCache",
    "LatestRef",
    "RefSource",
    "RegistryIndex",
    "RegistryIndexClient",
    "ResolvedRef",
    "SharedManifest",
    "get_all_component_names",
    "get_all_face_names",
    "get_all_shared_names",
    "get_component_checksums",
    "get_component_file_paths",
    "get_face_checksums",
    "get_shared_checksums",
    "has_component",
    "ref_cache_key",
    "sanitize_ref",
]
