"""
Registry manifest schema.

The registry index is a JSON document published at registry/index.json for
every ref. It enumerates installable components, faces and shared modules
together with per-file checksums:

    {
        "schemaVersion": "1.0.0",
        "version": "4.2.0",
        "ref": "greater-v4.2.0",
        "generatedAt": "2026-01-25T12:00:00.000Z",
        "checksums": {"packages/primitives/src/Button.svelte": "sha256-..."},
        "components": {"button": {"name": "button", "version": "4.2.0", "files": [...]}},
        "faces": {...},
        "shared": {...}
    }

Models are frozen once parsed and keep the camelCase wire names as aliases.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

import orjson
from pydantic import BaseModel, ConfigDict, Field

CHECKSUM_PATTERN = r"^sha256-[A-Za-z0-9+/]+=*$"
DEFAULT_SCHEMA_VERSION = "1.0.0"

_WIRE_CONFIG = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)


class FileChecksum(BaseModel):
    """Single file entry in a manifest."""

    model_config = _WIRE_CONFIG

    path: str = Field(..., min_length=1, description="File path within the repository")
    checksum: str = Field(..., pattern=CHECKSUM_PATTERN, description="sha256-<base64>")
    size: int | None = Field(default=None, gt=0, description="File size in bytes")


class ComponentManifest(BaseModel):
    """Installable component entry."""

    model_config = _WIRE_CONFIG

    name: str = Field(..., min_length=1)
    version: str
    description: str | None = None
    type: str | None = None
    files: list[FileChecksum] = Field(default_factory=list)
    dependencies: list[str] = Field(default_factory=list)
    peer_dependencies: list[str] = Field(default_factory=list, alias="peerDependencies")
    tags: list[str] = Field(default_factory=list)

    def checksum_map(self) -> dict[str, str]:
        """Map of file path to checksum."""
        return {f.path: f.checksum for f in self.files}


class FaceManifest(ComponentManifest):
    """Curated bundle of components for one application type (social, blog, ...)."""

    includes: dict[str, list[str]] = Field(default_factory=dict)
    styles: dict[str, str] = Field(default_factory=dict)


class SharedManifest(ComponentManifest):
    """Shared module entry (auth, compose, messaging, ...)."""

    exports: list[str] = Field(default_factory=list)
    types: list[str] = Field(default_factory=list)


class RegistryIndex(BaseModel):
    """Parsed registry index for one ref. Superseded, never edited."""

    model_config = _WIRE_CONFIG

    schema_version: str = Field(default=DEFAULT_SCHEMA_VERSION, alias="schemaVersion")
    version: str
    ref: str
    generated_at: datetime = Field(..., alias="generatedAt")
    checksums: dict[str, str] = Field(default_factory=dict)
    components: dict[str, ComponentManifest]
    faces: dict[str, FaceManifest] = Field(default_factory=dict)
    shared: dict[str, SharedManifest] = Field(default_factory=dict)

    def to_json(self) -> bytes:
        """Serialize to wire-format JSON bytes using orjson."""
        return orjson.dumps(self.model_dump(mode="json", by_alias=True))

    @classmethod
    def from_json(cls, data: bytes | str) -> RegistryIndex:
        """Parse and validate wire-format JSON."""
        if isinstance(data, str):
            data = data.encode()
        return cls.model_validate(orjson.loads(data))


class LatestRef(BaseModel):
    """Latest-pointer file published on the default branch."""

    model_config = _WIRE_CONFIG

    ref: str = Field(..., min_length=1)
    version: str
    updated_at: datetime | None = Field(default=None, alias="updatedAt")

    def to_json(self) -> bytes:
        return orjson.dumps(self.model_dump(mode="json", by_alias=True, exclude_none=True))


class CachedIndexMetadata(BaseModel):
    """Sidecar metadata written next to a cached document."""

    model_config = _WIRE_CONFIG

    ref: str
    fetched_at: int = Field(..., ge=0, alias="fetchedAt", description="Epoch milliseconds")
    ttl_ms: int = Field(..., gt=0, alias="ttlMs")

    def is_valid(self, now_ms: int, ttl_ms: int | None = None) -> bool:
        """Entry is valid iff now - fetchedAt < ttl. Expiry is only ever checked here."""
        ttl = self.ttl_ms if ttl_ms is None else ttl_ms
        return now_ms - self.fetched_at < ttl

    def to_json(self) -> bytes:
        return orjson.dumps(self.model_dump(mode="json", by_alias=True))

    @classmethod
    def from_json(cls, data: bytes) -> CachedIndexMetadata:
        return cls.model_validate(orjson.loads(data))


def dump_wire(model: BaseModel) -> dict[str, Any]:
    """Wire-format dict of any schema model."""
    return model.model_dump(mode="json", by_alias=True)
