"""Domain records shared by all source adapters."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

DEFAULT_ENVIRONMENTS: tuple[str, ...] = ("general",)


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True, slots=True)
class BundleDependency:
    bundle_id: str
    version_range: str = "*"
    optional: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "bundleId": self.bundle_id,
            "versionRange": self.version_range,
            "optional": self.optional,
        }


@dataclass(frozen=True, slots=True)
class ApmPackageRef:
    package_ref: str
    kind: Literal["apm-package"] = "apm-package"


@dataclass(frozen=True, slots=True)
class LocalPackageRef:
    package_dir: str
    kind: Literal["local-package"] = "local-package"


@dataclass(frozen=True, slots=True)
class SkillRef:
    name: str
    folder: str
    path: str
    """Absolute path of the skill directory."""


@dataclass(frozen=True, slots=True)
class SkillBundleRef:
    definition_path: str
    skills: tuple[SkillRef, ...]
    kind: Literal["skill-bundle"] = "skill-bundle"


@dataclass(frozen=True, slots=True)
class ReleaseAssetRef:
    tag: str
    manifest_asset_url: str
    archive_asset_url: str
    kind: Literal["release-asset"] = "release-asset"


SourceRef = ApmPackageRef | LocalPackageRef | SkillBundleRef | ReleaseAssetRef


@dataclass(frozen=True)
class Bundle:
    id: str
    name: str
    version: str
    description: str
    author: str
    source_id: str
    environments: tuple[str, ...]
    tags: tuple[str, ...]
    last_updated: str
    size: str
    dependencies: tuple[BundleDependency, ...]
    license: str
    manifest_url: str
    download_url: str
    repository: str | None = None
    source_ref: SourceRef | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if not self.environments:
            object.__setattr__(self, "environments", DEFAULT_ENVIRONMENTS)

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "version": self.version,
            "description": self.description,
            "author": self.author,
            "sourceId": self.source_id,
            "environments": list(self.environments),
            "tags": list(self.tags),
            "lastUpdated": self.last_updated,
            "size": self.size,
            "dependencies": [dep.to_dict() for dep in self.dependencies],
            "license": self.license,
            "manifestUrl": self.manifest_url,
            "downloadUrl": self.download_url,
        }
        if self.repository:
            payload["repository"] = self.repository
        return payload


@dataclass(frozen=True, slots=True)
class SourceMetadata:
    name: str
    description: str
    bundle_count: int
    last_updated: str
    version: str


@dataclass(frozen=True, slots=True)
class ValidationResult:
    valid: bool
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    bundles_found: int = 0

    @classmethod
    def failure(cls, *errors: str, warnings: tuple[str, ...] = ()) -> ValidationResult:
        return cls(valid=False, errors=tuple(errors), warnings=warnings)


@dataclass(frozen=True, slots=True)
class SourceStatus:
    source_id: str
    enabled: bool
    cached: bool
    auth_method: str | None
