"""Map ``apm.yml`` package manifests to :class:`Bundle` descriptors."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from bundle_registry.core.exceptions import ManifestError
from bundle_registry.marketplace.formatting import format_dependency_count
from bundle_registry.marketplace.source_utils import (
    DEFAULT_RAW_BASE,
    GitHubRepo,
    manifest_raw_url,
    package_ref,
)
from bundle_registry.models import (
    DEFAULT_ENVIRONMENTS,
    ApmPackageRef,
    Bundle,
    BundleDependency,
    utc_now_iso,
)

MAX_ID_LENGTH = 200
APM_MARKER_TAG = "apm"
DEFAULT_VERSION = "1.0.0"
DEFAULT_LICENSE = "MIT"

ENVIRONMENT_TAG_MAP: dict[str, str] = {
    "azure": "cloud",
    "aws": "cloud",
    "gcp": "cloud",
    "frontend": "web",
    "backend": "server",
    "devops": "infrastructure",
    "testing": "testing",
    "security": "security",
}

_DISALLOWED_ID_CHARS = re.compile(r"[^a-z0-9\s-]")
_WHITESPACE = re.compile(r"\s+")
_HYPHEN_RUNS = re.compile(r"-+")


class ApmDependencies(BaseModel):
    model_config = ConfigDict(extra="ignore")

    apm: list[str] = Field(default_factory=list)

    @field_validator("apm", mode="before")
    @classmethod
    def _coerce_apm(cls, value: Any) -> Any:
        if value is None:
            return []
        return [str(item) for item in value] if isinstance(value, list) else value


class ApmManifest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    version: str | None = None
    description: str | None = None
    author: str | None = None
    tags: list[str] = Field(default_factory=list)
    license: str | None = None
    dependencies: ApmDependencies = Field(default_factory=ApmDependencies)

    @field_validator("name")
    @classmethod
    def _require_name(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("name must not be empty")
        return value.strip()

    @field_validator("version", mode="before")
    @classmethod
    def _stringify_version(cls, value: Any) -> Any:
        # YAML reads ``version: 1.0`` as a float.
        if isinstance(value, (int, float)):
            return str(value)
        return value

    @field_validator("tags", mode="before")
    @classmethod
    def _coerce_tags(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, list):
            return [str(tag) for tag in value]
        return value

    @field_validator("dependencies", mode="before")
    @classmethod
    def _coerce_dependencies(cls, value: Any) -> Any:
        return {} if value is None else value


def parse_manifest(text: str, *, origin: str = "apm.yml") -> ApmManifest:
    """Parse manifest YAML, raising :class:`ManifestError` on any problem."""
    try:
        payload = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ManifestError(f"Invalid YAML in {origin}", str(exc)) from exc
    if not isinstance(payload, dict):
        raise ManifestError(f"Manifest {origin} is not a mapping")
    try:
        return ApmManifest.model_validate(payload)
    except ValidationError as exc:
        raise ManifestError(f"Invalid manifest {origin}", str(exc)) from exc


@dataclass(frozen=True, slots=True)
class PackageContext:
    source_id: str
    owner: str
    repo: str
    path: str | None = None
    branch: str = "main"
    raw_base: str = DEFAULT_RAW_BASE

    @property
    def github_repo(self) -> GitHubRepo:
        return GitHubRepo(self.owner, self.repo)


def slugify(value: str, replacement: str = "") -> str:
    """
    Lowercase ``value`` and reduce it to ``[a-z0-9-]``.

    Disallowed characters become ``replacement``; whitespace becomes a hyphen.
    Hyphen runs collapse and leading or trailing hyphens are dropped.
    """
    slug = _DISALLOWED_ID_CHARS.sub(replacement, value.lower())
    slug = _WHITESPACE.sub("-", slug)
    return _HYPHEN_RUNS.sub("-", slug).strip("-")


def bounded_id(*parts: str) -> str:
    return "-".join(part for part in parts if part)[:MAX_ID_LENGTH].rstrip("-")


def generate_bundle_id(name: str, owner: str) -> str:
    return bounded_id(owner, slugify(name))


def build_tags(manifest_tags: list[str] | None, marker: str = APM_MARKER_TAG) -> tuple[str, ...]:
    tags = list(manifest_tags or [])
    if marker not in tags:
        tags.append(marker)
    return tuple(tags)


def infer_environments(tags: list[str] | None) -> tuple[str, ...]:
    environments: list[str] = []
    for tag in tags or []:
        environment = ENVIRONMENT_TAG_MAP.get(tag.lower())
        if environment and environment not in environments:
            environments.append(environment)
    return tuple(environments) or DEFAULT_ENVIRONMENTS


def map_dependencies(references: list[str] | None) -> tuple[BundleDependency, ...]:
    return tuple(BundleDependency(bundle_id=ref) for ref in references or [])


def map_manifest(manifest: ApmManifest, context: PackageContext) -> Bundle:
    ref = package_ref(context.github_repo, context.path)
    manifest_url = manifest_raw_url(
        context.github_repo, context.branch, context.path, context.raw_base
    )
    apm_deps = manifest.dependencies.apm
    return Bundle(
        id=generate_bundle_id(manifest.name, context.owner),
        name=manifest.name,
        version=manifest.version or DEFAULT_VERSION,
        description=manifest.description or f"APM package from {ref}",
        author=manifest.author or context.owner,
        source_id=context.source_id,
        environments=infer_environments(manifest.tags),
        tags=build_tags(manifest.tags),
        last_updated=utc_now_iso(),
        size=format_dependency_count(len(apm_deps)),
        dependencies=map_dependencies(apm_deps),
        license=manifest.license or DEFAULT_LICENSE,
        manifest_url=manifest_url,
        download_url=manifest_url,
        repository=context.github_repo.html_url,
        source_ref=ApmPackageRef(ref),
    )
