"""
Bundle definitions and skill manifests for local skill-bundle sources.

Layout::

    <root>/
      bundles/<bundle>.json     # metadata + list of skill references
      skills/<skill>/...        # one directory per skill, with a JSON manifest

Skill manifests come in two shapes, both accepted::

    {"metadata": {"name": ...}, "bom": {"entry_points": [...]}}
    {"name": ..., "entry_points": [...]}
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from bundle_registry.core.exceptions import ManifestError
from bundle_registry.marketplace.source_utils import normalize_repo_path


class _NonEmptyStrModel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    @field_validator("*", mode="after")
    @classmethod
    def _reject_blank_strings(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            raise ValueError("must not be empty")
        return value


class BundleMetadataModel(_NonEmptyStrModel):
    name: str
    description: str
    version: str | None = None
    author: str | None = None
    tags: list[str] = Field(default_factory=list)


class SkillReferenceModel(_NonEmptyStrModel):
    name: str
    description: str
    path: str
    manifest: str


class BundleDefinitionModel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    metadata: BundleMetadataModel
    skills: list[SkillReferenceModel] = Field(min_length=1)


class EntryPointModel(BaseModel):
    model_config = ConfigDict(extra="allow")

    protocol: str = Field(min_length=1)
    path: str = Field(min_length=1)
    patterns: list[str] = Field(min_length=1)


class SkillManifestModel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = Field(min_length=1)
    description: str | None = None
    tags: list[str] = Field(default_factory=list)
    entry_points: list[EntryPointModel] = Field(min_length=1)

    @model_validator(mode="before")
    @classmethod
    def _flatten_bom_layout(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        metadata = data.get("metadata")
        bom = data.get("bom")
        if isinstance(metadata, dict) and isinstance(bom, dict):
            return {
                "name": metadata.get("name"),
                "description": metadata.get("description"),
                "tags": metadata.get("tags") or [],
                "entry_points": bom.get("entry_points"),
            }
        return data


@dataclass(frozen=True, slots=True)
class ResolvedSkill:
    name: str
    description: str
    folder: str
    path: Path
    manifest: SkillManifestModel


def _read_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ManifestError(f"Invalid JSON syntax in {path.name}", str(exc)) from exc
    except FileNotFoundError as exc:
        raise ManifestError(f"File not found: {path.name}") from exc
    except PermissionError as exc:
        raise ManifestError(f"Permission denied reading file: {path.name}") from exc
    except OSError as exc:
        raise ManifestError(f"Failed to read file {path.name}", str(exc)) from exc


def load_bundle_definition(path: Path) -> BundleDefinitionModel:
    payload = _read_json(path)
    try:
        return BundleDefinitionModel.model_validate(payload)
    except ValidationError as exc:
        raise ManifestError(f"Invalid bundle definition {path.name}", str(exc)) from exc


def load_skill_manifest(path: Path) -> SkillManifestModel:
    payload = _read_json(path)
    try:
        return SkillManifestModel.model_validate(payload)
    except ValidationError as exc:
        raise ManifestError(f"Invalid skill manifest {path.name}", str(exc)) from exc


def _resolve_inside(root: Path, relative: str) -> Path | None:
    normalized = normalize_repo_path(relative)
    if normalized is None:
        return None
    return root / PurePosixPath(normalized)


def resolve_skills(root: Path, definition: BundleDefinitionModel) -> list[ResolvedSkill]:
    """
    Resolve every skill reference of a bundle definition against ``root``.

    All references must resolve. Raises :class:`ManifestError` listing every
    failing reference otherwise.
    """
    resolved: list[ResolvedSkill] = []
    errors: list[str] = []
    total = len(definition.skills)
    for index, reference in enumerate(definition.skills, start=1):
        context = f'skill "{reference.name}" ({index}/{total})'
        skill_dir = _resolve_inside(root, reference.path)
        if skill_dir is None or not skill_dir.is_dir():
            errors.append(f'{context}: Directory does not exist at path "{reference.path}"')
            continue
        manifest_path = _resolve_inside(root, reference.manifest)
        if manifest_path is None or not manifest_path.is_file():
            errors.append(f'{context}: Manifest file does not exist at path "{reference.manifest}"')
            continue
        try:
            manifest = load_skill_manifest(manifest_path)
        except ManifestError as exc:
            errors.append(f"{context}: Invalid manifest file - {exc.message}")
            continue
        resolved.append(
            ResolvedSkill(
                name=manifest.name or reference.name,
                description=manifest.description or reference.description,
                folder=skill_dir.name,
                path=skill_dir,
                manifest=manifest,
            )
        )

    if errors:
        raise ManifestError(
            f'Bundle "{definition.metadata.name}" has invalid skills',
            "\n".join(errors),
        )
    return resolved
