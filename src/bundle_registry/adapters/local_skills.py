"""Skill bundles defined by JSON files in a local directory."""

from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, ClassVar

from bundle_registry.adapters.base import SourceAdapter
from bundle_registry.archive.assembler import ArchiveAssembler
from bundle_registry.config import SourceConfig, load_source_config
from bundle_registry.core.exceptions import (
    BundleDownloadError,
    BundleRegistryError,
    SourceConfigError,
    SourceNotFoundError,
)
from bundle_registry.core.logging.logger import get_logger
from bundle_registry.manifests.mapper import bounded_id, slugify
from bundle_registry.manifests.skill_bundles import (
    BundleDefinitionModel,
    ResolvedSkill,
    load_bundle_definition,
    resolve_skills,
)
from bundle_registry.marketplace.formatting import format_skill_count
from bundle_registry.marketplace.source_utils import resolve_local_source_path, to_file_url
from bundle_registry.models import (
    Bundle,
    SkillBundleRef,
    SkillRef,
    SourceMetadata,
    ValidationResult,
    utc_now_iso,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from bundle_registry.config import RegistrySource

logger = get_logger(__name__)

BUNDLES_DIR = "bundles"
SKILLS_DIR = "skills"
BUNDLE_ID_PREFIX = "local-skills"
MARKER_TAGS = ("local-skills", "bundle", "skills")
SKILL_ENVIRONMENTS = ("copilot",)
MAX_PORTABLE_PATH = 260


@dataclass(frozen=True, slots=True)
class _Structure:
    errors: tuple[str, ...]
    warnings: tuple[str, ...]

    @property
    def valid(self) -> bool:
        return not self.errors


class LocalSkillBundleAdapter(SourceAdapter):
    type: ClassVar[str] = "local-skills"

    def __init__(
        self,
        source: RegistrySource,
        *,
        assembler: ArchiveAssembler | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        try:
            self.root = resolve_local_source_path(source.url)
        except SourceConfigError as exc:
            raise SourceConfigError(f"Invalid local skills path: {source.url}", exc.details) from exc
        config = load_source_config(SourceConfig, source)
        extra: dict[str, Any] = {"clock": clock} if clock is not None else {}
        super().__init__(source, cache_ttl=config.cache_ttl, **extra)
        self.assembler = assembler or ArchiveAssembler()

    @property
    def bundles_dir(self) -> Path:
        return self.root / BUNDLES_DIR

    @property
    def skills_dir(self) -> Path:
        return self.root / SKILLS_DIR

    def _check_structure(self) -> _Structure:
        if not self.root.exists():
            return _Structure((f"Directory does not exist: {self.root}",), ())
        if not self.root.is_dir():
            return _Structure((f"Path is not a directory: {self.root}",), ())

        errors: list[str] = []
        for name, path in ((BUNDLES_DIR, self.bundles_dir), (SKILLS_DIR, self.skills_dir)):
            if not path.is_dir():
                errors.append(f"Missing required '{name}' directory: {path}")
            elif not os.access(path, os.R_OK):
                errors.append(f"Cannot read {name} directory: {path}")

        warnings: list[str] = []
        if not errors:
            try:
                entries = [entry.name for entry in self.root.iterdir()]
            except OSError:
                entries = []
            has_readme = any(name.lower().startswith("readme") for name in entries)
            if ".git" in entries and not has_readme:
                warnings.append(
                    "Directory appears to be a Git repository but lacks documentation. "
                    "Verify this is the correct skills source directory."
                )
            if "package.json" in entries:
                warnings.append(
                    "Directory contains package.json. "
                    "Verify this is a skills source directory and not a Node.js project."
                )
        return _Structure(tuple(errors), tuple(warnings))

    def _additional_warnings(self) -> list[str]:
        warnings: list[str] = []
        if len(str(self.root)) > MAX_PORTABLE_PATH:
            warnings.append(
                "Path length exceeds Windows maximum (260 characters). "
                "This may cause issues on Windows systems."
            )
        try:
            if not any(entry.suffix == ".json" for entry in self.bundles_dir.iterdir()):
                warnings.append("bundles/ directory contains no JSON files")
        except OSError as exc:
            logger.debug("Cannot list bundles directory", data={"error": str(exc)})
        try:
            if not any(entry.is_dir() for entry in self.skills_dir.iterdir()):
                warnings.append("skills/ directory contains no subdirectories")
        except OSError as exc:
            logger.debug("Cannot list skills directory", data={"error": str(exc)})
        if not os.access(self.root, os.W_OK):
            warnings.append("Source directory is not writable.")
        return warnings

    def _definition_files(self) -> list[Path]:
        structure = self._check_structure()
        if not structure.valid:
            if not self.root.exists():
                raise SourceNotFoundError(structure.errors[0])
            raise SourceConfigError(
                "Invalid directory structure", ", ".join(structure.errors)
            )
        return sorted(
            path for path in self.bundles_dir.iterdir() if path.suffix == ".json" and path.is_file()
        )

    def _to_bundle(
        self,
        definition_path: Path,
        definition: BundleDefinitionModel,
        skills: list[ResolvedSkill],
    ) -> Bundle:
        metadata = definition.metadata
        return Bundle(
            id=bounded_id(BUNDLE_ID_PREFIX, slugify(definition_path.stem, "-")),
            name=metadata.name,
            version=metadata.version or "1.0.0",
            description=metadata.description,
            author=metadata.author or "Unknown",
            source_id=self.source.id,
            environments=SKILL_ENVIRONMENTS,
            tags=(*metadata.tags, *(tag for tag in MARKER_TAGS if tag not in metadata.tags)),
            last_updated=utc_now_iso(),
            size=format_skill_count(len(skills)),
            dependencies=(),
            license="Unknown",
            manifest_url=to_file_url(definition_path),
            download_url=to_file_url(self.root),
            repository=None,
            source_ref=SkillBundleRef(
                definition_path=str(definition_path),
                skills=tuple(
                    SkillRef(name=skill.name, folder=skill.folder, path=str(skill.path))
                    for skill in skills
                ),
            ),
        )

    def _load(self, definition_path: Path) -> Bundle:
        definition = load_bundle_definition(definition_path)
        skills = resolve_skills(self.root, definition)
        logger.debug(
            "Loaded skill bundle",
            data={"file": definition_path.name, "skills": len(skills)},
        )
        return self._to_bundle(definition_path, definition, skills)

    async def _build_bundle(self, definition_path: Path) -> Bundle:
        return await asyncio.to_thread(self._load, definition_path)

    async def _discover(self) -> list[Bundle]:
        definitions = await asyncio.to_thread(self._definition_files)
        return await self._collect(definitions, self._build_bundle, lambda path: path.name)

    async def fetch_metadata(self) -> SourceMetadata:
        bundles = await self.fetch_bundles()
        skill_total = sum(
            len(bundle.source_ref.skills)
            for bundle in bundles
            if isinstance(bundle.source_ref, SkillBundleRef)
        )
        return SourceMetadata(
            name=self.source.display_name,
            description=f"Local skill bundles: {len(bundles)} bundles, {skill_total} skills",
            bundle_count=len(bundles),
            last_updated=utc_now_iso(),
            version="1.0.0",
        )

    async def validate(self) -> ValidationResult:
        structure = await asyncio.to_thread(self._check_structure)
        if not structure.valid:
            return ValidationResult(valid=False, errors=structure.errors, warnings=structure.warnings)

        errors: list[str] = []
        warnings = list(structure.warnings)
        bundles: list[Bundle] = []
        try:
            bundles = await self._discover()
        except BundleRegistryError as exc:
            errors.append(f"Failed to scan bundle definitions: {exc.message}")
        else:
            if not bundles:
                warnings.append("No valid bundle definitions found in bundles/ directory")
        warnings.extend(await asyncio.to_thread(self._additional_warnings))
        return ValidationResult(
            valid=not errors,
            errors=tuple(errors),
            warnings=tuple(warnings),
            bundles_found=len(bundles),
        )

    def _deployment_manifest(self, bundle: Bundle, ref: SkillBundleRef) -> dict[str, Any]:
        definition = load_bundle_definition(Path(ref.definition_path))
        skills = resolve_skills(self.root, definition)
        return {
            "id": bundle.id,
            "version": bundle.version,
            "name": bundle.name,
            "metadata": {
                "manifest_version": "1.0",
                "description": f"Local skill bundle: {bundle.name}",
                "author": bundle.author,
                "last_updated": utc_now_iso(),
                "repository": {"type": "local", "url": to_file_url(self.root), "directory": BUNDLES_DIR},
                "license": bundle.license,
                "keywords": list(bundle.tags),
            },
            "common": {
                "directories": [skill.folder for skill in skills],
                "files": [],
                "include_patterns": ["**/*"],
                "exclude_patterns": [],
            },
            "bundle_settings": {
                "include_common_in_environment_bundles": True,
                "create_common_bundle": True,
                "compression": "zip",
                "naming": {"common_bundle": Path(ref.definition_path).stem},
            },
            "prompts": [
                {
                    "id": skill.folder,
                    "name": skill.name,
                    "description": skill.description,
                    "file": f"{skill.folder}/manifest.json",
                    "type": "agent",
                    "tags": skill.manifest.tags or ["local-skills", "skill"],
                    "entry_points": [
                        entry.model_dump(exclude_none=True) for entry in skill.manifest.entry_points
                    ],
                }
                for skill in skills
            ],
        }

    def _package(self, bundle: Bundle, ref: SkillBundleRef) -> bytes:
        manifest = self._deployment_manifest(bundle, ref)
        directories = [(Path(skill.path), skill.folder) for skill in ref.skills]
        return self.assembler.assemble_directories(manifest, directories)

    async def download_bundle(self, bundle: Bundle) -> bytes:
        ref = bundle.source_ref
        if not isinstance(ref, SkillBundleRef):
            raise BundleDownloadError(f"No skill bundle definition for: {bundle.id}")
        try:
            return await asyncio.to_thread(self._package, bundle, ref)
        except BundleRegistryError as exc:
            raise BundleDownloadError(
                f"Failed to package skill bundle {bundle.id}", exc.message
            ) from exc

    def get_manifest_url(self, bundle_id: str, version: str | None = None) -> str:
        name = bundle_id.removeprefix(f"{BUNDLE_ID_PREFIX}-")
        return to_file_url(self.bundles_dir / f"{name}.json")

    def get_download_url(self, bundle_id: str, version: str | None = None) -> str:
        return to_file_url(self.root)
