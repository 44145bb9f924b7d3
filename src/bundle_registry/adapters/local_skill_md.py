"""Single skills laid out as ``skills/<name>/SKILL.md`` in a local directory."""

from __future__ import annotations

import asyncio
import os
from datetime import UTC, datetime
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
from bundle_registry.manifests.skill_md import SKILL_FILENAME, load_skill_md
from bundle_registry.marketplace.formatting import format_size
from bundle_registry.marketplace.source_utils import resolve_local_source_path, to_file_url
from bundle_registry.models import (
    Bundle,
    LocalPackageRef,
    SourceMetadata,
    ValidationResult,
    utc_now_iso,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from bundle_registry.config import RegistrySource

logger = get_logger(__name__)

SKILLS_DIR = "skills"
BUNDLE_ID_PREFIX = "local-skill"
SKILL_TAGS = ("skill", "anthropic", "local")
SKILL_ENVIRONMENTS = ("claude", "vscode", "claude-code")
ESTIMATED_FILE_BYTES = 4096


class LocalSkillMdAdapter(SourceAdapter):
    """
    One bundle per ``skills/<name>/`` directory holding a ``SKILL.md``.

    Directories without ``SKILL.md`` are ignored. Name, description and
    license come from the document's front matter.
    """

    type: ClassVar[str] = "local-skill-md"

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
            raise SourceConfigError(
                f"Invalid local skills path: {source.url}", exc.details
            ) from exc
        config = load_source_config(SourceConfig, source)
        extra: dict[str, Any] = {"clock": clock} if clock is not None else {}
        super().__init__(source, cache_ttl=config.cache_ttl, **extra)
        self.assembler = assembler or ArchiveAssembler()

    @property
    def skills_dir(self) -> Path:
        return self.root / SKILLS_DIR

    @property
    def _id_prefix(self) -> str:
        return bounded_id(BUNDLE_ID_PREFIX, slugify(self.root.name, "-"))

    def bundle_id(self, folder: str) -> str:
        return bounded_id(self._id_prefix, slugify(folder, "-"))

    def _structure_error(self) -> str | None:
        if not self.root.exists():
            return f"Directory does not exist: {self.root}"
        if not self.root.is_dir():
            return f"Path is not a directory: {self.root}"
        if not os.access(self.root, os.R_OK):
            return f"Permission denied accessing directory: {self.root}"
        if not self.skills_dir.is_dir():
            return f"Missing required '{SKILLS_DIR}' directory: {self.skills_dir}"
        return None

    def _skill_dirs(self) -> list[Path]:
        error = self._structure_error()
        if error is not None:
            if not self.root.exists():
                raise SourceNotFoundError(error)
            raise SourceConfigError("Invalid directory structure", error)
        return sorted(
            (
                path
                for path in self.skills_dir.iterdir()
                if path.is_dir() and not path.name.startswith(".")
            ),
            key=lambda path: path.name,
        )

    def _read_skill(self, skill_dir: Path) -> Bundle | None:
        skill_md = skill_dir / SKILL_FILENAME
        if not skill_md.is_file():
            logger.debug("Skipping directory without SKILL.md", data={"folder": skill_dir.name})
            return None
        frontmatter = load_skill_md(skill_md).frontmatter
        file_count = sum(1 for entry in skill_dir.iterdir() if entry.is_file())
        return Bundle(
            id=self.bundle_id(skill_dir.name),
            name=frontmatter.name or skill_dir.name,
            version="1.0.0",
            description=frontmatter.description or "No description",
            author="Local",
            source_id=self.source.id,
            environments=SKILL_ENVIRONMENTS,
            tags=SKILL_TAGS,
            last_updated=utc_now_iso(),
            size=format_size(file_count * ESTIMATED_FILE_BYTES),
            dependencies=(),
            license=frontmatter.license or "Unknown",
            manifest_url=to_file_url(skill_md),
            download_url=to_file_url(skill_dir),
            repository=to_file_url(self.root),
            source_ref=LocalPackageRef(str(skill_dir)),
        )

    async def _build_bundle(self, skill_dir: Path) -> Bundle | None:
        return await asyncio.to_thread(self._read_skill, skill_dir)

    async def _discover(self) -> list[Bundle]:
        skill_dirs = await asyncio.to_thread(self._skill_dirs)
        logger.debug(
            "Scanning skill directories",
            data={"root": str(self.root), "count": len(skill_dirs)},
        )
        return await self._collect(skill_dirs, self._build_bundle, lambda path: path.name)

    def _last_modified(self) -> str:
        try:
            mtime = self.root.stat().st_mtime
        except OSError:
            return utc_now_iso()
        return datetime.fromtimestamp(mtime, UTC).isoformat().replace("+00:00", "Z")

    async def fetch_metadata(self) -> SourceMetadata:
        bundles = await self.fetch_bundles()
        return SourceMetadata(
            name=self.root.name,
            description="Local Skills Repository",
            bundle_count=len(bundles),
            last_updated=await asyncio.to_thread(self._last_modified),
            version="1.0.0",
        )

    async def validate(self) -> ValidationResult:
        error = await asyncio.to_thread(self._structure_error)
        if error is not None:
            return ValidationResult.failure(error)
        try:
            bundles = await self.fetch_bundles()
        except BundleRegistryError as exc:
            return ValidationResult(
                valid=True, warnings=(f"Failed to scan skills: {exc.message}",), bundles_found=0
            )
        warnings = (
            ()
            if bundles
            else ("No valid skills found in skills/ directory (skills must have SKILL.md file)",)
        )
        return ValidationResult(valid=True, warnings=warnings, bundles_found=len(bundles))

    def _deployment_manifest(self, bundle: Bundle, folder: str) -> dict[str, Any]:
        directory = f"{SKILLS_DIR}/{folder}"
        return {
            "id": bundle.id,
            "version": bundle.version,
            "name": bundle.name,
            "metadata": {
                "manifest_version": "1.0",
                "description": bundle.description,
                "author": bundle.author,
                "last_updated": utc_now_iso(),
                "repository": {
                    "type": "local",
                    "url": to_file_url(self.root),
                    "directory": directory,
                },
                "license": bundle.license,
                "keywords": list(SKILL_TAGS),
            },
            "common": {
                "directories": [directory],
                "files": [],
                "include_patterns": ["**/*"],
                "exclude_patterns": [],
            },
            "bundle_settings": {
                "include_common_in_environment_bundles": True,
                "create_common_bundle": True,
                "compression": "zip",
                "naming": {"common_bundle": folder},
            },
            "prompts": [
                {
                    "id": folder,
                    "name": bundle.name,
                    "description": bundle.description,
                    "file": f"{directory}/{SKILL_FILENAME}",
                    "type": "skill",
                    "tags": list(SKILL_TAGS),
                }
            ],
        }

    async def download_bundle(self, bundle: Bundle) -> bytes:
        ref = bundle.source_ref
        if not isinstance(ref, LocalPackageRef):
            raise BundleDownloadError(f"No skill directory for bundle: {bundle.id}")
        skill_dir = Path(ref.package_dir)
        if not (skill_dir / SKILL_FILENAME).is_file():
            raise BundleDownloadError(f"Skill not found: {skill_dir}")
        manifest = self._deployment_manifest(bundle, skill_dir.name)
        return await asyncio.to_thread(
            self.assembler.assemble_directories,
            manifest,
            [(skill_dir, f"{SKILLS_DIR}/{skill_dir.name}")],
        )

    def _skill_dir_for(self, bundle_id: str) -> Path:
        for bundle in self.cache.get(self.cache_key) or ():
            if bundle.id == bundle_id and isinstance(bundle.source_ref, LocalPackageRef):
                return Path(bundle.source_ref.package_dir)
        folder = slugify(bundle_id.removeprefix(f"{self._id_prefix}-"), "-")
        return self.skills_dir / folder

    def get_manifest_url(self, bundle_id: str, version: str | None = None) -> str:
        return to_file_url(self._skill_dir_for(bundle_id) / SKILL_FILENAME)

    def get_download_url(self, bundle_id: str, version: str | None = None) -> str:
        return to_file_url(self._skill_dir_for(bundle_id))
