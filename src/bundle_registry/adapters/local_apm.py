"""Bundles from ``apm.yml`` packages on the local filesystem."""

from __future__ import annotations

import asyncio
import dataclasses
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, ClassVar

from bundle_registry.adapters.base import SourceAdapter
from bundle_registry.archive.assembler import ArchiveAssembler
from bundle_registry.config import LocalApmSourceConfig, load_source_config
from bundle_registry.core.exceptions import (
    BundleDownloadError,
    BundleRegistryError,
    ManifestError,
    SourceNotFoundError,
)
from bundle_registry.core.logging.logger import get_logger
from bundle_registry.manifests.locator import (
    MANIFEST_FILENAME,
    LocalManifestLocator,
    LocatedManifest,
)
from bundle_registry.manifests.mapper import (
    APM_MARKER_TAG,
    PackageContext,
    map_manifest,
    parse_manifest,
)
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

LOCAL_OWNER = "local"
LOCAL_MARKER_TAG = "local"


class LocalApmAdapter(SourceAdapter):
    type: ClassVar[str] = "local-apm"

    def __init__(
        self,
        source: RegistrySource,
        *,
        assembler: ArchiveAssembler | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.root = resolve_local_source_path(source.url)
        self.config = load_source_config(LocalApmSourceConfig, source)
        extra: dict[str, Any] = {"clock": clock} if clock is not None else {}
        super().__init__(source, cache_ttl=self.config.cache_ttl, **extra)
        self.assembler = assembler or ArchiveAssembler()

    def _require_root(self) -> None:
        if not self.root.is_dir():
            raise SourceNotFoundError(f"Local APM packages directory not found: {self.root}")

    def _locate(self) -> list[LocatedManifest]:
        self._require_root()
        locator = LocalManifestLocator(
            self.root,
            scan_subdirectories=self.config.scan_subdirectories,
            max_depth=self.config.max_depth,
        )
        return locator.locate()

    def _read(self, located: LocatedManifest) -> Bundle:
        try:
            text = located.manifest_path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ManifestError(f"Cannot read {located.manifest_path}", str(exc)) from exc
        manifest = parse_manifest(text, origin=str(located.manifest_path))
        context = PackageContext(
            source_id=self.source.id,
            owner=LOCAL_OWNER,
            repo="-".join(manifest.name.lower().split()),
            path=located.relative_path or None,
        )
        base = map_manifest(manifest, context)
        tags = [tag for tag in base.tags if tag != APM_MARKER_TAG]
        return dataclasses.replace(
            base,
            tags=(*tags, APM_MARKER_TAG, LOCAL_MARKER_TAG),
            manifest_url=to_file_url(located.manifest_path),
            download_url=to_file_url(located.package_dir),
            repository=to_file_url(self.root),
            source_ref=LocalPackageRef(str(located.package_dir)),
        )

    async def _build_bundle(self, located: LocatedManifest) -> Bundle:
        return await asyncio.to_thread(self._read, located)

    async def _discover(self) -> list[Bundle]:
        located = await asyncio.to_thread(self._locate)
        logger.debug(
            "Located local package manifests",
            data={"root": str(self.root), "count": len(located)},
        )
        return await self._collect(
            located,
            self._build_bundle,
            lambda item: item.relative_path or MANIFEST_FILENAME,
        )

    def _last_modified(self) -> str:
        try:
            mtime = self.root.stat().st_mtime
        except OSError:
            return utc_now_iso()
        return datetime.fromtimestamp(mtime, UTC).isoformat().replace("+00:00", "Z")

    async def fetch_metadata(self) -> SourceMetadata:
        self._require_root()
        bundles = await self.fetch_bundles()
        return SourceMetadata(
            name=self.root.name,
            description=f"Local APM packages from {self.root}",
            bundle_count=len(bundles),
            last_updated=await asyncio.to_thread(self._last_modified),
            version="1.0.0",
        )

    async def validate(self) -> ValidationResult:
        if not self.root.is_dir():
            return ValidationResult.failure(f"Directory does not exist: {self.root}")
        try:
            bundles = await self.fetch_bundles()
        except BundleRegistryError as exc:
            return ValidationResult.failure(f"Failed to scan directory: {exc.message}")
        warnings = () if bundles else ("No apm.yml files found in directory",)
        return ValidationResult(valid=True, warnings=warnings, bundles_found=len(bundles))

    async def download_bundle(self, bundle: Bundle) -> bytes:
        ref = bundle.source_ref
        if not isinstance(ref, LocalPackageRef):
            raise BundleDownloadError(f"No local path for bundle: {bundle.id}")
        package_dir = Path(ref.package_dir)
        if not package_dir.is_dir():
            raise BundleDownloadError(f"Package directory not found: {package_dir}")
        return await asyncio.to_thread(self.assembler.assemble, bundle, package_dir)

    def get_manifest_url(self, bundle_id: str, version: str | None = None) -> str:
        return to_file_url(self.root / bundle_id / MANIFEST_FILENAME)

    def get_download_url(self, bundle_id: str, version: str | None = None) -> str:
        return self.get_manifest_url(bundle_id, version)
