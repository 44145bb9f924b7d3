"""Bundles published as ``apm.yml`` packages in a GitHub repository."""

from __future__ import annotations

import asyncio
import shutil
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING, Any, ClassVar

from bundle_registry.adapters.base import SourceAdapter
from bundle_registry.adapters.http_client import GITHUB_JSON, RemoteClient
from bundle_registry.archive.assembler import ArchiveAssembler
from bundle_registry.auth.credentials import CredentialResolver
from bundle_registry.config import (
    ApmSourceConfig,
    GitHubSettings,
    PackageCliSettings,
    load_source_config,
)
from bundle_registry.core.exceptions import (
    BundleRegistryError,
    RuntimeUnavailableError,
)
from bundle_registry.core.logging.logger import get_logger
from bundle_registry.manifests.locator import package_dir_of, select_manifest_paths
from bundle_registry.manifests.mapper import PackageContext, map_manifest, parse_manifest
from bundle_registry.marketplace.source_utils import (
    manifest_raw_url,
    parse_github_repo_url,
    tree_url,
)
from bundle_registry.models import (
    ApmPackageRef,
    Bundle,
    SourceMetadata,
    ValidationResult,
    utc_now_iso,
)
from bundle_registry.runtime.package_cli import INSTALL_HINT, PackageCli

if TYPE_CHECKING:
    from collections.abc import Callable

    import httpx

    from bundle_registry.auth.credentials import SessionProvider
    from bundle_registry.config import RegistrySource

logger = get_logger(__name__)

TEMP_DIR_NAME = "bundle-registry-apm"


class ApmAdapter(SourceAdapter):
    type: ClassVar[str] = "apm"

    def __init__(
        self,
        source: RegistrySource,
        *,
        cli: PackageCli | None = None,
        credentials: CredentialResolver | None = None,
        session_provider: SessionProvider | None = None,
        github: GitHubSettings | None = None,
        package_cli: PackageCliSettings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        assembler: ArchiveAssembler | None = None,
        temp_root: str | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.repo = parse_github_repo_url(source.url)
        self.config = load_source_config(ApmSourceConfig, source)
        extra: dict[str, Any] = {"clock": clock} if clock is not None else {}
        super().__init__(source, cache_ttl=self.config.cache_ttl, **extra)

        self.github = github or GitHubSettings()
        self.credentials = credentials or CredentialResolver.for_github(
            session_provider=session_provider,
            interactive=True,
            explicit_token=source.token,
            cli_command=self.github.credential_command,
            cli_timeout=self.github.credential_timeout,
        )
        self.cli = cli or PackageCli.from_settings(package_cli or PackageCliSettings())
        self.client = RemoteClient(
            token_provider=self.credentials.resolve_token,
            user_agent=self.github.user_agent,
            timeout=self.github.timeout,
            transport=transport,
        )
        self.assembler = assembler or ArchiveAssembler()
        self.temp_root = temp_root
        logger.info("Initialized package source", data={"source_id": source.id, "repo": self.repo.slug})

    def auth_method(self) -> str | None:
        return self.credentials.method

    async def _ensure_runtime(self) -> None:
        if await self.cli.is_available():
            return
        if not await self.cli.runtime.setup():
            raise RuntimeUnavailableError(
                "APM runtime is not available. Please install apm-cli or uv."
            )

    async def fetch_bundles(self) -> list[Bundle]:
        if self.is_enabled() and self.cache.get(self.cache_key) is None:
            await self._ensure_runtime()
        return await super().fetch_bundles()

    async def _fetch_tree_paths(self) -> list[str]:
        url = tree_url(self.repo, self.config.branch, self.github.api_base)
        payload = await self.client.get_json(url, accept=GITHUB_JSON)
        if not isinstance(payload, dict):
            return []
        if payload.get("truncated"):
            logger.warning(
                "Git tree listing is truncated; some packages may be missing",
                data={"repo": self.repo.slug, "branch": self.config.branch},
            )
        return [
            item["path"]
            for item in payload.get("tree") or []
            if isinstance(item, dict) and isinstance(item.get("path"), str)
        ]

    async def _build_bundle(self, manifest_path: str) -> Bundle | None:
        subpath = package_dir_of(manifest_path)
        url = manifest_raw_url(self.repo, self.config.branch, subpath, self.github.raw_base)
        text = await self.client.get_text(url)
        if text is None:
            return None
        manifest = parse_manifest(text, origin=manifest_path)
        context = PackageContext(
            source_id=self.source.id,
            owner=self.repo.owner,
            repo=self.repo.repo,
            path=subpath,
            branch=self.config.branch,
            raw_base=self.github.raw_base,
        )
        return map_manifest(manifest, context)

    async def _discover(self) -> list[Bundle]:
        manifest_paths = select_manifest_paths(await self._fetch_tree_paths())
        logger.debug(
            "Located package manifests",
            data={"repo": self.repo.slug, "count": len(manifest_paths)},
        )
        return await self._collect(manifest_paths, self._build_bundle, lambda path: path)

    async def fetch_metadata(self) -> SourceMetadata:
        bundles = await self.fetch_bundles()
        return SourceMetadata(
            name=self.repo.slug,
            description=f"APM packages from {self.repo.slug}",
            bundle_count=len(bundles),
            last_updated=utc_now_iso(),
            version=await self.cli.version() or "1.0.0",
        )

    async def validate(self) -> ValidationResult:
        if not await self.cli.is_available():
            return ValidationResult.failure(INSTALL_HINT)
        try:
            bundles = await self.fetch_bundles()
        except BundleRegistryError as exc:
            return ValidationResult.failure(f"Failed to access repository: {exc.message}")
        warnings = () if bundles else ("No APM packages found in repository",)
        return ValidationResult(valid=True, warnings=warnings, bundles_found=len(bundles))

    def _make_temp_dir(self) -> Path:
        base = Path(self.temp_root or tempfile.gettempdir()) / TEMP_DIR_NAME
        base.mkdir(parents=True, exist_ok=True)
        return Path(tempfile.mkdtemp(prefix="install-", dir=base))

    async def _cleanup(self, directory: Path) -> None:
        try:
            await asyncio.to_thread(shutil.rmtree, directory)
        except OSError as exc:
            logger.warning(
                "Failed to clean up install directory",
                data={"path": str(directory), "error": str(exc)},
            )

    async def download_bundle(self, bundle: Bundle) -> bytes:
        ref = bundle.source_ref
        package_ref = ref.package_ref if isinstance(ref, ApmPackageRef) else bundle.id
        await self._ensure_runtime()
        token = await self.credentials.resolve_token()

        install_dir = await asyncio.to_thread(self._make_temp_dir)
        try:
            await self.cli.install(package_ref, install_dir, token)
            return await asyncio.to_thread(self.assembler.assemble, bundle, install_dir)
        finally:
            await self._cleanup(install_dir)

    def get_manifest_url(self, bundle_id: str, version: str | None = None) -> str:
        """
        Raw URL of a bundle's ``apm.yml``.

        Ids of cached bundles resolve to their own package directory. Any other
        id falls back to the manifest at the repository root.
        """
        for bundle in self.cache.get(self.cache_key) or ():
            if bundle.id == bundle_id:
                return bundle.manifest_url
        return manifest_raw_url(self.repo, self.config.branch, None, self.github.raw_base)

    def get_download_url(self, bundle_id: str, version: str | None = None) -> str:
        return self.get_manifest_url(bundle_id, version)
