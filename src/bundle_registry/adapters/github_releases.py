"""Bundles published as GitHub release assets."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from bundle_registry.adapters.base import SourceAdapter
from bundle_registry.adapters.http_client import GITHUB_JSON, RemoteClient
from bundle_registry.auth.credentials import CredentialResolver
from bundle_registry.config import GitHubSettings, ReleaseSourceConfig, load_source_config
from bundle_registry.core.exceptions import (
    BundleDownloadError,
    BundleRegistryError,
    ManifestError,
    SourceAccessError,
)
from bundle_registry.core.logging.logger import get_logger
from bundle_registry.manifests.mapper import bounded_id, slugify
from bundle_registry.marketplace.formatting import first_paragraph, format_size, normalize_timestamp
from bundle_registry.marketplace.source_utils import parse_github_release_url
from bundle_registry.models import (
    Bundle,
    ReleaseAssetRef,
    SourceMetadata,
    ValidationResult,
    utc_now_iso,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    import httpx

    from bundle_registry.auth.credentials import SessionProvider
    from bundle_registry.config import RegistrySource

logger = get_logger(__name__)

RELEASE_MARKER_TAG = "github"
DEFAULT_RELEASE_ENVIRONMENTS = ("vscode",)
MANIFEST_ASSET_NAMES = frozenset(
    {"deployment-manifest.yml", "deployment-manifest.yaml", "deployment-manifest.json"}
)
ARCHIVE_SUFFIXES = (".zip", ".tar.gz")

_ENVIRONMENTS_LINE = re.compile(r"(?:environments?|platforms?):\s*([^\n]+)", re.IGNORECASE)
_TAGS_LINE = re.compile(r"tags?:\s*([^\n]+)", re.IGNORECASE)
_LIST_SEPARATOR = re.compile(r"[,\s]+")


class ReleaseAssetModel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    browser_download_url: str
    url: str | None = None
    size: int = 0


class ReleaseModel(BaseModel):
    model_config = ConfigDict(extra="ignore")

    tag_name: str
    name: str | None = None
    body: str | None = None
    draft: bool = False
    prerelease: bool = False
    published_at: str | None = None
    assets: list[ReleaseAssetModel] = Field(default_factory=list)

    def manifest_asset(self) -> ReleaseAssetModel | None:
        return next((asset for asset in self.assets if asset.name in MANIFEST_ASSET_NAMES), None)

    def archive_asset(self) -> ReleaseAssetModel | None:
        return next((asset for asset in self.assets if asset.name.endswith(ARCHIVE_SUFFIXES)), None)


def _list_after(pattern: re.Pattern[str], body: str | None) -> list[str]:
    if not body:
        return []
    match = pattern.search(body)
    if not match:
        return []
    return [item for item in _LIST_SEPARATOR.split(match.group(1)) if item.strip()]


def extract_environments(body: str | None) -> tuple[str, ...]:
    return tuple(_list_after(_ENVIRONMENTS_LINE, body)) or DEFAULT_RELEASE_ENVIRONMENTS


def extract_tags(body: str | None) -> tuple[str, ...]:
    tags = _list_after(_TAGS_LINE, body)
    if RELEASE_MARKER_TAG not in tags:
        tags.append(RELEASE_MARKER_TAG)
    return tuple(tags)


def release_version(tag: str) -> str:
    return tag[1:] if tag.startswith("v") else tag


def release_bundle_id(owner: str, repo: str, tag: str) -> str:
    """Bundle id for a release; tag punctuation such as ``/`` and ``.`` becomes ``-``."""
    return bounded_id(*(slugify(part, "-") for part in (owner, repo, tag)))


class GitHubReleaseAdapter(SourceAdapter):
    type: ClassVar[str] = "github"

    def __init__(
        self,
        source: RegistrySource,
        *,
        credentials: CredentialResolver | None = None,
        session_provider: SessionProvider | None = None,
        github: GitHubSettings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self.repo = parse_github_release_url(source.url)
        self.config = load_source_config(ReleaseSourceConfig, source)
        extra: dict[str, Any] = {"clock": clock} if clock is not None else {}
        super().__init__(source, cache_ttl=self.config.cache_ttl, **extra)

        self.github = github or GitHubSettings()
        self.credentials = credentials or CredentialResolver.for_github(
            session_provider=session_provider,
            interactive=False,
            explicit_token=source.token,
            cli_command=self.github.credential_command,
            cli_timeout=self.github.credential_timeout,
        )
        self.client = RemoteClient(
            token_provider=self.credentials.resolve_token,
            user_agent=self.github.user_agent,
            timeout=self.github.timeout,
            transport=transport,
        )

    @property
    def _repo_api_url(self) -> str:
        return f"{self.github.api_base.rstrip('/')}/repos/{self.repo.owner}/{self.repo.repo}"

    def auth_method(self) -> str | None:
        return self.credentials.method

    async def _fetch_releases(self) -> list[Any]:
        url = f"{self._repo_api_url}/releases"
        payload = await self.client.get_json(url, accept=GITHUB_JSON)
        if payload is None:
            raise SourceAccessError(
                f"Repository not found: {self.repo.slug}",
                "Check the repository URL and that the token can access it.",
                status_code=404,
            )
        if not isinstance(payload, list):
            raise SourceAccessError(f"Unexpected releases payload from {url}")
        return payload

    def _release_bundle(self, raw: Any) -> Bundle | None:
        try:
            release = ReleaseModel.model_validate(raw)
        except ValidationError as exc:
            raise ManifestError("Invalid release entry", str(exc)) from exc
        if release.draft or (release.prerelease and not self.config.include_prereleases):
            return None
        manifest_asset = release.manifest_asset()
        archive_asset = release.archive_asset()
        if manifest_asset is None or archive_asset is None:
            return None

        return Bundle(
            id=release_bundle_id(self.repo.owner, self.repo.repo, release.tag_name),
            name=release.name or f"{self.repo.repo} {release.tag_name}",
            version=release_version(release.tag_name),
            description=first_paragraph(release.body),
            author=self.repo.owner,
            source_id=self.source.id,
            environments=extract_environments(release.body),
            tags=extract_tags(release.body),
            last_updated=normalize_timestamp(release.published_at) or utc_now_iso(),
            size=format_size(archive_asset.size),
            dependencies=(),
            license="Unknown",
            manifest_url=manifest_asset.browser_download_url,
            download_url=archive_asset.browser_download_url,
            repository=self.repo.html_url,
            source_ref=ReleaseAssetRef(
                tag=release.tag_name,
                manifest_asset_url=manifest_asset.browser_download_url,
                archive_asset_url=archive_asset.browser_download_url,
            ),
        )

    async def _build_bundle(self, raw: Any) -> Bundle | None:
        return self._release_bundle(raw)

    async def _discover(self) -> list[Bundle]:
        releases = await self._fetch_releases()
        return await self._collect(
            releases,
            self._build_bundle,
            lambda raw: str(raw.get("tag_name")) if isinstance(raw, dict) else "<release>",
        )

    async def fetch_metadata(self) -> SourceMetadata:
        repo_data = await self.client.get_json(self._repo_api_url)
        if not isinstance(repo_data, dict):
            raise SourceAccessError(f"Repository not found: {self.repo.slug}", status_code=404)
        releases = await self._fetch_releases()
        return SourceMetadata(
            name=str(repo_data.get("name") or self.repo.repo),
            description=str(repo_data.get("description") or ""),
            bundle_count=len(releases),
            last_updated=normalize_timestamp(repo_data.get("updated_at")) or utc_now_iso(),
            version="1.0.0",
        )

    async def validate(self) -> ValidationResult:
        try:
            repo_data = await self.client.get_json(self._repo_api_url)
            if repo_data is None:
                return ValidationResult.failure(f"Repository not found: {self.repo.slug}")
            releases = await self._fetch_releases()
        except BundleRegistryError as exc:
            return ValidationResult.failure(f"GitHub validation failed: {exc.message}")
        warnings = () if releases else ("No releases found in repository",)
        return ValidationResult(valid=True, warnings=warnings, bundles_found=len(releases))

    async def download_bundle(self, bundle: Bundle) -> bytes:
        ref = bundle.source_ref
        url = ref.archive_asset_url if isinstance(ref, ReleaseAssetRef) else bundle.download_url
        content = await self.client.get_bytes(url)
        if content is None:
            raise BundleDownloadError(f"Bundle archive not found: {url}")
        logger.debug("Downloaded release archive", data={"bundle_id": bundle.id, "bytes": len(content)})
        return content

    def _release_asset_url(self, asset: str, version: str | None) -> str:
        tag = f"v{version}" if version else "latest"
        return f"{self.repo.html_url}/releases/download/{tag}/{asset}"

    def get_manifest_url(self, bundle_id: str, version: str | None = None) -> str:
        return self._release_asset_url("deployment-manifest.json", version)

    def get_download_url(self, bundle_id: str, version: str | None = None) -> str:
        return self._release_asset_url("bundle.zip", version)
