"""Bundles listed in a JSON index served over plain HTTP(S)."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, ClassVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from bundle_registry.adapters.base import SourceAdapter
from bundle_registry.adapters.http_client import RemoteClient
from bundle_registry.config import GitHubSettings, HttpIndexSourceConfig, load_source_config
from bundle_registry.core.exceptions import (
    BundleDownloadError,
    BundleRegistryError,
    ManifestError,
    SourceAccessError,
    SourceConfigError,
)
from bundle_registry.manifests.mapper import bounded_id, slugify
from bundle_registry.marketplace.source_utils import is_http_url
from bundle_registry.models import (
    DEFAULT_ENVIRONMENTS,
    Bundle,
    BundleDependency,
    SourceMetadata,
    ValidationResult,
    utc_now_iso,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    import httpx

    from bundle_registry.config import RegistrySource

HTTP_MARKER_TAG = "http"


class IndexDependencyModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    bundle_id: str = Field(validation_alias=AliasChoices("bundleId", "bundle_id"))
    version_range: str = Field(
        default="*", validation_alias=AliasChoices("versionRange", "version_range")
    )
    optional: bool = False


class IndexEntryModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str = Field(min_length=1)
    name: str | None = None
    version: str = "1.0.0"
    description: str = ""
    author: str = "Unknown"
    environments: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    last_updated: str | None = Field(
        default=None, validation_alias=AliasChoices("lastUpdated", "last_updated")
    )
    size: str = "Unknown"
    dependencies: list[IndexDependencyModel] = Field(default_factory=list)
    license: str = "Unknown"
    manifest_url: str | None = Field(
        default=None, validation_alias=AliasChoices("manifestUrl", "manifest_url")
    )
    download_url: str | None = Field(
        default=None, validation_alias=AliasChoices("downloadUrl", "download_url")
    )
    repository: str | None = None


class HttpIndexAdapter(SourceAdapter):
    type: ClassVar[str] = "http"

    def __init__(
        self,
        source: RegistrySource,
        *,
        github: GitHubSettings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        if not is_http_url(source.url):
            raise SourceConfigError(
                f"Invalid HTTP URL: {source.url}",
                "Expected an http:// or https:// URL with a host",
            )
        self.config = load_source_config(HttpIndexSourceConfig, source)
        extra: dict[str, Any] = {"clock": clock} if clock is not None else {}
        super().__init__(source, cache_ttl=self.config.cache_ttl, **extra)
        settings = github or GitHubSettings()
        token = source.token

        async def _token() -> str | None:
            return token

        self.client = RemoteClient(
            token_provider=_token if token else None,
            user_agent=settings.user_agent,
            timeout=settings.timeout,
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        url = self.source.url.rstrip("/")
        if url.endswith(".json"):
            return url.rsplit("/", 1)[0]
        return url

    @property
    def index_url(self) -> str:
        url = self.source.url.rstrip("/")
        if url.endswith(".json"):
            return url
        return f"{url}/{self.config.index_file}"

    async def _fetch_index(self) -> list[Any]:
        payload = await self.client.get_json(self.index_url, accept="application/json")
        if payload is None:
            raise SourceAccessError(f"Bundle index not found: {self.index_url}", status_code=404)
        entries = payload.get("bundles") if isinstance(payload, dict) else payload
        if not isinstance(entries, list):
            raise SourceAccessError(f"Unexpected bundle index format at {self.index_url}")
        return entries

    def _to_bundle(self, raw: Any) -> Bundle:
        try:
            entry = IndexEntryModel.model_validate(raw)
        except ValidationError as exc:
            raise ManifestError("Invalid bundle index entry", str(exc)) from exc
        bundle_id = bounded_id(slugify(entry.id, "-"))
        if not bundle_id:
            raise ManifestError(f"Invalid bundle id in index: {entry.id!r}")
        tags = list(entry.tags)
        if HTTP_MARKER_TAG not in tags:
            tags.append(HTTP_MARKER_TAG)
        return Bundle(
            id=bundle_id,
            name=entry.name or bundle_id,
            version=entry.version,
            description=entry.description,
            author=entry.author,
            source_id=self.source.id,
            environments=tuple(entry.environments) or DEFAULT_ENVIRONMENTS,
            tags=tuple(tags),
            last_updated=entry.last_updated or utc_now_iso(),
            size=entry.size,
            dependencies=tuple(
                BundleDependency(dep.bundle_id, dep.version_range, dep.optional)
                for dep in entry.dependencies
            ),
            license=entry.license,
            manifest_url=entry.manifest_url or self.get_manifest_url(bundle_id, entry.version),
            download_url=entry.download_url or self.get_download_url(bundle_id, entry.version),
            repository=entry.repository,
        )

    async def _build_bundle(self, raw: Any) -> Bundle:
        return self._to_bundle(raw)

    async def _discover(self) -> list[Bundle]:
        entries = await self._fetch_index()
        return await self._collect(
            entries,
            self._build_bundle,
            lambda raw: str(raw.get("id")) if isinstance(raw, dict) else "<entry>",
        )

    async def fetch_metadata(self) -> SourceMetadata:
        bundles = await self.fetch_bundles()
        return SourceMetadata(
            name=self.source.display_name,
            description=f"Bundles from {self.base_url}",
            bundle_count=len(bundles),
            last_updated=utc_now_iso(),
            version="1.0.0",
        )

    async def validate(self) -> ValidationResult:
        try:
            bundles = await self.fetch_bundles()
        except BundleRegistryError as exc:
            return ValidationResult.failure(f"Failed to read bundle index: {exc.message}")
        warnings = () if bundles else ("Bundle index is empty",)
        return ValidationResult(valid=True, warnings=warnings, bundles_found=len(bundles))

    async def download_bundle(self, bundle: Bundle) -> bytes:
        content = await self.client.get_bytes(bundle.download_url)
        if content is None:
            raise BundleDownloadError(f"Bundle archive not found: {bundle.download_url}")
        return content

    def get_manifest_url(self, bundle_id: str, version: str | None = None) -> str:
        return f"{self.base_url}/{bundle_id}/{version or 'latest'}"

    def get_download_url(self, bundle_id: str, version: str | None = None) -> str:
        return self.get_manifest_url(bundle_id, version)
