from __future__ import annotations

import json
from typing import Any

import httpx
import pytest

from bundle_registry.adapters.github_releases import (
    GitHubReleaseAdapter,
    extract_environments,
    extract_tags,
    release_bundle_id,
    release_version,
)
from bundle_registry.auth.credentials import CredentialResolver, ExplicitTokenStrategy
from bundle_registry.config import RegistrySource
from bundle_registry.core.exceptions import (
    BundleDownloadError,
    SourceAccessError,
    SourceConfigError,
)
from bundle_registry.models import ReleaseAssetRef

API = "https://api.github.com/repos/acme/bundles"
DOWNLOADS = "https://github.com/acme/bundles/releases/download"


def _release(tag: str, **overrides: Any) -> dict[str, Any]:
    release = {
        "tag_name": tag,
        "name": f"Bundles {tag}",
        "body": "Curated prompts.\n\nEnvironments: vscode, cursor\nTags: review, docs\n",
        "draft": False,
        "prerelease": False,
        "published_at": "2026-02-01T09:30:00Z",
        "assets": [
            {
                "name": "deployment-manifest.yml",
                "browser_download_url": f"{DOWNLOADS}/{tag}/deployment-manifest.yml",
                "size": 300,
            },
            {
                "name": "bundle.zip",
                "browser_download_url": f"{DOWNLOADS}/{tag}/bundle.zip",
                "size": 2048,
            },
        ],
    }
    release.update(overrides)
    return release


class ReleasesStub:
    def __init__(self, releases: Any, repo: Any = None, archive: bytes | None = b"PK") -> None:
        self.releases = releases
        self.repo = repo if repo is not None else {"name": "bundles", "description": "Team bundles"}
        self.archive = archive

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if url == f"{API}/releases":
            if self.releases is None:
                return httpx.Response(404)
            return httpx.Response(200, text=json.dumps(self.releases))
        if url == API:
            return httpx.Response(200, text=json.dumps(self.repo))
        if url.endswith("bundle.zip") and self.archive is not None:
            return httpx.Response(200, content=self.archive)
        return httpx.Response(404)


def _adapter(stub: ReleasesStub, **config: Any) -> GitHubReleaseAdapter:
    source = RegistrySource(
        id="releases", url="git@github.com:acme/bundles.git", type="github", config=config
    )
    return GitHubReleaseAdapter(
        source,
        credentials=CredentialResolver([ExplicitTokenStrategy("tok")]),
        transport=httpx.MockTransport(stub.handler),
    )


def test_body_parsing_helpers() -> None:
    assert extract_environments(None) == ("vscode",)
    assert extract_environments("Platforms: copilot claude") == ("copilot", "claude")
    assert extract_tags("nothing here") == ("github",)
    assert extract_tags("Tags: a, b") == ("a", "b", "github")
    assert release_version("v1.2.3") == "1.2.3"
    assert release_version("2026.01") == "2026.01"


@pytest.mark.asyncio
async def test_fetch_bundles_maps_releases() -> None:
    bundles = await _adapter(ReleasesStub([_release("v1.0.0")])).fetch_bundles()

    assert len(bundles) == 1
    bundle = bundles[0]
    assert bundle.id == "acme-bundles-v1-0-0"
    assert bundle.version == "1.0.0"
    assert bundle.description == "Curated prompts."
    assert bundle.environments == ("vscode", "cursor")
    assert bundle.tags == ("review", "docs", "github")
    assert bundle.size == "2.0 KB"
    assert bundle.last_updated == "2026-02-01T09:30:00Z"
    assert bundle.download_url == f"{DOWNLOADS}/v1.0.0/bundle.zip"
    assert bundle.source_ref == ReleaseAssetRef(
        tag="v1.0.0",
        manifest_asset_url=f"{DOWNLOADS}/v1.0.0/deployment-manifest.yml",
        archive_asset_url=f"{DOWNLOADS}/v1.0.0/bundle.zip",
    )


@pytest.mark.asyncio
async def test_drafts_prereleases_and_incomplete_releases_are_skipped() -> None:
    releases = [
        _release("v3.0.0", draft=True),
        _release("v2.1.0-rc1", prerelease=True),
        _release("v2.0.0", assets=[]),
        _release("v1.0.0"),
    ]

    bundles = await _adapter(ReleasesStub(releases)).fetch_bundles()

    assert [bundle.version for bundle in bundles] == ["1.0.0"]


@pytest.mark.asyncio
async def test_prereleases_included_when_configured() -> None:
    releases = [_release("v2.1.0-rc1", prerelease=True), _release("v1.0.0")]

    bundles = await _adapter(ReleasesStub(releases), includePrereleases=True).fetch_bundles()

    assert [bundle.version for bundle in bundles] == ["2.1.0-rc1", "1.0.0"]


@pytest.mark.asyncio
async def test_missing_repository_raises() -> None:
    with pytest.raises(SourceAccessError):
        await _adapter(ReleasesStub(None)).fetch_bundles()


@pytest.mark.asyncio
async def test_validate_and_metadata() -> None:
    adapter = _adapter(ReleasesStub([]))

    result = await adapter.validate()
    metadata = await adapter.fetch_metadata()

    assert result.valid is True
    assert result.warnings == ("No releases found in repository",)
    assert metadata.name == "bundles"
    assert metadata.description == "Team bundles"
    assert metadata.bundle_count == 0


@pytest.mark.asyncio
async def test_validate_reports_missing_repository() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404)

    source = RegistrySource(id="r", url="https://github.com/acme/bundles", type="github")
    adapter = GitHubReleaseAdapter(
        source,
        credentials=CredentialResolver([ExplicitTokenStrategy(None)]),
        transport=httpx.MockTransport(handler),
    )

    result = await adapter.validate()

    assert result.valid is False
    assert result.errors == ("Repository not found: acme/bundles",)


@pytest.mark.asyncio
async def test_download_bundle_fetches_archive() -> None:
    adapter = _adapter(ReleasesStub([_release("v1.0.0")], archive=b"PK\x03\x04data"))
    bundle = (await adapter.fetch_bundles())[0]

    assert await adapter.download_bundle(bundle) == b"PK\x03\x04data"


@pytest.mark.asyncio
async def test_download_bundle_missing_archive() -> None:
    adapter = _adapter(ReleasesStub([_release("v1.0.0")], archive=None))
    bundle = (await adapter.fetch_bundles())[0]

    with pytest.raises(BundleDownloadError):
        await adapter.download_bundle(bundle)


def test_release_urls() -> None:
    adapter = _adapter(ReleasesStub([]))

    assert adapter.get_manifest_url("x", "1.0.0") == f"{DOWNLOADS}/v1.0.0/deployment-manifest.json"
    assert adapter.get_download_url("x") == f"{DOWNLOADS}/latest/bundle.zip"


def test_release_bundle_id_is_a_bounded_slug() -> None:
    assert release_bundle_id("acme", "bundles", "release/1.0") == "acme-bundles-release-1-0"
    assert release_bundle_id("Acme", "my.repo", "../../etc") == "acme-my-repo-etc"

    long_id = release_bundle_id("acme", "bundles", "v" + "9" * 400)
    assert len(long_id) == 200
    assert not long_id.endswith("-")


@pytest.mark.asyncio
async def test_tag_with_slash_does_not_leak_into_id() -> None:
    bundles = await _adapter(ReleasesStub([_release("release/1.0")])).fetch_bundles()

    assert [bundle.id for bundle in bundles] == ["acme-bundles-release-1-0"]
    assert bundles[0].source_ref.tag == "release/1.0"


def test_invalid_source_config_raises_config_error() -> None:
    with pytest.raises(SourceConfigError, match="Invalid config for source releases"):
        _adapter(ReleasesStub([]), includePrereleases="sometimes")
