from __future__ import annotations

import io
import json
import subprocess
import zipfile
from pathlib import Path
from typing import Any

import httpx
import pytest

from bundle_registry.adapters.apm import ApmAdapter
from bundle_registry.auth.credentials import CredentialResolver, ExplicitTokenStrategy
from bundle_registry.config import RegistrySource
from bundle_registry.core.exceptions import (
    BundleDownloadError,
    BundleFetchError,
    RuntimeUnavailableError,
    SourceAuthError,
    SourceConfigError,
)
from bundle_registry.models import ApmPackageRef
from bundle_registry.runtime.package_cli import INSTALL_HINT, PackageCli, RuntimeStatus

TREE_URL = "https://api.github.com/repos/acme/prompts/git/trees/main?recursive=1"
RAW_BASE = "https://raw.githubusercontent.com/acme/prompts/main"


class FakeRuntime:
    def __init__(self, status: RuntimeStatus) -> None:
        self.status = status
        self.setup_calls = 0

    async def get_status(self, force: bool = False) -> RuntimeStatus:
        return self.status

    async def setup(self) -> bool:
        self.setup_calls += 1
        return self.status.available


class InstallRunner:
    """Pretends to be ``apm install`` by dropping a prompt into the working directory."""

    def __init__(self, returncode: int = 0) -> None:
        self.returncode = returncode
        self.calls: list[dict[str, Any]] = []

    def __call__(self, argv, **kwargs):
        self.calls.append({"argv": list(argv), **kwargs})
        cwd = Path(kwargs["cwd"])
        if self.returncode == 0:
            module = cwd / "apm_modules" / "acme" / "prompts"
            module.mkdir(parents=True)
            (module / "review.prompt.md").write_text("# Review", encoding="utf-8")
        return subprocess.CompletedProcess(argv, self.returncode, "", "install failed")


class GitHubStub:
    def __init__(self, files: dict[str, str], status: dict[str, int] | None = None) -> None:
        self.files = files
        self.status = status or {}
        self.requests: list[httpx.Request] = []

    def tree(self) -> str:
        paths = ["README.md", *self.files]
        return json.dumps({"tree": [{"path": path, "type": "blob"} for path in paths]})

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        if url in self.status:
            return httpx.Response(self.status[url])
        if url == TREE_URL:
            return httpx.Response(200, text=self.tree())
        for path, text in self.files.items():
            if url == f"{RAW_BASE}/{path}":
                return httpx.Response(200, text=text)
        return httpx.Response(404)

    def tree_calls(self) -> int:
        return sum(1 for request in self.requests if str(request.url) == TREE_URL)


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _adapter(
    stub: GitHubStub,
    *,
    status: RuntimeStatus | None = None,
    runner: InstallRunner | None = None,
    temp_root: Path | None = None,
    clock: FakeClock | None = None,
) -> ApmAdapter:
    source = RegistrySource(id="team", url="https://github.com/acme/prompts", type="apm")
    runtime = FakeRuntime(status or RuntimeStatus(installed=True, version="0.5.0"))
    return ApmAdapter(
        source,
        cli=PackageCli(runtime, runner=runner or InstallRunner()),
        credentials=CredentialResolver([ExplicitTokenStrategy("secret-token")]),
        transport=httpx.MockTransport(stub.handler),
        temp_root=str(temp_root) if temp_root else None,
        clock=clock,
    )


@pytest.mark.asyncio
async def test_fetch_bundles_maps_root_and_subpackages() -> None:
    stub = GitHubStub(
        {
            "apm.yml": "name: My Test Package\ntags: [azure]\n",
            "reviewer/apm.yml": "name: Reviewer\nversion: 2.0.0\n",
            "node_modules/apm.yml": "name: Ignored\n",
        }
    )

    bundles = await _adapter(stub).fetch_bundles()

    assert [bundle.id for bundle in bundles] == ["acme-my-test-package", "acme-reviewer"]
    root, reviewer = bundles
    assert root.environments == ("cloud",)
    assert root.tags.count("apm") == 1
    assert root.version == "1.0.0"
    assert reviewer.source_ref == ApmPackageRef("acme/prompts/reviewer")
    assert reviewer.manifest_url == f"{RAW_BASE}/reviewer/apm.yml"
    assert stub.requests[0].headers["Authorization"] == "Bearer secret-token"


@pytest.mark.asyncio
async def test_invalid_manifests_are_skipped() -> None:
    stub = GitHubStub(
        {
            "a/apm.yml": "name: A\n",
            "b/apm.yml": "name: B\n",
            "c/apm.yml": "version: 1.0.0\n",
            "d/apm.yml": "name: [broken\n",
        }
    )

    bundles = await _adapter(stub).fetch_bundles()

    assert [bundle.name for bundle in bundles] == ["A", "B"]


@pytest.mark.asyncio
async def test_all_manifests_invalid_raises_fetch_error() -> None:
    stub = GitHubStub({"a/apm.yml": "version: 1\n"})

    with pytest.raises(BundleFetchError):
        await _adapter(stub).fetch_bundles()


@pytest.mark.asyncio
async def test_empty_repository_gives_no_bundles() -> None:
    assert await _adapter(GitHubStub({})).fetch_bundles() == []


@pytest.mark.asyncio
async def test_auth_failure_propagates() -> None:
    stub = GitHubStub({}, status={TREE_URL: 401})

    with pytest.raises(SourceAuthError):
        await _adapter(stub).fetch_bundles()


@pytest.mark.asyncio
async def test_cache_avoids_second_tree_call() -> None:
    stub = GitHubStub({"apm.yml": "name: Cached\n"})
    clock = FakeClock()
    adapter = _adapter(stub, clock=clock)

    first = await adapter.fetch_bundles()
    second = await adapter.fetch_bundles()
    assert stub.tree_calls() == 1
    assert first == second
    assert adapter.status().cached is True

    clock.now += 300
    await adapter.fetch_bundles()
    assert stub.tree_calls() == 2


@pytest.mark.asyncio
async def test_disabled_source_returns_nothing() -> None:
    stub = GitHubStub({"apm.yml": "name: X\n"})
    adapter = _adapter(stub)
    adapter.disable()

    assert await adapter.fetch_bundles() == []
    assert stub.requests == []


@pytest.mark.asyncio
async def test_missing_runtime_fails_fetch() -> None:
    stub = GitHubStub({"apm.yml": "name: X\n"})
    adapter = _adapter(stub, status=RuntimeStatus(installed=False, uvx_available=False))

    with pytest.raises(RuntimeUnavailableError):
        await adapter.fetch_bundles()

    assert stub.requests == []


@pytest.mark.asyncio
async def test_validate_reports_missing_runtime() -> None:
    adapter = _adapter(GitHubStub({}), status=RuntimeStatus(installed=False))

    result = await adapter.validate()

    assert result.valid is False
    assert result.errors == (INSTALL_HINT,)


@pytest.mark.asyncio
async def test_validate_warns_for_empty_repository() -> None:
    result = await _adapter(GitHubStub({})).validate()

    assert result.valid is True
    assert result.warnings == ("No APM packages found in repository",)
    assert result.bundles_found == 0


@pytest.mark.asyncio
async def test_download_bundle_installs_and_cleans_up(tmp_path: Path) -> None:
    stub = GitHubStub({"apm.yml": "name: Reviewer\n"})
    runner = InstallRunner()
    adapter = _adapter(stub, runner=runner, temp_root=tmp_path)
    bundle = (await adapter.fetch_bundles())[0]

    archive = await adapter.download_bundle(bundle)

    with zipfile.ZipFile(io.BytesIO(archive)) as zf:
        names = zf.namelist()
    assert names[0] == "deployment-manifest.yml"
    assert "prompts/review.prompt.md" in names
    assert runner.calls[0]["env"]["GITHUB_TOKEN"] == "secret-token"
    assert list((tmp_path / "bundle-registry-apm").iterdir()) == []


@pytest.mark.asyncio
async def test_download_bundle_cleans_up_after_failure(tmp_path: Path) -> None:
    stub = GitHubStub({"apm.yml": "name: Reviewer\n"})
    adapter = _adapter(stub, runner=InstallRunner(returncode=1), temp_root=tmp_path)
    bundle = (await adapter.fetch_bundles())[0]

    with pytest.raises(BundleDownloadError):
        await adapter.download_bundle(bundle)

    assert list((tmp_path / "bundle-registry-apm").iterdir()) == []


def test_unknown_ids_fall_back_to_root_manifest() -> None:
    adapter = _adapter(GitHubStub({}))

    assert adapter.get_manifest_url("anything") == f"{RAW_BASE}/apm.yml"
    assert adapter.get_download_url("anything", "1.0.0") == f"{RAW_BASE}/apm.yml"


@pytest.mark.asyncio
async def test_cached_bundle_ids_resolve_to_their_package_manifest() -> None:
    stub = GitHubStub({"apm.yml": "name: Root\n", "reviewer/apm.yml": "name: Reviewer\n"})
    adapter = _adapter(stub)
    await adapter.fetch_bundles()

    assert adapter.get_manifest_url("acme-reviewer") == f"{RAW_BASE}/reviewer/apm.yml"
    assert adapter.get_download_url("acme-root") == f"{RAW_BASE}/apm.yml"
    assert adapter.get_manifest_url("acme-unknown") == f"{RAW_BASE}/apm.yml"


def test_invalid_source_config_raises_config_error() -> None:
    source = RegistrySource(
        id="team", url="https://github.com/acme/prompts", type="apm", config={"cacheTtl": "x"}
    )

    with pytest.raises(SourceConfigError, match="Invalid config for source team"):
        ApmAdapter(source)


def test_invalid_repository_url_is_rejected() -> None:
    with pytest.raises(SourceConfigError):
        ApmAdapter(RegistrySource(id="x", url="https://example.com/acme", type="apm"))
