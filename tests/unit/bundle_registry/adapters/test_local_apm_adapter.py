from __future__ import annotations

import io
import zipfile
from typing import TYPE_CHECKING, Any

import pytest

from bundle_registry.adapters.local_apm import LocalApmAdapter
from bundle_registry.config import RegistrySource
from bundle_registry.core.exceptions import (
    BundleDownloadError,
    SourceConfigError,
    SourceNotFoundError,
)
from bundle_registry.models import LocalPackageRef

if TYPE_CHECKING:
    from pathlib import Path


def _package(directory: Path, manifest: str) -> None:
    directory.mkdir(parents=True, exist_ok=True)
    (directory / "apm.yml").write_text(manifest, encoding="utf-8")


def _adapter(root: Path, **config: Any) -> LocalApmAdapter:
    source = RegistrySource(id="local", url=str(root), type="local-apm", config=config)
    return LocalApmAdapter(source)


@pytest.mark.asyncio
async def test_scans_sibling_packages(tmp_path: Path) -> None:
    _package(tmp_path / "pkg-a", "name: Package A\ntags: [frontend]\n")
    _package(tmp_path / "pkg-b", "name: Package B\n")

    bundles = await _adapter(tmp_path).fetch_bundles()

    assert [bundle.id for bundle in bundles] == ["local-package-a", "local-package-b"]
    first = bundles[0]
    assert first.tags == ("frontend", "apm", "local")
    assert first.environments == ("web",)
    assert first.manifest_url == (tmp_path / "pkg-a" / "apm.yml").resolve().as_uri()
    assert first.download_url == (tmp_path / "pkg-a").resolve().as_uri()
    assert first.source_ref == LocalPackageRef(str(tmp_path / "pkg-a"))


@pytest.mark.asyncio
async def test_scanning_disabled_finds_nothing(tmp_path: Path) -> None:
    _package(tmp_path / "pkg-a", "name: A\n")
    _package(tmp_path / "pkg-b", "name: B\n")

    assert await _adapter(tmp_path, scanSubdirectories=False).fetch_bundles() == []


@pytest.mark.asyncio
async def test_root_package_is_found_without_scanning(tmp_path: Path) -> None:
    _package(tmp_path, "name: Root\n")

    bundles = await _adapter(tmp_path, scan_subdirectories=False).fetch_bundles()

    assert [bundle.name for bundle in bundles] == ["Root"]


@pytest.mark.asyncio
async def test_invalid_manifest_is_skipped(tmp_path: Path) -> None:
    _package(tmp_path / "good", "name: Good\n")
    _package(tmp_path / "bad", "description: no name\n")

    bundles = await _adapter(tmp_path).fetch_bundles()

    assert [bundle.name for bundle in bundles] == ["Good"]


@pytest.mark.asyncio
async def test_missing_directory_raises(tmp_path: Path) -> None:
    adapter = _adapter(tmp_path / "missing")

    with pytest.raises(SourceNotFoundError):
        await adapter.fetch_bundles()

    result = await adapter.validate()
    assert result.valid is False


@pytest.mark.asyncio
async def test_validate_warns_when_empty(tmp_path: Path) -> None:
    result = await _adapter(tmp_path).validate()

    assert result.valid is True
    assert result.warnings == ("No apm.yml files found in directory",)


@pytest.mark.asyncio
async def test_fetch_metadata(tmp_path: Path) -> None:
    _package(tmp_path / "pkg", "name: Pkg\n")

    metadata = await _adapter(tmp_path).fetch_metadata()

    assert metadata.name == tmp_path.name
    assert metadata.bundle_count == 1
    assert metadata.last_updated.endswith("Z")


@pytest.mark.asyncio
async def test_download_bundle_archives_package(tmp_path: Path) -> None:
    _package(tmp_path / "pkg", "name: Pkg\ntags: [docs]\n")
    (tmp_path / "pkg" / "explain.prompt.md").write_text("# Explain", encoding="utf-8")
    adapter = _adapter(tmp_path)
    bundle = (await adapter.fetch_bundles())[0]

    archive = await adapter.download_bundle(bundle)

    with zipfile.ZipFile(io.BytesIO(archive)) as zf:
        assert zf.namelist() == ["deployment-manifest.yml", "prompts/explain.prompt.md"]


@pytest.mark.asyncio
async def test_download_bundle_requires_existing_directory(tmp_path: Path) -> None:
    _package(tmp_path / "pkg", "name: Pkg\n")
    adapter = _adapter(tmp_path)
    bundle = (await adapter.fetch_bundles())[0]
    (tmp_path / "pkg" / "apm.yml").unlink()
    (tmp_path / "pkg").rmdir()

    with pytest.raises(BundleDownloadError):
        await adapter.download_bundle(bundle)


@pytest.mark.parametrize("config", [{"maxDepth": -1}, {"cacheTtl": "later"}])
def test_invalid_config_raises_config_error(tmp_path: Path, config: dict[str, Any]) -> None:
    with pytest.raises(SourceConfigError, match="Invalid config for source local"):
        _adapter(tmp_path, **config)
