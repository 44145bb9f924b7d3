from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Any

import pytest

import bundle_registry.runtime.package_cli as package_cli_module
from bundle_registry.core.exceptions import (
    BundleDownloadError,
    PackageRefError,
    RuntimeUnavailableError,
)
from bundle_registry.runtime.package_cli import (
    PackageCli,
    PackageRuntime,
    RuntimeStatus,
    safe_environment,
    validate_package_ref,
    validate_target_path,
)


class FakeRuntime:
    def __init__(self, status: RuntimeStatus) -> None:
        self.status = status

    async def get_status(self, force: bool = False) -> RuntimeStatus:
        return self.status

    async def setup(self) -> bool:
        return self.status.available


class RecordingRunner:
    def __init__(self, returncode: int = 0, stdout: str = "", stderr: str = "") -> None:
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.calls: list[tuple[list[str], dict[str, Any]]] = []

    def __call__(self, argv, **kwargs):
        self.calls.append((list(argv), kwargs))
        return subprocess.CompletedProcess(argv, self.returncode, self.stdout, self.stderr)


INSTALLED = RuntimeStatus(installed=True, version="apm 0.5.0")


@pytest.mark.parametrize(
    "ref",
    [
        "acme/prompts",
        "acme/prompts/skills/review",
        "my_org/repo.name",
    ],
)
def test_valid_package_refs(ref: str) -> None:
    assert validate_package_ref(ref)


@pytest.mark.parametrize(
    "ref",
    [
        "",
        "   ",
        "acme/prompts; rm -rf /",
        "acme/prompts | cat",
        "acme/`whoami`",
        "acme/$(id)",
        "/etc/passwd",
        "C:/Windows",
        "acme/../secrets",
        "acme/prompts\nother",
        "https://github.com/acme/prompts",
        "acme",
        "acme/prompts/",
    ],
)
def test_invalid_package_refs(ref: str) -> None:
    assert not validate_package_ref(ref)


def test_validate_target_path(tmp_path: Path) -> None:
    assert validate_target_path(tmp_path)
    assert not validate_target_path("relative/dir")
    assert not validate_target_path(tmp_path / ".." / "elsewhere")
    assert not validate_target_path("  ")


def test_safe_environment_strips_preload_and_sets_token() -> None:
    base = {"PATH": "/bin", "LD_PRELOAD": "evil.so", "DYLD_INSERT_LIBRARIES": "x"}

    env = safe_environment("tok", base)

    assert env == {"PATH": "/bin", "GITHUB_TOKEN": "tok"}


def test_safe_environment_falls_back_to_gh_token() -> None:
    assert safe_environment(None, {"GH_TOKEN": "gh"})["GITHUB_TOKEN"] == "gh"
    assert "GITHUB_TOKEN" not in safe_environment(None, {})


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "ref",
    ["acme/x;ls", "acme/x|cat", "acme/`id`", "/abs/path", "C:evil", "acme/../x", "acme/x\ny"],
)
async def test_install_rejects_ref_before_running(tmp_path: Path, ref: str) -> None:
    runner = RecordingRunner()
    cli = PackageCli(FakeRuntime(INSTALLED), runner=runner)

    with pytest.raises(PackageRefError):
        await cli.install(ref, tmp_path / "target")

    assert runner.calls == []
    assert not (tmp_path / "target").exists()


@pytest.mark.asyncio
async def test_install_requires_runtime(tmp_path: Path) -> None:
    runner = RecordingRunner()
    cli = PackageCli(FakeRuntime(RuntimeStatus(installed=False)), runner=runner)

    with pytest.raises(RuntimeUnavailableError):
        await cli.install("acme/prompts", tmp_path / "target")

    assert runner.calls == []


@pytest.mark.asyncio
async def test_install_runs_in_target_dir(tmp_path: Path) -> None:
    runner = RecordingRunner()
    cli = PackageCli(FakeRuntime(INSTALLED), runner=runner, timeout=12)
    target = tmp_path / "target"

    modules = await cli.install("acme/prompts/review", target, token="tok")

    assert modules == target / "apm_modules"
    manifest = (target / "apm.yml").read_text(encoding="utf-8")
    assert "    - acme/prompts/review\n" in manifest
    argv, kwargs = runner.calls[0]
    assert argv == ["apm", "install"]
    assert kwargs["cwd"] == str(target)
    assert kwargs["timeout"] == 12
    assert kwargs["env"]["GITHUB_TOKEN"] == "tok"
    assert "shell" not in kwargs


@pytest.mark.asyncio
async def test_install_uses_uvx_when_cli_missing(tmp_path: Path) -> None:
    runner = RecordingRunner()
    runtime = FakeRuntime(RuntimeStatus(installed=False, uvx_available=True))
    cli = PackageCli(runtime, runner=runner)

    await cli.install("acme/prompts", tmp_path / "target")

    assert runner.calls[0][0] == ["uvx", "apm", "install"]


@pytest.mark.asyncio
async def test_install_failure_raises_download_error(tmp_path: Path) -> None:
    runner = RecordingRunner(returncode=1, stderr="repository not found")
    cli = PackageCli(FakeRuntime(INSTALLED), runner=runner)

    with pytest.raises(BundleDownloadError) as exc_info:
        await cli.install("acme/missing", tmp_path / "target")

    assert exc_info.value.details == "repository not found"


@pytest.mark.asyncio
async def test_install_timeout_raises_download_error(tmp_path: Path) -> None:
    def runner(argv, **kwargs):
        raise subprocess.TimeoutExpired(argv, kwargs["timeout"])

    cli = PackageCli(FakeRuntime(INSTALLED), runner=runner)

    with pytest.raises(BundleDownloadError):
        await cli.install("acme/prompts", tmp_path / "target")


def test_default_runner_is_subprocess_run() -> None:
    assert package_cli_module.Runner is not None
    assert PackageCli(FakeRuntime(INSTALLED))._runner is subprocess.run
    assert PackageRuntime()._runner is subprocess.run


@pytest.mark.asyncio
async def test_runtime_status_is_cached() -> None:
    now = [0.0]
    runner = RecordingRunner(stdout="apm version 0.5.0\nextra\n")
    runtime = PackageRuntime(runner=runner, which=lambda name: None, clock=lambda: now[0])

    status = await runtime.get_status()
    await runtime.get_status()
    now[0] = 61.0
    await runtime.get_status()

    assert status.installed is True
    assert status.version == "apm version 0.5.0"
    assert status.uvx_available is False
    assert len(runner.calls) == 2


@pytest.mark.asyncio
async def test_runtime_status_missing_binary() -> None:
    def runner(argv, **kwargs):
        raise FileNotFoundError(argv[0])

    runtime = PackageRuntime(runner=runner, which=lambda name: "/usr/bin/uvx")

    status = await runtime.get_status()

    assert status.installed is False
    assert status.available is True
    assert await runtime.setup() is True


@pytest.mark.asyncio
async def test_version_reports_installed_cli_only() -> None:
    assert await PackageCli(FakeRuntime(INSTALLED)).version() == "apm 0.5.0"
    missing = PackageCli(FakeRuntime(RuntimeStatus(installed=False, uvx_available=True)))
    assert await missing.version() is None
