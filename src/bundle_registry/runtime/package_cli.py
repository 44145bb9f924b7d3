"""
Wrapper around the external ``apm`` package manager.

Package references are validated and rejected, never escaped. Commands run
from argument lists, without a shell, in the target directory.
"""

from __future__ import annotations

import asyncio
import os
import re
import shutil
import subprocess
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

from bundle_registry.core.exceptions import (
    BundleDownloadError,
    PackageRefError,
    RuntimeUnavailableError,
)
from bundle_registry.core.logging.logger import get_logger

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from bundle_registry.config import PackageCliSettings

logger = get_logger(__name__)

INSTALL_TIMEOUT = 300.0
STATUS_TIMEOUT = 10.0
STATUS_CACHE_TTL = 60.0
MAX_VERSION_LENGTH = 100
INSTALL_HINT = "APM CLI is not installed. Install with: pip install apm-cli"

VALID_PACKAGE_REF = re.compile(r"^[a-zA-Z0-9_-]+/[a-zA-Z0-9_./-]+$")
DANGEROUS_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"[;&|`$(){}\[\]<>]"),
    re.compile(r"[\n\r]"),
    re.compile(r"^https?:"),
    re.compile(r"^/"),
    re.compile(r"^[A-Za-z]:"),
    re.compile(r"\.\."),
)
STRIPPED_ENV_VARS = ("LD_PRELOAD", "DYLD_INSERT_LIBRARIES")

Runner = Callable[..., subprocess.CompletedProcess[str]]


@dataclass(frozen=True, slots=True)
class RuntimeStatus:
    installed: bool
    version: str | None = None
    uvx_available: bool = False

    @property
    def available(self) -> bool:
        return self.installed or self.uvx_available


class PackageRuntimeCheck(Protocol):
    async def get_status(self, force: bool = False) -> RuntimeStatus: ...

    async def setup(self) -> bool: ...


class PackageRuntime:
    """Detects whether ``apm`` (or ``uvx`` to run it) is on the PATH."""

    def __init__(
        self,
        command: str = "apm",
        uvx_command: str = "uvx",
        *,
        runner: Runner = subprocess.run,
        which: Callable[[str], str | None] = shutil.which,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.command = command
        self.uvx_command = uvx_command
        self._runner = runner
        self._which = which
        self._clock = clock
        self._cached: tuple[RuntimeStatus, float] | None = None

    def _detect(self) -> RuntimeStatus:
        uvx_available = self._which(self.uvx_command) is not None
        try:
            result = self._runner(
                [self.command, "--version"],
                capture_output=True,
                text=True,
                timeout=STATUS_TIMEOUT,
                check=False,
            )
        except (FileNotFoundError, subprocess.TimeoutExpired, PermissionError):
            return RuntimeStatus(installed=False, uvx_available=uvx_available)
        if result.returncode != 0:
            return RuntimeStatus(installed=False, uvx_available=uvx_available)
        version = (result.stdout or "").strip().splitlines()
        return RuntimeStatus(
            installed=True,
            version=version[0][:MAX_VERSION_LENGTH] if version else None,
            uvx_available=uvx_available,
        )

    async def get_status(self, force: bool = False) -> RuntimeStatus:
        if not force and self._cached is not None:
            status, timestamp = self._cached
            if self._clock() - timestamp < STATUS_CACHE_TTL:
                return status
        status = await asyncio.to_thread(self._detect)
        self._cached = (status, self._clock())
        return status

    async def setup(self) -> bool:
        status = await self.get_status(force=True)
        if not status.available:
            logger.warning(INSTALL_HINT)
        return status.available

    def clear_cache(self) -> None:
        self._cached = None


def validate_package_ref(ref: str) -> bool:
    if not ref or not ref.strip():
        return False
    if any(pattern.search(ref) for pattern in DANGEROUS_PATTERNS):
        return False
    if not VALID_PACKAGE_REF.match(ref):
        return False
    return not ref.endswith("/")


def validate_target_path(target: str | Path) -> bool:
    raw = str(target)
    if not raw.strip():
        return False
    if ".." in raw:
        return False
    return os.path.isabs(os.path.normpath(raw))


def safe_environment(
    token: str | None = None,
    base: Mapping[str, str] | None = None,
) -> dict[str, str]:
    env = dict(os.environ if base is None else base)
    resolved = token or env.get("GITHUB_TOKEN") or env.get("GH_TOKEN")
    if resolved:
        env["GITHUB_TOKEN"] = resolved
    for name in STRIPPED_ENV_VARS:
        env.pop(name, None)
    return env


def _temp_manifest(ref: str) -> str:
    return (
        "name: temp-install\n"
        "version: 1.0.0\n"
        "dependencies:\n"
        "  apm:\n"
        f"    - {ref}\n"
    )


class PackageCli:
    def __init__(
        self,
        runtime: PackageRuntimeCheck,
        *,
        command: str = "apm",
        uvx_command: str = "uvx",
        timeout: float = INSTALL_TIMEOUT,
        runner: Runner = subprocess.run,
    ) -> None:
        self.runtime = runtime
        self.command = command
        self.uvx_command = uvx_command
        self.timeout = timeout
        self._runner = runner

    @classmethod
    def from_settings(cls, settings: PackageCliSettings, **kwargs: Any) -> PackageCli:
        runtime = kwargs.pop("runtime", None) or PackageRuntime(
            settings.command, settings.uvx_command
        )
        return cls(
            runtime,
            command=settings.command,
            uvx_command=settings.uvx_command,
            timeout=settings.timeout,
            **kwargs,
        )

    async def is_available(self) -> bool:
        try:
            return (await self.runtime.get_status()).available
        except Exception as exc:  # noqa: BLE001
            logger.debug("Runtime status check failed", data={"error": str(exc)})
            return False

    async def version(self) -> str | None:
        try:
            status = await self.runtime.get_status()
        except Exception:  # noqa: BLE001
            return None
        return status.version if status.installed else None

    async def _base_command(self) -> list[str]:
        status = await self.runtime.get_status()
        if not status.installed and status.uvx_available:
            return [self.uvx_command, self.command]
        return [self.command]

    def _run(self, argv: Sequence[str], cwd: Path, env: dict[str, str]) -> subprocess.CompletedProcess[str]:
        return self._runner(
            list(argv),
            cwd=str(cwd),
            env=env,
            capture_output=True,
            text=True,
            timeout=self.timeout,
            check=False,
        )

    async def _execute(
        self,
        args: Sequence[str],
        cwd: Path,
        token: str | None = None,
    ) -> subprocess.CompletedProcess[str]:
        for arg in args:
            if any(pattern.search(arg) for pattern in DANGEROUS_PATTERNS):
                raise PackageRefError(f"Invalid command argument: {arg}")
        argv = [*await self._base_command(), *args]
        logger.debug("Running package manager", data={"argv": argv, "cwd": str(cwd)})
        return await asyncio.to_thread(self._run, argv, cwd, safe_environment(token))

    async def install(self, ref: str, target_dir: Path, token: str | None = None) -> Path:
        """Install ``ref`` into ``target_dir`` and return the ``apm_modules`` path."""
        if not validate_package_ref(ref):
            raise PackageRefError(
                f"Invalid package reference: {ref!r}",
                "Use format: owner/repo or owner/repo/path",
            )
        if not validate_target_path(target_dir):
            raise PackageRefError(f"Invalid target directory path: {target_dir}")
        if not await self.is_available():
            raise RuntimeUnavailableError(INSTALL_HINT)

        def _prepare() -> None:
            target_dir.mkdir(parents=True, exist_ok=True)
            manifest = target_dir / "apm.yml"
            if not manifest.exists():
                manifest.write_text(_temp_manifest(ref), encoding="utf-8")

        await asyncio.to_thread(_prepare)
        try:
            result = await self._execute(["install"], target_dir, token)
        except subprocess.TimeoutExpired as exc:
            raise BundleDownloadError(
                f"Timed out installing {ref}", f"Limit: {self.timeout:.0f}s"
            ) from exc
        except OSError as exc:
            raise BundleDownloadError(f"Failed to run package manager for {ref}", str(exc)) from exc

        if result.returncode != 0:
            stderr = (result.stderr or "").strip() or (result.stdout or "").strip()
            raise BundleDownloadError(f"Failed to install package: {ref}", stderr)
        return target_dir / "apm_modules"
