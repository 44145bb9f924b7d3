"""Find ``apm.yml`` package manifests in a remote git tree or a local directory."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING

from bundle_registry.core.logging.logger import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = get_logger(__name__)

MANIFEST_FILENAME = "apm.yml"
REMOTE_SKIP_DIRS = frozenset({"node_modules", "apm_modules", ".git", "dist", "build"})
LOCAL_SKIP_DIRS = REMOTE_SKIP_DIRS | {"out"}


def select_manifest_paths(tree_paths: Iterable[str]) -> list[str]:
    """
    Pick manifest paths from a flat recursive tree listing.

    Only the repository root and first-level directories are considered:
    ``apm.yml`` and ``<dir>/apm.yml`` where ``<dir>`` is not a skipped directory.
    """
    selected: list[str] = []
    for raw_path in tree_paths:
        parts = PurePosixPath(raw_path).parts
        if parts == (MANIFEST_FILENAME,):
            selected.append(raw_path)
        elif len(parts) == 2 and parts[1] == MANIFEST_FILENAME and parts[0] not in REMOTE_SKIP_DIRS:
            selected.append(raw_path)
    return selected


def package_dir_of(manifest_path: str) -> str | None:
    """``skills/apm.yml`` -> ``skills``; ``apm.yml`` -> ``None``."""
    parent = str(PurePosixPath(manifest_path).parent)
    return None if parent in {"", "."} else parent


@dataclass(frozen=True, slots=True)
class LocatedManifest:
    package_dir: Path
    relative_path: str
    """Package directory relative to the scan root, ``""`` for the root itself."""

    @property
    def manifest_path(self) -> Path:
        return self.package_dir / MANIFEST_FILENAME


def _is_skipped(name: str) -> bool:
    return name.startswith(".") or name in LOCAL_SKIP_DIRS


def _list_subdirectories(directory: Path) -> list[Path]:
    try:
        entries = sorted(directory.iterdir(), key=lambda entry: entry.name)
    except OSError:
        return []
    result = []
    for entry in entries:
        try:
            if entry.is_dir() and not _is_skipped(entry.name):
                result.append(entry)
        except OSError:
            continue
    return result


class LocalManifestLocator:
    def __init__(
        self,
        root: Path,
        *,
        scan_subdirectories: bool = True,
        max_depth: int = 2,
    ) -> None:
        self.root = root
        self.scan_subdirectories = scan_subdirectories
        self.max_depth = max_depth

    def locate(self) -> list[LocatedManifest]:
        found: list[LocatedManifest] = []
        if (self.root / MANIFEST_FILENAME).is_file():
            found.append(LocatedManifest(self.root, ""))

        if not self.scan_subdirectories:
            return found

        # Worklist of (directory, depth); depth 1 is a direct child of root.
        worklist: list[tuple[Path, int]] = [
            (child, 1) for child in reversed(_list_subdirectories(self.root))
        ]
        while worklist:
            directory, depth = worklist.pop()
            if depth > self.max_depth:
                continue
            if (directory / MANIFEST_FILENAME).is_file():
                found.append(
                    LocatedManifest(directory, directory.relative_to(self.root).as_posix())
                )
                continue
            for child in reversed(_list_subdirectories(directory)):
                worklist.append((child, depth + 1))

        logger.debug(
            "Scanned local package directory",
            data={"root": str(self.root), "found": len(found)},
        )
        return found
