"""
Build installable zip archives.

Every archive starts with ``deployment-manifest.yml``. Prompt content from an
installed package lands under ``prompts/``:

* ``.apm/**`` keeps its relative layout below ``prompts/``
* content files found under ``apm_modules/`` are flattened into ``prompts/``
* content files at the package root are copied into ``prompts/``
"""

from __future__ import annotations

import io
import zipfile
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Any, Literal

import yaml

from bundle_registry.core.logging.logger import get_logger
from bundle_registry.manifests.locator import REMOTE_SKIP_DIRS
from bundle_registry.marketplace.formatting import title_case

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from bundle_registry.models import Bundle

logger = get_logger(__name__)

MANIFEST_ENTRY = "deployment-manifest.yml"
MANIFEST_VERSION = "1.0.0"
PROMPTS_DIR = "prompts"
CONTENT_MAX_DEPTH = 5
COMPRESS_LEVEL = 9
# Fixed entry timestamp so identical inputs produce identical archives.
ENTRY_DATE_TIME = (1980, 1, 1, 0, 0, 0)

PromptType = Literal["prompt", "instructions", "chatmode", "agent"]

_TYPE_SUFFIXES: tuple[tuple[str, PromptType], ...] = (
    (".instructions.md", "instructions"),
    (".chatmode.md", "chatmode"),
    (".agent.md", "agent"),
    (".prompt.md", "prompt"),
)
CONTENT_SUFFIXES = tuple(suffix for suffix, _ in _TYPE_SUFFIXES)


def is_content_file(name: str) -> bool:
    return name.endswith(CONTENT_SUFFIXES)


def detect_prompt_type(filename: str) -> PromptType:
    for suffix, prompt_type in _TYPE_SUFFIXES:
        if filename.endswith(suffix):
            return prompt_type
    return "prompt"


def prompt_id(filename: str) -> str:
    for suffix, _ in _TYPE_SUFFIXES:
        if filename.endswith(suffix):
            return filename[: -len(suffix)]
    return filename


def _skip_directory(name: str) -> bool:
    return name.startswith(".") or name in REMOTE_SKIP_DIRS


def find_content_files(
    directory: Path,
    *,
    recursive: bool = True,
    max_depth: int = CONTENT_MAX_DEPTH,
) -> list[Path]:
    """Collect prompt content files below ``directory`` in sorted order."""
    found: list[Path] = []
    worklist: list[tuple[Path, int]] = [(directory, 0)]
    while worklist:
        current, depth = worklist.pop()
        try:
            entries = sorted(current.iterdir(), key=lambda entry: entry.name)
        except OSError:
            continue
        subdirs: list[Path] = []
        for entry in entries:
            try:
                if entry.is_dir():
                    if recursive and depth < max_depth and not _skip_directory(entry.name):
                        subdirs.append(entry)
                elif entry.is_file() and is_content_file(entry.name):
                    found.append(entry)
            except OSError:
                continue
        worklist.extend((subdir, depth + 1) for subdir in reversed(subdirs))
    return found


def _all_files(directory: Path) -> list[Path]:
    files: list[Path] = []
    worklist = [directory]
    while worklist:
        current = worklist.pop()
        try:
            entries = sorted(current.iterdir(), key=lambda entry: entry.name)
        except OSError as exc:
            logger.warning(
                "Skipping unreadable directory",
                data={"path": str(current), "error": str(exc)},
            )
            continue
        subdirs = []
        for entry in entries:
            if entry.is_symlink():
                continue
            if entry.is_dir():
                subdirs.append(entry)
            elif entry.is_file():
                files.append(entry)
        worklist.extend(reversed(subdirs))
    return files


@dataclass(frozen=True, slots=True)
class ArchiveEntry:
    source: Path
    arcname: str


def directory_entries(directory: Path, prefix: str) -> list[ArchiveEntry]:
    """All regular files under ``directory``, archived below ``prefix``."""
    base = PurePosixPath(prefix) if prefix else PurePosixPath()
    return [
        ArchiveEntry(path, (base / path.relative_to(directory).as_posix()).as_posix())
        for path in _all_files(directory)
    ]


def collect_package_entries(package_dir: Path) -> list[ArchiveEntry]:
    entries: list[ArchiveEntry] = []

    apm_dir = package_dir / ".apm"
    if apm_dir.is_dir():
        entries.extend(directory_entries(apm_dir, PROMPTS_DIR))

    modules_dir = package_dir / "apm_modules"
    if modules_dir.is_dir():
        entries.extend(
            ArchiveEntry(path, f"{PROMPTS_DIR}/{path.name}")
            for path in find_content_files(modules_dir)
        )

    entries.extend(
        ArchiveEntry(path, f"{PROMPTS_DIR}/{path.name}")
        for path in find_content_files(package_dir, recursive=False)
    )
    return _dedupe(entries)


def _dedupe(entries: Iterable[ArchiveEntry]) -> list[ArchiveEntry]:
    seen: set[str] = set()
    unique: list[ArchiveEntry] = []
    for entry in entries:
        if entry.arcname in seen or entry.arcname == MANIFEST_ENTRY:
            continue
        seen.add(entry.arcname)
        unique.append(entry)
    return unique


def build_deployment_manifest(
    bundle: Bundle,
    entries: Sequence[ArchiveEntry],
    *,
    prompt_tags: Sequence[str] = (),
) -> dict[str, Any]:
    prompts = []
    for entry in entries:
        filename = PurePosixPath(entry.arcname).name
        if not is_content_file(filename):
            continue
        entry_id = prompt_id(filename)
        prompts.append(
            {
                "id": entry_id,
                "name": title_case(entry_id),
                "description": f"From {bundle.name}",
                "file": entry.arcname,
                "type": detect_prompt_type(filename),
                "tags": list(prompt_tags),
            }
        )

    return {
        "metadata": {
            "manifest_version": MANIFEST_VERSION,
            "description": bundle.description,
            "author": bundle.author,
        },
        "common": {
            "directories": [PROMPTS_DIR],
            "files": [],
            "include_patterns": ["**/*.md"],
            "exclude_patterns": [],
        },
        "bundle_settings": {
            "include_common_in_environment_bundles": True,
            "create_common_bundle": True,
            "compression": "zip",
            "naming": {
                "common_bundle": bundle.id,
                "environment_bundle": f"{bundle.id}-{{{{environment}}}}",
            },
        },
        "prompts": prompts,
    }


def _zip_info(name: str) -> zipfile.ZipInfo:
    info = zipfile.ZipInfo(name, date_time=ENTRY_DATE_TIME)
    info.compress_type = zipfile.ZIP_DEFLATED
    info.external_attr = 0o644 << 16
    return info


def write_archive(manifest: dict[str, Any], entries: Sequence[ArchiveEntry]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(
        buffer,
        mode="w",
        compression=zipfile.ZIP_DEFLATED,
        compresslevel=COMPRESS_LEVEL,
    ) as zf:
        manifest_yaml = yaml.safe_dump(manifest, sort_keys=False, allow_unicode=True)
        zf.writestr(_zip_info(MANIFEST_ENTRY), manifest_yaml.encode("utf-8"))
        for entry in entries:
            try:
                data = entry.source.read_bytes()
            except OSError as exc:
                logger.warning(
                    "Skipping unreadable file",
                    data={"path": str(entry.source), "error": str(exc)},
                )
                continue
            zf.writestr(_zip_info(entry.arcname), data)
    return buffer.getvalue()


class ArchiveAssembler:
    def assemble(
        self,
        bundle: Bundle,
        package_dir: Path,
        *,
        prompt_tags: Sequence[str] | None = None,
    ) -> bytes:
        """Archive an installed or local package directory."""
        entries = collect_package_entries(package_dir)
        tags = list(prompt_tags) if prompt_tags is not None else _manifest_tags(package_dir)
        manifest = build_deployment_manifest(bundle, entries, prompt_tags=tags)
        archive = write_archive(manifest, entries)
        logger.debug(
            "Assembled bundle archive",
            data={"bundle_id": bundle.id, "entries": len(entries), "bytes": len(archive)},
        )
        return archive

    def assemble_directories(
        self,
        manifest: dict[str, Any],
        directories: Sequence[tuple[Path, str]],
    ) -> bytes:
        """Archive whole directories, each below its own archive prefix."""
        entries: list[ArchiveEntry] = []
        for directory, prefix in directories:
            entries.extend(directory_entries(directory, prefix))
        return write_archive(manifest, _dedupe(entries))


def _manifest_tags(package_dir: Path) -> list[str]:
    manifest_path = package_dir / "apm.yml"
    if not manifest_path.is_file():
        return []
    try:
        payload = yaml.safe_load(manifest_path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        logger.warning(
            "Could not read package manifest tags",
            data={"path": str(manifest_path), "error": str(exc)},
        )
        return []
    tags = payload.get("tags") if isinstance(payload, dict) else None
    return [str(tag) for tag in tags] if isinstance(tags, list) else []
