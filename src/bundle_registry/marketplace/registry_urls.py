"""Helpers for displaying and de-duplicating configured source URLs."""

from __future__ import annotations

from typing import TYPE_CHECKING
from urllib.parse import urlparse

from bundle_registry.core.exceptions import SourceConfigError
from bundle_registry.marketplace.source_utils import (
    is_local_source_url,
    resolve_local_source_path,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from bundle_registry.config import RegistrySource


def format_source_display_url(url: str) -> str:
    """Normalize a source URL for concise display in lists."""
    cleaned = url.strip()
    if cleaned.startswith("git@github.com:"):
        slug = cleaned.removeprefix("git@github.com:").removesuffix(".git")
        return f"https://github.com/{slug}"
    parsed = urlparse(cleaned)
    if parsed.netloc in {"github.com", "www.github.com"}:
        parts = parsed.path.strip("/").split("/")
        if len(parts) >= 2:
            org, repo = parts[:2]
            return f"https://github.com/{org}/{repo.removesuffix('.git')}"
    return cleaned


def canonical_source_key(source: RegistrySource) -> tuple[str, str]:
    """Return a key that is equal for sources pointing at the same place."""
    url = source.url.strip()
    if source.type in {"local-apm", "local-skills"} and is_local_source_url(url):
        try:
            return source.type, resolve_local_source_path(url).as_posix()
        except SourceConfigError:
            return source.type, url
    display = format_source_display_url(url)
    if display.startswith("https://github.com/"):
        return source.type, display.lower()
    return source.type, url.rstrip("/")


def resolve_sources(sources: Sequence[RegistrySource]) -> list[RegistrySource]:
    """Drop later duplicates of the same source, keeping configured order."""
    deduped: list[RegistrySource] = []
    seen_keys: set[tuple[str, str]] = set()
    seen_ids: set[str] = set()
    for source in sources:
        key = canonical_source_key(source)
        if key in seen_keys or source.id in seen_ids:
            continue
        seen_keys.add(key)
        seen_ids.add(source.id)
        deduped.append(source)
    return deduped
