"""Display formatting helpers shared across adapters."""

from __future__ import annotations

import re
from datetime import UTC, datetime


def format_size(num_bytes: int | None) -> str:
    if num_bytes is None or num_bytes < 0:
        return "Unknown"
    if num_bytes < 1024:
        return f"{num_bytes} B"
    if num_bytes < 1024 * 1024:
        return f"{num_bytes / 1024:.1f} KB"
    return f"{num_bytes / (1024 * 1024):.1f} MB"


def format_dependency_count(count: int) -> str:
    if count == 0:
        return "No dependencies"
    if count == 1:
        return "1 dependency"
    return f"{count} dependencies"


def format_skill_count(count: int) -> str:
    return f"{count} skill{'s' if count != 1 else ''}"


def title_case(slug: str) -> str:
    """``code-review_helper`` -> ``Code Review Helper``."""
    words = [word for word in re.split(r"[-_\s]+", slug) if word]
    return " ".join(word[:1].upper() + word[1:].lower() for word in words)


def normalize_timestamp(value: str | None) -> str | None:
    """Normalize an ISO timestamp to UTC with a ``Z`` suffix."""
    if not value:
        return None
    normalized = value.strip()
    if not normalized:
        return None
    if normalized.endswith("Z"):
        normalized = f"{normalized[:-1]}+00:00"
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError:
        return value
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def first_paragraph(text: str | None, limit: int = 200) -> str:
    if not text:
        return ""
    lines: list[str] = []
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped:
            if lines:
                break
            continue
        lines.append(stripped)
    return " ".join(lines)[:limit]
