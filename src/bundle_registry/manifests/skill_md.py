"""
``SKILL.md`` documents: a YAML front matter block followed by markdown.

    ---
    name: code-review
    description: Reviews pull requests
    license: MIT
    ---
    # Instructions ...
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import yaml
from pydantic import BaseModel, ConfigDict, field_validator

from bundle_registry.core.exceptions import ManifestError
from bundle_registry.core.logging.logger import get_logger

if TYPE_CHECKING:
    from pathlib import Path

logger = get_logger(__name__)

SKILL_FILENAME = "SKILL.md"

FRONTMATTER_PATTERN = re.compile(r"^---[ \t]*\n(.*?)\n---[ \t]*(?:\n|$)", re.DOTALL)


class SkillFrontmatter(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = ""
    description: str = ""
    license: str | None = None

    @field_validator("name", "description", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> Any:
        return "" if value is None else str(value).strip()

    @field_validator("license", mode="before")
    @classmethod
    def _coerce_license(cls, value: Any) -> Any:
        return None if value is None else str(value)


@dataclass(frozen=True, slots=True)
class SkillDocument:
    frontmatter: SkillFrontmatter
    content: str


def parse_skill_md(text: str, *, origin: str = SKILL_FILENAME) -> SkillDocument:
    """
    Split a ``SKILL.md`` document into front matter and body.

    A missing or unreadable front matter block yields empty fields, so callers
    can fall back to the skill directory name.
    """
    match = FRONTMATTER_PATTERN.match(text)
    if match is None:
        logger.warning("SKILL.md has no front matter", data={"file": origin})
        return SkillDocument(SkillFrontmatter(), text)

    try:
        payload = yaml.safe_load(match.group(1))
    except yaml.YAMLError as exc:
        logger.warning("Invalid SKILL.md front matter", data={"file": origin, "error": str(exc)})
        payload = None
    if not isinstance(payload, dict):
        payload = {}
    return SkillDocument(SkillFrontmatter.model_validate(payload), text[match.end() :])


def load_skill_md(path: Path) -> SkillDocument:
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ManifestError(f"Cannot read {path}", str(exc)) from exc
    return parse_skill_md(text, origin=str(path))
