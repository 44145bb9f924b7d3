"""Source URL parsing and GitHub URL builders shared by the adapters."""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from urllib.parse import quote, unquote, urlparse

from bundle_registry.core.exceptions import SourceConfigError

GITHUB_REPO_PATTERN = re.compile(
    r"^https://github\.com/(?P<owner>[a-zA-Z0-9_.-]+)/(?P<repo>[a-zA-Z0-9_.-]+?)(?:\.git)?$"
)
GITHUB_SSH_PATTERN = re.compile(
    r"^git@github\.com:(?P<owner>[a-zA-Z0-9_.-]+)/(?P<repo>[a-zA-Z0-9_.-]+?)(?:\.git)?$"
)
GITHUB_LOOSE_PATTERN = re.compile(
    r"^https://(?:www\.)?github\.com/(?P<owner>[^/]+)/(?P<repo>[^/]+?)(?:\.git)?/?$"
)

DEFAULT_API_BASE = "https://api.github.com"
DEFAULT_RAW_BASE = "https://raw.githubusercontent.com"


@dataclass(frozen=True, slots=True)
class GitHubRepo:
    owner: str
    repo: str

    @property
    def slug(self) -> str:
        return f"{self.owner}/{self.repo}"

    @property
    def html_url(self) -> str:
        return f"https://github.com/{self.owner}/{self.repo}"


def parse_github_repo_url(url: str) -> GitHubRepo:
    """Parse ``https://github.com/<owner>/<repo>[.git]`` or raise ``SourceConfigError``."""
    match = GITHUB_REPO_PATTERN.match(url.strip())
    if not match:
        raise SourceConfigError(
            f"Invalid GitHub URL: {url}",
            "Expected format: https://github.com/owner/repo",
        )
    return GitHubRepo(match.group("owner"), match.group("repo"))


def parse_github_release_url(url: str) -> GitHubRepo:
    """Release sources also accept SSH remotes and a trailing slash."""
    cleaned = url.strip()
    for pattern in (GITHUB_SSH_PATTERN, GITHUB_LOOSE_PATTERN):
        match = pattern.match(cleaned)
        if match:
            return GitHubRepo(match.group("owner"), match.group("repo"))
    raise SourceConfigError(
        f"Invalid GitHub URL: {url}",
        "Expected https://github.com/owner/repo or git@github.com:owner/repo.git",
    )


def normalize_repo_path(path: str | None) -> str | None:
    if not path:
        return None
    raw = path.strip()
    if not raw:
        return None
    raw = raw.replace("\\", "/")
    posix_path = PurePosixPath(raw)
    if posix_path.is_absolute():
        return None
    if ".." in posix_path.parts:
        return None
    normalized = str(posix_path).lstrip("/")
    if normalized in {"", "."}:
        return None
    return normalized


def package_ref(repo: GitHubRepo, path: str | None = None) -> str:
    cleaned = normalize_repo_path(path)
    return f"{repo.slug}/{cleaned}" if cleaned else repo.slug


def tree_url(repo: GitHubRepo, branch: str, api_base: str = DEFAULT_API_BASE) -> str:
    return f"{api_base.rstrip('/')}/repos/{repo.owner}/{repo.repo}/git/trees/{quote(branch, safe='')}?recursive=1"


def raw_content_url(
    repo: GitHubRepo,
    branch: str,
    file_path: str,
    raw_base: str = DEFAULT_RAW_BASE,
) -> str:
    return f"{raw_base.rstrip('/')}/{repo.owner}/{repo.repo}/{branch}/{file_path.lstrip('/')}"


def manifest_raw_url(
    repo: GitHubRepo,
    branch: str,
    path: str | None,
    raw_base: str = DEFAULT_RAW_BASE,
) -> str:
    cleaned = normalize_repo_path(path)
    file_path = f"{cleaned}/apm.yml" if cleaned else "apm.yml"
    return raw_content_url(repo, branch, file_path, raw_base)


def is_local_source_url(url: str) -> bool:
    """Local sources are ``file://`` URLs, absolute paths, or ``~/`` / ``./`` relative paths."""
    cleaned = url.strip()
    if not cleaned:
        return False
    if cleaned.startswith("file://"):
        return True
    if cleaned.startswith(("~/", "./")):
        return True
    return Path(cleaned).is_absolute()


def resolve_local_source_path(url: str) -> Path:
    cleaned = url.strip()
    if not is_local_source_url(cleaned):
        raise SourceConfigError(
            f"Invalid local path: {url}",
            "Use a file:// URL, an absolute path, or a path starting with ~/ or ./",
        )
    if cleaned.startswith("file://"):
        parsed = urlparse(cleaned)
        path = Path(unquote(parsed.path))
    else:
        path = Path(cleaned)
    path = path.expanduser()
    if not path.is_absolute():
        path = path.resolve()
    return path


def to_file_url(path: Path | str) -> str:
    return Path(path).resolve().as_uri()


def is_http_url(url: str) -> bool:
    parsed = urlparse(url.strip())
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)
