"""Source adapters that turn a configured source into bundle descriptors."""

from bundle_registry.adapters.apm import ApmAdapter
from bundle_registry.adapters.base import SourceAdapter
from bundle_registry.adapters.factory import create_adapter
from bundle_registry.adapters.github_releases import GitHubReleaseAdapter
from bundle_registry.adapters.http_index import HttpIndexAdapter
from bundle_registry.adapters.local_apm import LocalApmAdapter
from bundle_registry.adapters.local_skill_md import LocalSkillMdAdapter
from bundle_registry.adapters.local_skills import LocalSkillBundleAdapter

__all__ = [
    "ApmAdapter",
    "GitHubReleaseAdapter",
    "HttpIndexAdapter",
    "LocalApmAdapter",
    "LocalSkillBundleAdapter",
    "LocalSkillMdAdapter",
    "SourceAdapter",
    "create_adapter",
]
