"""Adapter selection by source type."""

from __future__ import annotations

import inspect
from typing import TYPE_CHECKING, Any

from bundle_registry.adapters.apm import ApmAdapter
from bundle_registry.adapters.github_releases import GitHubReleaseAdapter
from bundle_registry.adapters.http_index import HttpIndexAdapter
from bundle_registry.adapters.local_apm import LocalApmAdapter
from bundle_registry.adapters.local_skill_md import LocalSkillMdAdapter
from bundle_registry.adapters.local_skills import LocalSkillBundleAdapter
from bundle_registry.core.exceptions import SourceConfigError

if TYPE_CHECKING:
    from bundle_registry.adapters.base import SourceAdapter
    from bundle_registry.config import RegistrySource, Settings

ADAPTER_TYPES: dict[str, type[SourceAdapter]] = {
    ApmAdapter.type: ApmAdapter,
    LocalApmAdapter.type: LocalApmAdapter,
    GitHubReleaseAdapter.type: GitHubReleaseAdapter,
    LocalSkillBundleAdapter.type: LocalSkillBundleAdapter,
    LocalSkillMdAdapter.type: LocalSkillMdAdapter,
    HttpIndexAdapter.type: HttpIndexAdapter,
}

# Constructor keywords each adapter accepts from shared settings.
_SETTINGS_KWARGS: dict[str, tuple[str, ...]] = {
    ApmAdapter.type: ("github", "package_cli", "temp_root"),
    GitHubReleaseAdapter.type: ("github",),
    HttpIndexAdapter.type: ("github",),
}


def create_adapter(
    source: RegistrySource,
    settings: Settings | None = None,
    **dependencies: Any,
) -> SourceAdapter:
    """Build the adapter for ``source.type``; raises ``SourceConfigError`` for unknown types."""
    adapter_cls = ADAPTER_TYPES.get(source.type)
    if adapter_cls is None:
        raise SourceConfigError(
            f"Unsupported source type: {source.type}",
            f"Supported types: {', '.join(sorted(ADAPTER_TYPES))}",
        )
    kwargs: dict[str, Any] = {}
    if settings is not None:
        for name in _SETTINGS_KWARGS.get(source.type, ()):
            kwargs[name] = getattr(settings, name)
        if "cache_ttl" not in source.config and "cacheTtl" not in source.config:
            source = source.model_copy(
                update={"config": {**source.config, "cache_ttl": settings.cache_ttl}}
            )
    accepted = inspect.signature(adapter_cls.__init__).parameters
    kwargs.update({name: value for name, value in dependencies.items() if name in accepted})
    return adapter_cls(source, **kwargs)
