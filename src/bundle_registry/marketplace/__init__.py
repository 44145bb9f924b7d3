"""Source URL utilities shared by the adapters and the registry."""

from bundle_registry.marketplace.registry_urls import (
    format_source_display_url,
    resolve_sources,
)

__all__ = [
    "format_source_display_url",
    "resolve_sources",
]
