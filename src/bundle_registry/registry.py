"""Aggregate bundles across all configured sources."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from bundle_registry.adapters.factory import create_adapter
from bundle_registry.config import get_settings
from bundle_registry.core.exceptions import BundleRegistryError, SourceConfigError
from bundle_registry.core.logging.logger import LoggingConfig, get_logger
from bundle_registry.marketplace.registry_urls import resolve_sources

if TYPE_CHECKING:
    from collections.abc import Sequence

    from bundle_registry.adapters.base import SourceAdapter
    from bundle_registry.config import RegistrySource, Settings
    from bundle_registry.models import Bundle

logger = get_logger(__name__)


@dataclass
class FetchReport:
    bundles: list[Bundle] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)


class BundleRegistry:
    def __init__(self, adapters: Sequence[SourceAdapter]) -> None:
        self._adapters = {adapter.source.id: adapter for adapter in adapters}

    @classmethod
    def from_sources(
        cls,
        sources: Sequence[RegistrySource],
        settings: Settings | None = None,
        **dependencies: Any,
    ) -> BundleRegistry:
        adapters: list[SourceAdapter] = []
        for source in resolve_sources(sources):
            try:
                adapters.append(create_adapter(source, settings, **dependencies))
            except SourceConfigError as exc:
                logger.warning(
                    "Skipping misconfigured source",
                    data={"source_id": source.id, "error": exc.message},
                )
        return cls(adapters)

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        *,
        configure_logging: bool = False,
        **dependencies: Any,
    ) -> BundleRegistry:
        resolved = settings or get_settings()
        if configure_logging:
            LoggingConfig.configure(resolved.logging.level)
        return cls.from_sources(resolved.sources, resolved, **dependencies)

    @property
    def adapters(self) -> list[SourceAdapter]:
        return list(self._adapters.values())

    def adapter(self, source_id: str) -> SourceAdapter:
        try:
            return self._adapters[source_id]
        except KeyError:
            raise SourceConfigError(f"Unknown source: {source_id}") from None

    async def fetch_all(self) -> FetchReport:
        """Fetch from every source; one failing source does not stop the others."""
        report = FetchReport()
        for source_id, adapter in self._adapters.items():
            try:
                report.bundles.extend(await adapter.fetch_bundles())
            except BundleRegistryError as exc:
                report.errors[source_id] = exc.message
                logger.warning(
                    "Failed to fetch bundles from source",
                    data={"source_id": source_id, "error": exc.message},
                )
        return report

    async def find_bundle(self, bundle_id: str) -> Bundle | None:
        report = await self.fetch_all()
        return next((bundle for bundle in report.bundles if bundle.id == bundle_id), None)

    async def download(self, bundle: Bundle) -> bytes:
        return await self.adapter(bundle.source_id).download_bundle(bundle)
