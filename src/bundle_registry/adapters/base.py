"""Shared contract for bundle source adapters."""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, ClassVar, TypeVar

from bundle_registry.cache import BundleCache
from bundle_registry.config import DEFAULT_CACHE_TTL
from bundle_registry.core.exceptions import (
    BundleFetchError,
    BundleRegistryError,
    SourceAuthError,
)
from bundle_registry.core.logging.logger import get_logger
from bundle_registry.models import SourceStatus

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    from bundle_registry.config import RegistrySource
    from bundle_registry.models import Bundle, SourceMetadata, ValidationResult

logger = get_logger(__name__)

ItemT = TypeVar("ItemT")


class SourceAdapter(ABC):
    type: ClassVar[str]

    def __init__(
        self,
        source: RegistrySource,
        *,
        cache_ttl: float = DEFAULT_CACHE_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.source = source
        self._enabled = source.enabled
        self.cache = BundleCache(cache_ttl, clock)

    @property
    def cache_key(self) -> str:
        return self.source.url

    def is_enabled(self) -> bool:
        return self._enabled

    def enable(self) -> None:
        self._enabled = True
        logger.info("Source enabled", data={"source_id": self.source.id})

    def disable(self) -> None:
        self._enabled = False
        logger.info("Source disabled", data={"source_id": self.source.id})

    def auth_method(self) -> str | None:
        return None

    def status(self) -> SourceStatus:
        return SourceStatus(
            source_id=self.source.id,
            enabled=self._enabled,
            cached=self.cache.contains(self.cache_key),
            auth_method=self.auth_method(),
        )

    async def fetch_bundles(self) -> list[Bundle]:
        if not self._enabled:
            logger.debug("Source disabled, skipping fetch", data={"source_id": self.source.id})
            return []
        cached = self.cache.get(self.cache_key)
        if cached is not None:
            logger.debug("Using cached bundles", data={"source_id": self.source.id})
            return cached
        bundles = await self._discover()
        self.cache.put(self.cache_key, bundles)
        return bundles

    def clear_cache(self) -> None:
        self.cache.clear()

    @abstractmethod
    async def _discover(self) -> list[Bundle]:
        """Enumerate bundles from the source, bypassing the cache."""

    @abstractmethod
    async def fetch_metadata(self) -> SourceMetadata: ...

    @abstractmethod
    async def validate(self) -> ValidationResult: ...

    @abstractmethod
    async def download_bundle(self, bundle: Bundle) -> bytes: ...

    @abstractmethod
    def get_manifest_url(self, bundle_id: str, version: str | None = None) -> str: ...

    @abstractmethod
    def get_download_url(self, bundle_id: str, version: str | None = None) -> str: ...

    async def _collect(
        self,
        candidates: Sequence[ItemT],
        build: Callable[[ItemT], Awaitable[Bundle | None]],
        describe: Callable[[ItemT], str],
    ) -> list[Bundle]:
        """
        Build one bundle per candidate, one at a time.

        ``build`` may return ``None`` for a candidate that turned out not to
        exist. Failures are logged and skipped; if every candidate failed,
        :class:`BundleFetchError` is raised.
        """
        bundles: list[Bundle] = []
        failures: list[str] = []
        for candidate in candidates:
            try:
                bundle = await build(candidate)
            except SourceAuthError:
                raise
            except BundleRegistryError as exc:
                failures.append(f"{describe(candidate)}: {exc.message}")
                logger.warning(
                    "Skipping bundle candidate",
                    data={"source_id": self.source.id, "candidate": describe(candidate), "error": exc.message},
                )
                continue
            if bundle is not None:
                bundles.append(bundle)

        if failures and not bundles:
            raise BundleFetchError(
                f"No bundles could be created from {len(candidates)} candidate(s) in {self.source.url}",
                "\n".join(failures),
            )
        return bundles
