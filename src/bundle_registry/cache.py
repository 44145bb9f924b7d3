"""Per-adapter time-bounded cache of discovered bundles."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

    from bundle_registry.models import Bundle


@dataclass(frozen=True, slots=True)
class CacheEntry:
    bundles: tuple[Bundle, ...]
    timestamp: float


class BundleCache:
    """Source URL -> bundle list, trusted while ``now - timestamp < ttl``."""

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

    def get(self, key: str) -> list[Bundle] | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.timestamp >= self.ttl:
            del self._entries[key]
            return None
        return list(entry.bundles)

    def put(self, key: str, bundles: list[Bundle]) -> None:
        self._entries[key] = CacheEntry(tuple(bundles), self._clock())

    def contains(self, key: str) -> bool:
        return self.get(key) is not None

    def clear(self) -> None:
        self._entries.clear()
