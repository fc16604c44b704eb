"""Process-lifetime store of live values referenced by generated code.

Generated source cannot close over the caller's objects, so every callable,
hook, instance provider or non-literal default it needs is put here and the
source embeds only the identifier as a literal.

Entries are never evicted: an identifier baked into a generated class must
stay resolvable for as long as that class can run, which is the lifetime of
the process.

Usage:
    from typeforge.value_cache import ValueCache

    cache = ValueCache()
    identifier = cache.add(print)
    assert cache.get(identifier) is print
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass
from typing import Any

from typeforge.errors import ValueNotFoundError
from typeforge.logging import get_logger

logger = get_logger("value_cache")


@dataclass
class CacheStats:
    """Statistics for cache lookups."""

    hits: int = 0
    misses: int = 0
    entries: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "entries": self.entries,
            "hit_rate": f"{self.hit_rate:.2%}",
        }


class ValueCache:
    """Thread-safe mapping of UUIDs to live values."""

    def __init__(self) -> None:
        self._values: dict[uuid.UUID, Any] = {}
        self._lock = threading.Lock()
        self._stats = CacheStats()

    def add(self, value: Any) -> uuid.UUID:
        """Store a value under a fresh identifier and return the identifier."""
        with self._lock:
            identifier = uuid.uuid4()
            while identifier in self._values:
                identifier = uuid.uuid4()
            self._values[identifier] = value

        logger.debug("cached value", identifier=str(identifier), kind=type(value).__name__)
        return identifier

    def get(self, identifier: uuid.UUID | str) -> Any:
        """Return the value stored under an identifier.

        Raises:
            ValueNotFoundError: If nothing was ever stored under the identifier
        """
        key = identifier if isinstance(identifier, uuid.UUID) else _parse(identifier)

        with self._lock:
            if key is None or key not in self._values:
                self._stats.misses += 1
                raise ValueNotFoundError(identifier)
            self._stats.hits += 1
            return self._values[key]

    def __contains__(self, identifier: object) -> bool:
        if isinstance(identifier, str):
            identifier = _parse(identifier)
        with self._lock:
            return identifier in self._values

    def __len__(self) -> int:
        with self._lock:
            return len(self._values)

    @property
    def stats(self) -> CacheStats:
        with self._lock:
            self._stats.entries = len(self._values)
            return CacheStats(
                hits=self._stats.hits,
                misses=self._stats.misses,
                entries=self._stats.entries,
            )


def _parse(identifier: str) -> uuid.UUID | None:
    try:
        return uuid.UUID(identifier)
    except ValueError:
        return None


# =============================================================================
# Global Cache Instance
# =============================================================================

_cache: ValueCache | None = None
_cache_lock = threading.Lock()


def get_default_cache() -> ValueCache:
    """Get the process-wide cache used when no cache is injected."""
    global _cache
    with _cache_lock:
        if _cache is None:
            _cache = ValueCache()
        return _cache


def set_default_cache(cache: ValueCache) -> None:
    """Replace the process-wide default cache."""
    global _cache
    with _cache_lock:
        _cache = cache
