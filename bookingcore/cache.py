"""TTL cache for room listings, keyed by the listing filters."""
from __future__ import annotations

from decimal import Decimal
from typing import Generic, Iterable, Optional, TypeVar

from cachetools import TTLCache

T = TypeVar("T")


def listing_key(
    capacity: Optional[int] = None,
    location: Optional[str] = None,
    equipment: Optional[Iterable[str]] = None,
    max_rate: Optional[Decimal] = None,
    include_inactive: bool = False,
) -> str:
    """Build a cache key that does not depend on the order of ``equipment``."""

    equipment_part = ",".join(sorted(equipment)) if equipment else ""
    return f"rooms:{capacity}:{(location or '').lower()}:{equipment_part}:{max_rate}:{int(include_inactive)}"


class ListingCache(Generic[T]):
    """Whole-listing cache; any room write invalidates every entry."""

    def __init__(self, ttl: int, maxsize: int = 256) -> None:
        self._entries: TTLCache[str, T] = TTLCache(maxsize=maxsize, ttl=ttl)

    def get(self, key: str) -> Optional[T]:
        return self._entries.get(key)

    def store(self, key: str, value: T) -> T:
        self._entries[key] = value
        return value

    def invalidate(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
