"""Per-source cache entry."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """A cached upstream result.

    Replaced wholesale on every successful refetch, never updated in place.

    Attributes:
        value:          The raw upstream result.
        fetched_at_ms:  Epoch milliseconds when the value was fetched.
        ttl_ms:         Maximum age in milliseconds before a refetch.
    """

    value: T
    fetched_at_ms: int
    ttl_ms: int

    def is_valid(self, now_ms: int) -> bool:
        return now_ms - self.fetched_at_ms < self.ttl_ms
