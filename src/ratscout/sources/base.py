"""Base class for upstream data sources.

Every source follows the same cycle:

1. Serve the cached raw upstream result while its ``CacheEntry`` is valid.
2. Otherwise refresh it. Concurrent callers join the refresh already in
   flight instead of starting another one (single-flight). The refresh is
   shielded, so a caller that gives up (timeout, cancellation) does not stop
   it from completing and populating the cache for next time.
3. Derive the time-relative view handed to the aggregator from the raw
   result and the current ``FetchContext``. Cached data therefore never
   carries a stale notion of "now" (glucose age, sun/moon direction).

Failures are raised as ``FetchError`` subclasses; deciding what an error
means for the snapshot is the aggregator's job.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Generic, Optional, TypeVar

from ratscout.models.cache import CacheEntry
from ratscout.settings import Settings
from ratscout.transport.http import HttpClient

logger = logging.getLogger("ratscout.sources")

R = TypeVar("R")
T = TypeVar("T")


@dataclass(frozen=True)
class FetchContext:
    """Inputs shared by every source during one aggregation.

    Attributes:
        settings:   User settings snapshot.
        now_ms:     Epoch milliseconds, used for cache ages and reading ages.
        local_time: Timezone-aware local wall-clock time.
    """

    settings: Settings
    now_ms: int
    local_time: datetime

    @classmethod
    def capture(cls, settings: Settings) -> FetchContext:
        return cls(
            settings=settings,
            now_ms=int(time.time() * 1000),
            local_time=datetime.now().astimezone(),
        )

    def hhmm(self) -> str:
        return self.local_time.strftime("%H:%M")


class UpstreamSource(ABC, Generic[R, T]):
    """A cached, single-flight upstream fetch.

    Subclasses set ``name`` and ``ttl_ms`` and implement ``_fetch_upstream``
    (raw result) and ``present`` (snapshot section).
    """

    name: str = "source"
    ttl_ms: int = 0

    def __init__(self, http: HttpClient) -> None:
        self._http = http
        self._cache: Optional[CacheEntry[R]] = None
        self._inflight: Optional[asyncio.Task[R]] = None

    @property
    def cache(self) -> Optional[CacheEntry[R]]:
        return self._cache

    async def fetch(self, context: FetchContext) -> T:
        raw = await self._cached(context)
        return self.present(raw, context)

    async def _cached(self, context: FetchContext) -> R:
        entry = self._cache
        if entry is not None and entry.is_valid(context.now_ms):
            logger.debug("%s: cache hit (age %d ms)", self.name, context.now_ms - entry.fetched_at_ms)
            return entry.value
        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.ensure_future(self._refresh(context))
        else:
            logger.debug("%s: joining in-flight fetch", self.name)
        return await asyncio.shield(self._inflight)

    async def _refresh(self, context: FetchContext) -> R:
        value = await self._fetch_upstream(context)
        self._cache = CacheEntry(value=value, fetched_at_ms=context.now_ms, ttl_ms=self.ttl_ms)
        logger.debug("%s: cache refreshed", self.name)
        return value

    @abstractmethod
    async def _fetch_upstream(self, context: FetchContext) -> R:
        ...

    @abstractmethod
    def present(self, raw: R, context: FetchContext) -> T:
        ...


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero."""
    return int(value + 0.5) if value >= 0 else -int(-value + 0.5)
