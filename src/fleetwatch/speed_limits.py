"""Posted speed limit resolution with a coordinate-keyed cache."""

from __future__ import annotations

import asyncio
import logging
import re
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

from fleetwatch._constants import DEFAULT_SPEED_LIMIT_MPH, MPH_PER_KMH, OVERPASS_URL
from fleetwatch._transport import Transport
from fleetwatch.exceptions import ExternalLookupTimeoutError, FleetwatchTransportError, SpeedLimitLookupError

_logger = logging.getLogger(__name__)

_MAXSPEED_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(mph|km/h|kmh|kph)?\s*$", re.IGNORECASE)

CacheKey = tuple[float, float]


class SpeedLimitLookup(Protocol):
    """External source of posted speed limits.

    Returns the limit in mph, or ``None`` when the source knows no limit for
    the position. Raises :class:`SpeedLimitLookupError` on failure.
    """

    async def lookup(self, lat: float, lng: float) -> float | None:
        ...


def parse_maxspeed(value: Any) -> float | None:
    """Parse an OpenStreetMap ``maxspeed`` tag into mph.

    ``"30 mph"`` is taken as-is; a bare number or ``"km/h"`` value is
    converted from km/h. Non-numeric values (``"signals"``, ``"none"``)
    return ``None``.
    """
    if not isinstance(value, str):
        return None
    # Multi-valued tags ("50;30") list the general limit first.
    match = _MAXSPEED_RE.match(value.split(";")[0])
    if match is None:
        return None
    number = float(match.group(1))
    if number <= 0:
        return None
    unit = (match.group(2) or "").lower()
    if unit == "mph":
        return number
    return round(number * MPH_PER_KMH, 1)


class OverpassSpeedLimitLookup:
    """Look up ``maxspeed`` of the nearest tagged highway via the Overpass API."""

    def __init__(
        self,
        transport: Transport,
        *,
        url: str = OVERPASS_URL,
        radius_m: int = 100,
        timeout: float = 3.0,
    ) -> None:
        self._transport = transport
        self._url = url
        self._radius_m = radius_m
        self._timeout = timeout

    def build_query(self, lat: float, lng: float) -> str:
        return f"[out:json];way(around:{self._radius_m},{lat},{lng})[highway][maxspeed];out tags;"

    async def lookup(self, lat: float, lng: float) -> float | None:
        try:
            data = await self._transport.post_form(
                self._url,
                {"data": self.build_query(lat, lng)},
                timeout=self._timeout,
            )
        except FleetwatchTransportError as exc:
            raise SpeedLimitLookupError(f"Overpass lookup failed: {exc}") from exc

        elements = data.get("elements") if isinstance(data, dict) else None
        if not isinstance(elements, list):
            raise SpeedLimitLookupError("Overpass response has no elements list")
        for element in elements:
            tags = element.get("tags") if isinstance(element, dict) else None
            if not isinstance(tags, dict):
                continue
            limit = parse_maxspeed(tags.get("maxspeed"))
            if limit is not None:
                return limit
        return None


@dataclass(slots=True)
class _CacheEntry:
    limit: float
    resolved_at: datetime
    last_used: datetime


class SpeedLimitResolver:
    """Resolve the posted limit at a coordinate.

    Results are cached per coordinate rounded to ``precision`` decimals and
    stay fresh for ``ttl``. A miss or stale entry triggers one bounded-time
    lookup; on timeout or failure the default limit is served and nothing is
    cached, so the next call tries again.

    The cache holds at most ``max_entries`` positions, evicting the least
    recently used. :meth:`refresh_stale` drops positions nobody has asked for
    within ``idle_ttl`` and only re-fetches those used since the previous pass.

    Parameters
    ----------
    lookup : SpeedLimitLookup or None
        External source. ``None`` always serves the default.
    idle_ttl : timedelta or None
        Defaults to four times ``ttl``.
    clock : callable
        Returns the current UTC time; injectable for tests.
    """

    def __init__(
        self,
        lookup: SpeedLimitLookup | None,
        *,
        default_limit: float = DEFAULT_SPEED_LIMIT_MPH,
        ttl: timedelta = timedelta(hours=1),
        idle_ttl: timedelta | None = None,
        max_entries: int = 50_000,
        timeout: float = 3.0,
        precision: int = 4,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._lookup = lookup
        self._default_limit = default_limit
        self._ttl = ttl
        self._idle_ttl = idle_ttl if idle_ttl is not None else ttl * 4
        self._max_entries = max_entries
        self._timeout = timeout
        self._precision = precision
        self._clock = clock or (lambda: datetime.now(UTC))
        self._cache: OrderedDict[CacheKey, _CacheEntry] = OrderedDict()
        self._last_refresh = self._clock()

    @property
    def default_limit(self) -> float:
        return self._default_limit

    def cache_key(self, lat: float, lng: float) -> CacheKey:
        return (round(lat, self._precision), round(lng, self._precision))

    def cached(self, lat: float, lng: float) -> float | None:
        """Return the cached limit for the position if present and fresh."""
        entry = self._cache.get(self.cache_key(lat, lng))
        if entry is None or self._is_stale(entry, self._clock()):
            return None
        return entry.limit

    def __len__(self) -> int:
        return len(self._cache)

    def __contains__(self, key: object) -> bool:
        return key in self._cache

    async def resolve(self, lat: float, lng: float) -> float:
        """Return the posted limit in mph; never raises."""
        now = self._clock()
        key = self.cache_key(lat, lng)
        entry = self._cache.get(key)
        if entry is not None and not self._is_stale(entry, now):
            entry.last_used = now
            self._cache.move_to_end(key)
            return entry.limit

        try:
            limit = await self._fetch(key, used_at=now)
        except SpeedLimitLookupError as exc:
            _logger.warning("Speed limit lookup failed at %s, using default: %s", key, exc)
            return self._default_limit
        return limit

    async def refresh_stale(self, now: datetime | None = None) -> int:
        """Re-resolve stale keys used since the last pass; returns how many were refreshed.

        Idle keys are evicted first. Failed refreshes keep the stale entry in
        place.
        """
        now = now or self._clock()
        since, self._last_refresh = self._last_refresh, now
        self.evict_idle(now)
        stale = [
            (key, entry.last_used)
            for key, entry in self._cache.items()
            if self._is_stale(entry, now) and entry.last_used >= since
        ]
        refreshed = 0
        for key, last_used in stale:
            try:
                await self._fetch(key, used_at=last_used)
            except SpeedLimitLookupError as exc:
                _logger.debug("Refresh of %s failed: %s", key, exc)
                continue
            refreshed += 1
        if stale:
            _logger.debug("Refreshed %d/%d stale speed limits", refreshed, len(stale))
        return refreshed

    def evict_idle(self, now: datetime | None = None) -> int:
        """Drop entries not resolved within ``idle_ttl``; returns how many."""
        now = now or self._clock()
        idle = [key for key, entry in self._cache.items() if now - entry.last_used >= self._idle_ttl]
        for key in idle:
            del self._cache[key]
        return len(idle)

    def clear(self) -> None:
        self._cache.clear()

    async def _fetch(self, key: CacheKey, *, used_at: datetime) -> float:
        if self._lookup is None:
            return self._default_limit
        try:
            result = await asyncio.wait_for(self._lookup.lookup(*key), timeout=self._timeout)
        except TimeoutError as exc:
            raise ExternalLookupTimeoutError(f"speed limit lookup exceeded {self._timeout}s") from exc
        except SpeedLimitLookupError:
            raise
        except Exception as exc:
            raise SpeedLimitLookupError(f"speed limit lookup raised {type(exc).__name__}: {exc}") from exc

        # A position with no tagged road is a real answer and is cached.
        limit = result if result is not None else self._default_limit
        self._cache[key] = _CacheEntry(limit=limit, resolved_at=self._clock(), last_used=used_at)
        self._cache.move_to_end(key)
        while len(self._cache) > self._max_entries:
            self._cache.popitem(last=False)
        return limit

    def _is_stale(self, entry: _CacheEntry, now: datetime) -> bool:
        return now - entry.resolved_at >= self._ttl
