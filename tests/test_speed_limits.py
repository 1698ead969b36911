from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from fleetwatch.exceptions import FleetwatchTransportError, SpeedLimitLookupError
from fleetwatch.speed_limits import OverpassSpeedLimitLookup, SpeedLimitResolver, parse_maxspeed


class _Clock:
    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class _Lookup:
    """Scripted lookup: each call pops the next outcome."""

    def __init__(self, *outcomes: Any) -> None:
        self.outcomes = list(outcomes)
        self.calls: list[tuple[float, float]] = []

    async def lookup(self, lat: float, lng: float) -> float | None:
        self.calls.append((lat, lng))
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if outcome == "hang":
            await asyncio.sleep(10)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class _Transport:
    def __init__(self, response: Any = None, error: Exception | None = None) -> None:
        self.response = response
        self.error = error
        self.forms: list[dict[str, str]] = []

    async def post_form(self, url: str, form: dict[str, str], *, timeout: float) -> Any:
        self.forms.append(form)
        if self.error is not None:
            raise self.error
        return self.response

    async def post_json(self, url: str, payload: dict[str, Any], *, timeout: float) -> int:
        raise AssertionError("not used")


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("30 mph", 30.0),
        ("25mph", 25.0),
        ("50", 31.1),
        ("100 km/h", 62.1),
        ("50;30", 31.1),
        ("signals", None),
        ("none", None),
        ("0", None),
        (None, None),
        (50, None),
    ],
)
def test_parse_maxspeed(raw: Any, expected: float | None) -> None:
    assert parse_maxspeed(raw) == expected


@pytest.mark.asyncio
async def test_resolve_caches_by_rounded_coordinate() -> None:
    clock = _Clock()
    lookup = _Lookup(45.0)
    resolver = SpeedLimitResolver(lookup, clock=clock)

    assert await resolver.resolve(40.123456, -74.654321) == 45.0
    assert await resolver.resolve(40.12349, -74.65431) == 45.0

    assert lookup.calls == [(40.1235, -74.6543)]
    assert len(resolver) == 1
    assert resolver.cached(40.1235, -74.6543) == 45.0


@pytest.mark.asyncio
async def test_stale_entry_triggers_new_lookup() -> None:
    clock = _Clock()
    lookup = _Lookup(45.0, 55.0)
    resolver = SpeedLimitResolver(lookup, ttl=timedelta(hours=1), clock=clock)

    await resolver.resolve(1.0, 1.0)
    clock.advance(minutes=59)
    assert await resolver.resolve(1.0, 1.0) == 45.0

    clock.advance(minutes=1)
    assert resolver.cached(1.0, 1.0) is None
    assert await resolver.resolve(1.0, 1.0) == 55.0
    assert len(lookup.calls) == 2


@pytest.mark.asyncio
async def test_no_road_found_caches_default() -> None:
    lookup = _Lookup(None)
    resolver = SpeedLimitResolver(lookup, default_limit=30.0, clock=_Clock())

    assert await resolver.resolve(1.0, 1.0) == 30.0
    assert await resolver.resolve(1.0, 1.0) == 30.0
    assert len(lookup.calls) == 1


@pytest.mark.asyncio
async def test_timeout_serves_default_without_caching() -> None:
    lookup = _Lookup("hang", 45.0)
    resolver = SpeedLimitResolver(lookup, default_limit=35.0, timeout=0.01, clock=_Clock())

    assert await resolver.resolve(1.0, 1.0) == 35.0
    assert len(resolver) == 0

    assert await resolver.resolve(1.0, 1.0) == 45.0
    assert len(lookup.calls) == 2


@pytest.mark.asyncio
async def test_lookup_failure_serves_default() -> None:
    lookup = _Lookup(SpeedLimitLookupError("down"), RuntimeError("bug"), 40.0)
    resolver = SpeedLimitResolver(lookup, default_limit=35.0, clock=_Clock())

    assert await resolver.resolve(1.0, 1.0) == 35.0
    assert await resolver.resolve(1.0, 1.0) == 35.0
    assert await resolver.resolve(1.0, 1.0) == 40.0


@pytest.mark.asyncio
async def test_resolver_without_lookup_serves_default() -> None:
    resolver = SpeedLimitResolver(None, default_limit=25.0)

    assert await resolver.resolve(1.0, 1.0) == 25.0
    assert len(resolver) == 0


@pytest.mark.asyncio
async def test_refresh_stale_updates_expired_entries() -> None:
    clock = _Clock()
    lookup = _Lookup(45.0, 45.0, 50.0)
    resolver = SpeedLimitResolver(lookup, ttl=timedelta(minutes=10), clock=clock)
    await resolver.resolve(1.0, 1.0)
    clock.advance(minutes=5)
    await resolver.resolve(2.0, 2.0)

    clock.advance(minutes=6)
    assert await resolver.refresh_stale() == 1

    assert resolver.cached(1.0, 1.0) == 50.0
    assert resolver.cached(2.0, 2.0) == 45.0


@pytest.mark.asyncio
async def test_failed_refresh_keeps_stale_entry() -> None:
    clock = _Clock()
    lookup = _Lookup(45.0, SpeedLimitLookupError("down"))
    resolver = SpeedLimitResolver(lookup, ttl=timedelta(minutes=10), clock=clock)
    await resolver.resolve(1.0, 1.0)
    clock.advance(minutes=11)

    assert await resolver.refresh_stale() == 0
    assert len(resolver) == 1


@pytest.mark.asyncio
async def test_overpass_lookup_returns_first_parseable_maxspeed() -> None:
    transport = _Transport(
        {
            "elements": [
                {"type": "way", "tags": {"highway": "primary", "maxspeed": "signals"}},
                {"type": "way", "tags": {"highway": "primary", "maxspeed": "40 mph"}},
            ]
        }
    )
    lookup = OverpassSpeedLimitLookup(transport, radius_m=50)

    assert await lookup.lookup(51.5, -0.12) == 40.0
    assert transport.forms == [{"data": "[out:json];way(around:50,51.5,-0.12)[highway][maxspeed];out tags;"}]


@pytest.mark.asyncio
async def test_overpass_lookup_without_match_returns_none() -> None:
    lookup = OverpassSpeedLimitLookup(_Transport({"elements": []}))

    assert await lookup.lookup(1.0, 1.0) is None


@pytest.mark.asyncio
async def test_overpass_lookup_wraps_transport_errors() -> None:
    lookup = OverpassSpeedLimitLookup(_Transport(error=FleetwatchTransportError("HTTP 504", status_code=504)))

    with pytest.raises(SpeedLimitLookupError):
        await lookup.lookup(1.0, 1.0)

    with pytest.raises(SpeedLimitLookupError):
        await OverpassSpeedLimitLookup(_Transport(["not", "a", "dict"])).lookup(1.0, 1.0)


@pytest.mark.asyncio
async def test_refresh_evicts_unused_positions_and_skips_cold_ones() -> None:
    clock = _Clock()
    lookup = _Lookup(45.0)
    resolver = SpeedLimitResolver(lookup, ttl=timedelta(minutes=10), idle_ttl=timedelta(minutes=40), clock=clock)
    await resolver.resolve(1.0, 1.0)
    await resolver.resolve(2.0, 2.0)

    clock.advance(minutes=15)
    assert await resolver.refresh_stale() == 2
    await resolver.resolve(2.0, 2.0)

    # (1, 1) was not asked for since the previous pass.
    clock.advance(minutes=15)
    assert await resolver.refresh_stale() == 1
    assert len(lookup.calls) == 5

    clock.advance(minutes=15)
    await resolver.refresh_stale()
    assert (1.0, 1.0) not in resolver
    assert (2.0, 2.0) in resolver


@pytest.mark.asyncio
async def test_cache_is_bounded_least_recently_used_first() -> None:
    lookup = _Lookup(45.0)
    resolver = SpeedLimitResolver(lookup, max_entries=2, clock=_Clock())
    await resolver.resolve(1.0, 1.0)
    await resolver.resolve(2.0, 2.0)
    await resolver.resolve(1.0, 1.0)

    await resolver.resolve(3.0, 3.0)

    assert len(resolver) == 2
    assert (2.0, 2.0) not in resolver
    assert (1.0, 1.0) in resolver
