from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from fleetwatch.alerts.dedup import AlertDeduplicator
from fleetwatch.exceptions import PersistenceError
from fleetwatch.models._base import Severity
from fleetwatch.models.alerts import Alert, AlertType, CandidateAlert
from fleetwatch.persistence import InMemoryRepository


class _Clock:
    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, 12, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


def _candidate(
    alert_type: AlertType = AlertType.SPEEDING,
    *,
    vehicle_id: str = "V1",
    severity: Severity = Severity.LOW,
) -> CandidateAlert:
    return CandidateAlert(
        organization_id="org",
        vehicle_id=vehicle_id,
        alert_type=alert_type,
        severity=severity,
        title="t",
        message="m",
        timestamp=datetime(2026, 1, 1, tzinfo=UTC),
    )


class _FailingRepository(InMemoryRepository):
    async def insert_alert(self, alert: Alert) -> None:
        raise PersistenceError("database unavailable")


class _DisconnectedRepository(InMemoryRepository):
    async def has_recent_alert(self, key: object, since: datetime) -> bool:  # type: ignore[override]
        raise ConnectionError("db connection reset")

    async def insert_alert(self, alert: Alert) -> None:
        raise ConnectionError("db connection reset")


class _SlowRepository(InMemoryRepository):
    async def insert_alert(self, alert: Alert) -> None:
        await asyncio.sleep(10)


class _BrokenLookupRepository(InMemoryRepository):
    async def has_recent_alert(self, key: object, since: datetime) -> bool:  # type: ignore[override]
        raise PersistenceError("read failed")


@pytest.mark.asyncio
async def test_duplicate_within_window_is_suppressed() -> None:
    clock = _Clock()
    repo = InMemoryRepository()
    dedup = AlertDeduplicator(repo, window=timedelta(minutes=30), clock=clock)

    first = await dedup.submit(_candidate())
    clock.advance(minutes=29)
    second = await dedup.submit(_candidate())

    assert first is not None
    assert first.persisted
    assert first.created_at == datetime(2026, 1, 1, 12, tzinfo=UTC)
    assert second is None
    assert len(repo.alerts) == 1


@pytest.mark.asyncio
async def test_more_severe_duplicate_is_still_suppressed() -> None:
    dedup = AlertDeduplicator(clock=_Clock())

    await dedup.submit(_candidate(severity=Severity.LOW))

    assert await dedup.submit(_candidate(severity=Severity.HIGH)) is None


@pytest.mark.asyncio
async def test_candidate_after_window_is_accepted() -> None:
    clock = _Clock()
    repo = InMemoryRepository()
    dedup = AlertDeduplicator(repo, window=timedelta(minutes=30), clock=clock)

    await dedup.submit(_candidate())
    clock.advance(minutes=31)
    again = await dedup.submit(_candidate())

    assert again is not None
    assert len(repo.alerts) == 2


@pytest.mark.asyncio
async def test_keys_differ_by_vehicle_and_type() -> None:
    dedup = AlertDeduplicator(clock=_Clock())

    results = [
        await dedup.submit(_candidate()),
        await dedup.submit(_candidate(AlertType.HARSH_BRAKING)),
        await dedup.submit(_candidate(vehicle_id="V2")),
    ]

    assert all(result is not None for result in results)
    assert len(dedup) == 3


@pytest.mark.asyncio
async def test_recent_alert_in_repository_suppresses_after_restart() -> None:
    clock = _Clock()
    repo = InMemoryRepository()
    await AlertDeduplicator(repo, clock=clock).submit(_candidate())

    clock.advance(minutes=5)
    restarted = AlertDeduplicator(repo, clock=clock)

    assert await restarted.submit(_candidate()) is None
    assert len(repo.alerts) == 1


@pytest.mark.asyncio
async def test_failed_write_returns_unpersisted_alert() -> None:
    dedup = AlertDeduplicator(_FailingRepository(), clock=_Clock())

    alert = await dedup.submit(_candidate())

    assert alert is not None
    assert alert.persisted is False
    # The key is still recorded; no re-alert within the window.
    assert await dedup.submit(_candidate()) is None


@pytest.mark.asyncio
async def test_driver_errors_do_not_lose_the_alert() -> None:
    dedup = AlertDeduplicator(_DisconnectedRepository(), clock=_Clock())

    alert = await dedup.submit(_candidate())

    assert alert is not None
    assert alert.persisted is False
    assert await dedup.submit(_candidate()) is None


@pytest.mark.asyncio
async def test_slow_write_times_out() -> None:
    dedup = AlertDeduplicator(_SlowRepository(), persistence_timeout=0.01, clock=_Clock())

    alert = await dedup.submit(_candidate())

    assert alert is not None
    assert alert.persisted is False


@pytest.mark.asyncio
async def test_failed_recent_check_falls_back_to_memory_window() -> None:
    repo = _BrokenLookupRepository()
    dedup = AlertDeduplicator(repo, clock=_Clock())

    assert await dedup.submit(_candidate()) is not None
    assert await dedup.submit(_candidate()) is None
    assert len(repo.alerts) == 1


@pytest.mark.asyncio
async def test_prune_drops_expired_keys() -> None:
    clock = _Clock()
    dedup = AlertDeduplicator(window=timedelta(minutes=30), clock=clock)
    await dedup.submit(_candidate())
    clock.advance(minutes=20)
    await dedup.submit(_candidate(AlertType.FUEL_THEFT))

    clock.advance(minutes=15)

    assert dedup.prune() == 1
    assert len(dedup) == 1
    assert not dedup.is_suppressed(_candidate().dedup_key, clock.now)
    assert dedup.is_suppressed(_candidate(AlertType.FUEL_THEFT).dedup_key, clock.now)
