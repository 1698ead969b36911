"""Storage boundaries of the pipeline.

The pipeline depends only on the protocols below. Durable implementations
(SQL, document stores) live outside this package; :class:`InMemoryRepository`
implements every protocol for tests, replays and development.
"""

from __future__ import annotations

from collections import defaultdict, deque
from collections.abc import Iterable
from datetime import datetime
from typing import Protocol

from fleetwatch.models.alerts import Alert, DedupKey
from fleetwatch.models.geofence import Geofence
from fleetwatch.models.rules import AlertRule
from fleetwatch.models.telemetry import TelemetryEvent
from fleetwatch.models.trip import MaintenanceRecord, Trip


class TelemetryRepository(Protocol):
    async def append_sample(self, event: TelemetryEvent, *, organization_id: str) -> None:
        ...

    async def recent_samples(self, vehicle_id: str, limit: int) -> list[TelemetryEvent]:
        ...


class TripRepository(Protocol):
    async def save_trip(self, trip: Trip) -> None:
        ...


class ConfigRepository(Protocol):
    """Per-organization configuration read by ``reload_config``."""

    async def active_geofences(self, organization_id: str) -> list[Geofence]:
        ...

    async def enabled_rules(self, organization_id: str) -> list[AlertRule]:
        ...

    async def open_maintenance(self, organization_id: str) -> list[MaintenanceRecord]:
        ...


class AlertRepository(Protocol):
    """Durable alert sink.

    ``insert_alert`` raises :class:`~fleetwatch.exceptions.PersistenceError`
    when the write fails.
    """

    async def insert_alert(self, alert: Alert) -> None:
        ...

    async def has_recent_alert(self, key: DedupKey, since: datetime) -> bool:
        ...


class InMemoryRepository:
    """Process-local implementation of every repository protocol."""

    def __init__(self, *, sample_retention: int = 100) -> None:
        self._samples: dict[str, deque[TelemetryEvent]] = defaultdict(lambda: deque(maxlen=sample_retention))
        self._geofences: dict[str, dict[str, Geofence]] = defaultdict(dict)
        self._rules: dict[str, dict[str, AlertRule]] = defaultdict(dict)
        self._maintenance: dict[str, list[MaintenanceRecord]] = defaultdict(list)
        self.trips: dict[str, Trip] = {}
        self.alerts: list[Alert] = []

    # ------------------------------------------------------------------
    # Seeding
    # ------------------------------------------------------------------

    def put_geofences(self, geofences: Iterable[Geofence]) -> None:
        for geofence in geofences:
            self._geofences[geofence.organization_id][geofence.id] = geofence

    def put_rules(self, rules: Iterable[AlertRule]) -> None:
        for rule in rules:
            self._rules[rule.organization_id][rule.id] = rule

    def put_maintenance(self, organization_id: str, records: Iterable[MaintenanceRecord]) -> None:
        self._maintenance[organization_id].extend(records)

    # ------------------------------------------------------------------
    # TelemetryRepository
    # ------------------------------------------------------------------

    async def append_sample(self, event: TelemetryEvent, *, organization_id: str) -> None:
        self._samples[event.vehicle_id].append(event)

    async def recent_samples(self, vehicle_id: str, limit: int) -> list[TelemetryEvent]:
        samples = self._samples.get(vehicle_id)
        if not samples:
            return []
        return list(reversed(samples))[:limit]

    # ------------------------------------------------------------------
    # TripRepository
    # ------------------------------------------------------------------

    async def save_trip(self, trip: Trip) -> None:
        self.trips[trip.id] = trip

    # ------------------------------------------------------------------
    # ConfigRepository
    # ------------------------------------------------------------------

    async def active_geofences(self, organization_id: str) -> list[Geofence]:
        return [g for g in self._geofences.get(organization_id, {}).values() if g.active]

    async def enabled_rules(self, organization_id: str) -> list[AlertRule]:
        return [r for r in self._rules.get(organization_id, {}).values() if r.enabled]

    async def open_maintenance(self, organization_id: str) -> list[MaintenanceRecord]:
        return [m for m in self._maintenance.get(organization_id, []) if not m.completed]

    # ------------------------------------------------------------------
    # AlertRepository
    # ------------------------------------------------------------------

    async def insert_alert(self, alert: Alert) -> None:
        self.alerts.append(alert)

    async def has_recent_alert(self, key: DedupKey, since: datetime) -> bool:
        return any(a.dedup_key == key and a.created_at >= since for a in self.alerts)
