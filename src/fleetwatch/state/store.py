"""Authoritative in-memory vehicle state.

This is the only component allowed to replace per-vehicle state. Snapshots
are immutable: every update builds a new :class:`VehicleState` and swaps it in,
so a caller holding the previous snapshot can diff against the new one.
"""

from __future__ import annotations

from collections.abc import Iterator
from datetime import datetime

from pydantic import BaseModel, ConfigDict

from fleetwatch._constants import DEFAULT_HISTORY_SIZE, MOTION_THRESHOLD_MPH
from fleetwatch.exceptions import OutOfOrderEventError
from fleetwatch.models.telemetry import TelemetryEvent
from fleetwatch.models.trip import Trip
from fleetwatch.state.policy import is_moving, should_accept_event


class VehicleState(BaseModel):
    """Live state of one vehicle.

    Parameters
    ----------
    history : tuple of TelemetryEvent
        Most recent events, newest first; ``history[0]`` is ``last_event``.
    geofence_membership : frozenset of str
        Ids of the geofences the vehicle was inside at ``last_event``.
    known_geofences : frozenset of str
        Ids of the geofences ``geofence_membership`` was computed against.
    last_moving_at : datetime or None
        Timestamp of the newest event above the motion threshold.
    stationary_since : datetime or None
        Timestamp of the first event of the current run at or below the
        motion threshold; ``None`` while moving.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    vehicle_id: str
    organization_id: str | None = None
    last_event: TelemetryEvent | None = None
    history: tuple[TelemetryEvent, ...] = ()
    geofence_membership: frozenset[str] = frozenset()
    known_geofences: frozenset[str] = frozenset()
    active_trip: Trip | None = None
    last_heartbeat: datetime | None = None
    last_moving_at: datetime | None = None
    stationary_since: datetime | None = None

    @property
    def previous_event(self) -> TelemetryEvent | None:
        """The event applied just before ``last_event``."""
        return self.history[1] if len(self.history) > 1 else None


class VehicleStateStore:
    """In-memory store for per-vehicle state.

    The store is deterministic: given the same ordered sequence of events it
    produces the same snapshots. It does no locking of its own; callers route
    every update for a vehicle through that vehicle's single pipeline lane.
    """

    def __init__(
        self,
        *,
        history_size: int = DEFAULT_HISTORY_SIZE,
        motion_threshold_mph: float = MOTION_THRESHOLD_MPH,
    ) -> None:
        self._history_size = history_size
        self._motion_threshold = motion_threshold_mph
        self._vehicles: dict[str, VehicleState] = {}

    def __len__(self) -> int:
        return len(self._vehicles)

    def __contains__(self, vehicle_id: object) -> bool:
        return vehicle_id in self._vehicles

    def __iter__(self) -> Iterator[VehicleState]:
        return iter(list(self._vehicles.values()))

    def get(self, vehicle_id: str) -> VehicleState | None:
        return self._vehicles.get(vehicle_id)

    def vehicle_ids(self) -> list[str]:
        return list(self._vehicles)

    def apply(
        self,
        event: TelemetryEvent,
        *,
        organization_id: str | None = None,
    ) -> tuple[VehicleState, VehicleState]:
        """Apply a normalized event and return ``(previous, new)`` snapshots.

        Raises :class:`OutOfOrderEventError` if the event is older than the
        vehicle's last applied event; state is left untouched in that case.
        """
        previous = self._vehicles.get(event.vehicle_id)
        if previous is None:
            previous = VehicleState(vehicle_id=event.vehicle_id, organization_id=organization_id)

        last_ts = previous.last_event.timestamp if previous.last_event is not None else None
        if not should_accept_event(last_timestamp=last_ts, incoming_timestamp=event.timestamp):
            raise OutOfOrderEventError(
                f"event at {event.timestamp.isoformat()} is older than last applied {last_ts.isoformat() if last_ts else None}",
                vehicle_id=event.vehicle_id,
            )

        moving = is_moving(event.speed, self._motion_threshold)
        if moving:
            stationary_since = None
        elif previous.last_event is not None and previous.stationary_since is not None:
            stationary_since = previous.stationary_since
        else:
            stationary_since = event.timestamp

        current = previous.model_copy(
            update={
                "organization_id": organization_id or previous.organization_id,
                "last_event": event,
                "history": (event, *previous.history[: self._history_size - 1]),
                "last_heartbeat": event.timestamp,
                "last_moving_at": event.timestamp if moving else previous.last_moving_at,
                "stationary_since": stationary_since,
            }
        )
        self._vehicles[event.vehicle_id] = current
        return previous, current

    def set_membership(
        self,
        vehicle_id: str,
        membership: frozenset[str],
        *,
        known_geofences: frozenset[str],
    ) -> VehicleState:
        """Commit the geofence membership computed for the last event."""
        return self._replace(
            vehicle_id,
            geofence_membership=membership,
            known_geofences=known_geofences,
        )

    def set_active_trip(self, vehicle_id: str, trip: Trip | None) -> VehicleState:
        """Commit the vehicle's active trip (``None`` once it is closed)."""
        return self._replace(vehicle_id, active_trip=trip)

    def remove(self, vehicle_id: str) -> VehicleState | None:
        return self._vehicles.pop(vehicle_id, None)

    def _replace(self, vehicle_id: str, **changes: object) -> VehicleState:
        state = self._vehicles.get(vehicle_id)
        if state is None:
            raise KeyError(vehicle_id)
        updated = state.model_copy(update=changes)
        self._vehicles[vehicle_id] = updated
        return updated
