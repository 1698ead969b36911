"""Trip segmentation from motion transitions.

The segmenter is purely reactive: it changes trips only when handed an event
(:meth:`TripSegmenter.update`) or an explicit clock tick
(:meth:`TripSegmenter.tick`). It owns no timers.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from fleetwatch._constants import MOTION_THRESHOLD_MPH
from fleetwatch._geo import haversine_miles
from fleetwatch.models.trip import Trip, TripStatus
from fleetwatch.state.events import TripEvent, TripEventKind
from fleetwatch.state.policy import has_elapsed, is_moving
from fleetwatch.state.store import VehicleState, VehicleStateStore

_logger = logging.getLogger(__name__)


class TripSegmenter:
    """Starts, extends and closes trips, committing them to the state store."""

    def __init__(
        self,
        store: VehicleStateStore,
        *,
        motion_threshold_mph: float = MOTION_THRESHOLD_MPH,
        close_grace: timedelta = timedelta(minutes=5),
    ) -> None:
        self._store = store
        self._motion_threshold = motion_threshold_mph
        self._close_grace = close_grace

    def update(self, state: VehicleState) -> TripEvent | None:
        """Fold ``state.last_event`` into the vehicle's trip.

        - No active trip and moving: a trip starts at the event.
        - Active trip: end location, distance and max speed are extended.
          If the vehicle has now been stationary for longer than the grace
          period, the trip is completed instead.
        """
        event = state.last_event
        if event is None:
            return None

        trip = state.active_trip
        if trip is None:
            if not is_moving(event.speed, self._motion_threshold):
                return None
            trip = Trip(
                vehicle_id=state.vehicle_id,
                start_location=event.location,
                end_location=event.location,
                start_time=event.timestamp,
                max_speed=event.speed,
            )
            self._store.set_active_trip(state.vehicle_id, trip)
            _logger.debug("Trip started vehicle=%s trip=%s", state.vehicle_id, trip.id)
            return TripEvent(kind=TripEventKind.STARTED, trip=trip)

        delta = haversine_miles(trip.end_location.lat, trip.end_location.lng, event.latitude, event.longitude)
        trip = trip.model_copy(
            update={
                "end_location": event.location,
                "distance_miles": trip.distance_miles + delta,
                "max_speed": max(trip.max_speed, event.speed),
            }
        )

        closed = self._close_if_stopped(state, trip, event.timestamp)
        if closed is not None:
            return closed

        self._store.set_active_trip(state.vehicle_id, trip)
        return TripEvent(kind=TripEventKind.EXTENDED, trip=trip)

    def tick(self, state: VehicleState, now: datetime) -> TripEvent | None:
        """Close the active trip if the vehicle has been stopped past the grace period."""
        trip = state.active_trip
        if trip is None:
            return None
        return self._close_if_stopped(state, trip, now)

    def cancel(self, state: VehicleState, now: datetime) -> TripEvent | None:
        """Cancel the active trip, if any."""
        trip = state.active_trip
        if trip is None:
            return None
        cancelled = trip.closed(TripStatus.CANCELLED, now)
        self._store.set_active_trip(state.vehicle_id, None)
        return TripEvent(kind=TripEventKind.CANCELLED, trip=cancelled)

    def _close_if_stopped(self, state: VehicleState, trip: Trip, now: datetime) -> TripEvent | None:
        stopped_at = state.stationary_since
        if stopped_at is None or not has_elapsed(stopped_at, now, self._close_grace):
            return None
        completed = trip.closed(TripStatus.COMPLETED, stopped_at)
        self._store.set_active_trip(state.vehicle_id, None)
        _logger.debug(
            "Trip completed vehicle=%s trip=%s distance=%.2fmi",
            state.vehicle_id,
            completed.id,
            completed.distance_miles,
        )
        return TripEvent(kind=TripEventKind.COMPLETED, trip=completed)
