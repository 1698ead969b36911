"""Derived state transitions.

The geofence tracker and trip segmenter diff consecutive vehicle states and
emit these events. Rules consume them; nothing else creates them.
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict

from fleetwatch.models.trip import Trip


class TransitionKind(StrEnum):
    ENTRY = "entry"
    EXIT = "exit"


class GeofenceTransition(BaseModel):
    """A vehicle crossed a geofence boundary between two consecutive events."""

    model_config = ConfigDict(frozen=True)

    geofence_id: str
    geofence_name: str
    kind: TransitionKind


class TripEventKind(StrEnum):
    STARTED = "started"
    EXTENDED = "extended"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TripEvent(BaseModel):
    """A change to a vehicle's trip, carrying the trip as it now stands."""

    model_config = ConfigDict(frozen=True)

    kind: TripEventKind
    trip: Trip
