"""Trip and maintenance record models."""

from __future__ import annotations

import enum
import uuid
from datetime import datetime, timedelta

from pydantic import Field

from fleetwatch.models._base import FleetBaseModel, UtcTimestamp
from fleetwatch.models.telemetry import Location


class TripStatus(enum.StrEnum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Trip(FleetBaseModel):
    """A contiguous interval of vehicle motion."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    vehicle_id: str
    start_location: Location
    end_location: Location
    start_time: UtcTimestamp
    end_time: UtcTimestamp | None = None
    distance_miles: float = Field(default=0.0, ge=0.0)
    max_speed: float = Field(default=0.0, ge=0.0)
    status: TripStatus = TripStatus.IN_PROGRESS

    @property
    def duration(self) -> timedelta | None:
        if self.end_time is None:
            return None
        return self.end_time - self.start_time

    def closed(self, status: TripStatus, end_time: datetime) -> Trip:
        return self.model_copy(update={"status": status, "end_time": end_time})


class MaintenanceRecord(FleetBaseModel):
    """An open (or completed) service item for a vehicle."""

    id: str
    vehicle_id: str
    maintenance_type: str = "other"
    next_service_mileage: float | None = None
    completed: bool = False
