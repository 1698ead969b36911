"""Canonical telemetry event model."""

from __future__ import annotations

import enum
from typing import Any

from pydantic import Field, field_validator

from fleetwatch.models._base import FleetBaseModel, UtcTimestamp


class EngineStatus(enum.StrEnum):
    ON = "on"
    OFF = "off"
    IDLE = "idle"


class Location(FleetBaseModel):
    """A WGS84 coordinate pair."""

    lat: float = Field(..., ge=-90.0, le=90.0)
    lng: float = Field(..., ge=-180.0, le=180.0)


class TelemetryEvent(FleetBaseModel):
    """One normalized position/status sample for a vehicle.

    Produced only by the provider adapters; every downstream component is
    provider-agnostic and reads these fields alone.

    Parameters
    ----------
    device_id : str
        Hardware identifier of the reporting GPS device.
    vehicle_id : str
        Vehicle the device is installed in.
    latitude, longitude : float
        Position in degrees.
    speed : float
        Ground speed in mph.
    heading : float
        Course over ground in degrees, wrapped into ``[0, 360)``.
    timestamp : datetime
        UTC time the sample was taken.
    engine_status : EngineStatus
        ``on``, ``off`` or ``idle``.
    fuel_level : float or None
        Fuel tank level in percent.
    odometer : float or None
        Odometer reading in miles.
    diagnostic_codes : tuple of str
        Active diagnostic trouble codes.
    raw : dict
        Original provider payload. Excluded from dumps, equality and hashing.
    """

    device_id: str = Field(..., min_length=1)
    vehicle_id: str = Field(..., min_length=1)
    latitude: float = Field(..., ge=-90.0, le=90.0)
    longitude: float = Field(..., ge=-180.0, le=180.0)
    speed: float = Field(default=0.0, ge=0.0)
    heading: float = 0.0
    timestamp: UtcTimestamp
    engine_status: EngineStatus = EngineStatus.OFF
    fuel_level: float | None = Field(default=None, ge=0.0, le=100.0)
    odometer: float | None = Field(default=None, ge=0.0)
    diagnostic_codes: tuple[str, ...] = ()
    altitude: float | None = None
    accuracy: float | None = None
    engine_hours: float | None = None
    provider: str | None = None
    raw: dict[str, Any] = Field(default_factory=dict, exclude=True, repr=False)

    @field_validator("heading")
    @classmethod
    def _wrap_heading(cls, value: float) -> float:
        return value % 360.0

    @property
    def location(self) -> Location:
        return Location(lat=self.latitude, lng=self.longitude)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TelemetryEvent):
            return NotImplemented
        return self.canonical() == other.canonical()

    def __hash__(self) -> int:
        return hash((self.vehicle_id, self.device_id, self.timestamp, self.latitude, self.longitude))

    def is_moving(self, threshold_mph: float) -> bool:
        return self.speed > threshold_mph

    def canonical(self) -> dict[str, Any]:
        """Canonical field values (no raw payload), for comparisons."""
        return self.model_dump(exclude={"raw"})

    def to_canonical_payload(self) -> dict[str, Any]:
        """Serialize to the ``generic`` provider shape.

        Feeding the result back through the ``generic`` adapter reproduces an
        event with identical canonical fields.
        """
        payload: dict[str, Any] = {
            "device_id": self.device_id,
            "vehicle_id": self.vehicle_id,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "speed": self.speed,
            "heading": self.heading,
            "timestamp": self.timestamp.isoformat(),
            "engine_status": self.engine_status.value,
            "diagnostic_codes": list(self.diagnostic_codes),
        }
        optional = {
            "fuel_level": self.fuel_level,
            "odometer": self.odometer,
            "altitude": self.altitude,
            "accuracy": self.accuracy,
            "engine_hours": self.engine_hours,
            "provider": self.provider,
        }
        payload.update({key: value for key, value in optional.items() if value is not None})
        return payload
