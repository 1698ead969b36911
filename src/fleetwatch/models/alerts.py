"""Candidate and persisted alert models."""

from __future__ import annotations

import enum
import uuid
from datetime import UTC, datetime
from typing import Any

from pydantic import Field

from fleetwatch.models._base import FleetBaseModel, Severity, UtcTimestamp
from fleetwatch.models.telemetry import Location


class AlertType(enum.StrEnum):
    SPEEDING = "speeding"
    GEOFENCE_ENTRY = "geofence_entry"
    GEOFENCE_EXIT = "geofence_exit"
    HARSH_ACCELERATION = "harsh_acceleration"
    HARSH_BRAKING = "harsh_braking"
    EXCESSIVE_IDLE = "excessive_idle"
    DEVICE_OFFLINE = "device_offline"
    FUEL_THEFT = "fuel_theft"
    MAINTENANCE_DUE = "maintenance_due"


DedupKey = tuple[str, str, AlertType]


class CandidateAlert(FleetBaseModel):
    """A provisional alert produced by a rule, pending deduplication."""

    organization_id: str
    vehicle_id: str
    alert_type: AlertType
    severity: Severity
    title: str
    message: str
    location: Location | None = None
    timestamp: UtcTimestamp
    metadata: dict[str, Any] = Field(default_factory=dict)
    rule_id: str | None = None

    @property
    def dedup_key(self) -> DedupKey:
        return (self.organization_id, self.vehicle_id, self.alert_type)


def _new_alert_id() -> str:
    return uuid.uuid4().hex


class Alert(CandidateAlert):
    """A materialized alert.

    ``persisted`` is ``False`` when the durable write failed; the alert is
    still dispatched and an external job is expected to retry the write.
    """

    id: str = Field(default_factory=_new_alert_id)
    acknowledged: bool = False
    resolved: bool = False
    created_at: UtcTimestamp = Field(default_factory=lambda: datetime.now(UTC))
    persisted: bool = True

    @classmethod
    def from_candidate(cls, candidate: CandidateAlert, *, created_at: datetime) -> Alert:
        return cls(**candidate.model_dump(), created_at=created_at)
