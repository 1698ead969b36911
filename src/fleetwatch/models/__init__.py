"""Domain models for fleet telemetry, geofences, rules, alerts and trips."""

from fleetwatch.models._base import FleetBaseModel, Severity, UtcTimestamp
from fleetwatch.models.alerts import Alert, AlertType, CandidateAlert, DedupKey
from fleetwatch.models.geofence import Geofence, GeofenceType
from fleetwatch.models.rules import (
    AlertRule,
    ChannelKind,
    DeviceOfflineConditions,
    DeviceOfflineRule,
    FuelTheftConditions,
    FuelTheftRule,
    GeofenceConditions,
    GeofenceRule,
    HarshDrivingConditions,
    HarshDrivingRule,
    IdleConditions,
    IdleRule,
    MaintenanceConditions,
    MaintenanceRule,
    NotificationTarget,
    RuleType,
    SpeedingConditions,
    SpeedingRule,
    parse_alert_rule,
)
from fleetwatch.models.telemetry import EngineStatus, Location, TelemetryEvent
from fleetwatch.models.trip import MaintenanceRecord, Trip, TripStatus

__all__ = [
    "Alert",
    "AlertRule",
    "AlertType",
    "CandidateAlert",
    "ChannelKind",
    "DedupKey",
    "DeviceOfflineConditions",
    "DeviceOfflineRule",
    "EngineStatus",
    "FleetBaseModel",
    "FuelTheftConditions",
    "FuelTheftRule",
    "Geofence",
    "GeofenceConditions",
    "GeofenceRule",
    "GeofenceType",
    "HarshDrivingConditions",
    "HarshDrivingRule",
    "IdleConditions",
    "IdleRule",
    "Location",
    "MaintenanceConditions",
    "MaintenanceRecord",
    "MaintenanceRule",
    "NotificationTarget",
    "RuleType",
    "Severity",
    "SpeedingConditions",
    "SpeedingRule",
    "TelemetryEvent",
    "Trip",
    "TripStatus",
    "UtcTimestamp",
    "parse_alert_rule",
]
