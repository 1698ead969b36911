"""Alert rule models.

Rules are a closed set of variants discriminated by ``type``. Each variant
carries its own typed ``conditions`` with the thresholds the rule reads and
their defaults, so the evaluator can dispatch on the variant exhaustively.
"""

from __future__ import annotations

import enum
from typing import Annotated, Any, Literal

from pydantic import Field, TypeAdapter, model_validator

from fleetwatch._constants import (
    DEFAULT_FUEL_DROP_PERCENT,
    DEFAULT_FUEL_WINDOW_MIN,
    DEFAULT_HARSH_ACCELERATION_MPH_S,
    DEFAULT_HARSH_BRAKING_MPH_S,
    DEFAULT_IDLE_THRESHOLD_MIN,
    DEFAULT_MAINTENANCE_CRITICAL_MILES,
    DEFAULT_MAINTENANCE_WARNING_MILES,
    DEFAULT_OFFLINE_THRESHOLD_MIN,
    DEFAULT_SPEED_TOLERANCE_MPH,
    MOTION_THRESHOLD_MPH,
)
from fleetwatch.models._base import FleetBaseModel, Severity


class RuleType(enum.StrEnum):
    SPEEDING = "speeding"
    GEOFENCE = "geofence"
    HARSH_DRIVING = "harsh_driving"
    IDLE_TIME = "idle_time"
    DEVICE_OFFLINE = "device_offline"
    FUEL_THEFT = "fuel_theft"
    MAINTENANCE = "maintenance"


class ChannelKind(enum.StrEnum):
    EMAIL = "email"
    SMS = "sms"
    PUSH = "push"
    WEBHOOK = "webhook"


class NotificationTarget(FleetBaseModel):
    """A channel kind and the recipients (addresses, numbers, URLs) on it."""

    channel: ChannelKind
    recipients: tuple[str, ...] = ()


# ------------------------------------------------------------------
# Conditions
# ------------------------------------------------------------------


class SpeedingConditions(FleetBaseModel):
    tolerance: float = Field(default=DEFAULT_SPEED_TOLERANCE_MPH, ge=0.0)


class GeofenceConditions(FleetBaseModel):
    """Empty ``geofence_ids`` watches every geofence of the organization."""

    geofence_ids: frozenset[str] = frozenset()


class HarshDrivingConditions(FleetBaseModel):
    harsh_acceleration: float = Field(default=DEFAULT_HARSH_ACCELERATION_MPH_S, gt=0.0)
    harsh_braking: float = Field(default=DEFAULT_HARSH_BRAKING_MPH_S, lt=0.0)


class IdleConditions(FleetBaseModel):
    idle_threshold: float = Field(default=DEFAULT_IDLE_THRESHOLD_MIN, gt=0.0, description="Minutes")
    max_speed: float = Field(default=MOTION_THRESHOLD_MPH, ge=0.0)


class DeviceOfflineConditions(FleetBaseModel):
    offline_threshold: float = Field(default=DEFAULT_OFFLINE_THRESHOLD_MIN, gt=0.0, description="Minutes")


class FuelTheftConditions(FleetBaseModel):
    fuel_drop: float = Field(default=DEFAULT_FUEL_DROP_PERCENT, gt=0.0, description="Percentage points")
    window_minutes: float = Field(default=DEFAULT_FUEL_WINDOW_MIN, gt=0.0)
    max_speed: float = Field(default=MOTION_THRESHOLD_MPH, ge=0.0)


class MaintenanceConditions(FleetBaseModel):
    warning_miles: float = Field(default=DEFAULT_MAINTENANCE_WARNING_MILES, gt=0.0)
    critical_miles: float = Field(default=DEFAULT_MAINTENANCE_CRITICAL_MILES, ge=0.0)


# ------------------------------------------------------------------
# Rules
# ------------------------------------------------------------------


class _RuleBase(FleetBaseModel):
    id: str
    organization_id: str
    name: str = ""
    severity: Severity = Severity.MEDIUM
    enabled: bool = True
    targets: tuple[NotificationTarget, ...] = ()

    @model_validator(mode="before")
    @classmethod
    def _accept_stored_targets(cls, values: Any) -> Any:
        """Expand stored ``notification_methods`` + ``recipients`` into targets."""
        if not isinstance(values, dict) or "targets" in values:
            return values
        methods = values.get("notification_methods", values.get("notificationMethods"))
        if not isinstance(methods, list):
            return values
        recipients = values.get("recipients") or []
        working = dict(values)
        working["targets"] = [{"channel": method, "recipients": list(recipients)} for method in methods]
        return working


class SpeedingRule(_RuleBase):
    type: Literal["speeding"] = "speeding"
    conditions: SpeedingConditions = Field(default_factory=SpeedingConditions)


class GeofenceRule(_RuleBase):
    type: Literal["geofence"] = "geofence"
    conditions: GeofenceConditions = Field(default_factory=GeofenceConditions)


class HarshDrivingRule(_RuleBase):
    type: Literal["harsh_driving"] = "harsh_driving"
    conditions: HarshDrivingConditions = Field(default_factory=HarshDrivingConditions)


class IdleRule(_RuleBase):
    type: Literal["idle_time"] = "idle_time"
    conditions: IdleConditions = Field(default_factory=IdleConditions)


class DeviceOfflineRule(_RuleBase):
    type: Literal["device_offline"] = "device_offline"
    conditions: DeviceOfflineConditions = Field(default_factory=DeviceOfflineConditions)


class FuelTheftRule(_RuleBase):
    type: Literal["fuel_theft"] = "fuel_theft"
    conditions: FuelTheftConditions = Field(default_factory=FuelTheftConditions)


class MaintenanceRule(_RuleBase):
    type: Literal["maintenance"] = "maintenance"
    conditions: MaintenanceConditions = Field(default_factory=MaintenanceConditions)


AlertRule = Annotated[
    SpeedingRule
    | GeofenceRule
    | HarshDrivingRule
    | IdleRule
    | DeviceOfflineRule
    | FuelTheftRule
    | MaintenanceRule,
    Field(discriminator="type"),
]
"""Any alert rule variant, discriminated by ``type``."""

_ALERT_RULE_ADAPTER: TypeAdapter[AlertRule] = TypeAdapter(AlertRule)


def parse_alert_rule(data: dict[str, Any]) -> AlertRule:
    """Validate a stored rule dict into its variant.

    Raises :class:`pydantic.ValidationError` for unknown types or bad
    thresholds.
    """
    return _ALERT_RULE_ADAPTER.validate_python(data)
