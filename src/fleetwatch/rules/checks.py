"""Rule checks.

Every check is a pure function of the current event, the vehicle state before
that event, the rule and a :class:`RuleContext`. Checks never perform I/O;
anything external (the posted speed limit, open maintenance records, the
wall clock) is resolved by the evaluator and handed in through the context.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from fleetwatch._constants import SPEEDING_HIGH_EXCESS_MPH, SPEEDING_MEDIUM_EXCESS_MPH
from fleetwatch.models._base import Severity
from fleetwatch.models.alerts import AlertType, CandidateAlert
from fleetwatch.models.rules import (
    DeviceOfflineRule,
    FuelTheftRule,
    GeofenceRule,
    HarshDrivingRule,
    IdleRule,
    MaintenanceRule,
    SpeedingRule,
)
from fleetwatch.models.telemetry import EngineStatus, TelemetryEvent
from fleetwatch.models.trip import MaintenanceRecord
from fleetwatch.state.events import GeofenceTransition, TransitionKind
from fleetwatch.state.store import VehicleState


@dataclass(frozen=True, slots=True)
class RuleContext:
    """Inputs a check may read besides the event and previous state.

    Parameters
    ----------
    organization_id : str
        Organization the vehicle belongs to.
    state : VehicleState
        Committed state including the event being evaluated.
    now : datetime
        Wall-clock time of the evaluation.
    speed_limit : float or None
        Posted limit at the event position, resolved by the evaluator.
    transitions : tuple of GeofenceTransition
        Geofence transitions caused by the event.
    maintenance : tuple of MaintenanceRecord
        Open maintenance records of the organization.
    """

    organization_id: str
    state: VehicleState
    now: datetime
    speed_limit: float | None = None
    transitions: tuple[GeofenceTransition, ...] = ()
    maintenance: tuple[MaintenanceRecord, ...] = ()


def speeding_severity(excess: float) -> Severity:
    if excess >= SPEEDING_HIGH_EXCESS_MPH:
        return Severity.HIGH
    if excess >= SPEEDING_MEDIUM_EXCESS_MPH:
        return Severity.MEDIUM
    return Severity.LOW


def check_speeding(
    event: TelemetryEvent,
    previous: VehicleState,
    rule: SpeedingRule,
    context: RuleContext,
) -> list[CandidateAlert]:
    limit = context.speed_limit
    if limit is None or event.speed <= limit + rule.conditions.tolerance:
        return []
    excess = event.speed - limit
    return [
        CandidateAlert(
            organization_id=context.organization_id,
            vehicle_id=event.vehicle_id,
            alert_type=AlertType.SPEEDING,
            severity=speeding_severity(excess),
            title="Speeding Violation",
            message=f"Vehicle traveling at {event.speed:g} mph in {limit:g} mph zone",
            location=event.location,
            timestamp=event.timestamp,
            metadata={"current_speed": event.speed, "speed_limit": limit, "violation": excess},
            rule_id=rule.id,
        )
    ]


def check_geofence(
    event: TelemetryEvent,
    previous: VehicleState,
    rule: GeofenceRule,
    context: RuleContext,
) -> list[CandidateAlert]:
    candidates: list[CandidateAlert] = []
    for transition in context.transitions:
        watched = rule.conditions.geofence_ids
        if watched and transition.geofence_id not in watched:
            continue
        entered = transition.kind is TransitionKind.ENTRY
        candidates.append(
            CandidateAlert(
                organization_id=context.organization_id,
                vehicle_id=event.vehicle_id,
                alert_type=AlertType.GEOFENCE_ENTRY if entered else AlertType.GEOFENCE_EXIT,
                severity=Severity.MEDIUM,
                title=f"Geofence {'Entry' if entered else 'Exit'}",
                message=f"Vehicle {'entered' if entered else 'exited'} {transition.geofence_name or transition.geofence_id}",
                location=event.location,
                timestamp=event.timestamp,
                metadata={
                    "geofence_id": transition.geofence_id,
                    "geofence_name": transition.geofence_name,
                    "action": transition.kind.value,
                },
                rule_id=rule.id,
            )
        )
    return candidates


def check_harsh_driving(
    event: TelemetryEvent,
    previous: VehicleState,
    rule: HarshDrivingRule,
    context: RuleContext,
) -> list[CandidateAlert]:
    prior = previous.last_event
    if prior is None:
        return []
    dt = (event.timestamp - prior.timestamp).total_seconds()
    if dt <= 0:
        return []

    acceleration = (event.speed - prior.speed) / dt
    conditions = rule.conditions
    if acceleration > conditions.harsh_acceleration:
        alert_type = AlertType.HARSH_ACCELERATION
        title = "Harsh Acceleration Detected"
        message = f"Rapid acceleration detected: {acceleration:.1f} mph/s"
        metadata = {"acceleration": acceleration}
    elif acceleration < conditions.harsh_braking:
        alert_type = AlertType.HARSH_BRAKING
        title = "Harsh Braking Detected"
        message = f"Hard braking detected: {abs(acceleration):.1f} mph/s"
        metadata = {"deceleration": abs(acceleration)}
    else:
        return []

    return [
        CandidateAlert(
            organization_id=context.organization_id,
            vehicle_id=event.vehicle_id,
            alert_type=alert_type,
            severity=Severity.MEDIUM,
            title=title,
            message=message,
            location=event.location,
            timestamp=event.timestamp,
            metadata=metadata,
            rule_id=rule.id,
        )
    ]


def check_idle(
    event: TelemetryEvent,
    previous: VehicleState,
    rule: IdleRule,
    context: RuleContext,
) -> list[CandidateAlert]:
    conditions = rule.conditions
    if event.speed > conditions.max_speed or event.engine_status is not EngineStatus.IDLE:
        return []
    # No moving sample seen yet: idle duration is unknown.
    last_moving_at = context.state.last_moving_at
    if last_moving_at is None:
        return []

    idle_minutes = (event.timestamp - last_moving_at).total_seconds() / 60.0
    if idle_minutes <= conditions.idle_threshold:
        return []
    return [
        CandidateAlert(
            organization_id=context.organization_id,
            vehicle_id=event.vehicle_id,
            alert_type=AlertType.EXCESSIVE_IDLE,
            severity=Severity.LOW,
            title="Excessive Idle Time",
            message=f"Vehicle has been idling for {round(idle_minutes)} minutes",
            location=event.location,
            timestamp=event.timestamp,
            metadata={"idle_minutes": round(idle_minutes)},
            rule_id=rule.id,
        )
    ]


def check_device_offline(
    state: VehicleState,
    rule: DeviceOfflineRule,
    context: RuleContext,
) -> list[CandidateAlert]:
    """Fire when the newest event is older than the offline threshold.

    Evaluated against the wall clock by the offline tick rather than on
    incoming events.
    """
    event = state.last_event
    if event is None:
        return []
    offline_minutes = (context.now - event.timestamp).total_seconds() / 60.0
    if offline_minutes <= rule.conditions.offline_threshold:
        return []
    return [
        CandidateAlert(
            organization_id=context.organization_id,
            vehicle_id=state.vehicle_id,
            alert_type=AlertType.DEVICE_OFFLINE,
            severity=Severity.HIGH,
            title="Device Offline",
            message=f"GPS device has been offline for {round(offline_minutes)} minutes",
            location=event.location,
            timestamp=context.now,
            metadata={"offline_minutes": round(offline_minutes), "last_seen": event.timestamp.isoformat()},
            rule_id=rule.id,
        )
    ]


def check_fuel_theft(
    event: TelemetryEvent,
    previous: VehicleState,
    rule: FuelTheftRule,
    context: RuleContext,
) -> list[CandidateAlert]:
    if event.fuel_level is None:
        return []
    prior = next((e for e in previous.history if e.fuel_level is not None), None)
    if prior is None or prior.fuel_level is None:
        return []

    conditions = rule.conditions
    fuel_drop = prior.fuel_level - event.fuel_level
    elapsed_minutes = (event.timestamp - prior.timestamp).total_seconds() / 60.0
    if fuel_drop <= conditions.fuel_drop or event.speed >= conditions.max_speed:
        return []
    if elapsed_minutes >= conditions.window_minutes:
        return []
    return [
        CandidateAlert(
            organization_id=context.organization_id,
            vehicle_id=event.vehicle_id,
            alert_type=AlertType.FUEL_THEFT,
            severity=Severity.CRITICAL,
            title="Potential Fuel Theft",
            message=f"Sudden fuel drop of {fuel_drop:.1f}% detected while vehicle stationary",
            location=event.location,
            timestamp=event.timestamp,
            metadata={
                "fuel_drop": fuel_drop,
                "previous_level": prior.fuel_level,
                "current_level": event.fuel_level,
            },
            rule_id=rule.id,
        )
    ]


def check_maintenance(
    event: TelemetryEvent,
    previous: VehicleState,
    rule: MaintenanceRule,
    context: RuleContext,
) -> list[CandidateAlert]:
    if event.odometer is None:
        return []
    conditions = rule.conditions
    candidates: list[CandidateAlert] = []
    for record in context.maintenance:
        if record.vehicle_id != event.vehicle_id or record.completed or record.next_service_mileage is None:
            continue
        remaining = record.next_service_mileage - event.odometer
        if remaining > conditions.warning_miles:
            continue
        label = record.maintenance_type.replace("_", " ")
        candidates.append(
            CandidateAlert(
                organization_id=context.organization_id,
                vehicle_id=event.vehicle_id,
                alert_type=AlertType.MAINTENANCE_DUE,
                severity=Severity.HIGH if remaining <= conditions.critical_miles else Severity.MEDIUM,
                title="Maintenance Due Soon",
                message=f"{label} due in {remaining:.0f} miles",
                location=event.location,
                timestamp=event.timestamp,
                metadata={
                    "maintenance_id": record.id,
                    "maintenance_type": record.maintenance_type,
                    "current_mileage": event.odometer,
                    "service_mileage": record.next_service_mileage,
                    "miles_remaining": remaining,
                },
                rule_id=rule.id,
            )
        )
    return candidates
