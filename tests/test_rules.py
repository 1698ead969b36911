from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from fleetwatch.models._base import Severity
from fleetwatch.models.alerts import AlertType
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
from fleetwatch.rules import evaluator as evaluator_module
from fleetwatch.rules.checks import (
    RuleContext,
    check_device_offline,
    check_fuel_theft,
    check_geofence,
    check_harsh_driving,
    check_idle,
    check_maintenance,
    check_speeding,
)
from fleetwatch.rules.evaluator import RuleEvaluator
from fleetwatch.speed_limits import SpeedLimitResolver
from fleetwatch.state.events import GeofenceTransition, TransitionKind
from fleetwatch.state.store import VehicleState, VehicleStateStore

ORG = "org-1"


def _dt(seconds: float = 0) -> datetime:
    return datetime(2026, 1, 1, tzinfo=UTC) + timedelta(seconds=seconds)


def _event(seconds: float, **fields: object) -> TelemetryEvent:
    values: dict[str, object] = {
        "device_id": "D",
        "vehicle_id": "V",
        "latitude": 10.0,
        "longitude": 20.0,
        "timestamp": _dt(seconds),
    }
    values.update(fields)
    return TelemetryEvent(**values)  # type: ignore[arg-type]


def _replay(*events: TelemetryEvent) -> tuple[VehicleState, VehicleState]:
    """Apply events in order; return the (previous, current) pair of the last one."""
    store = VehicleStateStore()
    pair: tuple[VehicleState, VehicleState] | None = None
    for event in events:
        pair = store.apply(event, organization_id=ORG)
    assert pair is not None
    return pair


def _context(state: VehicleState, **fields: object) -> RuleContext:
    values: dict[str, object] = {"organization_id": ORG, "state": state, "now": _dt(0)}
    values.update(fields)
    return RuleContext(**values)  # type: ignore[arg-type]


class _FixedLookup:
    def __init__(self, limit: float | None) -> None:
        self.limit = limit
        self.calls = 0

    async def lookup(self, lat: float, lng: float) -> float | None:
        self.calls += 1
        return self.limit


# ------------------------------------------------------------------
# Speeding
# ------------------------------------------------------------------


@pytest.mark.parametrize(
    ("speed", "severity"),
    [
        (40.0, None),
        (40.01, Severity.LOW),
        (41.0, Severity.LOW),
        (42.0, Severity.LOW),
        (44.9, Severity.LOW),
        (45.0, Severity.MEDIUM),
        (54.9, Severity.MEDIUM),
        (55.0, Severity.HIGH),
        (56.0, Severity.HIGH),
    ],
)
def test_speeding_thresholds(speed: float, severity: Severity | None) -> None:
    rule = SpeedingRule(id="r-speed", organization_id=ORG)
    previous, current = _replay(_event(0, speed=speed))

    candidates = check_speeding(current.last_event, previous, rule, _context(current, speed_limit=35.0))  # type: ignore[arg-type]

    if severity is None:
        assert candidates == []
    else:
        assert [c.severity for c in candidates] == [severity]
        assert candidates[0].alert_type == AlertType.SPEEDING
        assert candidates[0].metadata["speed_limit"] == 35.0
        assert candidates[0].metadata["violation"] == pytest.approx(speed - 35.0)
        assert candidates[0].rule_id == "r-speed"


def test_speeding_respects_custom_tolerance() -> None:
    rule = SpeedingRule(id="r", organization_id=ORG, conditions={"tolerance": 0})
    previous, current = _replay(_event(0, speed=36))

    candidates = check_speeding(current.last_event, previous, rule, _context(current, speed_limit=35.0))  # type: ignore[arg-type]

    assert len(candidates) == 1


# ------------------------------------------------------------------
# Geofence
# ------------------------------------------------------------------


def test_geofence_candidate_per_transition() -> None:
    rule = GeofenceRule(id="r-geo", organization_id=ORG)
    previous, current = _replay(_event(0))
    transitions = (
        GeofenceTransition(geofence_id="a", geofence_name="Depot", kind=TransitionKind.EXIT),
        GeofenceTransition(geofence_id="b", geofence_name="Site", kind=TransitionKind.ENTRY),
    )

    candidates = check_geofence(current.last_event, previous, rule, _context(current, transitions=transitions))  # type: ignore[arg-type]

    assert [c.alert_type for c in candidates] == [AlertType.GEOFENCE_EXIT, AlertType.GEOFENCE_ENTRY]
    assert all(c.severity == Severity.MEDIUM for c in candidates)
    assert candidates[1].metadata["geofence_id"] == "b"


def test_geofence_rule_limited_to_listed_geofences() -> None:
    rule = GeofenceRule(id="r-geo", organization_id=ORG, conditions={"geofenceIds": ["b"]})
    previous, current = _replay(_event(0))
    transitions = (
        GeofenceTransition(geofence_id="a", geofence_name="Depot", kind=TransitionKind.EXIT),
        GeofenceTransition(geofence_id="b", geofence_name="Site", kind=TransitionKind.ENTRY),
    )

    candidates = check_geofence(current.last_event, previous, rule, _context(current, transitions=transitions))  # type: ignore[arg-type]

    assert [c.metadata["geofence_id"] for c in candidates] == ["b"]


# ------------------------------------------------------------------
# Harsh driving
# ------------------------------------------------------------------


def test_gentle_braking_over_ten_seconds_is_not_harsh() -> None:
    rule = HarshDrivingRule(id="r", organization_id=ORG)
    previous, current = _replay(_event(0, speed=40), _event(10, speed=10))

    assert check_harsh_driving(current.last_event, previous, rule, _context(current)) == []  # type: ignore[arg-type]


def test_braking_over_two_seconds_is_harsh() -> None:
    rule = HarshDrivingRule(id="r", organization_id=ORG)
    previous, current = _replay(_event(0, speed=40), _event(2, speed=10))

    candidates = check_harsh_driving(current.last_event, previous, rule, _context(current))  # type: ignore[arg-type]

    assert [c.alert_type for c in candidates] == [AlertType.HARSH_BRAKING]
    assert candidates[0].metadata["deceleration"] == pytest.approx(15.0)
    assert candidates[0].severity == Severity.MEDIUM


def test_rapid_acceleration_is_harsh() -> None:
    rule = HarshDrivingRule(id="r", organization_id=ORG)
    previous, current = _replay(_event(0, speed=0), _event(2, speed=20))

    candidates = check_harsh_driving(current.last_event, previous, rule, _context(current))  # type: ignore[arg-type]

    assert [c.alert_type for c in candidates] == [AlertType.HARSH_ACCELERATION]


def test_harsh_driving_needs_prior_sample_and_positive_dt() -> None:
    rule = HarshDrivingRule(id="r", organization_id=ORG)
    previous, current = _replay(_event(0, speed=60))
    assert check_harsh_driving(current.last_event, previous, rule, _context(current)) == []  # type: ignore[arg-type]

    previous, current = _replay(_event(0, speed=60), _event(0, speed=0))
    assert check_harsh_driving(current.last_event, previous, rule, _context(current)) == []  # type: ignore[arg-type]


# ------------------------------------------------------------------
# Idle
# ------------------------------------------------------------------


def test_idle_beyond_threshold_since_last_motion() -> None:
    rule = IdleRule(id="r", organization_id=ORG)
    previous, current = _replay(
        _event(0, speed=30),
        _event(60, speed=0, engine_status=EngineStatus.IDLE),
        _event(60 + 16 * 60, speed=0, engine_status=EngineStatus.IDLE),
    )

    candidates = check_idle(current.last_event, previous, rule, _context(current))  # type: ignore[arg-type]

    assert [c.alert_type for c in candidates] == [AlertType.EXCESSIVE_IDLE]
    assert candidates[0].severity == Severity.LOW
    assert candidates[0].metadata["idle_minutes"] == 17


def test_idle_below_threshold_or_engine_off() -> None:
    rule = IdleRule(id="r", organization_id=ORG)

    previous, current = _replay(_event(0, speed=30), _event(10 * 60, speed=0, engine_status=EngineStatus.IDLE))
    assert check_idle(current.last_event, previous, rule, _context(current)) == []  # type: ignore[arg-type]

    previous, current = _replay(_event(0, speed=30), _event(30 * 60, speed=0, engine_status=EngineStatus.OFF))
    assert check_idle(current.last_event, previous, rule, _context(current)) == []  # type: ignore[arg-type]


def test_idle_without_any_moving_sample_is_silent() -> None:
    rule = IdleRule(id="r", organization_id=ORG)
    previous, current = _replay(
        _event(0, speed=0, engine_status=EngineStatus.IDLE),
        _event(60 * 60, speed=0, engine_status=EngineStatus.IDLE),
    )

    assert check_idle(current.last_event, previous, rule, _context(current)) == []  # type: ignore[arg-type]


# ------------------------------------------------------------------
# Device offline
# ------------------------------------------------------------------


def test_offline_fires_once_per_tick_until_new_sample() -> None:
    rule = DeviceOfflineRule(id="r-off", organization_id=ORG)
    _, state = _replay(_event(0))

    first = check_device_offline(state, rule, _context(state, now=_dt(6 * 60)))
    second = check_device_offline(state, rule, _context(state, now=_dt(7 * 60)))

    assert [c.alert_type for c in first] == [AlertType.DEVICE_OFFLINE]
    assert first[0].severity == Severity.HIGH
    assert first[0].timestamp == _dt(6 * 60)
    assert len(second) == 1

    _, refreshed = _replay(_event(0), _event(7 * 60))
    assert check_device_offline(refreshed, rule, _context(refreshed, now=_dt(7 * 60 + 30))) == []


def test_offline_within_threshold_is_silent() -> None:
    rule = DeviceOfflineRule(id="r", organization_id=ORG)
    _, state = _replay(_event(0))

    assert check_device_offline(state, rule, _context(state, now=_dt(4 * 60))) == []


# ------------------------------------------------------------------
# Fuel theft
# ------------------------------------------------------------------


def test_sudden_fuel_drop_while_stationary_is_critical() -> None:
    rule = FuelTheftRule(id="r", organization_id=ORG)
    previous, current = _replay(
        _event(0, fuel_level=80.0),
        _event(60, speed=0),
        _event(10 * 60, speed=0, fuel_level=55.0),
    )

    candidates = check_fuel_theft(current.last_event, previous, rule, _context(current))  # type: ignore[arg-type]

    assert [c.severity for c in candidates] == [Severity.CRITICAL]
    assert candidates[0].metadata["fuel_drop"] == pytest.approx(25.0)
    assert candidates[0].metadata["previous_level"] == 80.0


@pytest.mark.parametrize(
    ("seconds", "speed", "level"),
    [
        (10 * 60, 0.0, 60.0),  # drop of exactly 20
        (31 * 60, 0.0, 50.0),  # outside the window
        (10 * 60, 5.0, 50.0),  # not stationary
    ],
)
def test_fuel_drop_outside_conditions_is_ignored(seconds: float, speed: float, level: float) -> None:
    rule = FuelTheftRule(id="r", organization_id=ORG)
    previous, current = _replay(_event(0, fuel_level=80.0), _event(seconds, speed=speed, fuel_level=level))

    assert check_fuel_theft(current.last_event, previous, rule, _context(current)) == []  # type: ignore[arg-type]


# ------------------------------------------------------------------
# Maintenance
# ------------------------------------------------------------------


@pytest.mark.parametrize(
    ("odometer", "severity"),
    [
        (9_400.0, None),
        (9_600.0, Severity.MEDIUM),
        (9_950.0, Severity.HIGH),
        (10_100.0, Severity.HIGH),
    ],
)
def test_maintenance_due_severity(odometer: float, severity: Severity | None) -> None:
    rule = MaintenanceRule(id="r", organization_id=ORG)
    records = (
        MaintenanceRecord(id="m1", vehicle_id="V", maintenance_type="oil_change", next_service_mileage=10_000),
        MaintenanceRecord(id="m2", vehicle_id="OTHER", next_service_mileage=10_000),
        MaintenanceRecord(id="m3", vehicle_id="V", next_service_mileage=None),
    )
    previous, current = _replay(_event(0, odometer=odometer))

    candidates = check_maintenance(current.last_event, previous, rule, _context(current, maintenance=records))  # type: ignore[arg-type]

    if severity is None:
        assert candidates == []
    else:
        assert [c.severity for c in candidates] == [severity]
        assert candidates[0].metadata["maintenance_id"] == "m1"
        assert "oil change" in candidates[0].message


# ------------------------------------------------------------------
# Evaluator
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_evaluator_ranks_candidates_by_severity() -> None:
    lookup = _FixedLookup(35.0)
    evaluator = RuleEvaluator(SpeedLimitResolver(lookup))
    rules = [
        SpeedingRule(id="speed", organization_id=ORG),
        FuelTheftRule(id="fuel", organization_id=ORG, conditions={"max_speed": 100}),
    ]
    previous, current = _replay(_event(0, speed=41, fuel_level=90.0), _event(60, speed=42, fuel_level=50.0))

    result = await evaluator.evaluate(current.last_event, previous, rules, _context(current))  # type: ignore[arg-type]

    assert [c.alert_type for c in result.candidates] == [AlertType.FUEL_THEFT, AlertType.SPEEDING]
    assert result.errors == []
    assert lookup.calls == 1


@pytest.mark.asyncio
async def test_evaluator_isolates_failing_rule(monkeypatch: pytest.MonkeyPatch) -> None:
    def boom(*_args: object) -> list[object]:
        raise RuntimeError("broken rule")

    monkeypatch.setattr(evaluator_module, "check_idle", boom)
    evaluator = RuleEvaluator(SpeedLimitResolver(_FixedLookup(35.0)))
    rules = [
        IdleRule(id="idle", organization_id=ORG),
        SpeedingRule(id="speed", organization_id=ORG),
    ]
    previous, current = _replay(_event(0, speed=60))

    result = await evaluator.evaluate(current.last_event, previous, rules, _context(current))  # type: ignore[arg-type]

    assert [c.alert_type for c in result.candidates] == [AlertType.SPEEDING]
    assert len(result.errors) == 1
    assert result.errors[0].rule_id == "idle"
    assert result.errors[0].rule_type == "idle_time"
    assert isinstance(result.errors[0].__cause__, RuntimeError)


@pytest.mark.asyncio
async def test_evaluator_skips_disabled_rules_and_offline_rules_on_events() -> None:
    lookup = _FixedLookup(35.0)
    evaluator = RuleEvaluator(SpeedLimitResolver(lookup))
    rules = [
        SpeedingRule(id="speed", organization_id=ORG, enabled=False),
        DeviceOfflineRule(id="off", organization_id=ORG),
    ]
    previous, current = _replay(_event(0, speed=90))

    result = await evaluator.evaluate(
        current.last_event,  # type: ignore[arg-type]
        previous,
        rules,
        _context(current, now=_dt(3600)),
    )

    assert result.candidates == []
    assert lookup.calls == 0


def test_evaluate_offline_only_runs_offline_rules() -> None:
    evaluator = RuleEvaluator()
    rules = [SpeedingRule(id="speed", organization_id=ORG), DeviceOfflineRule(id="off", organization_id=ORG)]
    _, state = _replay(_event(0, speed=90))

    result = evaluator.evaluate_offline(state, rules, _context(state, now=_dt(600)))

    assert [c.alert_type for c in result.candidates] == [AlertType.DEVICE_OFFLINE]
    assert result.candidates[0].rule_id == "off"
