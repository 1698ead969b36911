"""Runs the enabled rules of an organization against one event."""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Sequence
from typing import assert_never

from fleetwatch.exceptions import RuleEvaluationError
from fleetwatch.models.alerts import CandidateAlert
from fleetwatch.models.rules import (
    AlertRule,
    DeviceOfflineRule,
    FuelTheftRule,
    GeofenceRule,
    HarshDrivingRule,
    IdleRule,
    MaintenanceRule,
    SpeedingRule,
)
from fleetwatch.models.telemetry import TelemetryEvent
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
from fleetwatch.speed_limits import SpeedLimitResolver
from fleetwatch.state.store import VehicleState

_logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True, slots=True)
class EvaluationResult:
    """Candidates ranked most severe first, plus the errors of failed rules."""

    candidates: list[CandidateAlert]
    errors: list[RuleEvaluationError]


def rank_by_severity(candidates: Sequence[CandidateAlert]) -> list[CandidateAlert]:
    """Sort critical first; candidates of equal severity keep their order."""
    return sorted(candidates, key=lambda c: c.severity.rank, reverse=True)


def _run_rule(
    rule: AlertRule,
    event: TelemetryEvent,
    previous: VehicleState,
    context: RuleContext,
) -> list[CandidateAlert]:
    match rule:
        case SpeedingRule():
            return check_speeding(event, previous, rule, context)
        case GeofenceRule():
            return check_geofence(event, previous, rule, context)
        case HarshDrivingRule():
            return check_harsh_driving(event, previous, rule, context)
        case IdleRule():
            return check_idle(event, previous, rule, context)
        case DeviceOfflineRule():
            # Clock driven; see RuleEvaluator.evaluate_offline.
            return []
        case FuelTheftRule():
            return check_fuel_theft(event, previous, rule, context)
        case MaintenanceRule():
            return check_maintenance(event, previous, rule, context)
        case _:
            assert_never(rule)


class RuleEvaluator:
    """Evaluate rules with per-rule error isolation.

    A rule that raises is wrapped into :class:`RuleEvaluationError`, logged
    and reported in the result; the remaining rules still run.

    Parameters
    ----------
    resolver : SpeedLimitResolver or None
        Source of posted limits for speeding rules. Without one, speeding
        rules produce no candidates.
    """

    def __init__(self, resolver: SpeedLimitResolver | None = None) -> None:
        self._resolver = resolver

    async def evaluate(
        self,
        event: TelemetryEvent,
        previous: VehicleState,
        rules: Sequence[AlertRule],
        context: RuleContext,
    ) -> EvaluationResult:
        """Evaluate every enabled rule against ``event``."""
        candidates: list[CandidateAlert] = []
        errors: list[RuleEvaluationError] = []

        enabled = [rule for rule in rules if rule.enabled]
        if self._resolver is not None and any(isinstance(rule, SpeedingRule) for rule in enabled):
            limit = await self._resolver.resolve(event.latitude, event.longitude)
            context = dataclasses.replace(context, speed_limit=limit)

        for rule in enabled:
            try:
                candidates.extend(_run_rule(rule, event, previous, context))
            except Exception as exc:
                errors.append(self._isolate(rule, exc))

        return EvaluationResult(candidates=rank_by_severity(candidates), errors=errors)

    def evaluate_offline(
        self,
        state: VehicleState,
        rules: Sequence[AlertRule],
        context: RuleContext,
    ) -> EvaluationResult:
        """Evaluate the device-offline rules against ``context.now``."""
        candidates: list[CandidateAlert] = []
        errors: list[RuleEvaluationError] = []
        for rule in rules:
            if not rule.enabled or not isinstance(rule, DeviceOfflineRule):
                continue
            try:
                candidates.extend(check_device_offline(state, rule, context))
            except Exception as exc:
                errors.append(self._isolate(rule, exc))
        return EvaluationResult(candidates=rank_by_severity(candidates), errors=errors)

    @staticmethod
    def _isolate(rule: AlertRule, exc: Exception) -> RuleEvaluationError:
        error = RuleEvaluationError(
            f"Rule {rule.name or rule.id} ({rule.type}) failed: {exc}",
            rule_id=rule.id,
            rule_type=rule.type,
        )
        error.__cause__ = exc
        _logger.exception("Error evaluating rule %s (%s)", rule.id, rule.type, exc_info=exc)
        return error
