"""Geofence membership tracking and entry/exit detection."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from fleetwatch.models.geofence import Geofence
from fleetwatch.models.telemetry import TelemetryEvent
from fleetwatch.state.events import GeofenceTransition, TransitionKind
from fleetwatch.state.store import VehicleState, VehicleStateStore

_logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class MembershipUpdate:
    membership: frozenset[str]
    known_geofences: frozenset[str]
    transitions: tuple[GeofenceTransition, ...]


def membership_of(event: TelemetryEvent, geofences: Sequence[Geofence]) -> frozenset[str]:
    """Ids of the active geofences containing the event's position."""
    return frozenset(g.id for g in geofences if g.active and g.contains(event.latitude, event.longitude))


def diff_membership(
    previous: VehicleState,
    current: VehicleState,
    geofences: Sequence[Geofence],
) -> MembershipUpdate:
    """Compute membership for ``current.last_event`` and the transitions since ``previous``.

    The first event of a vehicle only records a baseline. A geofence the
    previous membership was not computed against (added on reload) is tested
    against the previous event directly. Geofences no longer in the snapshot
    drop out of membership silently.
    """
    event = current.last_event
    if event is None:
        raise ValueError(f"vehicle {current.vehicle_id} has no event to evaluate")

    active = [g for g in geofences if g.active]
    membership = membership_of(event, active)
    known = frozenset(g.id for g in active)

    prior_event = previous.last_event
    if prior_event is None:
        return MembershipUpdate(membership=membership, known_geofences=known, transitions=())

    transitions: list[GeofenceTransition] = []
    for geofence in active:
        if geofence.id in previous.known_geofences:
            was_inside = geofence.id in previous.geofence_membership
        else:
            was_inside = geofence.contains(prior_event.latitude, prior_event.longitude)
        is_inside = geofence.id in membership

        if is_inside and not was_inside and geofence.alert_on_entry:
            transitions.append(
                GeofenceTransition(geofence_id=geofence.id, geofence_name=geofence.name, kind=TransitionKind.ENTRY)
            )
        elif was_inside and not is_inside and geofence.alert_on_exit:
            transitions.append(
                GeofenceTransition(geofence_id=geofence.id, geofence_name=geofence.name, kind=TransitionKind.EXIT)
            )

    return MembershipUpdate(membership=membership, known_geofences=known, transitions=tuple(transitions))


class GeofenceTracker:
    """Derives geofence transitions and commits membership to the state store."""

    def __init__(self, store: VehicleStateStore) -> None:
        self._store = store

    def transitions(
        self,
        previous: VehicleState,
        current: VehicleState,
        geofences: Sequence[Geofence],
    ) -> tuple[VehicleState, list[GeofenceTransition]]:
        """Return the committed state and the transitions for ``current.last_event``."""
        update = diff_membership(previous, current, geofences)
        committed = self._store.set_membership(
            current.vehicle_id,
            update.membership,
            known_geofences=update.known_geofences,
        )
        if update.transitions:
            _logger.debug(
                "Geofence transitions vehicle=%s %s",
                current.vehicle_id,
                [(t.geofence_id, t.kind.value) for t in update.transitions],
            )
        return committed, list(update.transitions)
