"""Deterministic state update policy.

This module contains *no* payload parsing. The ingestion boundary is
responsible for producing normalized events with UTC timestamps.
"""

from __future__ import annotations

from datetime import datetime, timedelta


def should_accept_event(*, last_timestamp: datetime | None, incoming_timestamp: datetime) -> bool:
    """Decide whether an incoming event may be applied.

    Per vehicle, timestamps must be non-decreasing: an event equal to the last
    one is accepted, an older one is not.
    """
    if last_timestamp is None:
        return True
    return incoming_timestamp >= last_timestamp


def is_moving(speed: float, threshold_mph: float) -> bool:
    return speed > threshold_mph


def has_elapsed(start: datetime, now: datetime, duration: timedelta) -> bool:
    """Strictly longer than *duration*."""
    return (now - start) > duration
