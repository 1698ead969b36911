"""Custom exception hierarchy for fleetwatch."""

from __future__ import annotations


class FleetwatchError(Exception):
    """Base exception for all fleetwatch errors."""


class FleetwatchConfigError(FleetwatchError):
    """Invalid or missing configuration."""


class MalformedPayloadError(FleetwatchError):
    """A provider payload is missing a required field or cannot be parsed.

    Such payloads are dropped at the ingestion boundary and never reach the
    state store.
    """

    def __init__(
        self,
        message: str,
        *,
        provider: str = "",
        field: str = "",
    ) -> None:
        self.provider = provider
        self.field = field
        super().__init__(message)


class UnsupportedProviderError(FleetwatchError):
    """No adapter is registered for the requested provider kind."""


class OutOfOrderEventError(FleetwatchError):
    """An event is older than the last event applied for the same vehicle."""

    def __init__(self, message: str, *, vehicle_id: str = "") -> None:
        self.vehicle_id = vehicle_id
        super().__init__(message)


class FleetwatchTransportError(FleetwatchError):
    """HTTP-level failure (network, non-2xx, invalid JSON)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        url: str = "",
    ) -> None:
        self.status_code = status_code
        self.url = url
        super().__init__(message)


class SpeedLimitLookupError(FleetwatchError):
    """The external speed-limit lookup failed or returned nothing usable."""


class ExternalLookupTimeoutError(SpeedLimitLookupError):
    """The external speed-limit lookup did not answer in time.

    The resolver catches this and serves the configured default limit.
    """


class PersistenceError(FleetwatchError):
    """A durable write or read against the persistence store failed."""


class RuleEvaluationError(FleetwatchError):
    """A single alert rule raised while evaluating an event.

    The evaluator isolates these per rule; other rules for the same event
    still run.
    """

    def __init__(
        self,
        message: str,
        *,
        rule_id: str = "",
        rule_type: str = "",
    ) -> None:
        self.rule_id = rule_id
        self.rule_type = rule_type
        super().__init__(message)


class DispatchError(FleetwatchError):
    """A notification channel failed to deliver an alert."""

    def __init__(self, message: str, *, channel: str = "") -> None:
        self.channel = channel
        super().__init__(message)
