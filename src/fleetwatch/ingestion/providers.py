"""Provider adapters.

Each GPS provider reports positions in its own shape and units. An adapter
maps one provider's payload onto :class:`TelemetryEvent`; everything past this
module is provider-agnostic.

Adapters are registered per provider kind in a :class:`ProviderRegistry`.
Adding a provider means adding one adapter class, never a branch elsewhere.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from typing import Any, ClassVar

from pydantic import ValidationError

from fleetwatch._constants import METERS_PER_MILE, MPH_PER_MPS
from fleetwatch._redact import redact_for_log
from fleetwatch.exceptions import MalformedPayloadError, UnsupportedProviderError
from fleetwatch.ingestion.normalize import parse_timestamp, pick, safe_float, safe_str
from fleetwatch.models.telemetry import EngineStatus, TelemetryEvent

_logger = logging.getLogger(__name__)

_ENGINE_STATUS_ALIASES: dict[str, EngineStatus] = {
    "on": EngineStatus.ON,
    "running": EngineStatus.ON,
    "ignition_on": EngineStatus.ON,
    "ignitionon": EngineStatus.ON,
    "true": EngineStatus.ON,
    "1": EngineStatus.ON,
    "off": EngineStatus.OFF,
    "ignition_off": EngineStatus.OFF,
    "ignitionoff": EngineStatus.OFF,
    "stopped": EngineStatus.OFF,
    "false": EngineStatus.OFF,
    "0": EngineStatus.OFF,
    "idle": EngineStatus.IDLE,
    "idling": EngineStatus.IDLE,
}

_KIND_ALIASES: dict[str, str] = {
    "fleetcomplete": "fleet_complete",
    "fleet-complete": "fleet_complete",
    "verizon_connect": "verizon",
    "teletrac_navman": "teletrac",
}


def parse_engine_status(value: Any) -> EngineStatus:
    """Map a provider engine state to on/off/idle; unknown values read as off."""
    if isinstance(value, bool):
        return EngineStatus.ON if value else EngineStatus.OFF
    text = safe_str(value)
    if text is None:
        return EngineStatus.OFF
    return _ENGINE_STATUS_ALIASES.get(text.lower().replace(" ", "_"), EngineStatus.OFF)


def parse_diagnostic_codes(value: Any) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        items: Iterable[Any] = value.split(",")
    elif isinstance(value, (list, tuple)):
        items = value
    else:
        return ()
    codes = (safe_str(item) for item in items)
    return tuple(code for code in codes if code)


class ProviderAdapter(ABC):
    """Maps one provider's payload onto the canonical event.

    Subclasses implement :meth:`extract`, returning canonical field names with
    values already converted to canonical units (mph, miles, percent). The
    base class enforces required fields and builds the event.
    """

    kind: ClassVar[str]
    batch_keys: ClassVar[tuple[str, ...]] = ()

    @abstractmethod
    def extract(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        """Pull canonical fields out of *payload*."""

    def normalize(self, payload: Any) -> TelemetryEvent:
        """Convert a single payload.

        Raises :class:`MalformedPayloadError` when the device id, coordinates
        or timestamp are missing or unparseable, or when a value is out of
        range.
        """
        if not isinstance(payload, Mapping):
            raise MalformedPayloadError(
                f"{self.kind} payload is not an object",
                provider=self.kind,
            )

        fields = self.extract(payload)

        device_id = safe_str(fields.get("device_id"))
        if device_id is None:
            raise MalformedPayloadError(f"{self.kind} payload missing device id", provider=self.kind, field="device_id")
        latitude = safe_float(fields.get("latitude"))
        longitude = safe_float(fields.get("longitude"))
        if latitude is None or longitude is None:
            raise MalformedPayloadError(
                f"{self.kind} payload missing coordinates",
                provider=self.kind,
                field="latitude" if latitude is None else "longitude",
            )
        timestamp = parse_timestamp(fields.get("timestamp"))
        if timestamp is None:
            raise MalformedPayloadError(f"{self.kind} payload missing timestamp", provider=self.kind, field="timestamp")

        fuel_level = safe_float(fields.get("fuel_level"))
        if fuel_level is not None:
            fuel_level = min(100.0, max(0.0, fuel_level))

        try:
            return TelemetryEvent(
                device_id=device_id,
                vehicle_id=safe_str(fields.get("vehicle_id")) or device_id,
                latitude=latitude,
                longitude=longitude,
                speed=safe_float(fields.get("speed")) or 0.0,
                heading=safe_float(fields.get("heading")) or 0.0,
                timestamp=timestamp,
                engine_status=parse_engine_status(fields.get("engine_status")),
                fuel_level=fuel_level,
                odometer=safe_float(fields.get("odometer")),
                diagnostic_codes=parse_diagnostic_codes(fields.get("diagnostic_codes")),
                altitude=safe_float(fields.get("altitude")),
                accuracy=safe_float(fields.get("accuracy")),
                engine_hours=safe_float(fields.get("engine_hours")),
                provider=safe_str(fields.get("provider")) or self.kind,
                raw=dict(payload),
            )
        except ValidationError as exc:
            first = exc.errors()[0] if exc.errors() else {}
            location = ".".join(str(part) for part in first.get("loc", ()))
            raise MalformedPayloadError(
                f"{self.kind} payload rejected: {location}: {first.get('msg', exc)}",
                provider=self.kind,
                field=location,
            ) from exc

    def unwrap_batch(self, response: Any) -> list[Any]:
        """Return the list of position entries in a batch response."""
        if isinstance(response, list):
            return response
        if isinstance(response, Mapping):
            for key in self.batch_keys:
                items = response.get(key)
                if isinstance(items, list):
                    return items
        return []


class VerizonAdapter(ProviderAdapter):
    kind = "verizon"
    batch_keys = ("locations",)

    def extract(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        return {
            "device_id": pick(payload, "device_id"),
            "vehicle_id": pick(payload, "vehicle_id"),
            "latitude": pick(payload, "latitude", "lat"),
            "longitude": pick(payload, "longitude", "lng"),
            "speed": pick(payload, "speed_mph"),
            "heading": pick(payload, "heading"),
            "timestamp": pick(payload, "timestamp"),
            "engine_status": pick(payload, "engine_status"),
            "fuel_level": pick(payload, "fuel_level"),
            "odometer": pick(payload, "odometer"),
            "engine_hours": pick(payload, "engine_hours"),
            "altitude": pick(payload, "altitude"),
            "accuracy": pick(payload, "accuracy"),
            "diagnostic_codes": pick(payload, "diagnostic_codes"),
        }


class TeletracAdapter(VerizonAdapter):
    """Teletrac Navman uses the same REST location layout as Verizon Connect."""

    kind = "teletrac"


class GeotabAdapter(ProviderAdapter):
    """Geotab ``LogRecord`` entries; speed is reported in m/s."""

    kind = "geotab"
    batch_keys = ("result",)

    def extract(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        device_id = pick(payload, "device.id")
        speed_mps = safe_float(pick(payload, "speed"))
        return {
            "device_id": device_id,
            "vehicle_id": device_id,
            "latitude": pick(payload, "latitude"),
            "longitude": pick(payload, "longitude"),
            "speed": speed_mps * MPH_PER_MPS if speed_mps is not None else None,
            "heading": pick(payload, "bearing"),
            "timestamp": pick(payload, "dateTime"),
            "engine_status": pick(payload, "engineStatus"),
            "fuel_level": pick(payload, "fuelLevel"),
            "odometer": pick(payload, "odometer"),
            "accuracy": pick(payload, "accuracy"),
        }


class FleetCompleteAdapter(ProviderAdapter):
    kind = "fleet_complete"
    batch_keys = ("positions", "vehicles")

    def extract(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        return {
            "device_id": pick(payload, "device_id"),
            "vehicle_id": pick(payload, "vehicle_id"),
            "latitude": pick(payload, "location.latitude"),
            "longitude": pick(payload, "location.longitude"),
            "speed": pick(payload, "speed"),
            "heading": pick(payload, "heading"),
            "timestamp": pick(payload, "timestamp", "last_update"),
            "engine_status": pick(payload, "engine_status"),
            "fuel_level": pick(payload, "fuel_level"),
            "accuracy": pick(payload, "gps_accuracy"),
        }


class SamsaraAdapter(ProviderAdapter):
    """Samsara fleet vehicle snapshots; odometer is reported in metres."""

    kind = "samsara"
    batch_keys = ("data",)

    def extract(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        vehicle_id = pick(payload, "id")
        odometer_m = safe_float(pick(payload, "odometerMeters"))
        return {
            "device_id": vehicle_id,
            "vehicle_id": vehicle_id,
            "latitude": pick(payload, "gpsLocation.latitude"),
            "longitude": pick(payload, "gpsLocation.longitude"),
            "speed": pick(payload, "gpsLocation.speedMilesPerHour"),
            "heading": pick(payload, "gpsLocation.heading"),
            "timestamp": pick(payload, "gpsLocation.timeMs"),
            "engine_status": pick(payload, "engineStates.0.value"),
            "fuel_level": pick(payload, "fuelPercents.0.value"),
            "odometer": odometer_m / METERS_PER_MILE if odometer_m is not None else None,
        }


class GenericAdapter(ProviderAdapter):
    """Realtime feed shape; also the canonical serialization of an event."""

    kind = "generic"
    batch_keys = ("events", "data")

    def extract(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        return {
            "device_id": pick(payload, "device_id", "deviceId"),
            "vehicle_id": pick(payload, "vehicle_id", "vehicleId"),
            "latitude": pick(payload, "latitude", "lat"),
            "longitude": pick(payload, "longitude", "lng"),
            "speed": pick(payload, "speed"),
            "heading": pick(payload, "heading", "bearing"),
            "timestamp": pick(payload, "timestamp"),
            "engine_status": pick(payload, "engine_status", "engineStatus"),
            "fuel_level": pick(payload, "fuel_level", "fuelLevel"),
            "odometer": pick(payload, "odometer"),
            "altitude": pick(payload, "altitude"),
            "accuracy": pick(payload, "accuracy"),
            "engine_hours": pick(payload, "engine_hours", "engineHours"),
            "diagnostic_codes": pick(payload, "diagnostic_codes", "diagnosticCodes"),
            "provider": pick(payload, "provider"),
        }


BUILTIN_ADAPTERS: tuple[type[ProviderAdapter], ...] = (
    VerizonAdapter,
    TeletracAdapter,
    GeotabAdapter,
    FleetCompleteAdapter,
    SamsaraAdapter,
    GenericAdapter,
)


def canonical_kind(kind: str) -> str:
    key = kind.strip().lower()
    return _KIND_ALIASES.get(key, key)


class ProviderRegistry:
    """Adapters keyed by provider kind."""

    def __init__(self, adapters: Iterable[ProviderAdapter] | None = None) -> None:
        self._adapters: dict[str, ProviderAdapter] = {}
        for adapter in adapters if adapters is not None else (cls() for cls in BUILTIN_ADAPTERS):
            self.register(adapter)

    def register(self, adapter: ProviderAdapter) -> None:
        self._adapters[canonical_kind(adapter.kind)] = adapter

    def kinds(self) -> list[str]:
        return sorted(self._adapters)

    def get(self, kind: str) -> ProviderAdapter:
        adapter = self._adapters.get(canonical_kind(kind))
        if adapter is None:
            raise UnsupportedProviderError(f"Unsupported GPS provider: {kind}")
        return adapter

    def normalize(self, payload: Any, provider_kind: str) -> TelemetryEvent:
        """Normalize one payload; raises on malformed input or unknown provider."""
        return self.get(provider_kind).normalize(payload)

    def normalize_batch(
        self,
        response: Any,
        provider_kind: str,
    ) -> tuple[list[TelemetryEvent], list[MalformedPayloadError]]:
        """Normalize every entry of a provider batch response.

        Malformed entries are logged and returned alongside the good events;
        they never abort the batch.
        """
        adapter = self.get(provider_kind)
        events: list[TelemetryEvent] = []
        errors: list[MalformedPayloadError] = []
        for entry in adapter.unwrap_batch(response):
            try:
                events.append(adapter.normalize(entry))
            except MalformedPayloadError as exc:
                _logger.warning("Dropping malformed %s payload: %s", adapter.kind, exc)
                _logger.debug("Malformed payload body: %s", redact_for_log(entry))
                errors.append(exc)
        return events, errors


def normalize(payload: Any, provider_kind: str) -> TelemetryEvent:
    """Normalize one payload with the built-in adapters."""
    return ProviderRegistry().normalize(payload, provider_kind)
