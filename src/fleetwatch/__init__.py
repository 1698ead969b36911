"""fleetwatch - Async fleet telemetry ingestion and alerting pipeline."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("fleetwatch")
except PackageNotFoundError:
    __version__ = "0+local"
from fleetwatch._mqtt import MqttSettings, MqttTelemetrySource
from fleetwatch.alerts.channels import LoggingChannel, WebhookChannel
from fleetwatch.alerts.dedup import AlertDeduplicator
from fleetwatch.alerts.dispatch import DispatchResult, NotificationChannel, NotificationDispatcher
from fleetwatch.config import FleetwatchConfig
from fleetwatch.exceptions import (
    DispatchError,
    ExternalLookupTimeoutError,
    FleetwatchConfigError,
    FleetwatchError,
    FleetwatchTransportError,
    MalformedPayloadError,
    OutOfOrderEventError,
    PersistenceError,
    RuleEvaluationError,
    SpeedLimitLookupError,
    UnsupportedProviderError,
)
from fleetwatch.ingestion.providers import ProviderAdapter, ProviderRegistry, normalize
from fleetwatch.models import (
    Alert,
    AlertRule,
    AlertType,
    CandidateAlert,
    EngineStatus,
    Geofence,
    Location,
    MaintenanceRecord,
    Severity,
    TelemetryEvent,
    Trip,
    TripStatus,
    parse_alert_rule,
)
from fleetwatch.persistence import InMemoryRepository
from fleetwatch.pipeline import ConfigSnapshot, PipelineStats, ProcessResult, TelemetryPipeline
from fleetwatch.rules.evaluator import RuleEvaluator
from fleetwatch.speed_limits import OverpassSpeedLimitLookup, SpeedLimitResolver
from fleetwatch.state.store import VehicleState, VehicleStateStore

__all__ = [
    "__version__",
    "Alert",
    "AlertDeduplicator",
    "AlertRule",
    "AlertType",
    "CandidateAlert",
    "ConfigSnapshot",
    "DispatchError",
    "DispatchResult",
    "EngineStatus",
    "ExternalLookupTimeoutError",
    "FleetwatchConfig",
    "FleetwatchConfigError",
    "FleetwatchError",
    "FleetwatchTransportError",
    "Geofence",
    "InMemoryRepository",
    "Location",
    "LoggingChannel",
    "MaintenanceRecord",
    "MalformedPayloadError",
    "MqttSettings",
    "MqttTelemetrySource",
    "NotificationChannel",
    "NotificationDispatcher",
    "OutOfOrderEventError",
    "OverpassSpeedLimitLookup",
    "PersistenceError",
    "PipelineStats",
    "ProcessResult",
    "ProviderAdapter",
    "ProviderRegistry",
    "RuleEvaluationError",
    "RuleEvaluator",
    "Severity",
    "SpeedLimitLookupError",
    "SpeedLimitResolver",
    "TelemetryEvent",
    "TelemetryPipeline",
    "Trip",
    "TripStatus",
    "UnsupportedProviderError",
    "VehicleState",
    "VehicleStateStore",
    "WebhookChannel",
    "normalize",
    "parse_alert_rule",
]
