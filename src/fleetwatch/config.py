"""Pipeline configuration for fleetwatch."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from fleetwatch._constants import (
    DEFAULT_HISTORY_SIZE,
    DEFAULT_SPEED_LIMIT_MPH,
    MOTION_THRESHOLD_MPH,
    OVERPASS_URL,
)
from fleetwatch.exceptions import FleetwatchConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclasses.dataclass(frozen=True)
class FleetwatchConfig:
    """Pipeline configuration.

    Parameters
    ----------
    default_speed_limit_mph : float
        Limit served when the speed-limit lookup fails or times out.
    speed_limit_cache_ttl : float
        Seconds a resolved speed limit stays fresh.
    speed_limit_cache_precision : int
        Decimal places coordinates are rounded to for the cache key.
        Four places is roughly 11 m.
    speed_limit_cache_size : int
        Maximum cached positions. The least recently used entry is evicted
        first; entries unused for four TTLs are dropped on each refresh pass.
    speed_limit_timeout : float
        Upper bound in seconds on a single external speed-limit lookup.
    speed_limit_url : str
        Overpass API endpoint used by the default lookup.
    speed_limit_lookup_enabled : bool
        When false the resolver never calls out and always serves the default.
    history_size : int
        Number of recent events kept per vehicle (newest first).
    motion_threshold_mph : float
        Speed above which a vehicle counts as moving.
    trip_close_grace : float
        Seconds a vehicle must stay at or below the motion threshold before
        its active trip is closed.
    dedup_window : float
        Seconds during which repeated alerts of the same type for the same
        vehicle are suppressed.
    persistence_timeout : float
        Upper bound in seconds on a single persistence call.
    dispatch_timeout : float
        Upper bound in seconds on a single notification channel send.
    offline_check_interval : float
        Seconds between device-offline ticks. ``0`` disables the built-in loop
        (an external scheduler then calls ``check_offline``).
    speed_limit_refresh_interval : float
        Seconds between refreshes of stale speed-limit cache entries.
        ``0`` disables the loop.
    lane_queue_size : int
        Maximum queued work items per vehicle lane.
    webhook_timeout : float
        Total HTTP timeout for webhook deliveries.
    """

    default_speed_limit_mph: float = DEFAULT_SPEED_LIMIT_MPH
    speed_limit_cache_ttl: float = 3600.0
    speed_limit_cache_precision: int = 4
    speed_limit_cache_size: int = 50_000
    speed_limit_timeout: float = 3.0
    speed_limit_url: str = OVERPASS_URL
    speed_limit_lookup_enabled: bool = True
    history_size: int = DEFAULT_HISTORY_SIZE
    motion_threshold_mph: float = MOTION_THRESHOLD_MPH
    trip_close_grace: float = 300.0
    dedup_window: float = 30 * 60.0
    persistence_timeout: float = 3.0
    dispatch_timeout: float = 5.0
    offline_check_interval: float = 60.0
    speed_limit_refresh_interval: float = 900.0
    lane_queue_size: int = 1000
    webhook_timeout: float = 5.0

    def __post_init__(self) -> None:
        if self.history_size < 2:
            raise FleetwatchConfigError("history_size must be at least 2")
        if self.speed_limit_cache_precision < 0:
            raise FleetwatchConfigError("speed_limit_cache_precision must be non-negative")
        if self.speed_limit_cache_size < 1:
            raise FleetwatchConfigError("speed_limit_cache_size must be positive")
        if self.lane_queue_size < 1:
            raise FleetwatchConfigError("lane_queue_size must be positive")
        for name in ("speed_limit_timeout", "persistence_timeout", "dispatch_timeout", "webhook_timeout"):
            if getattr(self, name) <= 0:
                raise FleetwatchConfigError(f"{name} must be positive")
        for name in ("dedup_window", "trip_close_grace", "offline_check_interval", "speed_limit_refresh_interval"):
            if getattr(self, name) < 0:
                raise FleetwatchConfigError(f"{name} must be non-negative")

    @classmethod
    def from_env(cls, **overrides: Any) -> FleetwatchConfig:
        """Create configuration from environment variables.

        Reads optional ``FLEETWATCH_*`` variables. Explicit keyword arguments
        override environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        FleetwatchConfig
            Populated configuration.
        """
        env = os.environ

        _ENV_FLOAT_MAP = {
            "FLEETWATCH_DEFAULT_SPEED_LIMIT_MPH": "default_speed_limit_mph",
            "FLEETWATCH_SPEED_LIMIT_CACHE_TTL": "speed_limit_cache_ttl",
            "FLEETWATCH_SPEED_LIMIT_TIMEOUT": "speed_limit_timeout",
            "FLEETWATCH_MOTION_THRESHOLD_MPH": "motion_threshold_mph",
            "FLEETWATCH_TRIP_CLOSE_GRACE": "trip_close_grace",
            "FLEETWATCH_DEDUP_WINDOW": "dedup_window",
            "FLEETWATCH_PERSISTENCE_TIMEOUT": "persistence_timeout",
            "FLEETWATCH_DISPATCH_TIMEOUT": "dispatch_timeout",
            "FLEETWATCH_OFFLINE_CHECK_INTERVAL": "offline_check_interval",
            "FLEETWATCH_SPEED_LIMIT_REFRESH_INTERVAL": "speed_limit_refresh_interval",
            "FLEETWATCH_WEBHOOK_TIMEOUT": "webhook_timeout",
        }
        _ENV_INT_MAP = {
            "FLEETWATCH_SPEED_LIMIT_CACHE_PRECISION": "speed_limit_cache_precision",
            "FLEETWATCH_SPEED_LIMIT_CACHE_SIZE": "speed_limit_cache_size",
            "FLEETWATCH_HISTORY_SIZE": "history_size",
            "FLEETWATCH_LANE_QUEUE_SIZE": "lane_queue_size",
        }

        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_FLOAT_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = _parse_number(env_key, val, float)
        for env_key, field_name in _ENV_INT_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = _parse_number(env_key, val, int)

        url = env.get("FLEETWATCH_SPEED_LIMIT_URL")
        if url is not None:
            config_kwargs["speed_limit_url"] = url

        if "speed_limit_lookup_enabled" not in overrides:
            config_kwargs["speed_limit_lookup_enabled"] = _env_bool(
                env.get("FLEETWATCH_SPEED_LIMIT_LOOKUP_ENABLED"),
                True,
            )

        config_kwargs.update(overrides)

        return cls(**config_kwargs)


def _parse_number(env_key: str, value: str, kind: type[float] | type[int]) -> float | int:
    try:
        return kind(value)
    except ValueError as exc:
        raise FleetwatchConfigError(f"{env_key} is not a valid {kind.__name__}: {value!r}") from exc
