#!/usr/bin/env python3
"""Replay recorded telemetry through an in-memory fleetwatch pipeline.

Reads a JSON-lines file of provider payloads, runs them through the full
pipeline (state, geofences, trips, rules, deduplication) and prints the
alerts and trips it produced. Notifications go to logging channels only and
the external speed-limit lookup is disabled; every road gets ``--speed-limit``.

The pipeline clock follows the replayed event times, so deduplication
windows and offline checks behave as they would have live.

Usage
-----
::

    python scripts/replay.py recorded.jsonl --provider samsara \\
        --rules rules.json --geofences geofences.json

Each line is either a bare payload or ``{"provider": "...", "payload": {...}}``
to mix providers in one file.

Options::

    --provider KIND        Provider of bare payloads (default: generic)
    --organization ID      Organization the vehicles belong to (default: default)
    --rules FILE           JSON list of alert rules
    --geofences FILE       JSON list of geofences
    --speed-limit MPH      Posted limit used everywhere (default: 35)
    --offline-after MIN    Run a final offline check this many minutes after the last event
    --json                 Output machine-readable JSON
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Iterator
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from fleetwatch import (
    ConfigSnapshot,
    FleetwatchConfig,
    InMemoryRepository,
    LoggingChannel,
    MalformedPayloadError,
    NotificationDispatcher,
    ProviderRegistry,
    TelemetryPipeline,
    UnsupportedProviderError,
)
from fleetwatch.models.geofence import Geofence
from fleetwatch.models.rules import ChannelKind, parse_alert_rule

_LOG = logging.getLogger("replay")


class ReplayClock:
    """Clock that never runs behind the newest replayed event."""

    def __init__(self) -> None:
        self.now = datetime.fromtimestamp(0, tz=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance_to(self, moment: datetime) -> None:
        if moment > self.now:
            self.now = moment


def _read_lines(path: Path, default_provider: str) -> Iterator[tuple[int, str, Any]]:
    with path.open(encoding="utf-8") as handle:
        for lineno, line in enumerate(handle, start=1):
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError as exc:
                _LOG.warning("line %d: not JSON (%s)", lineno, exc)
                continue
            if isinstance(record, dict) and "payload" in record and "provider" in record:
                yield lineno, str(record["provider"]), record["payload"]
            else:
                yield lineno, default_provider, record


def _load_json_list(path: str | None) -> list[dict[str, Any]]:
    if not path:
        return []
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(data, list):
        raise SystemExit(f"{path}: expected a JSON list")
    return data


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Replay recorded telemetry through fleetwatch.")
    parser.add_argument("events", type=Path, help="JSON-lines file of provider payloads")
    parser.add_argument("--provider", default="generic", help="Provider of bare payloads (default: generic)")
    parser.add_argument("--organization", default="default", help="Organization id (default: default)")
    parser.add_argument("--rules", help="JSON list of alert rules")
    parser.add_argument("--geofences", help="JSON list of geofences")
    parser.add_argument("--speed-limit", type=float, default=35.0, help="Posted limit in mph (default: 35)")
    parser.add_argument("--dedup-window", type=float, default=30.0, help="Dedup window in minutes (default: 30)")
    parser.add_argument("--offline-after", type=float, help="Final offline check N minutes after the last event")
    parser.add_argument("--json", action="store_true", dest="json_mode", help="Output machine-readable JSON")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    return parser.parse_args()


async def _run(args: argparse.Namespace) -> int:
    org = args.organization
    rules = [parse_alert_rule({"organization_id": org, **raw}) for raw in _load_json_list(args.rules)]
    geofences = [Geofence.model_validate({"organization_id": org, **raw}) for raw in _load_json_list(args.geofences)]

    config = FleetwatchConfig(
        default_speed_limit_mph=args.speed_limit,
        speed_limit_lookup_enabled=False,
        dedup_window=args.dedup_window * 60.0,
        offline_check_interval=0,
        speed_limit_refresh_interval=0,
    )
    clock = ReplayClock()
    repo = InMemoryRepository()
    registry = ProviderRegistry()
    dispatcher = NotificationDispatcher({kind: LoggingChannel(kind) for kind in ChannelKind})

    pipeline = TelemetryPipeline(
        config,
        telemetry_repository=repo,
        trip_repository=repo,
        alert_repository=repo,
        dispatcher=dispatcher,
        registry=registry,
        clock=clock,
    )
    pipeline.set_config(ConfigSnapshot.build(org, geofences=geofences, rules=rules))

    dropped = 0
    async with pipeline:
        for lineno, provider, payload in _read_lines(args.events, args.provider):
            try:
                event = registry.normalize(payload, provider)
            except (MalformedPayloadError, UnsupportedProviderError) as exc:
                dropped += 1
                _LOG.warning("line %d: dropped (%s)", lineno, exc)
                continue
            clock.advance_to(event.timestamp)
            await pipeline.process_event(event, organization_id=org)

        await pipeline.close_stale_trips(clock.now + timedelta(seconds=config.trip_close_grace + 1))
        if args.offline_after is not None:
            clock.advance_to(clock.now + timedelta(minutes=args.offline_after))
            await pipeline.check_offline(clock.now)

    alerts = sorted(repo.alerts, key=lambda a: (a.timestamp, a.vehicle_id))
    trips = sorted(repo.trips.values(), key=lambda t: t.start_time)

    if args.json_mode:
        result = {
            "alerts": [a.model_dump(mode="json") for a in alerts],
            "trips": [t.model_dump(mode="json") for t in trips],
            "stats": {**pipeline.stats.as_dict(), "dropped_lines": dropped},
        }
        print(json.dumps(result, indent=2, ensure_ascii=False))
        return 0

    print(f"Alerts ({len(alerts)})")
    for alert in alerts:
        print(
            f"  {alert.timestamp.isoformat()}  {alert.vehicle_id:<12} "
            f"{alert.severity.upper():<8} {alert.alert_type:<18} {alert.message}"
        )
    print(f"\nTrips ({len(trips)})")
    for trip in trips:
        end = trip.end_time.isoformat() if trip.end_time else "-"
        print(
            f"  {trip.vehicle_id:<12} {trip.start_time.isoformat()} -> {end}  "
            f"{trip.distance_miles:.2f} mi  max {trip.max_speed:.0f} mph  {trip.status}"
        )
    print("\nStats")
    for name, value in pipeline.stats.as_dict().items():
        print(f"  {name:<22} {value}")
    print(f"  {'dropped_lines':<22} {dropped}")
    return 0


def main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    if not args.events.is_file():
        print(f"{args.events}: no such file", file=sys.stderr)
        return 2
    return asyncio.run(_run(args))


if __name__ == "__main__":
    raise SystemExit(main())
