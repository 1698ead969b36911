"""Telemetry pipeline: per-vehicle lanes from raw payload to dispatched alert."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import Awaitable, Callable, Iterable
from datetime import UTC, datetime, timedelta
from typing import Any, TypeVar

import aiohttp

from fleetwatch._redact import redact_for_log
from fleetwatch._transport import HttpTransport
from fleetwatch.alerts.channels import LoggingChannel, WebhookChannel
from fleetwatch.alerts.dedup import AlertDeduplicator
from fleetwatch.alerts.dispatch import DispatchResult, NotificationDispatcher
from fleetwatch.config import FleetwatchConfig
from fleetwatch.exceptions import (
    FleetwatchError,
    MalformedPayloadError,
    OutOfOrderEventError,
    PersistenceError,
    UnsupportedProviderError,
)
from fleetwatch.ingestion.providers import ProviderRegistry
from fleetwatch.models.alerts import Alert, CandidateAlert
from fleetwatch.models.geofence import Geofence
from fleetwatch.models.rules import AlertRule, ChannelKind, NotificationTarget
from fleetwatch.models.telemetry import TelemetryEvent
from fleetwatch.models.trip import MaintenanceRecord
from fleetwatch.persistence import AlertRepository, ConfigRepository, TelemetryRepository, TripRepository
from fleetwatch.rules.checks import RuleContext
from fleetwatch.rules.evaluator import RuleEvaluator
from fleetwatch.speed_limits import OverpassSpeedLimitLookup, SpeedLimitLookup, SpeedLimitResolver
from fleetwatch.state.events import GeofenceTransition, TripEvent, TripEventKind
from fleetwatch.state.geofences import GeofenceTracker
from fleetwatch.state.store import VehicleState, VehicleStateStore
from fleetwatch.state.trips import TripSegmenter

_logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclasses.dataclass(frozen=True, slots=True)
class ConfigSnapshot:
    """Immutable per-organization configuration seen by the lanes.

    A lane reads the snapshot once at the start of each work item; a reload
    swaps in a new snapshot without disturbing work already in flight.
    """

    organization_id: str
    geofences: tuple[Geofence, ...] = ()
    rules: tuple[AlertRule, ...] = ()
    maintenance: tuple[MaintenanceRecord, ...] = ()
    loaded_at: datetime | None = None

    @classmethod
    def build(
        cls,
        organization_id: str,
        *,
        geofences: Iterable[Geofence] = (),
        rules: Iterable[AlertRule] = (),
        maintenance: Iterable[MaintenanceRecord] = (),
        loaded_at: datetime | None = None,
    ) -> ConfigSnapshot:
        return cls(
            organization_id=organization_id,
            geofences=tuple(g for g in geofences if g.active and g.organization_id == organization_id),
            rules=tuple(r for r in rules if r.enabled and r.organization_id == organization_id),
            maintenance=tuple(m for m in maintenance if not m.completed),
            loaded_at=loaded_at,
        )

    def targets_for(self, rule_id: str | None) -> tuple[NotificationTarget, ...]:
        for rule in self.rules:
            if rule.id == rule_id:
                return rule.targets
        return ()


@dataclasses.dataclass(slots=True)
class PipelineStats:
    """Counters for processed work and every degradation path."""

    events_processed: int = 0
    malformed_payloads: int = 0
    unsupported_providers: int = 0
    out_of_order_events: int = 0
    rule_errors: int = 0
    alerts_created: int = 0
    alerts_suppressed: int = 0
    persistence_failures: int = 0
    dispatch_failures: int = 0
    trips_started: int = 0
    trips_completed: int = 0
    offline_ticks: int = 0
    lane_errors: int = 0

    def as_dict(self) -> dict[str, int]:
        return dataclasses.asdict(self)


@dataclasses.dataclass(frozen=True, slots=True)
class ProcessResult:
    """Everything one event caused."""

    event: TelemetryEvent
    state: VehicleState
    transitions: tuple[GeofenceTransition, ...] = ()
    trip_event: TripEvent | None = None
    alerts: tuple[Alert, ...] = ()
    dispatches: tuple[DispatchResult, ...] = ()


_Job = Callable[[], Awaitable[Any]]


@dataclasses.dataclass(slots=True)
class _Lane:
    vehicle_id: str
    queue: asyncio.Queue[tuple[_Job, asyncio.Future[Any]]]
    worker: asyncio.Task[None] | None = None
    closing: bool = False


class TelemetryPipeline:
    """Ingest telemetry and turn it into deduplicated, dispatched alerts.

    All work for one vehicle (events, offline ticks, trip-closure ticks)
    runs through that vehicle's lane: a queue drained by a single worker
    task. Lanes of different vehicles run independently.

    Usage::

        async with TelemetryPipeline(config, config_repository=repo) as pipeline:
            await pipeline.reload_config("org-1")
            await pipeline.submit(payload, "geotab", organization_id="org-1")

    Parameters
    ----------
    config : FleetwatchConfig or None
        Pipeline settings; read from the environment when omitted.
    speed_limit_lookup : SpeedLimitLookup or None
        External limit source. When omitted and lookups are enabled, an
        Overpass lookup is built on the pipeline's HTTP session.
    dispatcher : NotificationDispatcher or None
        When omitted, a dispatcher with a webhook channel and logging
        channels for e-mail, SMS and push is built.
    clock : callable or None
        Returns the current UTC time; injectable for tests.
    """

    def __init__(
        self,
        config: FleetwatchConfig | None = None,
        *,
        telemetry_repository: TelemetryRepository | None = None,
        trip_repository: TripRepository | None = None,
        config_repository: ConfigRepository | None = None,
        alert_repository: AlertRepository | None = None,
        speed_limit_lookup: SpeedLimitLookup | None = None,
        dispatcher: NotificationDispatcher | None = None,
        registry: ProviderRegistry | None = None,
        session: aiohttp.ClientSession | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._config = config or FleetwatchConfig.from_env()
        self._clock = clock or (lambda: datetime.now(UTC))
        self._telemetry_repository = telemetry_repository
        self._trip_repository = trip_repository
        self._config_repository = config_repository
        self._registry = registry or ProviderRegistry()
        self._external_session = session is not None
        self._http_session = session
        self._lookup = speed_limit_lookup
        self._dispatcher = dispatcher

        self._store = VehicleStateStore(
            history_size=self._config.history_size,
            motion_threshold_mph=self._config.motion_threshold_mph,
        )
        self._geofences = GeofenceTracker(self._store)
        self._trips = TripSegmenter(
            self._store,
            motion_threshold_mph=self._config.motion_threshold_mph,
            close_grace=timedelta(seconds=self._config.trip_close_grace),
        )
        self._dedup = AlertDeduplicator(
            alert_repository,
            window=timedelta(seconds=self._config.dedup_window),
            persistence_timeout=self._config.persistence_timeout,
            clock=self._clock,
        )
        self._resolver: SpeedLimitResolver | None = None
        self._evaluator: RuleEvaluator | None = None

        self._snapshots: dict[str, ConfigSnapshot] = {}
        self._lanes: dict[str, _Lane] = {}
        self._loops: list[asyncio.Task[None]] = []
        self._stopping = asyncio.Event()
        self._running = False
        self.stats = PipelineStats()

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> TelemetryPipeline:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()

    async def start(self) -> None:
        """Build network collaborators and start the background loops."""
        if self._running:
            return
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession()
        transport = HttpTransport(self._http_session)

        lookup = self._lookup
        if lookup is None and self._config.speed_limit_lookup_enabled:
            lookup = OverpassSpeedLimitLookup(
                transport,
                url=self._config.speed_limit_url,
                timeout=self._config.speed_limit_timeout,
            )
        self._resolver = SpeedLimitResolver(
            lookup,
            default_limit=self._config.default_speed_limit_mph,
            ttl=timedelta(seconds=self._config.speed_limit_cache_ttl),
            timeout=self._config.speed_limit_timeout,
            precision=self._config.speed_limit_cache_precision,
            max_entries=self._config.speed_limit_cache_size,
            clock=self._clock,
        )
        self._evaluator = RuleEvaluator(self._resolver)

        if self._dispatcher is None:
            self._dispatcher = NotificationDispatcher(
                {
                    ChannelKind.WEBHOOK: WebhookChannel(transport, timeout=self._config.webhook_timeout),
                    ChannelKind.EMAIL: LoggingChannel(ChannelKind.EMAIL),
                    ChannelKind.SMS: LoggingChannel(ChannelKind.SMS),
                    ChannelKind.PUSH: LoggingChannel(ChannelKind.PUSH),
                },
                timeout=self._config.dispatch_timeout,
            )

        self._running = True
        self._stopping = asyncio.Event()
        if self._config.offline_check_interval > 0:
            self._loops.append(asyncio.create_task(self._offline_loop(), name="fleetwatch-offline"))
        if self._config.speed_limit_refresh_interval > 0 and lookup is not None:
            self._loops.append(asyncio.create_task(self._refresh_loop(), name="fleetwatch-speed-limits"))
        _logger.debug("Pipeline started (%d background loops)", len(self._loops))

    async def stop(self) -> None:
        """Stop the background loops, finish queued lane work, then stop the lanes.

        A loop pass already under way (an offline tick or a speed-limit
        refresh) runs to completion; no new pass is started.
        """
        if not self._running:
            return
        self._stopping.set()
        loops, self._loops = self._loops, []
        await asyncio.gather(*loops, return_exceptions=True)

        await self.drain()
        self._running = False

        lanes, self._lanes = list(self._lanes.values()), {}
        workers = [lane.worker for lane in lanes if lane.worker is not None]
        for worker in workers:
            worker.cancel()
        await asyncio.gather(*workers, return_exceptions=True)

        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
        _logger.debug("Pipeline stopped")

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def config(self) -> FleetwatchConfig:
        return self._config

    @property
    def store(self) -> VehicleStateStore:
        return self._store

    @property
    def resolver(self) -> SpeedLimitResolver:
        return self._require_running()[0]

    def snapshot(self, organization_id: str) -> ConfigSnapshot:
        return self._snapshots.get(organization_id) or ConfigSnapshot(organization_id=organization_id)

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def set_config(self, snapshot: ConfigSnapshot) -> None:
        """Install a configuration snapshot for its organization."""
        self._snapshots[snapshot.organization_id] = snapshot

    async def reload_config(self, organization_id: str) -> ConfigSnapshot:
        """Reload geofences, rules and maintenance records for an organization.

        On failure the previous snapshot stays in place and the error
        propagates.
        """
        if self._config_repository is None:
            raise FleetwatchError("No config repository configured")
        repo = self._config_repository
        timeout = self._config.persistence_timeout
        try:
            geofences, rules, maintenance = await asyncio.wait_for(
                asyncio.gather(
                    repo.active_geofences(organization_id),
                    repo.enabled_rules(organization_id),
                    repo.open_maintenance(organization_id),
                ),
                timeout=timeout,
            )
        except TimeoutError as exc:
            raise PersistenceError(f"Config reload for {organization_id} exceeded {timeout}s") from exc

        snapshot = ConfigSnapshot.build(
            organization_id,
            geofences=geofences,
            rules=rules,
            maintenance=maintenance,
            loaded_at=self._clock(),
        )
        self.set_config(snapshot)
        _logger.debug(
            "Reloaded config org=%s geofences=%d rules=%d maintenance=%d",
            organization_id,
            len(snapshot.geofences),
            len(snapshot.rules),
            len(snapshot.maintenance),
        )
        return snapshot

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    async def submit(self, payload: Any, provider: str, *, organization_id: str) -> ProcessResult | None:
        """Normalize a raw provider payload and process it on its vehicle lane.

        Malformed payloads and unknown providers are logged, counted and
        dropped (``None`` is returned).
        """
        try:
            event = self._registry.normalize(payload, provider)
        except UnsupportedProviderError as exc:
            self.stats.unsupported_providers += 1
            _logger.warning("Dropping payload: %s", exc)
            return None
        except MalformedPayloadError as exc:
            self.stats.malformed_payloads += 1
            _logger.warning("Dropping malformed %s payload: %s", provider, exc)
            _logger.debug("Malformed payload body: %s", redact_for_log(payload))
            return None
        return await self.process_event(event, organization_id=organization_id)

    async def submit_batch(self, response: Any, provider: str, *, organization_id: str) -> list[ProcessResult]:
        """Normalize a polled batch response and process every good event."""
        try:
            events, errors = self._registry.normalize_batch(response, provider)
        except UnsupportedProviderError as exc:
            self.stats.unsupported_providers += 1
            _logger.warning("Dropping batch: %s", exc)
            return []
        self.stats.malformed_payloads += len(errors)
        results = await asyncio.gather(*(self.process_event(e, organization_id=organization_id) for e in events))
        return [r for r in results if r is not None]

    async def process_event(self, event: TelemetryEvent, *, organization_id: str) -> ProcessResult | None:
        """Run a normalized event through its vehicle lane.

        Returns ``None`` when the event is rejected as out of order.
        """
        return await self._enqueue(event.vehicle_id, lambda: self._handle_event(event, organization_id))

    async def check_offline(self, now: datetime | None = None) -> list[Alert]:
        """Evaluate device-offline rules for every known vehicle.

        Each vehicle's check runs on its lane, after any event already queued
        for it. Returns the alerts created by this tick.
        """
        now = now or self._clock()
        self.stats.offline_ticks += 1
        self._dedup.prune(now)
        results = await asyncio.gather(
            *(self._enqueue(vid, lambda vid=vid: self._handle_offline(vid, now)) for vid in self._store.vehicle_ids())
        )
        return [alert for alerts in results for alert in alerts]

    async def close_stale_trips(self, now: datetime | None = None) -> list[TripEvent]:
        """Close trips of vehicles stopped for longer than the grace period."""
        now = now or self._clock()
        results = await asyncio.gather(
            *(self._enqueue(vid, lambda vid=vid: self._handle_trip_tick(vid, now)) for vid in self._store.vehicle_ids())
        )
        return [event for event in results if event is not None]

    async def retire_vehicle(self, vehicle_id: str) -> TripEvent | None:
        """Cancel the vehicle's active trip and forget its state."""
        return await self._enqueue(vehicle_id, lambda: self._handle_retire(vehicle_id))

    async def drain(self) -> None:
        """Wait until every queued lane item has been processed."""
        await asyncio.gather(*(lane.queue.join() for lane in list(self._lanes.values())))

    # ------------------------------------------------------------------
    # Lanes
    # ------------------------------------------------------------------

    async def _enqueue(self, vehicle_id: str, job: Callable[[], Awaitable[T]]) -> T:
        self._require_running()
        lane = self._lanes.get(vehicle_id)
        if lane is None:
            lane = _Lane(vehicle_id=vehicle_id, queue=asyncio.Queue(maxsize=self._config.lane_queue_size))
            lane.worker = asyncio.create_task(self._run_lane(lane), name=f"fleetwatch-lane-{vehicle_id}")
            self._lanes[vehicle_id] = lane
        future: asyncio.Future[T] = asyncio.get_running_loop().create_future()
        await lane.queue.put((job, future))
        return await future

    async def _run_lane(self, lane: _Lane) -> None:
        while True:
            job, future = await lane.queue.get()
            try:
                if future.cancelled():
                    continue
                result = await job()
            except Exception as exc:
                self.stats.lane_errors += 1
                _logger.error("Lane %s work item failed", lane.vehicle_id, exc_info=True)
                if not future.done():
                    future.set_exception(exc)
            else:
                if not future.done():
                    future.set_result(result)
            finally:
                lane.queue.task_done()
            if lane.closing and lane.queue.empty() and self._lanes.get(lane.vehicle_id) is lane:
                del self._lanes[lane.vehicle_id]
                _logger.debug("Closed lane %s", lane.vehicle_id)
                return

    # ------------------------------------------------------------------
    # Lane work items
    # ------------------------------------------------------------------

    async def _handle_event(self, event: TelemetryEvent, organization_id: str) -> ProcessResult | None:
        _, evaluator = self._require_running()
        snapshot = self.snapshot(organization_id)

        try:
            previous, current = self._store.apply(event, organization_id=organization_id)
        except OutOfOrderEventError as exc:
            self.stats.out_of_order_events += 1
            _logger.warning("Rejected out-of-order event vehicle=%s: %s", exc.vehicle_id, exc)
            return None
        self.stats.events_processed += 1

        if self._telemetry_repository is not None:
            await self._persist(
                self._telemetry_repository.append_sample(event, organization_id=organization_id),
                f"sample of {event.vehicle_id}",
            )

        committed, transitions = self._geofences.transitions(previous, current, snapshot.geofences)
        trip_event = self._trips.update(committed)
        if trip_event is not None:
            await self._record_trip_event(trip_event)
            committed = self._store.get(event.vehicle_id) or committed

        context = RuleContext(
            organization_id=organization_id,
            state=committed,
            now=self._clock(),
            transitions=tuple(transitions),
            maintenance=snapshot.maintenance,
        )
        evaluation = await evaluator.evaluate(event, previous, snapshot.rules, context)
        self.stats.rule_errors += len(evaluation.errors)

        alerts, dispatches = await self._emit(evaluation.candidates, snapshot)
        _logger.debug(
            "Processed vehicle=%s speed=%.1f transitions=%d alerts=%d",
            event.vehicle_id,
            event.speed,
            len(transitions),
            len(alerts),
        )
        return ProcessResult(
            event=event,
            state=committed,
            transitions=tuple(transitions),
            trip_event=trip_event,
            alerts=tuple(alerts),
            dispatches=tuple(dispatches),
        )

    async def _handle_offline(self, vehicle_id: str, now: datetime) -> list[Alert]:
        _, evaluator = self._require_running()
        state = self._store.get(vehicle_id)
        if state is None or state.organization_id is None:
            return []
        snapshot = self.snapshot(state.organization_id)
        context = RuleContext(organization_id=state.organization_id, state=state, now=now)
        evaluation = evaluator.evaluate_offline(state, snapshot.rules, context)
        self.stats.rule_errors += len(evaluation.errors)
        alerts, _ = await self._emit(evaluation.candidates, snapshot)
        return alerts

    async def _handle_trip_tick(self, vehicle_id: str, now: datetime) -> TripEvent | None:
        state = self._store.get(vehicle_id)
        if state is None:
            return None
        trip_event = self._trips.tick(state, now)
        if trip_event is not None:
            await self._record_trip_event(trip_event)
        return trip_event

    async def _handle_retire(self, vehicle_id: str) -> TripEvent | None:
        lane = self._lanes.get(vehicle_id)
        if lane is not None:
            lane.closing = True
        state = self._store.get(vehicle_id)
        if state is None:
            return None
        trip_event = self._trips.cancel(state, self._clock())
        if trip_event is not None:
            await self._record_trip_event(trip_event)
        self._store.remove(vehicle_id)
        return trip_event

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _emit(
        self,
        candidates: list[CandidateAlert],
        snapshot: ConfigSnapshot,
    ) -> tuple[list[Alert], list[DispatchResult]]:
        dispatcher = self._dispatcher
        alerts: list[Alert] = []
        dispatches: list[DispatchResult] = []
        for candidate in candidates:
            alert = await self._dedup.submit(candidate)
            if alert is None:
                self.stats.alerts_suppressed += 1
                continue
            self.stats.alerts_created += 1
            if not alert.persisted:
                self.stats.persistence_failures += 1
            alerts.append(alert)

            if dispatcher is not None:
                results = await dispatcher.dispatch(alert, snapshot.targets_for(alert.rule_id))
                self.stats.dispatch_failures += sum(1 for r in results if not r.ok)
                dispatches.extend(results)
        return alerts, dispatches

    async def _record_trip_event(self, trip_event: TripEvent) -> None:
        if trip_event.kind is TripEventKind.STARTED:
            self.stats.trips_started += 1
        elif trip_event.kind is TripEventKind.COMPLETED:
            self.stats.trips_completed += 1
        if self._trip_repository is not None and trip_event.kind is not TripEventKind.EXTENDED:
            await self._persist(self._trip_repository.save_trip(trip_event.trip), f"trip {trip_event.trip.id}")

    async def _persist(self, awaitable: Awaitable[None], what: str) -> bool:
        try:
            await asyncio.wait_for(awaitable, timeout=self._config.persistence_timeout)
        except Exception as exc:
            self.stats.persistence_failures += 1
            _logger.warning("Failed to persist %s: %s", what, str(exc) or type(exc).__name__)
            return False
        return True

    async def _wait_stopping(self, interval: float) -> bool:
        """Sleep for ``interval``; return True as soon as ``stop`` was called."""
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=interval)
        except TimeoutError:
            return False
        return True

    async def _offline_loop(self) -> None:
        interval = self._config.offline_check_interval
        while not await self._wait_stopping(interval):
            try:
                await self.check_offline()
                await self.close_stale_trips()
            except Exception:
                _logger.exception("Offline check failed")

    async def _refresh_loop(self) -> None:
        interval = self._config.speed_limit_refresh_interval
        while not await self._wait_stopping(interval):
            if self._resolver is None:
                continue
            try:
                await self._resolver.refresh_stale()
            except Exception:
                _logger.exception("Speed limit refresh failed")

    def _require_running(self) -> tuple[SpeedLimitResolver, RuleEvaluator]:
        if not self._running or self._resolver is None or self._evaluator is None:
            raise FleetwatchError("Pipeline not started. Use 'async with TelemetryPipeline(...) as pipeline:'")
        return self._resolver, self._evaluator
