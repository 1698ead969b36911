"""Alert deduplication and persistence."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from fleetwatch.models.alerts import Alert, CandidateAlert, DedupKey
from fleetwatch.persistence import AlertRepository

_logger = logging.getLogger(__name__)


class AlertDeduplicator:
    """Turn candidates into alerts at most once per key and window.

    The key is ``(organization_id, vehicle_id, alert_type)``. A candidate
    arriving within ``window`` of the last accepted alert for its key is
    discarded, whatever its severity. The window lives in memory and is
    confirmed against ``AlertRepository.has_recent_alert`` when a repository
    is given, so a restarted process does not re-alert.

    Accepted alerts are written with a bounded timeout. When the write fails
    the alert is still returned, flagged ``persisted=False``.
    """

    def __init__(
        self,
        repository: AlertRepository | None = None,
        *,
        window: timedelta = timedelta(minutes=30),
        persistence_timeout: float = 3.0,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._repository = repository
        self._window = window
        self._timeout = persistence_timeout
        self._clock = clock or (lambda: datetime.now(UTC))
        self._last_accepted: dict[DedupKey, datetime] = {}

    def __len__(self) -> int:
        return len(self._last_accepted)

    def is_suppressed(self, key: DedupKey, now: datetime) -> bool:
        last = self._last_accepted.get(key)
        return last is not None and now - last < self._window

    async def submit(self, candidate: CandidateAlert) -> Alert | None:
        """Accept, persist and return ``candidate`` as an alert, or ``None`` if suppressed."""
        now = self._clock()
        key = candidate.dedup_key
        if self.is_suppressed(key, now):
            _logger.debug("Suppressed duplicate %s for vehicle=%s", candidate.alert_type, candidate.vehicle_id)
            return None

        if await self._recent_in_repository(key, now):
            self._last_accepted[key] = now
            _logger.debug("Suppressed %s for vehicle=%s (recent alert in store)", candidate.alert_type, candidate.vehicle_id)
            return None

        self._last_accepted[key] = now
        alert = Alert.from_candidate(candidate, created_at=now)
        if self._repository is None:
            return alert

        try:
            await asyncio.wait_for(self._repository.insert_alert(alert), timeout=self._timeout)
        except Exception as exc:
            _logger.warning(
                "Alert %s (%s) not persisted, flagged for retry: %s",
                alert.id,
                alert.alert_type,
                str(exc) or type(exc).__name__,
            )
            return alert.model_copy(update={"persisted": False})
        return alert

    def prune(self, now: datetime | None = None) -> int:
        """Drop window entries older than the window; returns how many."""
        now = now or self._clock()
        expired = [key for key, at in self._last_accepted.items() if now - at >= self._window]
        for key in expired:
            del self._last_accepted[key]
        return len(expired)

    async def _recent_in_repository(self, key: DedupKey, now: datetime) -> bool:
        if self._repository is None:
            return False
        try:
            return await asyncio.wait_for(
                self._repository.has_recent_alert(key, now - self._window),
                timeout=self._timeout,
            )
        except Exception as exc:
            _logger.warning(
                "Recent-alert check failed for %s, using in-memory window: %s", key, str(exc) or type(exc).__name__
            )
            return False
