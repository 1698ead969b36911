"""Concurrent notification fan-out."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import Mapping, Sequence
from typing import Protocol

from fleetwatch._redact import redact_for_log
from fleetwatch.exceptions import DispatchError
from fleetwatch.models.alerts import Alert
from fleetwatch.models.rules import ChannelKind, NotificationTarget

_logger = logging.getLogger(__name__)


class NotificationChannel(Protocol):
    """Delivers an alert to recipients on one channel kind.

    Raises :class:`DispatchError` when delivery fails.
    """

    async def send(self, alert: Alert, recipients: Sequence[str]) -> None:
        ...


@dataclasses.dataclass(frozen=True, slots=True)
class DispatchResult:
    """Outcome of delivering one alert to one target."""

    channel: ChannelKind
    recipients: tuple[str, ...]
    ok: bool
    error: str | None = None


class NotificationDispatcher:
    """Send an alert to every target concurrently.

    Each channel send carries its own timeout. A failure or timeout on one
    channel is reported in its :class:`DispatchResult` and never delays or
    cancels the others. There are no retries.
    """

    def __init__(
        self,
        channels: Mapping[ChannelKind, NotificationChannel] | None = None,
        *,
        timeout: float = 5.0,
    ) -> None:
        self._channels: dict[ChannelKind, NotificationChannel] = dict(channels or {})
        self._timeout = timeout

    def register(self, kind: ChannelKind, channel: NotificationChannel) -> None:
        self._channels[kind] = channel

    @property
    def kinds(self) -> frozenset[ChannelKind]:
        return frozenset(self._channels)

    async def dispatch(self, alert: Alert, targets: Sequence[NotificationTarget]) -> list[DispatchResult]:
        """Deliver ``alert`` to ``targets``; results are in target order."""
        if not targets:
            return []
        results = await asyncio.gather(*(self._send_one(alert, target) for target in targets))
        failed = [r for r in results if not r.ok]
        if failed:
            _logger.warning(
                "Alert %s: %d/%d notification targets failed",
                alert.id,
                len(failed),
                len(results),
            )
        return list(results)

    async def _send_one(self, alert: Alert, target: NotificationTarget) -> DispatchResult:
        kind = target.channel
        channel = self._channels.get(kind)
        if channel is None:
            return DispatchResult(kind, target.recipients, ok=False, error=f"no {kind} channel registered")
        if not target.recipients:
            return DispatchResult(kind, target.recipients, ok=False, error="no recipients")

        try:
            await asyncio.wait_for(channel.send(alert, target.recipients), timeout=self._timeout)
        except TimeoutError:
            _logger.warning("%s delivery of alert %s timed out after %ss", kind, alert.id, self._timeout)
            return DispatchResult(kind, target.recipients, ok=False, error="timeout")
        except DispatchError as exc:
            _logger.warning("%s delivery of alert %s failed: %s", kind, alert.id, exc)
            return DispatchResult(kind, target.recipients, ok=False, error=str(exc))
        except Exception as exc:
            _logger.warning(
                "%s channel raised delivering alert %s to %s",
                kind,
                alert.id,
                redact_for_log({"recipients": list(target.recipients)}),
                exc_info=True,
            )
            return DispatchResult(kind, target.recipients, ok=False, error=f"{type(exc).__name__}: {exc}")

        _logger.debug("Delivered alert %s via %s", alert.id, kind)
        return DispatchResult(kind, target.recipients, ok=True)
