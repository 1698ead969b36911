"""Built-in notification channels."""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Sequence
from typing import Any

from fleetwatch._transport import Transport
from fleetwatch.exceptions import DispatchError, FleetwatchTransportError
from fleetwatch.models.alerts import Alert
from fleetwatch.models.rules import ChannelKind

_logger = logging.getLogger(__name__)


def alert_payload(alert: Alert) -> dict[str, Any]:
    """JSON body posted to webhooks."""
    return {"event": "new_alert", "alert": alert.model_dump(mode="json")}


class WebhookChannel:
    """POST the alert as JSON to every recipient URL."""

    def __init__(self, transport: Transport, *, timeout: float = 5.0) -> None:
        self._transport = transport
        self._timeout = timeout

    async def send(self, alert: Alert, recipients: Sequence[str]) -> None:
        payload = alert_payload(alert)
        failures: list[str] = []
        for url in recipients:
            try:
                await self._transport.post_json(url, payload, timeout=self._timeout)
            except FleetwatchTransportError as exc:
                failures.append(f"HTTP {exc.status_code}" if exc.status_code else type(exc).__name__)
        if failures:
            raise DispatchError(
                f"{len(failures)}/{len(recipients)} webhook deliveries failed: {', '.join(failures)}",
                channel=ChannelKind.WEBHOOK,
            )


class LoggingChannel:
    """Write alerts to the log instead of delivering them.

    Stands in for e-mail, SMS and push providers in development and replays.
    Recipients are counted, never logged. The last ``history`` deliveries are
    kept in ``sent``.
    """

    def __init__(self, kind: ChannelKind, *, level: int = logging.INFO, history: int = 100) -> None:
        self._kind = kind
        self._level = level
        self.sent: deque[tuple[str, tuple[str, ...]]] = deque(maxlen=history)

    async def send(self, alert: Alert, recipients: Sequence[str]) -> None:
        self.sent.append((alert.id, tuple(recipients)))
        _logger.log(
            self._level,
            "[%s] %s %s (%s) vehicle=%s to %d recipient(s)",
            self._kind,
            alert.severity.upper(),
            alert.title,
            alert.alert_type,
            alert.vehicle_id,
            len(recipients),
        )
