"""MQTT push source feeding provider payloads into the pipeline."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, cast

import paho.mqtt.client as mqtt

from fleetwatch.exceptions import MalformedPayloadError

if TYPE_CHECKING:
    from fleetwatch.pipeline import ProcessResult


class PayloadSink(Protocol):
    """The part of :class:`~fleetwatch.pipeline.TelemetryPipeline` the source uses."""

    def submit(self, payload: Any, provider: str, *, organization_id: str) -> Awaitable[ProcessResult | None]:
        ...


@dataclass(frozen=True)
class MqttSettings:
    """Broker connection and routing for one provider feed."""

    host: str
    topic: str
    provider: str
    organization_id: str
    port: int = 8883
    client_id: str = ""
    username: str | None = None
    password: str | None = None
    tls: bool = True
    keepalive: int = 60
    qos: int = 0


def decode_mqtt_payload(payload: bytes) -> list[Any]:
    """Decode a message body into a list of provider payloads.

    A JSON array carries several positions; anything else is one payload.
    """
    try:
        parsed = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MalformedPayloadError(f"MQTT payload is not JSON: {exc}") from exc
    if isinstance(parsed, list):
        return parsed
    return [parsed]


class MqttTelemetrySource:
    """Threaded paho-mqtt client that hands each payload to the asyncio loop.

    The network loop runs on paho's thread. Decoded payloads cross onto the
    event loop with ``call_soon_threadsafe`` in arrival order and become
    ``submit`` tasks there; ordering per vehicle is then kept by the
    pipeline's lanes.
    """

    def __init__(
        self,
        sink: PayloadSink,
        settings: MqttSettings,
        *,
        loop: asyncio.AbstractEventLoop,
        logger: logging.Logger | None = None,
    ) -> None:
        self._sink = sink
        self._settings = settings
        self._loop = loop
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._running = False
        self._tasks: set[asyncio.Task[Any]] = set()
        self.dropped = 0

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Connect, subscribe and start paho's network thread."""
        self.stop()
        settings = self._settings
        self._logger.debug(
            "MQTT source start host=%s port=%s topic=%s provider=%s",
            settings.host,
            settings.port,
            settings.topic,
            settings.provider,
        )

        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=settings.client_id,
            protocol=mqtt.MQTTv5,
        )
        client.enable_logger(self._logger)
        if settings.username is not None:
            client.username_pw_set(settings.username, settings.password)
        if settings.tls:
            client.tls_set()

        def on_connect(
            c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if reason_code.value != 0:
                self._logger.warning("MQTT connect failed: %s", reason_code)
                return
            self._logger.debug("MQTT connected, subscribing topic=%s", settings.topic)
            c.subscribe(settings.topic, qos=settings.qos)

        def on_message(_c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            self._handle_message(msg.topic, msg.payload)

        def on_disconnect(
            _client: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if self._running:
                self._logger.debug("MQTT disconnected: %s", reason_code)

        client.on_connect = on_connect
        client.on_message = on_message
        client.on_disconnect = on_disconnect

        client.connect(settings.host, settings.port, keepalive=settings.keepalive)
        client.loop_start()

        self._client = client
        self._running = True
        self._logger.debug("MQTT network loop started")

    def stop(self) -> None:
        """Disconnect and stop the network thread if running."""
        client = self._client
        self._client = None
        was_running = self._running
        self._running = False

        if client is None:
            return
        try:
            if was_running:
                client.disconnect()
        finally:
            client.loop_stop()
            self._logger.debug("MQTT network loop stopped")

    async def drain(self) -> None:
        """Wait for every submitted payload to finish processing."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _handle_message(self, topic: str, payload: bytes) -> None:
        # Runs on paho's network thread.
        try:
            items = decode_mqtt_payload(payload)
        except MalformedPayloadError as exc:
            self.dropped += 1
            self._logger.warning("Dropping MQTT message on %s: %s", topic, exc)
            return
        for item in items:
            self._loop.call_soon_threadsafe(self._submit, item)

    def _submit(self, payload: Any) -> None:
        settings = self._settings
        task = self._loop.create_task(
            _as_coroutine(self._sink.submit(payload, settings.provider, organization_id=settings.organization_id))
        )
        self._tasks.add(task)
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._logger.warning("MQTT payload processing failed: %s", exc, exc_info=exc)


async def _as_coroutine(awaitable: Awaitable[Any]) -> Any:
    return await awaitable
