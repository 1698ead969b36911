"""Ingestion layer.

This package contains the adapters that turn provider payloads (polled REST
batches, realtime pushes, MQTT messages) into normalized telemetry events.
"""

__all__: list[str] = []
