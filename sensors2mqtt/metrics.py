"""Prometheus counters for the reporting loop."""
from __future__ import annotations

import logging

from prometheus_client import Counter, start_http_server

logger = logging.getLogger(__name__)

DISCOVERY_PUBLISHED_TOTAL = Counter(
    "sensors2mqtt_discovery_published_total",
    "Discovery messages published",
    labelnames=["sensor"],
)
STATE_PUBLISHED_TOTAL = Counter(
    "sensors2mqtt_state_published_total",
    "State messages published",
    labelnames=["sensor"],
)
READINGS_SKIPPED_TOTAL = Counter(
    "sensors2mqtt_readings_skipped_total",
    "Readings not published because they did not change enough",
    labelnames=["sensor"],
)
READ_FAILURES_TOTAL = Counter(
    "sensors2mqtt_read_failures_total",
    "Failed sensor reads",
    labelnames=["driver"],
)


def start_exporter(port: int | None) -> None:
    if not port:
        return
    start_http_server(port)
    logger.info("Prometheus metrics exposed on :%s", port)
