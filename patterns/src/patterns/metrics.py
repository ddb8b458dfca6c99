"""
Prometheus metrics for the live price monitor.

* ``drop_price_points_total{symbol}`` – closed candles fed to detectors.
* ``drop_events_total{symbol,config}`` – completed drop events.
* ``drop_events_persist_failures_total{symbol}`` – events that could not be saved.
* ``drop_active_recordings{symbol}`` – detectors currently recording.

The HTTP exporter is only started when ``PROMETHEUS_PORT`` is set.
"""

from __future__ import annotations

import logging
import os

from prometheus_client import Counter, Gauge, start_http_server

logger = logging.getLogger(__name__)

price_points_counter = Counter(
    "drop_price_points_total",
    "Closed candles fed to drop detectors",
    labelnames=["symbol"],
)
events_counter = Counter(
    "drop_events_total",
    "Completed rapid-drop events",
    labelnames=["symbol", "config"],
)
persist_failures_counter = Counter(
    "drop_events_persist_failures_total",
    "Completed events that could not be persisted",
    labelnames=["symbol"],
)
active_recordings_gauge = Gauge(
    "drop_active_recordings",
    "Detectors currently recording post-trigger prices",
    labelnames=["symbol"],
)


def start_metrics_server() -> None:
    """Expose metrics on ``PROMETHEUS_PORT`` if configured."""
    port = os.environ.get("PROMETHEUS_PORT")
    if not port:
        return
    try:
        start_http_server(int(port))
        logger.info("Prometheus metrics exposed on port %s", port)
    except OSError as exc:
        logger.warning("Failed to start Prometheus server on port %s: %s", port, exc)
