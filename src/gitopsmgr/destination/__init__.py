"""Live-state side: destination protocol, observer and health."""

from __future__ import annotations

from .client import (
    DestinationClient,
    Selector,
    WatchEvent,
    WatchEventType,
    WatchStream,
)
from .health import HealthStatus, assess_health
from .observer import LiveStateObserver, http_error_info, map_destination_exception, selector_for

__all__ = [
    "DestinationClient",
    "Selector",
    "WatchEvent",
    "WatchEventType",
    "WatchStream",
    "HealthStatus",
    "assess_health",
    "LiveStateObserver",
    "map_destination_exception",
    "http_error_info",
    "selector_for",
]
