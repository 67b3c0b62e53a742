"""Activity log — the engine's event stream.

``ActivityLog.emit`` mirrors every event to ``logging`` and forwards it to
an optional ``ActivitySink``.  A failing sink is reported as a warning and
never interrupts trading logic.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from galetrade.broker.base import ActivitySink

logger = logging.getLogger("galetrade.activity")

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "success": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


class ActivityLog:
    """Fire-and-forget event emitter.

    Args:
        sink: Destination for events (e.g. ``ActivityRepo``).  ``None``
              keeps events in the log only.
    """

    def __init__(self, sink: Optional[ActivitySink] = None) -> None:
        self._sink = sink

    def emit(
        self,
        event_type: str,
        payload: Optional[dict] = None,
        level: str = "info",
        timestamp: Optional[datetime] = None,
    ) -> None:
        if payload is None:
            payload = {}
        if timestamp is None:
            timestamp = datetime.now(timezone.utc)

        logger.log(_LEVELS.get(level, logging.INFO), "%s %s", event_type, payload)

        if self._sink is None:
            return
        try:
            self._sink.append(event_type, level, payload, timestamp)
        except Exception as exc:
            logger.warning("Activity sink failed for %s: %s", event_type, exc)


class MemoryActivitySink:
    """Ring buffer of recent events (newest last)."""

    def __init__(self, max_events: int = 200) -> None:
        self._max_events = max_events
        self.events: list[dict] = []

    def append(
        self,
        event_type: str,
        level: str,
        payload: dict,
        timestamp: datetime,
    ) -> None:
        self.events.append({
            "event_type": event_type,
            "level": level,
            "payload": payload,
            "timestamp": timestamp.isoformat(),
        })
        if len(self.events) > self._max_events:
            del self.events[0]

    def of_type(self, event_type: str) -> list[dict]:
        return [e for e in self.events if e["event_type"] == event_type]
