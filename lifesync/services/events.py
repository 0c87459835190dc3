"""Outbound event sink for realtime collaborators (notifications, chat)."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Tuple

from lifesync.core.logging import get_logger

log = get_logger("events")

CONNECTION_CONNECTED = "connection.connected"
CONNECTION_DISCONNECTED = "connection.disconnected"
RECORD_INGESTED = "record.ingested"
SYNC_COMPLETED = "sync.completed"
SYNC_FAILED = "sync.failed"


class EventSink(ABC):
    @abstractmethod
    def publish(self, event: str, payload: Dict[str, Any]) -> None:
        """Fire and forget. Implementations must not block the caller."""


class LoggingEventSink(EventSink):
    def publish(self, event: str, payload: Dict[str, Any]) -> None:
        log.info(f"event={event} payload={payload}")


class RecordingEventSink(EventSink):
    """Keeps published events in memory, newest last."""

    def __init__(self):
        self.events: List[Tuple[str, Dict[str, Any]]] = []

    def publish(self, event: str, payload: Dict[str, Any]) -> None:
        self.events.append((event, dict(payload)))

    def names(self) -> List[str]:
        return [name for name, _ in self.events]
