"""Notification channel between a session and its observers."""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    """Kinds of notifications a session publishes."""

    LOADING = "loading"
    STATE = "state"
    DETECTION = "detection"
    PREVIEW = "preview"
    ERROR = "error"


class SessionEvent(BaseModel):
    """One notification with its payload."""

    kind: EventKind
    payload: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    model_config = {"frozen": True}


class EventChannel:
    """Fan-out of session events to bounded subscriber queues.

    Publishing never blocks: a full queue loses its oldest event.
    """

    def __init__(self, max_queue_size: int = 64) -> None:
        if max_queue_size < 1:
            msg = f"max_queue_size must be positive, got {max_queue_size}"
            raise ValueError(msg)
        self.max_queue_size = max_queue_size
        self._subscribers: list[asyncio.Queue[SessionEvent]] = []
        self.last_event: SessionEvent | None = None
        self.dropped_events = 0

    def subscribe(self) -> asyncio.Queue[SessionEvent]:
        """Register a new subscriber queue."""
        queue: asyncio.Queue[SessionEvent] = asyncio.Queue(maxsize=self.max_queue_size)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[SessionEvent]) -> None:
        """Stop delivering to a queue (no-op if unknown)."""
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, kind: EventKind, **payload: Any) -> SessionEvent:
        """Deliver an event to every subscriber."""
        event = SessionEvent(kind=kind, payload=payload)
        for queue in self._subscribers:
            if queue.full():
                queue.get_nowait()
                self.dropped_events += 1
            queue.put_nowait(event)
        self.last_event = event
        logger.debug("Event %s: %s", kind.value, payload)
        return event

    def close(self) -> None:
        """Drop all subscribers."""
        self._subscribers.clear()
