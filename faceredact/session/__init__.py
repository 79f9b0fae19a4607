"""Session module - Interactive redaction sessions and their notifications."""

from faceredact.session.events import EventChannel, EventKind, SessionEvent
from faceredact.session.orchestrator import (
    RedactionSession,
    SessionState,
    SessionStateError,
)

__all__ = [
    "EventChannel",
    "EventKind",
    "RedactionSession",
    "SessionEvent",
    "SessionState",
    "SessionStateError",
]
