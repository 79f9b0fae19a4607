"""Bookkeeping of live sessions for the web application."""

from __future__ import annotations

import logging
from collections.abc import Callable

from faceredact.config import AppConfig
from faceredact.detection.registry import DetectorRegistry, build_registry
from faceredact.session.orchestrator import RedactionSession

logger = logging.getLogger(__name__)

RegistryFactory = Callable[[], DetectorRegistry]


class SessionLimitError(Exception):
    """Too many sessions are open."""


class SessionManager:
    """Creates, looks up and closes sessions; each gets its own registry."""

    def __init__(
        self,
        config: AppConfig | None = None,
        registry_factory: RegistryFactory | None = None,
        max_sessions: int = 16,
    ) -> None:
        self.config = config or AppConfig()
        self.registry_factory = registry_factory or (
            lambda: build_registry(self.config.detectors)
        )
        self.max_sessions = max_sessions
        self._sessions: dict[str, RedactionSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def create(self) -> RedactionSession:
        """Open a new session with a fresh, unloaded registry."""
        if len(self._sessions) >= self.max_sessions:
            msg = f"Session limit reached ({self.max_sessions})"
            raise SessionLimitError(msg)
        session = RedactionSession(self.registry_factory(), self.config)
        self._sessions[session.id] = session
        logger.info("Opened session %s", session.id)
        return session

    def get(self, session_id: str) -> RedactionSession:
        try:
            return self._sessions[session_id]
        except KeyError:
            msg = f"Session not found: {session_id}"
            raise KeyError(msg) from None

    async def close(self, session_id: str) -> None:
        """Close and forget a session."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            msg = f"Session not found: {session_id}"
            raise KeyError(msg)
        await session.close()

    async def close_all(self) -> None:
        for session_id in list(self._sessions):
            await self.close(session_id)
