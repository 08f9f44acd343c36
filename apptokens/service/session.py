from __future__ import annotations

from typing import Optional, Protocol


class SessionUnavailableError(Exception):
    """No session is attached to the current request."""


class SessionContext(Protocol):
    def current_session_id(self) -> str: ...


class RequestSessionContext:
    """Session id carried by the in-flight request (header or cookie)."""

    def __init__(self, session_id: Optional[str]) -> None:
        self._session_id = session_id or None

    def current_session_id(self) -> str:
        if self._session_id is None:
            raise SessionUnavailableError("session not available")
        return self._session_id
