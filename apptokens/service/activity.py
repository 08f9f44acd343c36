from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Deque, List, Optional, Protocol

from apptokens.logging import get_logger
from apptokens.storage.models import utcnow

logger = get_logger(__name__)


class PublishUnsupportedError(Exception):
    """The activity backend cannot publish this event."""


@dataclass
class ActivityEvent:
    APP_TOKEN_CREATED = "app_token_created"
    APP_TOKEN_UPDATED = "app_token_updated"
    APP_TOKEN_DELETED = "app_token_deleted"

    app: str
    type: str
    affected_user: str
    author: str
    subject: str
    timestamp: datetime = field(default_factory=utcnow)


class ActivityNotifier(Protocol):
    def publish(self, event: ActivityEvent) -> None: ...


class MemoryActivityNotifier:
    """Keeps the most recent events in memory and mirrors them to the log."""

    def __init__(self, max_events: int = 1000) -> None:
        self._events: Deque[ActivityEvent] = deque(maxlen=max_events)
        self._lock = threading.Lock()

    def publish(self, event: ActivityEvent) -> None:
        missing = [
            name
            for name in ("app", "type", "affected_user", "subject")
            if not getattr(event, name)
        ]
        if missing:
            raise PublishUnsupportedError(
                f"activity event is missing {', '.join(missing)}"
            )
        with self._lock:
            self._events.append(event)
        logger.info(
            "activity_published",
            app=event.app,
            activity_type=event.type,
            affected_user=event.affected_user,
            author=event.author,
            subject=event.subject,
        )

    def events_for(self, user_id: str, limit: Optional[int] = None) -> List[ActivityEvent]:
        with self._lock:
            matching = [e for e in reversed(self._events) if e.affected_user == user_id]
        return matching[:limit] if limit is not None else matching
