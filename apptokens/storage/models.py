from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import IntEnum
from typing import Dict, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenKind(IntEnum):
    """Kind of a stored token.

    SESSION tokens back a live browser/login session; PERMANENT tokens are
    app passwords created explicitly by their owner.
    """

    SESSION = 0
    PERMANENT = 1


DEFAULT_SCOPE: Dict[str, bool] = {"filesystem": True}


@dataclass
class User:
    id: str
    login_name: str
    display_name: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    is_active: bool = True


@dataclass
class Token:
    id: int
    user_id: str
    login_name: str
    name: str
    kind: TokenKind
    token_hash: str
    password: Optional[str] = None
    scope: Optional[Dict[str, bool]] = None
    created_at: datetime = field(default_factory=utcnow)
    last_activity: datetime = field(default_factory=utcnow)
    last_check: datetime = field(default_factory=utcnow)
    password_confirmed_at: Optional[datetime] = None

    def get_scope(self) -> Dict[str, bool]:
        return dict(self.scope) if self.scope else dict(DEFAULT_SCOPE)

    def set_scope(self, scope: Dict[str, bool]) -> None:
        self.scope = dict(scope)

    def serialize(self) -> dict:
        """Public view of the token; never includes hash or cached secret."""
        return {
            "id": self.id,
            "name": self.name,
            "last_activity": int(self.last_activity.timestamp()),
            "type": int(self.kind),
            "scope": self.get_scope(),
        }
