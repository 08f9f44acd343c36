from __future__ import annotations

import base64
import hashlib
import hmac
import json
import threading
import uuid
from dataclasses import replace
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, List, Optional

from cryptography.fernet import Fernet, InvalidToken

from apptokens.logging import get_logger
from apptokens.storage.errors import (
    ConstraintViolation,
    InvalidTokenError,
    PasswordlessTokenError,
)
from apptokens.storage.models import Token, TokenKind, User, utcnow


class MemoryStore:
    """In-memory token store persisted as a JSON snapshot under ``fs_root``.

    Plaintext tokens are never kept: rows are keyed by an HMAC of the token,
    and a cached login password is encrypted with a key derived from the
    token itself, so it can only be recovered by whoever presents the token.
    """

    def __init__(self, fs_root: str, *, token_secret: str) -> None:
        if not token_secret:
            raise ValueError("token_secret is required")
        self.logger = get_logger(__name__)
        self.fs_root = Path(fs_root)
        self.fs_root.mkdir(parents=True, exist_ok=True)
        self._token_secret = token_secret
        self.users: Dict[str, User] = {}
        self.credentials: Dict[str, tuple[str, str]] = {}
        self.tokens: Dict[int, Token] = {}
        self._token_id_seq: int = 1
        # Thread lock for the sequence counter
        self._seq_lock = threading.Lock()
        # RLock for all data operations; reentrant for nested helpers
        self._data_lock = threading.RLock()

        if not self._load_state():
            self._persist_state()

    def _state_path(self) -> Path:
        state_dir = self.fs_root / "state"
        state_dir.mkdir(parents=True, exist_ok=True)
        return state_dir / "token_store.json"

    def _next_token_id(self) -> int:
        with self._seq_lock:
            token_id = self._token_id_seq
            self._token_id_seq += 1
            return token_id

    # -- hashing and secret encryption -------------------------------------

    def hash_token(self, token: str) -> str:
        return hmac.new(
            self._token_secret.encode(), token.encode(), hashlib.sha256
        ).hexdigest()

    def _cipher_for(self, token: str) -> Fernet:
        key_material = hashlib.sha256((token + self._token_secret).encode()).digest()
        return Fernet(base64.urlsafe_b64encode(key_material))

    def _encrypt_password(self, password: str, token: str) -> str:
        return self._cipher_for(token).encrypt(password.encode()).decode()

    def _decrypt_password(self, encrypted: str, token: str) -> str:
        try:
            return self._cipher_for(token).decrypt(encrypted.encode()).decode()
        except InvalidToken as exc:
            raise InvalidTokenError("could not decrypt token password") from exc

    # -- users -------------------------------------------------------------

    def create_user(self, login_name: str, display_name: Optional[str] = None) -> User:
        with self._data_lock:
            if any(existing.login_name == login_name for existing in self.users.values()):
                raise ConstraintViolation(
                    "login name already exists", {"field": "login_name"}
                )
            user = User(
                id=str(uuid.uuid4()),
                login_name=login_name,
                display_name=display_name,
            )
            self.users[user.id] = user
            self._persist_state()
            return user

    def get_user(self, user_id: str) -> Optional[User]:
        with self._data_lock:
            return self.users.get(user_id)

    def get_user_by_login_name(self, login_name: str) -> Optional[User]:
        with self._data_lock:
            return next(
                (u for u in self.users.values() if u.login_name == login_name), None
            )

    def save_password(
        self, user_id: str, password_hash: str, password_algo: str
    ) -> None:
        with self._data_lock:
            if user_id not in self.users:
                raise ConstraintViolation(
                    "user not found for credentials", {"user_id": user_id}
                )
            self.credentials[user_id] = (password_hash, password_algo)
            self._persist_state()

    def get_password_record(self, user_id: str) -> Optional[tuple[str, str]]:
        with self._data_lock:
            return self.credentials.get(user_id)

    # -- tokens ------------------------------------------------------------

    def generate_token(
        self,
        token: str,
        user_id: str,
        login_name: str,
        password: Optional[str],
        name: str,
        kind: TokenKind = TokenKind.SESSION,
    ) -> Token:
        token_hash = self.hash_token(token)
        encrypted = self._encrypt_password(password, token) if password is not None else None
        with self._data_lock:
            if user_id not in self.users:
                raise ConstraintViolation("user does not exist", {"user_id": user_id})
            if any(t.token_hash == token_hash for t in self.tokens.values()):
                raise ConstraintViolation("token already exists")
            now = utcnow()
            row = Token(
                id=self._next_token_id(),
                user_id=user_id,
                login_name=login_name,
                name=name,
                kind=TokenKind(kind),
                token_hash=token_hash,
                password=encrypted,
                created_at=now,
                last_activity=now,
                last_check=now,
            )
            self.tokens[row.id] = row
            self._persist_state()
            self.logger.info(
                "token_generated", token_id=row.id, user_id=user_id, token_kind=row.kind.name
            )
            return self._copy(row)

    def get_token(self, token: str) -> Token:
        """Look a token up by its plaintext (for sessions, the session id)."""
        token_hash = self.hash_token(token)
        with self._data_lock:
            row = next((t for t in self.tokens.values() if t.token_hash == token_hash), None)
            if row is None:
                raise InvalidTokenError("token does not exist")
            return self._copy(row)

    def get_token_by_id(self, token_id: int) -> Token:
        with self._data_lock:
            row = self.tokens.get(token_id)
            if row is None:
                raise InvalidTokenError("token does not exist", {"token_id": token_id})
            return self._copy(row)

    def get_tokens_by_user(self, user_id: str) -> List[Token]:
        with self._data_lock:
            return [self._copy(t) for t in self.tokens.values() if t.user_id == user_id]

    def get_password(self, token_row: Token, token: str) -> str:
        """Return the cached login password of ``token_row``, decrypted with ``token``."""
        if token_row.password is None:
            raise PasswordlessTokenError("token has no cached password")
        return self._decrypt_password(token_row.password, token)

    def update_token(self, token_row: Token) -> None:
        with self._data_lock:
            current = self.tokens.get(token_row.id)
            if current is None:
                raise InvalidTokenError("token does not exist", {"token_id": token_row.id})
            # Owner, secret material and kind are never rewritten through here
            current.name = token_row.name
            current.scope = dict(token_row.scope) if token_row.scope is not None else None
            current.last_activity = token_row.last_activity
            current.last_check = token_row.last_check
            self._persist_state()

    def update_token_activity(self, token_row: Token, interval_seconds: int = 60) -> bool:
        """Touch ``last_activity``; writes at most once per ``interval_seconds``."""
        now = utcnow()
        with self._data_lock:
            current = self.tokens.get(token_row.id)
            if current is None:
                return False
            if now - current.last_activity < timedelta(seconds=interval_seconds):
                return False
            current.last_activity = now
            token_row.last_activity = now
            self._persist_state()
            return True

    def mark_password_confirmed(self, token_id: int) -> None:
        with self._data_lock:
            current = self.tokens.get(token_id)
            if current is None:
                raise InvalidTokenError("token does not exist", {"token_id": token_id})
            current.password_confirmed_at = utcnow()
            self._persist_state()

    def invalidate_token(self, token: str) -> None:
        token_hash = self.hash_token(token)
        with self._data_lock:
            stale = [tid for tid, t in self.tokens.items() if t.token_hash == token_hash]
            for tid in stale:
                self.tokens.pop(tid, None)
            if stale:
                self._persist_state()

    def invalidate_token_by_id(self, user_id: str, token_id: int) -> None:
        """Delete ``token_id`` only if it belongs to ``user_id``; no-op otherwise."""
        with self._data_lock:
            current = self.tokens.get(token_id)
            if current is None or current.user_id != user_id:
                return
            self.tokens.pop(token_id, None)
            self._persist_state()

    def invalidate_old_tokens(self, ttl_minutes: int) -> int:
        """Remove session tokens idle for longer than ``ttl_minutes``."""
        cutoff = utcnow() - timedelta(minutes=ttl_minutes)
        with self._data_lock:
            stale = [
                tid
                for tid, t in self.tokens.items()
                if t.kind == TokenKind.SESSION and t.last_activity < cutoff
            ]
            for tid in stale:
                self.tokens.pop(tid, None)
            if stale:
                self._persist_state()
            return len(stale)

    @staticmethod
    def _copy(row: Token) -> Token:
        return replace(row, scope=dict(row.scope) if row.scope is not None else None)

    # -- persistence -------------------------------------------------------

    @staticmethod
    def _serialize_datetime(dt: Optional[datetime]) -> Optional[str]:
        return dt.isoformat() if dt is not None else None

    @staticmethod
    def _deserialize_datetime(raw: Optional[str]) -> Optional[datetime]:
        return datetime.fromisoformat(raw) if raw else None

    def _serialize_user(self, user: User) -> dict:
        return {
            "id": user.id,
            "login_name": user.login_name,
            "display_name": user.display_name,
            "created_at": self._serialize_datetime(user.created_at),
            "is_active": user.is_active,
        }

    def _deserialize_user(self, data: dict) -> User:
        return User(
            id=data["id"],
            login_name=data["login_name"],
            display_name=data.get("display_name"),
            created_at=self._deserialize_datetime(data.get("created_at")) or utcnow(),
            is_active=data.get("is_active", True),
        )

    def _serialize_token(self, token: Token) -> dict:
        return {
            "id": token.id,
            "user_id": token.user_id,
            "login_name": token.login_name,
            "name": token.name,
            "kind": int(token.kind),
            "token_hash": token.token_hash,
            "password": token.password,
            "scope": token.scope,
            "created_at": self._serialize_datetime(token.created_at),
            "last_activity": self._serialize_datetime(token.last_activity),
            "last_check": self._serialize_datetime(token.last_check),
            "password_confirmed_at": self._serialize_datetime(token.password_confirmed_at),
        }

    def _deserialize_token(self, data: dict) -> Token:
        now = utcnow()
        return Token(
            id=int(data["id"]),
            user_id=data["user_id"],
            login_name=data["login_name"],
            name=data.get("name", ""),
            kind=TokenKind(int(data.get("kind", TokenKind.SESSION))),
            token_hash=data["token_hash"],
            password=data.get("password"),
            scope=data.get("scope"),
            created_at=self._deserialize_datetime(data.get("created_at")) or now,
            last_activity=self._deserialize_datetime(data.get("last_activity")) or now,
            last_check=self._deserialize_datetime(data.get("last_check")) or now,
            password_confirmed_at=self._deserialize_datetime(
                data.get("password_confirmed_at")
            ),
        )

    def _persist_state(self) -> None:
        with self._data_lock:
            state = {
                "users": [self._serialize_user(u) for u in self.users.values()],
                "credentials": [
                    {
                        "user_id": user_id,
                        "password_hash": creds[0],
                        "password_algo": creds[1],
                    }
                    for user_id, creds in self.credentials.items()
                ],
                "tokens": [self._serialize_token(t) for t in self.tokens.values()],
                "token_id_seq": self._token_id_seq,
            }
        path = self._state_path()
        tmp_path = path.with_suffix(".json.tmp")
        try:
            tmp_path.write_text(json.dumps(state, indent=2))
            tmp_path.replace(path)
        except OSError as exc:
            raise RuntimeError(f"failed to persist token store state: {exc}") from exc

    def _load_state(self) -> bool:
        path = self._state_path()
        # Use try-except instead of exists() to avoid TOCTOU race condition
        try:
            data = json.loads(path.read_text())
        except FileNotFoundError:
            return False
        with self._data_lock:
            self.users = {u["id"]: self._deserialize_user(u) for u in data.get("users", [])}
            self.credentials = {
                entry["user_id"]: (entry["password_hash"], entry.get("password_algo", ""))
                for entry in data.get("credentials", [])
            }
            self.tokens = {
                int(t["id"]): self._deserialize_token(t) for t in data.get("tokens", [])
            }
            max_token_id = max(self.tokens.keys(), default=0)
            self._token_id_seq = max(int(data.get("token_id_seq", 1)), max_token_id + 1)
        self.logger.info(
            "token_store_loaded",
            users=len(self.users),
            token_count=len(self.tokens),
            path=str(path),
        )
        return True
