from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Protocol, Tuple

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerifyMismatchError

from apptokens.config import Settings
from apptokens.logging import get_logger
from apptokens.service.errors import (
    AuthenticationError,
    ConflictError,
    ForbiddenError,
)
from apptokens.service.secure_random import CHAR_ALPHANUMERIC, SecureRandom
from apptokens.storage.errors import (
    ConstraintViolation,
    InvalidTokenError,
    PasswordlessTokenError,
)
from apptokens.storage.models import Token, TokenKind, User, utcnow

logger = get_logger(__name__)

SESSION_ID_LENGTH = 72
PASSWORD_ALGO = "argon2id"


class AuthStore(Protocol):
    def create_user(self, login_name: str, display_name: Optional[str] = None) -> User: ...

    def get_user(self, user_id: str) -> Optional[User]: ...

    def get_user_by_login_name(self, login_name: str) -> Optional[User]: ...

    def save_password(
        self, user_id: str, password_hash: str, password_algo: str
    ) -> None: ...

    def get_password_record(self, user_id: str) -> Optional[tuple[str, str]]: ...

    def generate_token(
        self,
        token: str,
        user_id: str,
        login_name: str,
        password: Optional[str],
        name: str,
        kind: TokenKind = TokenKind.SESSION,
    ) -> Token: ...

    def get_token(self, token: str) -> Token: ...

    def get_password(self, token_row: Token, token: str) -> str: ...

    def update_token_activity(self, token_row: Token, interval_seconds: int = 60) -> bool: ...

    def mark_password_confirmed(self, token_id: int) -> None: ...

    def invalidate_token(self, token: str) -> None: ...

    def invalidate_old_tokens(self, ttl_minutes: int) -> int: ...


@dataclass
class AuthContext:
    user_id: str
    login_name: str
    session_id: str
    token_id: int
    password_confirmed_at: Optional[datetime] = None


class AuthService:
    """Login sessions backed by session-derived tokens."""

    def __init__(
        self,
        store: AuthStore,
        settings: Settings,
        random: SecureRandom,
    ) -> None:
        self.store: AuthStore = store
        self.settings = settings
        self.random = random
        self._pwd_hasher = PasswordHasher(type=Type.ID)
        self.logger = logger

    def _now(self) -> datetime:
        return utcnow()

    def create_user(
        self, login_name: str, password: str, display_name: Optional[str] = None
    ) -> User:
        try:
            user = self.store.create_user(login_name, display_name)
        except ConstraintViolation as exc:
            raise ConflictError("login name already taken", detail=exc.detail)
        self.save_password(user.id, password)
        self.logger.info("user_created", user_id=user.id)
        return user

    def login(
        self,
        login_name: str,
        password: str,
        *,
        user_agent: Optional[str] = None,
    ) -> Tuple[User, str, Token]:
        """Open a session and return ``(user, session_id, session_token)``.

        ``password`` is either the account password or one of the account's
        app passwords. With an app password the new session caches whatever
        login secret that app password carries, possibly none.
        """
        user = self.store.get_user_by_login_name(login_name)
        if not user or not user.is_active:
            self.logger.warning("login_unknown_user")
            raise AuthenticationError("invalid credentials")

        cached_secret: Optional[str]
        if self.verify_password(user.id, password):
            cached_secret = password
        else:
            app_token = self._match_app_password(user, password)
            if app_token is None:
                raise AuthenticationError("invalid credentials")
            try:
                cached_secret = self.store.get_password(app_token, password)
            except PasswordlessTokenError:
                cached_secret = None

        session_id = self.random.generate(SESSION_ID_LENGTH, CHAR_ALPHANUMERIC)
        session_token = self.store.generate_token(
            session_id,
            user.id,
            login_name,
            cached_secret,
            user_agent or "unknown client",
            TokenKind.SESSION,
        )
        self.store.mark_password_confirmed(session_token.id)
        self.logger.info("login_succeeded", user_id=user.id, token_id=session_token.id)
        return user, session_id, session_token

    def _match_app_password(self, user: User, password: str) -> Optional[Token]:
        try:
            token = self.store.get_token(password)
        except InvalidTokenError:
            return None
        if token.kind != TokenKind.PERMANENT or token.user_id != user.id:
            return None
        return token

    def authenticate(self, session_id: Optional[str]) -> Optional[AuthContext]:
        if not session_id:
            return None
        try:
            token = self.store.get_token(session_id)
        except InvalidTokenError:
            return None
        if token.kind != TokenKind.SESSION:
            return None
        ttl = timedelta(minutes=self.settings.session_ttl_minutes)
        if token.last_activity <= self._now() - ttl:
            self.logger.info("session_expired", token_id=token.id)
            self.store.invalidate_token(session_id)
            return None
        self.store.update_token_activity(
            token, self.settings.activity_update_interval_seconds
        )
        return AuthContext(
            user_id=token.user_id,
            login_name=token.login_name,
            session_id=session_id,
            token_id=token.id,
            password_confirmed_at=token.password_confirmed_at,
        )

    def confirm_password(self, ctx: AuthContext, password: str) -> None:
        if not self.verify_password(ctx.user_id, password):
            raise ForbiddenError("password confirmation failed")
        self.store.mark_password_confirmed(ctx.token_id)

    def require_recent_confirmation(self, ctx: AuthContext) -> None:
        window = timedelta(minutes=self.settings.password_confirmation_ttl_minutes)
        confirmed_at = ctx.password_confirmed_at
        if confirmed_at is None or confirmed_at <= self._now() - window:
            raise ForbiddenError("password confirmation required")

    def logout(self, session_id: str) -> None:
        self.store.invalidate_token(session_id)
        self.logger.info("logout")

    def cleanup_expired_sessions(self) -> int:
        removed = self.store.invalidate_old_tokens(self.settings.session_ttl_minutes)
        if removed:
            self.logger.info("expired_sessions_removed", removed=removed)
        return removed

    def _hash_password(self, password: str) -> Tuple[str, str]:
        return self._pwd_hasher.hash(password), PASSWORD_ALGO

    def verify_password(self, user_id: str, password: str) -> bool:
        """Verify a user's password against stored hash."""
        record = self.store.get_password_record(user_id)
        if not record:
            self.logger.warning("password_record_missing", user_id=user_id)
            return False
        stored_hash, algo = record
        if algo != PASSWORD_ALGO:
            self.logger.warning("password_algo_mismatch", user_id=user_id, algo=algo)
            return False
        try:
            return self._pwd_hasher.verify(stored_hash, password)
        except (InvalidHash, VerifyMismatchError):
            return False

    def save_password(self, user_id: str, password: str) -> None:
        """Hash and save a new password for a user."""
        pwd_hash, algo = self._hash_password(password)
        self.store.save_password(user_id, pwd_hash, algo)

