from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Protocol

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from apptokens.logging import get_logger
from apptokens.service.activity import (
    ActivityEvent,
    ActivityNotifier,
    PublishUnsupportedError,
)
from apptokens.service.errors import (
    NotFoundError,
    ServiceUnavailableError,
    ValidationError,
)
from apptokens.service.secure_random import SecureRandom, generate_device_token
from apptokens.service.session import SessionContext, SessionUnavailableError
from apptokens.storage.errors import InvalidTokenError, PasswordlessTokenError
from apptokens.storage.models import Token, TokenKind

logger = get_logger(__name__)


class TokenScope(BaseModel):
    """Scope keys a caller is allowed to write; anything else is dropped."""

    model_config = ConfigDict(extra="ignore")

    filesystem: bool


class TokenStore(Protocol):
    def get_tokens_by_user(self, user_id: str) -> List[Token]: ...

    def get_token(self, token: str) -> Token: ...

    def get_token_by_id(self, token_id: int) -> Token: ...

    def get_password(self, token_row: Token, token: str) -> str: ...

    def generate_token(
        self,
        token: str,
        user_id: str,
        login_name: str,
        password: Optional[str],
        name: str,
        kind: TokenKind = TokenKind.SESSION,
    ) -> Token: ...

    def update_token(self, token_row: Token) -> None: ...

    def invalidate_token_by_id(self, user_id: str, token_id: int) -> None: ...


@dataclass
class CreatedAppPassword:
    token: str
    login_name: str
    device_token: dict


class AppTokenService:
    """List, create, rescope and revoke a user's device tokens."""

    def __init__(
        self,
        store: TokenStore,
        random: SecureRandom,
        activity: ActivityNotifier,
    ) -> None:
        self.store = store
        self.random = random
        self.activity = activity
        self.logger = logger

    def list_tokens(self, user_id: str, session: SessionContext) -> List[dict]:
        tokens = self.store.get_tokens_by_user(user_id)
        _, session_token = self._resolve_session_token(session)

        data: List[dict] = []
        for token in tokens:
            record = token.serialize()
            if token.id == session_token.id:
                record["can_delete"] = False
                record["current"] = True
            else:
                record["can_delete"] = True
            data.append(record)
        return data

    def create_app_password(
        self, user_id: str, name: str, session: SessionContext
    ) -> CreatedAppPassword:
        session_id, session_token = self._resolve_session_token(session)
        login_name = session_token.login_name
        try:
            password: Optional[str] = self.store.get_password(session_token, session_id)
        except PasswordlessTokenError:
            password = None
        except InvalidTokenError:
            # The cached secret cannot be recovered with this session id
            raise ServiceUnavailableError("session token unavailable")

        token = generate_device_token(self.random)
        device_token = self.store.generate_token(
            token, user_id, login_name, password, name, TokenKind.PERMANENT
        )
        token_data = device_token.serialize()
        token_data["can_delete"] = True

        self.logger.info(
            "app_token_created",
            user_id=user_id,
            token_id=device_token.id,
            has_password=password is not None,
        )
        self._publish_activity(user_id, ActivityEvent.APP_TOKEN_CREATED)
        return CreatedAppPassword(
            token=token, login_name=login_name, device_token=token_data
        )

    def update_scope(
        self, user_id: str, token_id: int, scope: Mapping[str, Any]
    ) -> None:
        try:
            token = self.store.get_token_by_id(token_id)
            if token.user_id != user_id:
                raise InvalidTokenError("user mismatch")
        except InvalidTokenError:
            raise NotFoundError("token not found", detail={"id": token_id})

        token.set_scope(self._allowed_scope(scope))
        self.store.update_token(token)
        self.logger.info(
            "app_token_updated", user_id=user_id, token_id=token_id, scope=token.scope
        )
        self._publish_activity(user_id, ActivityEvent.APP_TOKEN_UPDATED)

    def destroy(self, user_id: str, token_id: int) -> None:
        # The store only deletes a token it finds under this owner
        self.store.invalidate_token_by_id(user_id, token_id)
        self.logger.info("app_token_deleted", user_id=user_id, token_id=token_id)
        self._publish_activity(user_id, ActivityEvent.APP_TOKEN_DELETED)

    def _resolve_session_token(self, session: SessionContext) -> tuple[str, Token]:
        """Return the current session id and its token.

        A missing session and a session whose token is gone raise the same
        ServiceUnavailableError.
        """
        try:
            session_id = session.current_session_id()
            return session_id, self.store.get_token(session_id)
        except (SessionUnavailableError, InvalidTokenError):
            raise ServiceUnavailableError("session token unavailable")

    @staticmethod
    def _allowed_scope(scope: Mapping[str, Any]) -> dict:
        try:
            return TokenScope.model_validate(dict(scope)).model_dump()
        except PydanticValidationError as exc:
            raise ValidationError(
                "invalid scope",
                detail={
                    "fields": [
                        ".".join(str(part) for part in err["loc"]) for err in exc.errors()
                    ]
                },
            )

    def _publish_activity(self, user_id: str, subject: str) -> None:
        event = ActivityEvent(
            app="settings",
            type="security",
            affected_user=user_id,
            author=user_id,
            subject=subject,
        )
        try:
            self.activity.publish(event)
        except PublishUnsupportedError as exc:
            self.logger.warning(
                "activity_publish_failed",
                app="settings",
                subject=subject,
                error=str(exc),
                exc_info=exc,
            )
