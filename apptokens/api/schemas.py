from __future__ import annotations

import unicodedata
from typing import Any, Dict, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from apptokens.service.app_tokens import TokenScope

MAX_TOKEN_NAME_LENGTH = 120


def _normalize_unicode(value: str) -> str:
    """NFKC-normalize a display string and drop zero-width/bidi override characters."""
    zero_width = "\u200b\u200c\u200d\ufeff"
    bidi_overrides = {chr(c) for c in range(0x202A, 0x202F)}
    bidi_overrides.update(chr(c) for c in range(0x2066, 0x206A))
    cleaned = "".join(
        c for c in value if c not in zero_width and c not in bidi_overrides
    )
    return unicodedata.normalize("NFKC", cleaned)


_VALID_ERROR_CODES = frozenset({
    "unauthorized",
    "forbidden",
    "not_found",
    "validation_error",
    "conflict",
    "server_error",
    "service_unavailable",
})


class ErrorBody(BaseModel):
    """Error envelope body with stable code values."""

    code: str = Field(..., description="Stable error code")
    message: str
    details: Optional[Any] = None  # object, array, or null

    @field_validator("code")
    @classmethod
    def _validate_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(f"unknown error code: {value}")
        return value


class Envelope(BaseModel):
    """API envelope format."""

    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=lambda: str(uuid4()))


class LoginRequest(BaseModel):
    login_name: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1, max_length=4096)


class LoginResponse(BaseModel):
    user_id: str
    login_name: str
    session_id: str
    token_id: int


class PasswordConfirmRequest(BaseModel):
    password: str = Field(..., min_length=1, max_length=4096)


class AppTokenCreateRequest(BaseModel):
    name: str = Field(..., max_length=MAX_TOKEN_NAME_LENGTH)

    @field_validator("name")
    @classmethod
    def _clean_name(cls, value: str) -> str:
        cleaned = _normalize_unicode(value).strip()
        if not cleaned:
            raise ValueError("name must not be empty")
        return cleaned


class AppTokenUpdateRequest(BaseModel):
    scope: TokenScope


class AppTokenResponse(BaseModel):
    id: int
    name: str
    last_activity: int
    type: int
    scope: Dict[str, bool]
    can_delete: bool
    current: bool = False


class AppTokenCreateResponse(BaseModel):
    token: str
    login_name: str
    device_token: AppTokenResponse
