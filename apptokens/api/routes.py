from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Cookie, Depends, Header, HTTPException, Path, Request, Response

from apptokens.api.schemas import (
    AppTokenCreateRequest,
    AppTokenCreateResponse,
    AppTokenResponse,
    AppTokenUpdateRequest,
    Envelope,
    LoginRequest,
    LoginResponse,
    PasswordConfirmRequest,
)
from apptokens.logging import get_logger
from apptokens.service.auth import AuthContext
from apptokens.service.runtime import get_runtime
from apptokens.service.session import RequestSessionContext

logger = get_logger(__name__)

router = APIRouter(prefix="/v1")

SESSION_COOKIE = "session_id"


def _http_error(
    code: str, message: str, status_code: int, details: Optional[dict | str] = None
) -> HTTPException:
    payload: dict[str, object] = {
        "status": "error",
        "error": {"code": code, "message": message},
    }
    if details is not None:
        payload["error"]["details"] = details  # type: ignore[index]
    return HTTPException(status_code=status_code, detail=payload)


def _request_session_id(
    session_id_header: Optional[str], session_id_cookie: Optional[str]
) -> Optional[str]:
    return session_id_header or session_id_cookie


async def get_user(
    session_id: Optional[str] = Header(None, convert_underscores=False),
    session_cookie: Optional[str] = Cookie(None, alias=SESSION_COOKIE),
) -> AuthContext:
    runtime = get_runtime()
    ctx = runtime.auth.authenticate(_request_session_id(session_id, session_cookie))
    if not ctx:
        raise _http_error("unauthorized", "invalid session", status_code=401)
    return ctx


def _session_context(
    session_id: Optional[str] = Header(None, convert_underscores=False),
    session_cookie: Optional[str] = Cookie(None, alias=SESSION_COOKIE),
) -> RequestSessionContext:
    return RequestSessionContext(_request_session_id(session_id, session_cookie))


@router.post("/auth/login", response_model=Envelope, tags=["auth"])
async def login(body: LoginRequest, request: Request, response: Response):
    """Authenticate with the account password or an app password.

    Opens a new session, backed by a session-derived token, and sets the
    session cookie.

    Raises:
        401: If credentials are invalid
    """
    runtime = get_runtime()
    user, session_id, session_token = runtime.auth.login(
        body.login_name,
        body.password,
        user_agent=request.headers.get("user-agent"),
    )
    response.set_cookie(
        SESSION_COOKIE,
        session_id,
        httponly=True,
        secure=runtime.settings.cookie_secure,
        samesite="lax",
        max_age=runtime.settings.session_ttl_minutes * 60,
        path="/",
    )
    return Envelope(
        status="ok",
        data=LoginResponse(
            user_id=user.id,
            login_name=session_token.login_name,
            session_id=session_id,
            token_id=session_token.id,
        ),
    )


@router.post("/auth/confirm_password", response_model=Envelope, tags=["auth"])
async def confirm_password(
    body: PasswordConfirmRequest, principal: AuthContext = Depends(get_user)
):
    runtime = get_runtime()
    runtime.auth.confirm_password(principal, body.password)
    return Envelope(status="ok", data={"message": "password confirmed"})


@router.post("/auth/logout", response_model=Envelope, tags=["auth"])
async def logout(response: Response, principal: AuthContext = Depends(get_user)):
    runtime = get_runtime()
    runtime.auth.logout(principal.session_id)
    response.delete_cookie(
        SESSION_COOKIE, path="/", secure=runtime.settings.cookie_secure, samesite="lax"
    )
    return Envelope(status="ok", data={"message": "session revoked"})


@router.get("/settings/authtokens", response_model=Envelope, tags=["settings"])
async def list_app_tokens(
    principal: AuthContext = Depends(get_user),
    session: RequestSessionContext = Depends(_session_context),
):
    """List the caller's tokens; the current session's token is flagged and not deletable.

    Raises:
        503: If the current session cannot be resolved to a token
    """
    runtime = get_runtime()
    tokens = runtime.app_tokens.list_tokens(principal.user_id, session)
    return Envelope(status="ok", data=[AppTokenResponse(**t) for t in tokens])


@router.post("/settings/authtokens", response_model=Envelope, tags=["settings"])
async def create_app_token(
    body: AppTokenCreateRequest,
    principal: AuthContext = Depends(get_user),
    session: RequestSessionContext = Depends(_session_context),
):
    """Create an app password for a new device.

    The plaintext password is only ever returned by this call.

    Raises:
        403: If the password was not confirmed recently
        503: If the current session cannot be resolved to a token
    """
    runtime = get_runtime()
    runtime.auth.require_recent_confirmation(principal)
    created = runtime.app_tokens.create_app_password(principal.user_id, body.name, session)
    return Envelope(
        status="ok",
        data=AppTokenCreateResponse(
            token=created.token,
            login_name=created.login_name,
            device_token=AppTokenResponse(**created.device_token),
        ),
    )


@router.put("/settings/authtokens/{token_id}", response_model=Envelope, tags=["settings"])
async def update_app_token(
    body: AppTokenUpdateRequest,
    token_id: int = Path(..., ge=1),
    principal: AuthContext = Depends(get_user),
):
    """Replace a token's scope.

    Raises:
        404: If the token does not exist or belongs to another user
    """
    runtime = get_runtime()
    runtime.app_tokens.update_scope(
        principal.user_id, token_id, body.scope.model_dump()
    )
    return Envelope(status="ok", data={})


@router.delete("/settings/authtokens/{token_id}", response_model=Envelope, tags=["settings"])
async def delete_app_token(
    token_id: int = Path(..., ge=1),
    principal: AuthContext = Depends(get_user),
):
    """Revoke a token. Unknown or foreign ids are ignored.

    Refusing the current session's own token is done only here;
    ``AppTokenService.destroy`` itself still revokes it.

    Raises:
        403: If the id is the current session's own token (use logout instead)
    """
    if token_id == principal.token_id:
        logger.warning(
            "current_session_delete_refused",
            user_id=principal.user_id,
            token_id=token_id,
        )
        raise _http_error(
            "forbidden", "the current session cannot be revoked here", status_code=403
        )
    runtime = get_runtime()
    runtime.app_tokens.destroy(principal.user_id, token_id)
    return Envelope(status="ok", data={})
