from __future__ import annotations

import asyncio
import contextlib
from contextlib import asynccontextmanager
from typing import List

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from apptokens.api.error_handling import register_exception_handlers
from apptokens.api.routes import router
from apptokens.config import Settings
from apptokens.logging import get_logger, set_correlation_id

logger = get_logger(__name__)

_settings = Settings.from_env()

__version__ = "0.1.0"


_cleanup_task: asyncio.Task | None = None


async def _run_session_cleanup(interval_seconds: int) -> None:
    """Periodically drop session tokens that outlived the session TTL."""
    from apptokens.service.runtime import get_runtime

    while True:
        await asyncio.sleep(interval_seconds)
        try:
            get_runtime().auth.cleanup_expired_sessions()
        except Exception as exc:
            logger.error("session_cleanup_failed", error=str(exc))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    global _cleanup_task
    from apptokens.service.runtime import get_runtime

    runtime = get_runtime()
    runtime.auth.cleanup_expired_sessions()
    _cleanup_task = asyncio.create_task(
        _run_session_cleanup(runtime.settings.token_cleanup_interval_seconds)
    )
    logger.info("session_cleanup_scheduled")

    yield

    if _cleanup_task:
        _cleanup_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await _cleanup_task
        _cleanup_task = None
    logger.info("shutdown_complete")


app = FastAPI(title="App Tokens", version=__version__, lifespan=lifespan)


def _allowed_origins() -> List[str]:
    if _settings.cors_allow_origins:
        return _settings.cors_allow_origins
    # Default to common local dev hosts; avoid wildcard when credentials are enabled.
    return [
        "http://localhost",
        "http://localhost:3000",
        "http://localhost:5173",
        "http://127.0.0.1:3000",
        "http://127.0.0.1:5173",
    ]


app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins(),
    allow_credentials=_settings.cors_allow_credentials,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=[
        "Content-Type",
        "session_id",
        "X-Request-ID",
    ],
    expose_headers=["X-Request-ID"],
    max_age=3600,
)


@app.middleware("http")
async def add_correlation_id(request, call_next):
    """Tag each request with a correlation ID for log tracing.

    The ID comes from the X-Request-ID header when the client sends one,
    otherwise a new UUID; it is echoed back in the X-Request-ID response header.
    """
    client_request_id = request.headers.get("X-Request-ID")
    correlation_id = set_correlation_id(client_request_id)
    response = await call_next(request)
    response.headers["X-Request-ID"] = correlation_id
    return response


register_exception_handlers(app)
app.include_router(router)


@app.get("/healthz", tags=["health"])
async def healthz():
    return {"status": "ok", "version": __version__}
