from __future__ import annotations

import threading

from apptokens.config import get_settings, reset_settings_cache
from apptokens.logging import get_logger
from apptokens.service.activity import MemoryActivityNotifier
from apptokens.service.app_tokens import AppTokenService
from apptokens.service.auth import AuthService
from apptokens.service.secure_random import SecureRandom
from apptokens.storage.memory import MemoryStore

logger = get_logger(__name__)


class Runtime:
    """Holds singleton service instances for the FastAPI app."""

    def __init__(self):
        self.settings = get_settings()
        logger.info(
            "runtime_init_started",
            shared_fs_root=self.settings.shared_fs_root,
            test_mode=self.settings.test_mode,
        )
        try:
            self.store = MemoryStore(
                fs_root=self.settings.shared_fs_root,
                token_secret=self.settings.token_secret,
            )
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise

        self.random = SecureRandom()
        self.activity = MemoryActivityNotifier(
            max_events=self.settings.activity_history_size
        )
        self.auth = AuthService(self.store, self.settings, self.random)
        self.app_tokens = AppTokenService(self.store, self.random, self.activity)
        logger.info("runtime_init_complete")


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton in a thread-safe manner.

    Uses double-checked locking:
    - First check without lock (fast path for existing runtime)
    - Second check with lock to prevent race condition during creation
    """
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""
    global runtime

    with _runtime_lock:
        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime()
        return runtime
