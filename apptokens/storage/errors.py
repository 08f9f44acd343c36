from __future__ import annotations

from typing import Any, Dict, Optional


class StorageError(Exception):
    """Base class for token store failures."""

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class ConstraintViolation(StorageError):
    """Raised when a storage-layer uniqueness or FK constraint is violated."""


class InvalidTokenError(StorageError):
    """The token does not exist or its secret cannot be read with the given key."""


class PasswordlessTokenError(StorageError):
    """The token was created without a retrievable login secret."""


__all__ = [
    "StorageError",
    "ConstraintViolation",
    "InvalidTokenError",
    "PasswordlessTokenError",
]
