from __future__ import annotations

from typing import Any, Dict, Optional


class StorageError(Exception):
    """Base for failures raised by the user, token and todo stores."""

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class ConstraintViolation(StorageError):
    """A unique email or an owning-user reference was violated."""


__all__ = ["StorageError", "ConstraintViolation"]
