"""Error taxonomy shared by the stores and both transports."""
from __future__ import annotations

from typing import Any, Optional


class ScorehubError(Exception):
    code = "SCOREHUB_ERROR"
    status_code = 500

    def __init__(self, message: str, details: Optional[Any] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(ScorehubError):
    """Malformed input; store state is left unchanged."""

    code = "VALIDATION_ERROR"
    status_code = 400


class NotFoundError(ScorehubError):
    code = "NOT_FOUND"
    status_code = 404


class PersistenceError(ScorehubError):
    """Backing-file write failure. Logged by the mirror, never raised to callers."""

    code = "PERSISTENCE_ERROR"


class ProtocolError(ScorehubError):
    """Real-time message rejected before any store access."""

    code = "PROTOCOL_ERROR"
    status_code = 401

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[Any] = None) -> None:
        super().__init__(message, details)
        if code:
            self.code = code
