"""Error taxonomy shared by the transport, session and controller layers."""

from __future__ import annotations

__all__ = [
    "AuthError",
    "ConflictError",
    "ControllerError",
    "TransportError",
    "ValidationError",
    "error_for_status",
    "is_cooldown",
]

COOLDOWN_MARKER = "just completed"


class ControllerError(Exception):
    """Base class for every failure raised by this package."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status


class AuthError(ControllerError):
    """Invalid credentials or an expired session."""


class ValidationError(ControllerError):
    """Input rejected locally before any request is sent."""


class ConflictError(ControllerError):
    """The backend refused to start a job that is running or cooling down."""


class TransportError(ControllerError):
    """Network, parse or unstructured HTTP failure."""


def error_for_status(status: int, message: str) -> ControllerError:
    """Map a non-2xx HTTP status onto the taxonomy."""

    if status in (401, 403):
        return AuthError(message, status=status)
    if status == 409:
        return ConflictError(message, status=status)
    return TransportError(message, status=status)


def is_cooldown(exc: BaseException) -> bool:
    """Return ``True`` when ``exc`` reports that an ingest run just finished."""

    return COOLDOWN_MARKER in str(exc)
