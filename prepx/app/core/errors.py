"""Domain errors and the user-facing messages they map to."""

import requests
from sqlalchemy.exc import IntegrityError, OperationalError

PERMISSION_MESSAGE = "You do not have permission to perform this action."
SESSION_EXPIRED_MESSAGE = "Your session has expired. Please log in again."
NETWORK_MESSAGE = "Network error. Please check your connection."
DUPLICATE_MESSAGE = "This record already exists."
INVALID_DATA_MESSAGE = "Invalid data provided."
UNKNOWN_MESSAGE = "Something went wrong. Please try again."


class PrepXError(Exception):
    """Base class for errors raised by the service layer."""

    status_code = 400

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message())
        self.message = message or self.default_message()

    def default_message(self) -> str:
        return INVALID_DATA_MESSAGE

    @property
    def user_message(self) -> str:
        return self.message


class ValidationFailed(PrepXError):
    """Bad input; the message is shown to the user verbatim."""


class NotFound(PrepXError):
    status_code = 404

    def default_message(self) -> str:
        return "Record not found"


class PermissionDenied(PrepXError):
    status_code = 403

    def default_message(self) -> str:
        return PERMISSION_MESSAGE

    @property
    def user_message(self) -> str:
        # The underlying reason stays in logs only
        return PERMISSION_MESSAGE


class SessionExpired(PrepXError):
    status_code = 401

    def default_message(self) -> str:
        return SESSION_EXPIRED_MESSAGE

    @property
    def user_message(self) -> str:
        return SESSION_EXPIRED_MESSAGE


class InvalidStageTransition(ValidationFailed):
    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move lead from {current} to {requested}")


class DuplicateRecord(PrepXError):
    status_code = 409

    def default_message(self) -> str:
        return DUPLICATE_MESSAGE


def _is_unique_violation(exc: IntegrityError) -> bool:
    text = str(getattr(exc, "orig", exc)).lower()
    return "unique" in text or "duplicate" in text


def user_message_for(exc: Exception) -> str:
    """Translate any error raised by an operation into text fit for a toast."""
    if isinstance(exc, PrepXError):
        return exc.user_message
    if isinstance(exc, IntegrityError):
        return DUPLICATE_MESSAGE if _is_unique_violation(exc) else INVALID_DATA_MESSAGE
    if isinstance(exc, (requests.RequestException, ConnectionError, TimeoutError)):
        return NETWORK_MESSAGE
    if isinstance(exc, OperationalError):
        return NETWORK_MESSAGE
    return UNKNOWN_MESSAGE


def status_code_for(exc: Exception) -> int:
    if isinstance(exc, PrepXError):
        return exc.status_code
    if isinstance(exc, IntegrityError):
        return 409 if _is_unique_violation(exc) else 400
    return 500
