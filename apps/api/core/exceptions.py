"""
Custom exception classes and error handling.

Every failure the sync engine surfaces to callers is an `APIException`
subclass carrying a stable HTTP status code and machine-readable error code,
so the presentation layer never has to inspect error internals.
"""
from fastapi import HTTPException, status
from typing import Optional, Dict, Any


class APIException(HTTPException):
    """Base API exception with consistent structure."""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: Optional[str] = None,
        headers: Optional[Dict[str, Any]] = None
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code

    def __str__(self) -> str:
        return str(self.detail)


class IntervalsDomainError(APIException):
    """Base class for errors raised by the Intervals sync engine."""

    default_detail = "Intervals request failed."
    default_status = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_code = "INTERVALS_ERROR"

    def __init__(self, detail: Optional[str] = None):
        super().__init__(
            status_code=self.default_status,
            detail=detail or self.default_detail,
            error_code=self.default_code,
        )


# --- Precondition errors (user-correctable, never logged as sync attempts) ---

class ConnectionNotFoundError(IntervalsDomainError):
    default_detail = "Intervals athlete is not connected."
    default_status = status.HTTP_404_NOT_FOUND
    default_code = "CONNECTION_NOT_FOUND"


class NoPreviousSyncError(IntervalsDomainError):
    default_detail = (
        "No previous successful sync found. "
        "Reconnect Intervals to initialize sync history."
    )
    default_status = status.HTTP_409_CONFLICT
    default_code = "NO_PREVIOUS_SYNC"


class InvalidDateRangeError(IntervalsDomainError):
    default_detail = 'Invalid "oldest" or "newest" date. Use "yyyy-MM-dd" format.'
    default_status = status.HTTP_400_BAD_REQUEST
    default_code = "INVALID_DATE_RANGE"


# --- Upstream errors (terminal for the current attempt) ---

class UpstreamAuthError(IntervalsDomainError):
    default_detail = "Intervals API authentication failed. Check username and API key."
    default_status = status.HTTP_401_UNAUTHORIZED
    default_code = "UPSTREAM_AUTH_ERROR"


class UpstreamRequestError(IntervalsDomainError):
    default_detail = "Intervals request failed."
    default_status = status.HTTP_502_BAD_GATEWAY
    default_code = "UPSTREAM_REQUEST_ERROR"


class UpstreamPayloadError(UpstreamRequestError):
    """Upstream response did not match the expected schema."""

    default_detail = "Intervals payload validation failed."
    default_code = "UPSTREAM_PAYLOAD_INVALID"


# --- Persistence errors ---

class SyncInitializationError(IntervalsDomainError):
    default_detail = "Failed to initialize Intervals sync log."
    default_code = "SYNC_INITIALIZATION_ERROR"


class PersistenceInvariantError(IntervalsDomainError):
    default_detail = "A database write did not return the expected row."
    default_code = "PERSISTENCE_INVARIANT_VIOLATION"


# --- Goals ---

class GoalNotFoundError(IntervalsDomainError):
    default_detail = "Goal not found."
    default_status = status.HTTP_404_NOT_FOUND
    default_code = "GOAL_NOT_FOUND"


class GoalValidationError(IntervalsDomainError):
    default_detail = "Goal is invalid."
    default_status = status.HTTP_400_BAD_REQUEST
    default_code = "GOAL_VALIDATION_ERROR"


def map_error_to_status_code(error: BaseException) -> int:
    """Stable status code for any error raised by the engine."""
    if isinstance(error, APIException):
        return error.status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def to_error_message(error: BaseException) -> str:
    """Message recorded on a failed sync log row."""
    if isinstance(error, APIException):
        return str(error.detail)
    message = str(error)
    return message or f"Unknown Intervals error ({type(error).__name__})."
