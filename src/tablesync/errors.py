"""
Error taxonomy shared by the remote client, the stores and the sync engine.

The API layer maps these onto HTTP status codes; nothing below the API
knows about HTTP responses.
"""
from typing import Optional


class SyncError(Exception):
    """Base class for every error raised by tablesync."""


class AuthError(SyncError):
    """Missing/invalid credentials or a rejected token request."""


class CredentialsNotFoundError(AuthError):
    """Raised when neither the environment nor a credentials file supplies credentials."""


class RemoteQueryError(SyncError):
    """Submit/status/fetch returned non-2xx, or the provider reported a failed query."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class QueryTimeoutError(SyncError, TimeoutError):
    """Poll attempts exhausted without a terminal remote status."""


class ValidationError(SyncError):
    """Malformed control request or sync options."""


class StoreError(SyncError):
    """Persistence unavailable or a write failed."""


class NotFoundError(SyncError):
    """Unknown job id (or other keyed resource)."""


class JobConflictError(SyncError):
    """A compare-and-patch found the job in a status the writer did not expect."""

    def __init__(self, message: str, current_status: Optional[str] = None) -> None:
        super().__init__(message)
        self.current_status = current_status
