"""
Exception types raised by the sync core and its adapters.
"""

from __future__ import annotations

from typing import Optional


class CaresyncError(Exception):
    """Base exception for sync/backup errors."""


class RemoteBackendError(CaresyncError):
    """
    Failure reported by the remote backend.

    `code` follows the backend's error codes (e.g. "unavailable",
    "permission-denied"); `status` is the HTTP status when there is one.
    """

    def __init__(
        self, message: str, *, code: str = "", status: Optional[int] = None
    ):
        super().__init__(message)
        self.code = code
        self.status = status


class InvalidOperationError(RemoteBackendError):
    """A queued operation that can never be dispatched as written."""

    def __init__(self, message: str):
        super().__init__(message, code="invalid-argument")


class ImportValidationError(CaresyncError, ValueError):
    """Import document rejected before any state was touched."""


class IdentityRequiredError(CaresyncError, ValueError):
    """A remote operation was requested without a caller identity."""


class BackupNotFoundError(CaresyncError, LookupError):
    """No local snapshot matches the requested timestamp."""
