"""
Exception classes for mtd-sync.
"""

from typing import Optional


class MtdSyncError(Exception):
    """Base exception for all mtd-sync errors."""
    pass


class ConfigurationError(MtdSyncError):
    """Raised when configuration is invalid or missing."""
    pass


class AuthRequiredError(MtdSyncError):
    """Raised when no usable access token can be obtained."""

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class AuthenticationFailedError(MtdSyncError):
    """Raised when the identity platform rejects a token request."""

    def __init__(self, message: str, error_code: Optional[str] = None):
        super().__init__(message)
        self.error_code = error_code


class RemoteError(MtdSyncError):
    """Base exception for remote task service errors."""
    pass


class RemoteRequestFailed(RemoteError):
    """A remote call returned a non-2xx status or never completed.

    ``status`` is 0 for transport failures (DNS, timeouts, resets).
    """

    def __init__(self, status: int, diagnostic: str):
        super().__init__(diagnostic)
        self.status = status
        self.diagnostic = diagnostic

    @property
    def is_not_found(self) -> bool:
        return self.status == 404


class DocumentError(MtdSyncError):
    """Raised when a task document cannot be read or written."""
    pass


class SyncError(MtdSyncError):
    """Raised when a whole sync pass fails."""
    pass
