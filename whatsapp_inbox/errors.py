"""
Exceptions raised by API handlers and external service wrappers.

Every error leaves the API as ``{"error": ..., "details": ...}``; see the
handlers registered in main.py.
"""

from typing import Any, Dict, Optional


class ApiError(Exception):
    """An error with a known HTTP status and a client-safe message."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        details: Optional[Any] = None,
        extra: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details
        self.extra = extra or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.message}
        if self.details is not None:
            body["details"] = self.details
        body.update(self.extra)
        return body


class ProviderError(Exception):
    """The messaging provider rejected a request or could not be reached."""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(f"Wapisimo API error ({status_code}): {message}")


class StorageNotConfiguredError(Exception):
    """Media upload attempted without R2 credentials."""
