"""
Custom exception types for the Splitwise API client.

These exceptions allow callers to distinguish between failures
occurring while obtaining credentials, failures of the HTTP exchange
itself, and business-rule errors reported inside a successful response.
"""

from typing import Optional


class SplitwiseError(Exception):
    """Base exception for all Splitwise client errors."""


class SplitwiseAuthError(SplitwiseError):
    """Raised when authentication or token retrieval fails."""


class StateMismatchError(SplitwiseAuthError):
    """Raised when the OAuth callback echoes a state we did not issue."""


class CallbackTimeoutError(SplitwiseAuthError):
    """Raised when no OAuth callback arrives within the configured timeout."""


class TokenCacheError(SplitwiseAuthError):
    """Raised when the token cache file exists but cannot be read or written."""


class SplitwiseAPIError(SplitwiseError):
    """Raised when an HTTP request to the Splitwise API fails."""


class ResponseDecodeError(SplitwiseAPIError):
    """Raised when a response body is not the JSON shape we expect."""


class UnexpectedStatusError(SplitwiseAPIError):
    """Raised when the API answers with a status other than 200 or 201.

    The numeric code is kept on ``status_code`` so callers can branch
    on it.
    """

    def __init__(self, status_code: int, message: Optional[str] = None) -> None:
        self.status_code = status_code
        super().__init__(message or f"unexpected status {status_code}")


class NotFoundError(UnexpectedStatusError):
    """Raised when the requested entity does not exist (HTTP 404)."""

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(404, message)
