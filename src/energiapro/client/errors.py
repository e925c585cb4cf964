"""Exception hierarchy for the EnergiaPro client."""
from __future__ import annotations
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from .constants import API_ERROR_CODES, CREDENTIAL_ERROR_CODES, NO_DATA_ERROR_CODES, TOKEN_ERROR_CODES

if TYPE_CHECKING:
    from .models import DateWindow, Measurement


class EnergiaProError(Exception):
    """Base exception for all EnergiaPro client errors."""
    pass


class InvalidArgumentError(EnergiaProError, ValueError):
    """A caller-supplied argument was rejected before any request was sent."""
    pass


# ─────────────────────────────────────────────────────────────────────────────
# Authentication
# ─────────────────────────────────────────────────────────────────────────────

class AuthError(EnergiaProError):
    """Base class for authentication failures."""
    pass


class InvalidCredentialsError(AuthError):
    """The API rejected the username or secret key. Never retried."""
    pass


class TokenExpiredError(AuthError):
    """The API rejected the bearer token of an in-flight request."""
    pass


class AuthNetworkError(AuthError):
    """The login exchange could not reach the API after all retries."""
    pass


class MissingTokenError(AuthError):
    """Authentication succeeded but the response carried no token."""
    pass


# ─────────────────────────────────────────────────────────────────────────────
# Transport
# ─────────────────────────────────────────────────────────────────────────────

class TransportError(EnergiaProError):
    """A request to the API failed."""

    retryable = False

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        endpoint: Optional[str] = None,
        body_snippet: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.endpoint = endpoint
        self.body_snippet = body_snippet


class NetworkError(TransportError):
    """Connection failure or timeout before a response arrived."""

    retryable = True


class RateLimitedError(TransportError):
    """Rate limit exceeded (HTTP 429)."""

    retryable = True

    def __init__(self, message: str, *, retry_after: Optional[float] = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class ServerError(TransportError):
    """The API answered with a 5xx status."""

    retryable = True


class ClientError(TransportError):
    """The API answered with a 4xx status other than auth or rate limiting."""
    pass


class MalformedResponseError(TransportError):
    """The response body violated the API contract (not JSON, wrong shape)."""
    pass


class ApiError(TransportError):
    """The API returned an error payload (``errorCode`` other than ``"0"``)."""

    def __init__(self, message: str, *, code: str, **kwargs: Any) -> None:
        super().__init__(f"api error {code} ({describe_api_code(code)}): {message}", **kwargs)
        self.code = code
        self.api_message = message

    @property
    def is_token_error(self) -> bool:
        return self.code in TOKEN_ERROR_CODES

    @property
    def is_credentials_error(self) -> bool:
        return self.code in CREDENTIAL_ERROR_CODES

    @property
    def is_no_data(self) -> bool:
        return self.code in NO_DATA_ERROR_CODES


def describe_api_code(code: str) -> str:
    """Return the symbolic name of an API error code, or ``unknown``."""
    return API_ERROR_CODES.get(code, "unknown")


# ─────────────────────────────────────────────────────────────────────────────
# Fetching & records
# ─────────────────────────────────────────────────────────────────────────────

class FetchError(EnergiaProError):
    """Base class for resource fetch failures."""
    pass


class WindowFailureError(FetchError):
    """A sub-window of a range fetch failed after exhausting retries.

    Attributes:
        window: The window that failed.
        completed_windows: Number of windows fetched successfully before it.
        total_windows: Number of windows the range was split into.
        records: Records of the completed windows, in chronological order.
    """

    def __init__(
        self,
        message: str,
        *,
        window: "DateWindow",
        completed_windows: int,
        total_windows: int,
        records: Optional[List["Measurement"]] = None,
    ) -> None:
        super().__init__(message)
        self.window = window
        self.completed_windows = completed_windows
        self.total_windows = total_windows
        self.records: List["Measurement"] = list(records or [])


class FetchCancelledError(WindowFailureError):
    """A range fetch was cancelled before ``window`` was requested."""
    pass


class MalformedRecordError(EnergiaProError):
    """A single upstream record could not be normalized."""

    def __init__(self, message: str, *, index: int, row: Any = None) -> None:
        super().__init__(f"record {index}: {message}")
        self.index = index
        self.row: Optional[Dict[str, Any]] = row if isinstance(row, dict) else None


__all__ = [
    "EnergiaProError",
    "InvalidArgumentError",
    "AuthError",
    "InvalidCredentialsError",
    "TokenExpiredError",
    "AuthNetworkError",
    "MissingTokenError",
    "TransportError",
    "NetworkError",
    "RateLimitedError",
    "ServerError",
    "ClientError",
    "MalformedResponseError",
    "ApiError",
    "describe_api_code",
    "FetchError",
    "WindowFailureError",
    "FetchCancelledError",
    "MalformedRecordError",
]
