"""EnergiaPro API Client Package.

This package provides a testable interface to the EnergiaPro customer API
with support for:
- Token caching with a single refresh in flight across threads
- Retry of rate limits, server errors and network failures (resilience)
- Date range splitting into windows the API accepts
- Type-safe records via Pydantic models

Example usage:
    >>> from energiapro.client import EnergiaProClient
    >>> with EnergiaProClient("user", "secret") as client:
    ...     records = client.measurements.for_range("123", "5806.000", "2024-01-01", "2024-03-31")
"""

from __future__ import annotations

# Re-export main client class and building blocks
from .client import EnergiaProClient
from .resources import InstallationsResource, MeasurementsResource
from .tokens import TokenManager, one_time_secret_key
from .transport import HTTPClient, HTTPResponse, RequestsHTTPClient, Transport

# Re-export models
from .models import (
    ClientConfig,
    Credentials,
    DateWindow,
    Installation,
    Measurement,
    MeasurementScope,
    RecordPolicy,
    Token,
)

# Re-export errors
from .errors import (
    ApiError,
    AuthError,
    AuthNetworkError,
    ClientError,
    EnergiaProError,
    FetchCancelledError,
    FetchError,
    InvalidArgumentError,
    InvalidCredentialsError,
    MalformedRecordError,
    MalformedResponseError,
    MissingTokenError,
    NetworkError,
    RateLimitedError,
    ServerError,
    TokenExpiredError,
    TransportError,
    WindowFailureError,
)

# Re-export parsers (for advanced usage)
from .parsers import (
    normalize_installations,
    normalize_measurements,
    parse_date,
    split_date_range,
)


__all__ = [
    # Main client
    "EnergiaProClient",
    "InstallationsResource",
    "MeasurementsResource",
    "TokenManager",
    "one_time_secret_key",
    "HTTPClient",
    "HTTPResponse",
    "RequestsHTTPClient",
    "Transport",
    # Models
    "ClientConfig",
    "Credentials",
    "DateWindow",
    "Installation",
    "Measurement",
    "MeasurementScope",
    "RecordPolicy",
    "Token",
    # Errors
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
    "FetchError",
    "WindowFailureError",
    "FetchCancelledError",
    "MalformedRecordError",
    # Parsers
    "normalize_installations",
    "normalize_measurements",
    "parse_date",
    "split_date_range",
]
