from __future__ import annotations  # Allows forward references in annotations
import datetime as dt
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional
from urllib.parse import urlparse
from pydantic import AliasChoices, BaseModel, Field, field_validator  # Data validation and model creation with automatic type checking

from .constants import (
    DEFAULT_BASE_URL,
    DEFAULT_MAX_RETRIES,
    DEFAULT_MAX_WINDOW_DAYS,
    DEFAULT_RETRY_MAX_WAIT,
    DEFAULT_RETRY_MIN_WAIT,
    DEFAULT_TIMEOUT_SECONDS,
    TOKEN_SAFETY_MARGIN_SECONDS,
    TOKEN_TTL_SECONDS,
)
from .errors import InvalidArgumentError


class MeasurementScope(str, Enum):
    """Upstream representation requested from the measurements endpoint."""

    LPN_JSON = "lpn-json"
    GC_PLUS_JSON = "gc-plus-json"


class RecordPolicy(str, Enum):
    """What to do when a single upstream record cannot be normalized."""

    ABORT = "abort"
    SKIP = "skip"


@dataclass(frozen=True)
class Credentials:
    """Long-lived credentials exchanged for short-lived tokens."""
    username: str
    secret_key: str = field(repr=False)

    def __post_init__(self) -> None:
        if not self.username or not self.username.strip():
            raise InvalidArgumentError("username cannot be empty")
        if not self.secret_key or not self.secret_key.strip():
            raise InvalidArgumentError("secret_key cannot be empty")


@dataclass(frozen=True)
class Token:
    """Bearer token obtained from the login exchange."""
    value: str = field(repr=False)
    expires_at: dt.datetime

    def is_valid(self, now: dt.datetime, safety_margin: dt.timedelta = dt.timedelta(0)) -> bool:
        return now < self.expires_at - safety_margin


@dataclass(frozen=True)
class DateWindow:
    """Inclusive day range used to satisfy the API's maximum query span."""
    index: int
    start: dt.date
    end: dt.date

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def __str__(self) -> str:
        return f"{self.start.isoformat()}..{self.end.isoformat()}"


def _unwrap(value: Any) -> Any:
    """Unwrap nested ``{"value": ...}`` objects used by some scopes."""
    while isinstance(value, dict) and "value" in value:
        value = value["value"]
    return value


def _coerce_text(value: Any) -> str:
    value = _unwrap(value)
    if value is None or isinstance(value, (bool, dict, list)):
        raise ValueError("expected text")
    text = str(value).strip()
    if not text:
        raise ValueError("expected non-empty text")
    return text


def _coerce_float(value: Any) -> float:
    value = _unwrap(value)
    number: Optional[float] = None
    if isinstance(value, bool):
        raise ValueError("expected decimal number as number or string")
    try:
        if isinstance(value, (int, float)):
            number = float(value)
        elif isinstance(value, str):
            number = float(value.strip())
    except (OverflowError, ValueError):
        number = None
    if number is None:
        raise ValueError("expected decimal number as number or string")
    if not math.isfinite(number):
        raise ValueError(f"expected a finite number, got {value!r}")
    return number


class Installation(BaseModel):
    """Meterable site belonging to a client.

    Attributes:
        id: Installation identifier (``insID``), e.g. ``5806.000``.
        street_name: Street name (``adrNomRueC``).
        street_address: Full street address (``adrRueC``).
        building_number: Building number (``adrNumImm``).
        postal_code: Postal code (``adrCPC``), kept as text.
        city: Locality (``adrLocaliteC``).
    """

    id: str = Field(validation_alias=AliasChoices("id", "insID"))
    street_name: str = Field(validation_alias=AliasChoices("street_name", "adrNomRueC"))
    street_address: str = Field(validation_alias=AliasChoices("street_address", "adrRueC"))
    building_number: int = Field(validation_alias=AliasChoices("building_number", "adrNumImm"))
    postal_code: str = Field(validation_alias=AliasChoices("postal_code", "adrCPC"))
    city: str = Field(validation_alias=AliasChoices("city", "adrLocaliteC"))

    model_config = {"frozen": True, "extra": "ignore"}

    @field_validator("id", "street_name", "street_address", "postal_code", "city", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> str:
        """Accept text or numbers; IDs and postal codes always end up as text."""
        return _coerce_text(v)

    @field_validator("building_number", mode="before")
    @classmethod
    def coerce_int(cls, v: Any) -> int:
        number = _coerce_float(v)
        if not number.is_integer():
            raise ValueError("expected integer building number")
        return int(number)


class Measurement(BaseModel):
    """One timestamped meter reading for an installation.

    Attributes:
        installation_id: Installation identifier (``num_inst``).
        timestamp: Interval timestamp as returned upstream (``date``).
        index_m3: Meter index in cubic metres.
        consumption_m3: Consumption over the interval in cubic metres (``quantite_m3``).
        consumption_kwh: Consumption over the interval in kWh (``consommation_kw_h``).
    """

    installation_id: str = Field(validation_alias=AliasChoices("installation_id", "num_inst"))
    timestamp: str = Field(validation_alias=AliasChoices("timestamp", "date"))
    index_m3: float
    consumption_m3: float = Field(validation_alias=AliasChoices("consumption_m3", "quantite_m3"))
    consumption_kwh: float = Field(
        validation_alias=AliasChoices("consumption_kwh", "consommation_kw_h")
    )

    model_config = {"frozen": True, "extra": "ignore"}

    @field_validator("installation_id", "timestamp", mode="before")
    @classmethod
    def coerce_text(cls, v: Any) -> str:
        return _coerce_text(v)

    @field_validator("index_m3", "consumption_m3", "consumption_kwh", mode="before")
    @classmethod
    def coerce_float(cls, v: Any) -> float:
        """Convert numbers and numeric strings to float."""
        return _coerce_float(v)


class ClientConfig(BaseModel):
    """Configuration settings for the EnergiaPro client.

    Attributes:
        base_url: API base URL (https only, no trailing slash).
        timeout: Per-request timeout in seconds.
        max_retries: Maximum attempts for retryable failures.
        retry_min_wait: Minimum wait between retries in seconds.
        retry_max_wait: Maximum wait between retries in seconds.
        max_window_days: Largest date span per measurements request; None disables splitting.
        token_ttl_seconds: Lifetime of a token issued by the API.
        token_safety_margin_seconds: Tokens are refreshed this long before they expire.
    """

    base_url: str = DEFAULT_BASE_URL
    timeout: float = Field(default=DEFAULT_TIMEOUT_SECONDS, gt=0)
    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=1)
    retry_min_wait: float = Field(default=DEFAULT_RETRY_MIN_WAIT, ge=0)
    retry_max_wait: float = Field(default=DEFAULT_RETRY_MAX_WAIT, ge=0)
    max_window_days: Optional[int] = Field(default=DEFAULT_MAX_WINDOW_DAYS, ge=1)
    token_ttl_seconds: int = Field(default=TOKEN_TTL_SECONDS, gt=0)
    token_safety_margin_seconds: int = Field(default=TOKEN_SAFETY_MARGIN_SECONDS, ge=0)

    @field_validator("base_url")
    @classmethod
    def normalize_base_url(cls, v: str) -> str:
        """Strip whitespace and trailing slashes; require an absolute https URL."""
        normalized = v.strip().rstrip("/")
        if not normalized:
            raise ValueError("base_url cannot be empty")
        parsed = urlparse(normalized)
        if not parsed.scheme or not parsed.netloc:
            raise ValueError("base_url must be a valid absolute URL")
        if parsed.scheme != "https":
            raise ValueError("base_url must use https")
        return normalized

    @property
    def token_ttl(self) -> dt.timedelta:
        return dt.timedelta(seconds=self.token_ttl_seconds)

    @property
    def token_safety_margin(self) -> dt.timedelta:
        return dt.timedelta(seconds=self.token_safety_margin_seconds)


__all__ = [
    "MeasurementScope",
    "RecordPolicy",
    "Credentials",
    "Token",
    "DateWindow",
    "Installation",
    "Measurement",
    "ClientConfig",
]
