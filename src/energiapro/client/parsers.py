"""Parsers and normalization helpers for EnergiaPro API payloads.

This module contains the pure functions of the client: date handling and
window splitting, API error extraction, and normalization of raw rows into
typed ``Installation`` and ``Measurement`` records.
"""

from __future__ import annotations

import datetime as dt
import json
import logging
import math
from typing import Any, Iterable, List, Optional, Tuple, Type, TypeVar, Union

from pydantic import BaseModel, ValidationError

from .constants import (
    API_SUCCESS_CODE,
    CONTINUATION_KEY,
    DATE_FORMAT,
    ERROR_BODY_SNIPPET_LIMIT,
    UTF8_BOM,
)
from .errors import ApiError, InvalidArgumentError, MalformedRecordError, MalformedResponseError
from .models import DateWindow, Installation, Measurement, MeasurementScope, RecordPolicy

LOGGER = logging.getLogger(__name__)

DateInput = Union[str, dt.date]
ScopeInput = Union[str, MeasurementScope]
RecordT = TypeVar("RecordT", bound=BaseModel)


# ─────────────────────────────────────────────────────────────────────────────
# Argument Helpers
# ─────────────────────────────────────────────────────────────────────────────

def parse_date(field: str, value: DateInput) -> dt.date:
    """Parse a strict ``YYYY-MM-DD`` date (``datetime.date`` passes through)."""
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    try:
        parsed = dt.datetime.strptime(value, DATE_FORMAT).date()
    except (TypeError, ValueError) as exc:
        raise InvalidArgumentError(f"{field} must be in YYYY-MM-DD format") from exc
    # strptime accepts "2024-1-5"; the API does not
    if parsed.strftime(DATE_FORMAT) != value:
        raise InvalidArgumentError(f"{field} must be in YYYY-MM-DD format")
    return parsed


def format_date(value: dt.date) -> str:
    return value.strftime(DATE_FORMAT)


def require_text(field: str, value: Optional[str]) -> str:
    if value is None or not str(value).strip():
        raise InvalidArgumentError(f"{field} cannot be empty")
    return str(value)


def scope_value(scope: ScopeInput) -> str:
    """Return the raw API scope string; unknown strings are passed through as custom scopes."""
    value = scope.value if isinstance(scope, MeasurementScope) else str(scope)
    return require_text("scope", value)


def validate_date_bounds(
    start: Optional[DateInput], end: Optional[DateInput]
) -> Tuple[Optional[dt.date], Optional[dt.date]]:
    start_date = parse_date("from", start) if start is not None else None
    end_date = parse_date("to", end) if end is not None else None
    if start_date and end_date and start_date > end_date:
        raise InvalidArgumentError("from must be less than or equal to to")
    return start_date, end_date


# ─────────────────────────────────────────────────────────────────────────────
# Window Splitting
# ─────────────────────────────────────────────────────────────────────────────

def split_date_range(start: dt.date, end: dt.date, max_days: Optional[int]) -> List[DateWindow]:
    """Split an inclusive day range into the fewest windows of at most max_days each.

    Windows are returned in chronological order, contiguous and non-overlapping.
    """
    if end < start:
        raise InvalidArgumentError("from must be less than or equal to to")
    if not max_days or max_days <= 0:
        return [DateWindow(index=1, start=start, end=end)]

    total_days = (end - start).days + 1
    count = math.ceil(total_days / max_days)
    windows: List[DateWindow] = []
    for offset in range(count):
        window_start = start + dt.timedelta(days=offset * max_days)
        window_end = min(window_start + dt.timedelta(days=max_days - 1), end)
        windows.append(DateWindow(index=offset + 1, start=window_start, end=window_end))
    return windows


# ─────────────────────────────────────────────────────────────────────────────
# Payload Helpers
# ─────────────────────────────────────────────────────────────────────────────

def strip_utf8_bom(text: str) -> str:
    return text.lstrip(UTF8_BOM)


def body_snippet(text: str, limit: int = ERROR_BODY_SNIPPET_LIMIT) -> str:
    """Trim a response body for error messages."""
    trimmed = (text or "").strip()
    if not trimmed:
        return "<empty response body>"
    if len(trimmed) > limit:
        return f"{trimmed[:limit]}..."
    return trimmed


def _reject_constant(name: str) -> Any:
    raise ValueError(f"non-finite number {name} is not valid JSON")


def decode_json(text: str) -> Any:
    """Decode a JSON body, tolerating leading byte order marks.

    ``NaN`` and ``Infinity`` literals are rejected with ValueError.
    """
    return json.loads(strip_utf8_bom(text), parse_constant=_reject_constant)


def extract_api_error(payload: Any) -> Optional[ApiError]:
    """Return the API error described by a payload, or None for success payloads."""
    if not isinstance(payload, dict) or "errorCode" not in payload:
        return None
    raw_code = payload["errorCode"]
    if isinstance(raw_code, bool) or not isinstance(raw_code, (str, int, float)):
        return None
    if isinstance(raw_code, float) and not (math.isfinite(raw_code) and raw_code.is_integer()):
        raise MalformedResponseError(f"errorCode must be an integer, got {raw_code!r}")
    code = str(int(raw_code)) if isinstance(raw_code, (int, float)) else raw_code.strip()
    if code == API_SUCCESS_CODE:
        return None
    message = payload.get("error")
    return ApiError(message if isinstance(message, str) else "Not allowed.", code=code)


def split_page(payload: Any) -> Tuple[List[Any], Optional[str]]:
    """Split a list payload into (rows, continuation token).

    A top-level array is a single page. An object carrying ``data`` may also
    carry a ``continuation`` token for the next page.
    """
    if isinstance(payload, list):
        return payload, None
    if isinstance(payload, dict) and isinstance(payload.get("data"), list):
        continuation = payload.get(CONTINUATION_KEY)
        return payload["data"], str(continuation) if continuation else None
    raise MalformedResponseError(
        f"expected a JSON array of records, got {type(payload).__name__}"
    )


def ensure_installation_id(rows: Iterable[Any], installation_id: str) -> List[Any]:
    """Inject ``num_inst`` into rows that carry no installation identifier."""
    enriched: List[Any] = []
    for row in rows:
        if isinstance(row, dict) and "installation_id" not in row and "num_inst" not in row:
            row = {**row, "num_inst": installation_id}
        enriched.append(row)
    return enriched


# ─────────────────────────────────────────────────────────────────────────────
# Record Normalization
# ─────────────────────────────────────────────────────────────────────────────

def _describe_validation_error(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ())) or "record"
        parts.append(f"{location}: {error.get('msg')}")
    return "; ".join(parts)


def normalize_record(model: Type[RecordT], row: Any, index: int) -> RecordT:
    """Validate one raw row into ``model``, raising MalformedRecordError on failure."""
    if not isinstance(row, dict):
        raise MalformedRecordError(f"expected an object, got {type(row).__name__}", index=index)
    try:
        return model.model_validate(row)
    except ValidationError as exc:
        raise MalformedRecordError(_describe_validation_error(exc), index=index, row=row) from exc


def normalize_records(
    model: Type[RecordT],
    rows: Iterable[Any],
    policy: RecordPolicy = RecordPolicy.ABORT,
    *,
    offset: int = 0,
) -> List[RecordT]:
    """Normalize rows in order, applying the malformed-record policy."""
    policy = RecordPolicy(policy)
    records: List[RecordT] = []
    for index, row in enumerate(rows, start=offset):
        try:
            records.append(normalize_record(model, row, index))
        except MalformedRecordError as exc:
            if policy is RecordPolicy.ABORT:
                raise
            LOGGER.warning("Skipping malformed %s %s", model.__name__, exc)
    return records


def normalize_measurements(
    rows: Iterable[Any],
    installation_id: str,
    scope: ScopeInput = MeasurementScope.LPN_JSON,
    policy: RecordPolicy = RecordPolicy.ABORT,
    *,
    offset: int = 0,
) -> List[Measurement]:
    """Convert raw measurement rows into Measurement records.

    Rows without an installation identifier inherit ``installation_id``.
    """
    LOGGER.debug("Normalizing %s rows for installation %s", scope_value(scope), installation_id)
    return normalize_records(
        Measurement, ensure_installation_id(rows, installation_id), policy, offset=offset
    )


def normalize_installations(
    rows: Iterable[Any],
    policy: RecordPolicy = RecordPolicy.ABORT,
    *,
    offset: int = 0,
) -> List[Installation]:
    return normalize_records(Installation, rows, policy, offset=offset)


__all__ = [
    # Argument helpers
    "parse_date",
    "format_date",
    "require_text",
    "scope_value",
    "validate_date_bounds",
    # Window splitting
    "split_date_range",
    # Payload helpers
    "strip_utf8_bom",
    "body_snippet",
    "decode_json",
    "extract_api_error",
    "split_page",
    "ensure_installation_id",
    # Normalization
    "normalize_record",
    "normalize_records",
    "normalize_measurements",
    "normalize_installations",
]
