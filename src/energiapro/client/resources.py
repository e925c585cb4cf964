"""Resource fetchers for installations and measurements.

Both fetchers post form data to the API data endpoint through the shared
``Transport`` and ``TokenManager``. A rejected token is refreshed once and the
request resent once; everything else is classified by the transport.
"""
from __future__ import annotations
import datetime as dt
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Set, Tuple

from .constants import (
    CONTINUATION_KEY,
    DATA_ENDPOINT,
    INSTALLATIONS_NUM_INST_PLACEHOLDER,
    INSTALLATIONS_SCOPE,
)
from .errors import (
    ApiError,
    FetchCancelledError,
    InvalidArgumentError,
    MalformedResponseError,
    TokenExpiredError,
    TransportError,
    WindowFailureError,
)
from .models import ClientConfig, DateWindow, Installation, Measurement, MeasurementScope, RecordPolicy
from .parsers import (
    DateInput,
    ScopeInput,
    format_date,
    normalize_installations,
    normalize_measurements,
    parse_date,
    require_text,
    scope_value,
    split_date_range,
    split_page,
    validate_date_bounds,
)
from .tokens import TokenManager
from .transport import Transport

LOGGER = logging.getLogger(__name__)


class _Resource:
    def __init__(self, transport: Transport, tokens: TokenManager, config: ClientConfig) -> None:
        self._transport = transport
        self._tokens = tokens
        self._config = config

    def _post(self, form: Mapping[str, str]) -> Any:
        """Send an authenticated request, refreshing the token once if rejected."""
        token = self._tokens.ensure_valid_token()
        try:
            return self._transport.request("POST", DATA_ENDPOINT, form=form, token=token.value)
        except TokenExpiredError:
            LOGGER.info("Token rejected by the API; refreshing and retrying once")
            self._tokens.invalidate(token)
            token = self._tokens.ensure_valid_token()
            return self._transport.request("POST", DATA_ENDPOINT, form=form, token=token.value)

    def _post_rows(self, form: Mapping[str, str]) -> Any:
        """Like ``_post`` but maps the API's "no data" codes to an empty page."""
        try:
            return self._post(form)
        except ApiError as exc:
            if exc.is_no_data:
                LOGGER.info("No data for %s (%s)", form.get("scope"), exc.api_message)
                return []
            raise


class InstallationsResource(_Resource):
    """Lists the installations of a client."""

    def list(
        self, client_id: str, *, policy: RecordPolicy = RecordPolicy.ABORT
    ) -> List[Installation]:
        """Return every installation of ``client_id`` in arrival order.

        Follows ``continuation`` tokens until the API stops returning one.
        """
        form = {
            "scope": INSTALLATIONS_SCOPE,
            "client_id": require_text("client_id", client_id),
            "num_inst": INSTALLATIONS_NUM_INST_PLACEHOLDER,
        }
        installations: List[Installation] = []
        seen: Set[str] = set()
        continuation: Optional[str] = None
        offset = 0
        page = 0

        while True:
            page += 1
            page_form = dict(form)
            if continuation:
                page_form[CONTINUATION_KEY] = continuation
            rows, continuation = split_page(self._post_rows(page_form))
            installations.extend(normalize_installations(rows, policy, offset=offset))
            offset += len(rows)
            LOGGER.debug("Installations page %d: %d rows", page, len(rows))

            if not continuation:
                break
            if continuation in seen:
                raise MalformedResponseError(
                    f"continuation token {continuation!r} was returned twice"
                )
            seen.add(continuation)

        LOGGER.info("Fetched %d installations for client %s", len(installations), client_id)
        return installations


class MeasurementsResource(_Resource):
    """Fetches measurements of one or several installations.

    Example:
        >>> client.measurements.for_range("123", "5806.000", "2024-01-01", "2024-03-31")
        >>> client.measurements.for_date("123", "5806.000", "2024-01-01")
    """

    def _form(
        self,
        client_id: str,
        installation_id: str,
        scope: ScopeInput,
        start: Optional[dt.date],
        end: Optional[dt.date],
    ) -> Dict[str, str]:
        form = {
            "scope": scope_value(scope),
            "client_id": client_id,
            "num_inst": installation_id,
        }
        if start is not None:
            form["date_debut"] = format_date(start)
        if end is not None:
            form["date_fin"] = format_date(end)
        return form

    def _fetch_rows(
        self,
        client_id: str,
        installation_id: str,
        scope: ScopeInput,
        start: Optional[dt.date],
        end: Optional[dt.date],
    ) -> List[Any]:
        payload = self._post_rows(self._form(client_id, installation_id, scope, start, end))
        rows, _ = split_page(payload)
        return rows

    def get(
        self,
        client_id: str,
        installation_id: str,
        scope: ScopeInput = MeasurementScope.LPN_JSON,
        start: Optional[DateInput] = None,
        end: Optional[DateInput] = None,
        *,
        policy: RecordPolicy = RecordPolicy.ABORT,
    ) -> List[Measurement]:
        """Single request with optional bounds; the range is not split."""
        client_id = require_text("client_id", client_id)
        installation_id = require_text("installation_id", installation_id)
        scope_value(scope)
        start_date, end_date = validate_date_bounds(start, end)
        rows = self._fetch_rows(client_id, installation_id, scope, start_date, end_date)
        return normalize_measurements(rows, installation_id, scope, policy)

    def all(
        self,
        client_id: str,
        installation_id: str,
        scope: ScopeInput = MeasurementScope.LPN_JSON,
        *,
        policy: RecordPolicy = RecordPolicy.ABORT,
    ) -> List[Measurement]:
        return self.get(client_id, installation_id, scope, policy=policy)

    def since(
        self,
        client_id: str,
        installation_id: str,
        start: DateInput,
        scope: ScopeInput = MeasurementScope.LPN_JSON,
        *,
        policy: RecordPolicy = RecordPolicy.ABORT,
    ) -> List[Measurement]:
        return self.get(client_id, installation_id, scope, start=start, policy=policy)

    def up_to(
        self,
        client_id: str,
        installation_id: str,
        end: DateInput,
        scope: ScopeInput = MeasurementScope.LPN_JSON,
        *,
        policy: RecordPolicy = RecordPolicy.ABORT,
    ) -> List[Measurement]:
        return self.get(client_id, installation_id, scope, end=end, policy=policy)

    def for_date(
        self,
        client_id: str,
        installation_id: str,
        date: DateInput,
        scope: ScopeInput = MeasurementScope.LPN_JSON,
        *,
        policy: RecordPolicy = RecordPolicy.ABORT,
    ) -> List[Measurement]:
        day = parse_date("date", date)
        return self.for_range(client_id, installation_id, day, day, scope, policy=policy)

    def for_range(
        self,
        client_id: str,
        installation_id: str,
        start: DateInput,
        end: DateInput,
        scope: ScopeInput = MeasurementScope.LPN_JSON,
        *,
        policy: RecordPolicy = RecordPolicy.ABORT,
        cancel_event: Optional[threading.Event] = None,
    ) -> List[Measurement]:
        """Fetch ``[start, end]`` window by window and concatenate the results.

        Raises:
            WindowFailureError: A window failed after retries. ``records``
                holds what the completed windows returned.
            FetchCancelledError: ``cancel_event`` was set between windows.
        """
        records: List[Measurement] = []
        try:
            for _, window_records in self.iter_windows(
                client_id, installation_id, start, end, scope,
                policy=policy, cancel_event=cancel_event,
            ):
                records.extend(window_records)
        except WindowFailureError as exc:
            exc.records = records
            raise
        return records

    def iter_range(
        self,
        client_id: str,
        installation_id: str,
        start: DateInput,
        end: DateInput,
        scope: ScopeInput = MeasurementScope.LPN_JSON,
        *,
        policy: RecordPolicy = RecordPolicy.ABORT,
        cancel_event: Optional[threading.Event] = None,
    ) -> Iterator[Measurement]:
        """Yield records as each window arrives."""
        for _, window_records in self.iter_windows(
            client_id, installation_id, start, end, scope,
            policy=policy, cancel_event=cancel_event,
        ):
            yield from window_records

    def iter_windows(
        self,
        client_id: str,
        installation_id: str,
        start: DateInput,
        end: DateInput,
        scope: ScopeInput = MeasurementScope.LPN_JSON,
        *,
        policy: RecordPolicy = RecordPolicy.ABORT,
        cancel_event: Optional[threading.Event] = None,
    ) -> Iterator[Tuple[DateWindow, List[Measurement]]]:
        """Yield ``(window, records)`` pairs in chronological order."""
        client_id = require_text("client_id", client_id)
        installation_id = require_text("installation_id", installation_id)
        scope_value(scope)
        start_date = parse_date("from", start)
        end_date = parse_date("to", end)
        validate_date_bounds(start_date, end_date)

        windows = split_date_range(start_date, end_date, self._config.max_window_days)
        total = len(windows)
        LOGGER.info(
            "Fetching measurements for installation %s from %s to %s in %d window(s)",
            installation_id, start_date, end_date, total,
        )

        offset = 0
        for completed, window in enumerate(windows):
            if cancel_event is not None and cancel_event.is_set():
                raise FetchCancelledError(
                    f"fetch cancelled before window {window.index}/{total} ({window})",
                    window=window,
                    completed_windows=completed,
                    total_windows=total,
                )
            try:
                rows = self._fetch_rows(
                    client_id, installation_id, scope, window.start, window.end
                )
            except TransportError as exc:
                raise WindowFailureError(
                    f"window {window.index}/{total} ({window}) failed after "
                    f"{completed} completed window(s): {exc}",
                    window=window,
                    completed_windows=completed,
                    total_windows=total,
                ) from exc
            window_records = normalize_measurements(
                rows, installation_id, scope, policy, offset=offset
            )
            offset += len(rows)
            LOGGER.debug(
                "Window %d/%d (%s): %d records", window.index, total, window, len(window_records)
            )
            yield window, window_records

    def for_installations(
        self,
        client_id: str,
        installation_ids: Sequence[str],
        start: DateInput,
        end: DateInput,
        scope: ScopeInput = MeasurementScope.LPN_JSON,
        *,
        policy: RecordPolicy = RecordPolicy.ABORT,
        max_workers: int = 4,
        cancel_event: Optional[threading.Event] = None,
    ) -> Dict[str, List[Measurement]]:
        """Fetch several installations concurrently, keyed in input order.

        The first failure in input order is re-raised after the pool drains.
        """
        if max_workers < 1:
            raise InvalidArgumentError("max_workers must be at least 1")
        ids = [require_text("installation_id", value) for value in installation_ids]
        if not ids:
            return {}

        with ThreadPoolExecutor(max_workers=min(max_workers, len(ids))) as executor:
            futures = {
                installation_id: executor.submit(
                    self.for_range,
                    client_id,
                    installation_id,
                    start,
                    end,
                    scope,
                    policy=policy,
                    cancel_event=cancel_event,
                )
                for installation_id in dict.fromkeys(ids)
            }
            return {installation_id: future.result() for installation_id, future in futures.items()}


__all__ = ["InstallationsResource", "MeasurementsResource"]
