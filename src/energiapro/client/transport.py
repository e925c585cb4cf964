from __future__ import annotations
import datetime as dt
import logging
import time
from dataclasses import dataclass, field
from email.utils import parsedate_to_datetime
from typing import Any, Callable, Dict, Mapping, Optional, Protocol

import requests
from tenacity import (
    RetryCallState,
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .constants import AUTH_FAILURE_STATUS_CODES, RATE_LIMITED_STATUS_CODE
from .errors import (
    ApiError,
    ClientError,
    MalformedResponseError,
    NetworkError,
    RateLimitedError,
    ServerError,
    TokenExpiredError,
)
from .models import ClientConfig
from .parsers import body_snippet, decode_json, extract_api_error, strip_utf8_bom

LOGGER = logging.getLogger(__name__)

RETRYABLE_ERRORS = (NetworkError, RateLimitedError, ServerError)


@dataclass
class HTTPResponse:
    """Minimal view of an HTTP response used by the transport."""
    status_code: int
    text: str
    headers: Dict[str, str] = field(default_factory=dict)
    url: str = ""

    def header(self, name: str) -> Optional[str]:
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None


# HTTP Client Protocol
class HTTPClient(Protocol):
    def request(
        self,
        method: str,
        url: str,
        headers: Dict[str, str],
        data: Optional[Mapping[str, str]],
        timeout: float,
    ) -> HTTPResponse:
        ...


class RequestsHTTPClient:
    def __init__(self) -> None:
        self._session: Optional[requests.Session] = None

    def _get_session(self) -> requests.Session:
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def close(self) -> None:
        if self._session is not None:
            self._session.close()
            self._session = None

    def __enter__(self) -> "RequestsHTTPClient":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def request(
        self,
        method: str,
        url: str,
        headers: Dict[str, str],
        data: Optional[Mapping[str, str]],
        timeout: float,
    ) -> HTTPResponse:
        session = self._get_session()
        response: Optional[requests.Response] = None
        is_get = method.upper() == "GET"

        try:
            response = session.request(
                method.upper(),
                url,
                headers=headers,
                params=data if is_get else None,
                data=None if is_get else data,
                timeout=timeout,
            )
            return HTTPResponse(
                status_code=response.status_code,
                text=response.text,
                headers=dict(response.headers),
                url=response.url,
            )
        except requests.exceptions.Timeout as exc:
            raise NetworkError(
                f"Request timed out after {timeout} seconds while connecting to {url}",
                endpoint=url,
            ) from exc
        except requests.exceptions.ConnectionError as exc:
            raise NetworkError(
                f"Failed to establish connection to {url}: {exc}", endpoint=url
            ) from exc
        except requests.RequestException as exc:
            raise NetworkError(f"Request to {url} failed: {exc}", endpoint=url) from exc
        finally:
            # Release the connection back to the pool
            if response is not None:
                response.close()


def parse_retry_after(value: Optional[str], now: Optional[dt.datetime] = None) -> Optional[float]:
    """Parse a Retry-After header given either in seconds or as an HTTP date."""
    if value is None or not value.strip():
        return None
    value = value.strip()
    try:
        return max(float(value), 0.0)
    except ValueError:
        pass
    try:
        moment = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=dt.timezone.utc)
    now = now or dt.datetime.now(dt.timezone.utc)
    return max((moment - now).total_seconds(), 0.0)


def endpoint_url(base_url: str, path: str) -> str:
    return f"{base_url.rstrip('/')}/{path.lstrip('/')}"


class Transport:
    """Send requests to the API and classify their outcome.

    Success payloads are returned decoded. Failures raise a ``TransportError``
    subclass; network failures, 429 and 5xx answers are retried with bounded
    exponential backoff (a 429 ``Retry-After`` delay takes precedence). A
    rejected token surfaces as ``TokenExpiredError`` so the caller can refresh
    and resend once.
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        http_client: Optional[HTTPClient] = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._config = config or ClientConfig()
        # HTTP client - track if we own it for cleanup
        self._owns_http_client = http_client is None
        self._http_client = http_client or RequestsHTTPClient()
        self._sleep = sleep
        self._backoff = wait_exponential(
            multiplier=1,
            min=self._config.retry_min_wait,
            max=self._config.retry_max_wait,
        )

    @property
    def config(self) -> ClientConfig:
        return self._config

    def close(self) -> None:
        if self._owns_http_client and hasattr(self._http_client, "close"):
            self._http_client.close()

    def __enter__(self) -> "Transport":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def _wait(self, retry_state: RetryCallState) -> float:
        outcome = retry_state.outcome
        exc = outcome.exception() if outcome is not None else None
        if isinstance(exc, RateLimitedError) and exc.retry_after is not None:
            return min(exc.retry_after, self._config.retry_max_wait)
        return self._backoff(retry_state)

    def _create_retry_decorator(self) -> Callable:
        return retry(
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
            stop=stop_after_attempt(self._config.max_retries),
            wait=self._wait,
            sleep=self._sleep,
            before_sleep=before_sleep_log(LOGGER, logging.WARNING),
            reraise=True,
        )

    def request(
        self,
        method: str,
        path: str,
        form: Optional[Mapping[str, str]] = None,
        token: Optional[str] = None,
    ) -> Any:
        """Send one logical request, retrying transient failures.

        Args:
            method: HTTP method, ``POST`` for every EnergiaPro endpoint.
            path: Endpoint path relative to the configured base URL.
            form: Form fields (query parameters for GET).
            token: Bearer token, omitted for the login exchange.

        Returns:
            The decoded JSON payload.
        """
        url = endpoint_url(self._config.base_url, path)
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        @self._create_retry_decorator()
        def _do_request() -> Any:
            LOGGER.debug("%s %s", method.upper(), url)
            response = self._http_client.request(
                method,
                url,
                headers=headers,
                data=dict(form) if form else None,
                timeout=self._config.timeout,
            )
            return self._classify(response, url)

        return _do_request()

    def _classify(self, response: HTTPResponse, url: str) -> Any:
        text = strip_utf8_bom(response.text or "")
        status = response.status_code

        if not 200 <= status < 300:
            raise self._error_for_status(response, text, url)

        try:
            payload = decode_json(text)
        except ValueError as exc:
            raise MalformedResponseError(
                f"response from {url} is not valid JSON: {exc}",
                status_code=status,
                endpoint=url,
                body_snippet=body_snippet(text),
            ) from exc

        try:
            api_error = extract_api_error(payload)
        except MalformedResponseError as exc:
            exc.status_code = status
            exc.endpoint = url
            exc.body_snippet = body_snippet(text)
            raise
        if api_error is not None:
            raise self._promote(api_error, status, url, text)
        return payload

    def _promote(self, api_error: ApiError, status: int, url: str, text: str) -> Exception:
        api_error.status_code = status
        api_error.endpoint = url
        api_error.body_snippet = body_snippet(text)
        if api_error.is_token_error:
            expired = TokenExpiredError(str(api_error))
            expired.__cause__ = api_error
            return expired
        return api_error

    def _error_for_status(self, response: HTTPResponse, text: str, url: str) -> Exception:
        status = response.status_code
        snippet = body_snippet(text)

        # Error payloads win over the bare status code
        try:
            api_error = extract_api_error(decode_json(text))
        except (ValueError, MalformedResponseError):
            api_error = None
        if api_error is not None:
            return self._promote(api_error, status, url, text)

        if status in AUTH_FAILURE_STATUS_CODES:
            return TokenExpiredError(f"HTTP {status} from {url}: {snippet}")
        if status == RATE_LIMITED_STATUS_CODE:
            retry_after = parse_retry_after(response.header("Retry-After"))
            return RateLimitedError(
                f"HTTP 429 rate limited by {url}",
                retry_after=retry_after,
                status_code=status,
                endpoint=url,
                body_snippet=snippet,
            )
        if status >= 500:
            return ServerError(
                f"HTTP {status} error for {url}: {snippet}",
                status_code=status,
                endpoint=url,
                body_snippet=snippet,
            )
        return ClientError(
            f"HTTP {status} error for {url}: {snippet}",
            status_code=status,
            endpoint=url,
            body_snippet=snippet,
        )


__all__ = [
    "HTTPResponse",
    "HTTPClient",
    "RequestsHTTPClient",
    "Transport",
    "parse_retry_after",
    "endpoint_url",
    "RETRYABLE_ERRORS",
]
