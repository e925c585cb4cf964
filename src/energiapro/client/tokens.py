"""Authentication token lifecycle for the EnergiaPro API.

The API exchanges a username and a one-time secret key (a fresh bcrypt hash
of the account secret) for a bearer token valid for one hour. The
``TokenManager`` caches that token, refreshes it shortly before it expires,
and guarantees that concurrent callers trigger at most one login at a time.
"""
from __future__ import annotations
import datetime as dt
import logging
import threading
from typing import TYPE_CHECKING, Callable, Optional

import bcrypt

from .constants import AUTH_ENDPOINT, BCRYPT_COST
from .errors import (
    ApiError,
    AuthNetworkError,
    InvalidArgumentError,
    InvalidCredentialsError,
    MissingTokenError,
    NetworkError,
    RateLimitedError,
    ServerError,
    TokenExpiredError,
)
from .models import ClientConfig, Credentials, Token

if TYPE_CHECKING:
    from .transport import Transport

LOGGER = logging.getLogger(__name__)


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def one_time_secret_key(secret_key: str, cost: int = BCRYPT_COST) -> str:
    """Hash the account secret into the one-time key expected by the login endpoint."""
    try:
        hashed = bcrypt.hashpw(secret_key.encode("utf-8"), bcrypt.gensalt(rounds=cost))
    except ValueError as exc:
        raise InvalidArgumentError(f"failed to generate one-time secret_key: {exc}") from exc
    return hashed.decode("ascii")


class TokenManager:
    """Cache a bearer token and refresh it behind a single-refresh gate.

    ``_token`` is the guarded cell; ``_refresh_lock`` marks a refresh in
    flight. The first caller that finds no usable token takes the refresh
    lock and logs in; callers arriving meanwhile block on the lock and then
    re-check the cell, so they observe the token the first caller obtained.

    Example:
        >>> manager = TokenManager(credentials, transport, ClientConfig())
        >>> token = manager.ensure_valid_token()
        >>> manager.invalidate(token)  # after the API rejected it
    """

    def __init__(
        self,
        credentials: Credentials,
        transport: "Transport",
        config: Optional[ClientConfig] = None,
        *,
        clock: Callable[[], dt.datetime] = _utcnow,
        bcrypt_cost: int = BCRYPT_COST,
    ) -> None:
        self._credentials = credentials
        self._transport = transport
        self._config = config or ClientConfig()
        self._clock = clock
        self._bcrypt_cost = bcrypt_cost
        self._token: Optional[Token] = None
        self._lock = threading.Lock()
        self._refresh_lock = threading.Lock()
        self._login_count = 0

    @property
    def login_count(self) -> int:
        """Number of login exchanges performed so far."""
        return self._login_count

    def ensure_valid_token(self) -> Token:
        """Return the cached token if still usable, otherwise log in again."""
        token = self._cached_token()
        if token is not None:
            return token

        with self._refresh_lock:
            # Another caller may have refreshed while we waited for the gate
            token = self._cached_token()
            if token is not None:
                return token
            token = self._authenticate()
            with self._lock:
                self._token = token
            return token

    def invalidate(self, stale: Optional[Token] = None) -> None:
        """Drop the cached token.

        When ``stale`` is given, the cell is only cleared if it still holds
        that token, so a late rejection never discards a newer token.
        """
        with self._lock:
            if self._token is None:
                return
            if stale is None or self._token == stale:
                LOGGER.info("Discarding cached EnergiaPro token")
                self._token = None

    def _cached_token(self) -> Optional[Token]:
        with self._lock:
            token = self._token
        if token is not None and token.is_valid(self._clock(), self._config.token_safety_margin):
            return token
        return None

    def _authenticate(self) -> Token:
        """Exchange the credentials for a new token."""
        LOGGER.info("Authenticating as %s", self._credentials.username)
        form = {
            "username": self._credentials.username,
            "secret_key": one_time_secret_key(self._credentials.secret_key, self._bcrypt_cost),
        }
        try:
            payload = self._transport.request("POST", AUTH_ENDPOINT, form=form)
        except (NetworkError, ServerError, RateLimitedError) as exc:
            raise AuthNetworkError(f"login failed after retries: {exc}") from exc
        except TokenExpiredError as exc:
            raise InvalidCredentialsError(f"login rejected: {exc}") from exc
        except ApiError as exc:
            if exc.is_credentials_error:
                raise InvalidCredentialsError(str(exc)) from exc
            raise
        self._login_count += 1

        value = payload.get("token") if isinstance(payload, dict) else None
        if not isinstance(value, str) or not value:
            raise MissingTokenError("authentication succeeded but token is missing")

        issued_at = self._clock()
        token = Token(value=value, expires_at=issued_at + self._config.token_ttl)
        LOGGER.debug("Obtained token valid until %s", token.expires_at.isoformat())
        return token


__all__ = ["TokenManager", "one_time_secret_key"]
