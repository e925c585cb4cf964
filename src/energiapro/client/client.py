from __future__ import annotations
import datetime as dt
import time
from typing import Any, Callable, Optional

from .models import ClientConfig, Credentials
from .resources import InstallationsResource, MeasurementsResource
from .tokens import TokenManager, _utcnow
from .transport import HTTPClient, Transport


# Main client class for interacting with the EnergiaPro API
class EnergiaProClient:
    """Entry point bundling credentials, token cache, transport and resources.

    One client (and therefore one token) can be shared by several threads.

    Example:
        >>> with EnergiaProClient("user", "secret") as client:
        ...     installations = client.installations.list("123")
        ...     records = client.measurements.for_date("123", installations[0].id, "2024-01-01")
    """

    def __init__(
        self,
        username: str,
        secret_key: str,
        config: Optional[ClientConfig] = None,
        http_client: Optional[HTTPClient] = None,
        *,
        clock: Callable[[], dt.datetime] = _utcnow,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._config = config or ClientConfig()
        self._credentials = Credentials(username=username, secret_key=secret_key)
        self._transport = Transport(self._config, http_client, sleep=sleep)
        self._tokens = TokenManager(self._credentials, self._transport, self._config, clock=clock)
        self.installations = InstallationsResource(self._transport, self._tokens, self._config)
        self.measurements = MeasurementsResource(self._transport, self._tokens, self._config)

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def username(self) -> str:
        return self._credentials.username

    @property
    def tokens(self) -> TokenManager:
        return self._tokens

    def close(self) -> None:
        self._transport.close()

    def __enter__(self) -> "EnergiaProClient":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()


__all__ = ["EnergiaProClient"]
