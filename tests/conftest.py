"""Shared pytest fixtures for EnergiaPro tests."""

from __future__ import annotations

from typing import Generator

import pytest

from energiapro.client.models import ClientConfig
from energiapro.config.settings import reset_settings

from fakes import BASE_URL


@pytest.fixture
def client_config() -> ClientConfig:
    """Client configuration with zero backoff for fast retry tests."""
    return ClientConfig(
        base_url=BASE_URL,
        timeout=5,
        max_retries=3,
        retry_min_wait=0,
        retry_max_wait=0,
    )


@pytest.fixture(autouse=True)
def fast_secret_hash(monkeypatch) -> None:
    """Replace the bcrypt login hash with a cheap deterministic stand-in."""
    monkeypatch.setattr(
        "energiapro.client.tokens.one_time_secret_key",
        lambda secret_key, cost=11: f"hashed:{secret_key}",
    )


@pytest.fixture
def clean_env(monkeypatch, tmp_path) -> None:
    """Remove all EnergiaPro env vars for isolated testing."""
    env_vars = [
        "ENERGIAPRO_USERNAME",
        "ENERGIAPRO_SECRET_KEY",
        "ENERGIAPRO_BASE_URL",
        "ENERGIAPRO_TIMEOUT",
        "ENERGIAPRO_MAX_RETRIES",
        "ENERGIAPRO_RETRY_MIN_WAIT",
        "ENERGIAPRO_RETRY_MAX_WAIT",
        "ENERGIAPRO_MAX_WINDOW_DAYS",
        "ENERGIAPRO_TOKEN_TTL_SECONDS",
        "ENERGIAPRO_TOKEN_SAFETY_MARGIN_SECONDS",
    ]
    for var in env_vars:
        monkeypatch.delenv(var, raising=False)
    # Keep a developer's .env out of the tests
    monkeypatch.chdir(tmp_path)


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Generator[None, None, None]:
    """Reset settings cache between tests to ensure isolation."""
    reset_settings()
    yield
    reset_settings()
