"""
Shared test configuration and fixtures for the sandbox bootstrap tests.

Provides a recording metrics client and a temporary gateway state directory laid out the
way the gateway lays it out.
"""

import os

import pytest

from openclaw.sandbox.store import PairingStore
from tests.test_helpers import MockMetricsClient


@pytest.fixture
def mock_metrics():
    return MockMetricsClient()


@pytest.fixture
def state_dir(tmp_path):
    """Gateway state directory."""
    path = tmp_path / "state"
    path.mkdir()
    return path


@pytest.fixture
def devices_dir(state_dir):
    return state_dir / "devices"


@pytest.fixture
def pairing_store(devices_dir):
    return PairingStore(devices_dir)


@pytest.fixture
def identity_path(state_dir):
    return state_dir / "identity" / "device.json"


@pytest.fixture
def codex_auth_path(tmp_path):
    return tmp_path / "codex" / "auth.json"


@pytest.fixture
def auth_store_path(state_dir):
    return state_dir / "agents" / "main" / "agent" / "auth-profiles.json"


@pytest.fixture
def clean_env(monkeypatch):
    """Remove every environment variable the settings read."""
    for name in list(os.environ):
        upper = name.upper()
        if upper.startswith(("OPENCLAW_", "PAIRING_", "AUTH_", "TELEGRAF_")) or upper in (
            "CODEX_AUTH_PATH",
            "STATE_DIR",
            "AGENT_DIR",
            "AUTH_STORE_PATH",
            "DEVICES_DIR",
            "IDENTITY_PATH",
            "METRICS_BACKEND",
            "DEBUG",
            "SENTRY_DSN",
            "LOGGING_CONFIG_FILE",
        ):
            monkeypatch.delenv(name, raising=False)
    return monkeypatch
