"""Shared pytest configuration and fixtures."""

from collections.abc import Generator
from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import patch

import pytest

from src.config import Settings, get_settings


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--run-e2e",
        action="store_true",
        default=False,
        help="Run e2e tests that hit real services (requires .env with valid collaborator URLs)",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    if config.getoption("--run-e2e"):
        return
    skip_e2e = pytest.mark.skip(reason="Need --run-e2e flag to run")
    for item in items:
        if "e2e" in item.keywords:
            item.add_marker(skip_e2e)


@pytest.fixture(autouse=True)
def _no_dotenv(request: pytest.FixtureRequest) -> Generator[None]:
    """Block .env loading so a developer's local config never leaks into tests.

    Sets Settings.model_config['env_file'] = None before each test (except e2e).
    """
    if "e2e" in request.keywords:
        yield
        return

    get_settings.cache_clear()
    original = Settings.model_config.get("env_file")
    Settings.model_config["env_file"] = None

    try:
        yield
    finally:
        Settings.model_config["env_file"] = original
        get_settings.cache_clear()


@pytest.fixture
def mock_settings() -> Generator[Any]:
    """Provide fake settings so tests don't need a .env file.

    Patches get_settings at every import site so cached references are overridden.
    """
    fake_settings = type(
        "FakeSettings",
        (),
        {
            # Watchdog scan loop
            "watchdog_enabled": True,
            "watchdog_scan_interval_seconds": 30.0,
            "watchdog_thresholds_file": "",
            # Alert persistence
            "alert_db_path": "",
            # Collaborators
            "agent_control_url": "http://agent-control.test",
            "session_storage_url": "http://session-storage.test",
            # Audit sink
            "audit_webhook_url": "",
            "audit_buffer_size": 500,
            "audit_delivery_interval_seconds": 60.0,
            "probe_timeout_seconds": 1.0,
            "log_level": "INFO",
        },
    )()
    with (
        patch("src.config.get_settings", return_value=fake_settings),
        patch("src.api.main.get_settings", return_value=fake_settings),
        patch("src.watchdog.service.get_settings", return_value=fake_settings),
        patch("src.watchdog.store.get_settings", return_value=fake_settings),
    ):
        yield fake_settings


class FakeClock:
    """Synthetic UTC clock advanced explicitly by tests."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, ms: int) -> datetime:
        self.now += timedelta(milliseconds=ms)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
