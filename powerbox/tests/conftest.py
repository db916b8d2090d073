"""
Shared test fixtures for powerbox daemon tests.

Provides environment variable fixtures for PowerboxSettings tests and
frame/engine builders used across the suite. All powerbox env vars are
cleaned before each test to ensure isolation.

CHANGELOG:
- 2026-10-20: Clean and set the remote broker env vars (STORY-116)
- 2026-10-19: Add telemetry frame and engine fixtures (STORY-114)
- 2026-02-14: Initial creation (STORY-001)

TODO:
- None
"""

from __future__ import annotations

from collections.abc import Callable

import pytest
from powerbox.src.engine import PhaseEngine
from powerbox.src.models import ChannelReading, TelemetryFrame

# All PowerboxSettings environment variable names, used for cleanup.
_ALL_POWERBOX_ENV_VARS = (
    "MQTT_HOST",
    "MQTT_PORT",
    "MQTT_USERNAME",
    "MQTT_PASSWORD",
    "APP_NAME",
    "TARGET_DEVICE_ID",
    "CALCULATION_INTERVAL",
    "REMOTE_BROKER_URL",
    "REMOTE_BROKER_USERNAME",
    "REMOTE_BROKER_PASSWORD",
    "DEVELOPER_ID",
    "OWNER_ID",
    "HEALTH_PATH",
    "RECONNECT_INTERVAL_S",
)

STAR_400V = [230.0, 231.0, 229.0, 400.0, 399.0, 401.0]
"""Balanced 3x400V star network voltages."""


@pytest.fixture(autouse=True)
def _clean_powerbox_env(monkeypatch: pytest.MonkeyPatch, tmp_path: str) -> None:
    """Remove all powerbox env vars and isolate from .env files before each test.

    Changes working directory to tmp_path so no .env file is accidentally
    loaded by Pydantic BaseSettings.
    """
    for var in _ALL_POWERBOX_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture()
def env_vars_full(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Set every PowerboxSettings environment variable.

    Returns the dict of env var names to values for assertion convenience.
    """
    env = {
        "MQTT_HOST": "broker.local",
        "MQTT_PORT": "1884",
        "MQTT_USERNAME": "powerbox",
        "MQTT_PASSWORD": "s3cret",
        "APP_NAME": "PowerboxTest",
        "TARGET_DEVICE_ID": "connect/58:BF:25:DA:00:01",
        "CALCULATION_INTERVAL": "30",
        "REMOTE_BROKER_URL": "mqtt://remote.example:8883",
        "REMOTE_BROKER_USERNAME": "bridge",
        "REMOTE_BROKER_PASSWORD": "br1dge",
        "DEVELOPER_ID": "dev-1",
        "OWNER_ID": "owner-1",
        "HEALTH_PATH": "/tmp/powerbox-health.json",
        "RECONNECT_INTERVAL_S": "2",
    }
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return env


@pytest.fixture()
def make_frame() -> Callable[..., TelemetryFrame]:
    """Return a builder for TelemetryFrame objects.

    ``channels`` maps channel id to ``(current, active_power, apparent_power)``.
    """

    def _make(
        voltages: list[float] | None = None,
        channels: dict[int, tuple[float, float, float]] | None = None,
        frequency: float | None = 50.0,
    ) -> TelemetryFrame:
        readings = [
            ChannelReading(id=cid, current=i, active_power=p, apparent_power=s)
            for cid, (i, p, s) in (channels or {}).items()
        ]
        return TelemetryFrame(
            voltages=list(STAR_400V if voltages is None else voltages),
            channels=readings,
            frequency=frequency,
        )

    return _make


@pytest.fixture()
def engine() -> PhaseEngine:
    """Fresh engine with a 15 s interval whose first window opens at t=0."""
    return PhaseEngine(interval_s=15.0, now=0.0)
