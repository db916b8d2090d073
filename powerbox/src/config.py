"""
Powerbox daemon configuration.

Two layers:

- PowerboxSettings: process configuration loaded from environment variables
  (or a ``.env`` file) via Pydantic BaseSettings. Validated once at startup.
- RuntimeSettings: the subset editable from the WebUI at runtime. Seeded
  from PowerboxSettings, then updated by ``config/{app}/set`` messages.

SETTINGS_SCHEMA describes the WebUI form and is published retained at
startup.

CHANGELOG:
- 2026-10-20: Add remote broker settings; interval accepts fractional seconds (STORY-116)
- 2026-10-19: Initial creation (STORY-111)

TODO:
- None
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any
from urllib.parse import urlsplit

from pydantic import BaseModel, field_validator
from pydantic_settings import BaseSettings

DEFAULT_REMOTE_BROKER_URL = "mqtt://mqtt.smappeegenius.com:1883"
"""Remote broker the Connect devices report to."""

DEFAULT_MQTT_PORT = 1883

REMOTE_BROKER_SCHEMES = ("mqtt", "tcp")
"""URL schemes accepted for the remote broker (plain TCP only)."""

SETTINGS_SCHEMA: dict[str, dict[str, Any]] = {
    "target_device_id": {
        "type": "string",
        "label": "Target Connect ID (e.g., connect/DEMO_MAC)",
        "default": "",
    },
    "calculation_interval": {
        "type": "number",
        "label": "Aggregration Interval (seconds)",
        "default": 15,
    },
    "remote_broker_url": {
        "type": "string",
        "label": "Remote Broker URL",
        "default": DEFAULT_REMOTE_BROKER_URL,
    },
    "remote_broker_username": {
        "type": "string",
        "label": "Remote Broker Username",
        "default": "admin",
    },
    "remote_broker_password": {
        "type": "string",
        "label": "Remote Broker Password",
        "default": "admin123",
    },
}
"""WebUI settings form definition (field -> type, label, default)."""


def _interval_must_be_positive(v: float) -> float:
    if v < 1:
        raise ValueError("CALCULATION_INTERVAL must be >= 1 second")
    return v


def _remote_url_must_be_mqtt(v: str) -> str:
    v = v.strip()
    if not v:
        return v
    parts = urlsplit(v)
    # Accessing .port raises ValueError on a malformed port.
    if parts.scheme not in REMOTE_BROKER_SCHEMES or not parts.hostname or parts.port == 0:
        raise ValueError("REMOTE_BROKER_URL must look like mqtt://host[:port]")
    return v


class PowerboxSettings(BaseSettings):
    """Powerbox daemon configuration.

    All values are loaded from environment variables; every field has a
    default so the daemon starts against a local broker out of the box.

    Attributes:
        mqtt_host: Local (host platform) broker hostname.
        mqtt_port: Local broker TCP port (default 1883).
        mqtt_username: Local broker username.
        mqtt_password: Local broker password (never logged in clear).
        app_name: Application name on the host platform; used in topics.
        target_device_id: Connect topic prefix, e.g. ``connect/58:BF:25:DA:00:01``.
            Empty disables processing until set from the WebUI.
        calculation_interval: Aggregation interval in seconds.
        remote_broker_url: Remote broker bridged for telemetry and config
            writeback, e.g. ``mqtt://host:1883``. Empty disables the bridge.
        remote_broker_username: Remote broker username.
        remote_broker_password: Remote broker password (never logged in clear).
        developer_id: Developer id sent with the registration request.
        owner_id: Owner id sent with the registration request.
        health_path: Path of the JSON health file.
        reconnect_interval_s: Initial broker reconnect delay in seconds.
    """

    mqtt_host: str = "127.0.0.1"
    mqtt_port: int = DEFAULT_MQTT_PORT
    mqtt_username: str = "admin"
    mqtt_password: str = "admin123"
    app_name: str = "ConnectPowerboxApp"
    target_device_id: str = ""
    calculation_interval: float = 15
    remote_broker_url: str = DEFAULT_REMOTE_BROKER_URL
    remote_broker_username: str = "admin"
    remote_broker_password: str = "admin123"
    developer_id: str = "Dev-Connect-01"
    owner_id: str = "Owner-01"
    health_path: str = "/data/health.json"
    reconnect_interval_s: int = 5

    @field_validator("mqtt_port")
    @classmethod
    def mqtt_port_must_be_valid(cls, v: int) -> int:
        """Validate broker port is in valid range."""
        if v < 1 or v > 65535:
            raise ValueError("MQTT_PORT must be between 1 and 65535")
        return v

    @field_validator("calculation_interval")
    @classmethod
    def calculation_interval_must_be_positive(cls, v: float) -> float:
        """Validate the aggregation interval is at least one second."""
        return _interval_must_be_positive(v)

    @field_validator("remote_broker_url")
    @classmethod
    def remote_broker_url_must_be_mqtt(cls, v: str) -> str:
        """Validate the remote broker URL is blank or a plain MQTT URL."""
        return _remote_url_must_be_mqtt(v)

    @field_validator("reconnect_interval_s")
    @classmethod
    def reconnect_interval_must_be_positive(cls, v: int) -> int:
        """Validate the reconnect delay is at least one second."""
        if v < 1:
            raise ValueError("RECONNECT_INTERVAL_S must be >= 1")
        return v

    @field_validator("app_name")
    @classmethod
    def app_name_must_be_topic_safe(cls, v: str) -> str:
        """Reject app names that would break MQTT topic construction."""
        if not v or any(ch in v for ch in "/+#"):
            raise ValueError("APP_NAME must be non-empty and free of '/', '+', '#'")
        return v

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


class RuntimeSettings(BaseModel):
    """WebUI-editable settings.

    Attributes:
        target_device_id: Connect topic prefix; blank means no target.
        calculation_interval: Aggregation interval in seconds.
        remote_broker_url: Remote broker URL; blank disables the bridge.
        remote_broker_username: Remote broker username.
        remote_broker_password: Remote broker password.
    """

    target_device_id: str = ""
    calculation_interval: float = 15
    remote_broker_url: str = DEFAULT_REMOTE_BROKER_URL
    remote_broker_username: str = "admin"
    remote_broker_password: str = "admin123"

    @field_validator("target_device_id")
    @classmethod
    def _strip_target(cls, v: str) -> str:
        return v.strip()

    @field_validator("calculation_interval")
    @classmethod
    def _interval_positive(cls, v: float) -> float:
        return _interval_must_be_positive(v)

    @field_validator("remote_broker_url")
    @classmethod
    def _remote_url(cls, v: str) -> str:
        return _remote_url_must_be_mqtt(v)

    @property
    def data_topic(self) -> str | None:
        """Telemetry topic of the target device, or ``None`` without target."""
        if not self.target_device_id:
            return None
        return f"{self.target_device_id}/data"

    @property
    def config_topic(self) -> str | None:
        """Configuration topic of the target device, or ``None`` without target."""
        if not self.target_device_id:
            return None
        return f"{self.target_device_id}/config/in"

    @property
    def remote_endpoint(self) -> tuple[str, int] | None:
        """``(host, port)`` of the remote broker, or ``None`` when disabled."""
        if not self.remote_broker_url:
            return None
        parts = urlsplit(self.remote_broker_url)
        return parts.hostname or "", parts.port or DEFAULT_MQTT_PORT

    def remote_differs(self, other: RuntimeSettings) -> bool:
        """Whether switching to *other* requires a new remote broker session."""
        fields = (
            "target_device_id",
            "remote_broker_url",
            "remote_broker_username",
            "remote_broker_password",
        )
        return any(getattr(self, name) != getattr(other, name) for name in fields)

    @classmethod
    def from_settings(cls, settings: PowerboxSettings) -> RuntimeSettings:
        """Seed the runtime settings from the startup configuration."""
        return cls(
            target_device_id=settings.target_device_id,
            calculation_interval=settings.calculation_interval,
            remote_broker_url=settings.remote_broker_url,
            remote_broker_username=settings.remote_broker_username,
            remote_broker_password=settings.remote_broker_password,
        )

    def merged(self, update: Mapping[str, Any]) -> RuntimeSettings:
        """Return a new instance with *update* applied.

        Keys that are not runtime settings are ignored.

        Raises:
            pydantic.ValidationError: If an updated value is invalid.
        """
        known = {k: v for k, v in update.items() if k in type(self).model_fields}
        return type(self).model_validate({**self.model_dump(), **known})
