"""
Unit tests for powerbox configuration (PowerboxSettings, RuntimeSettings).

Tests verify:
- Config loads from environment variables with correct defaults.
- Numeric constraints are enforced (port, interval, reconnect delay).
- APP_NAME must be usable inside MQTT topics.
- Runtime settings derive topics and merge WebUI updates.
- The remote broker URL is validated and split into host and port.

CHANGELOG:
- 2026-10-20: Cover remote broker settings and fractional intervals (STORY-116)
- 2026-10-19: Rewrite for broker/runtime settings (STORY-111)
- 2026-02-14: Initial creation (STORY-001)

TODO:
- None
"""

import pytest
from powerbox.src.config import SETTINGS_SCHEMA, PowerboxSettings, RuntimeSettings
from pydantic import ValidationError


class TestPowerboxSettingsLoadsFromEnv:
    """Config loads all values from environment variables."""

    def test_loads_all_env_vars(self, env_vars_full: dict[str, str]) -> None:
        settings = PowerboxSettings()

        assert settings.mqtt_host == env_vars_full["MQTT_HOST"]
        assert settings.mqtt_port == int(env_vars_full["MQTT_PORT"])
        assert settings.mqtt_username == env_vars_full["MQTT_USERNAME"]
        assert settings.mqtt_password == env_vars_full["MQTT_PASSWORD"]
        assert settings.app_name == env_vars_full["APP_NAME"]
        assert settings.target_device_id == env_vars_full["TARGET_DEVICE_ID"]
        assert settings.calculation_interval == int(env_vars_full["CALCULATION_INTERVAL"])
        assert settings.remote_broker_url == env_vars_full["REMOTE_BROKER_URL"]
        assert settings.remote_broker_username == env_vars_full["REMOTE_BROKER_USERNAME"]
        assert settings.remote_broker_password == env_vars_full["REMOTE_BROKER_PASSWORD"]
        assert settings.developer_id == env_vars_full["DEVELOPER_ID"]
        assert settings.owner_id == env_vars_full["OWNER_ID"]
        assert settings.health_path == env_vars_full["HEALTH_PATH"]
        assert settings.reconnect_interval_s == int(env_vars_full["RECONNECT_INTERVAL_S"])

    def test_defaults_applied_when_env_empty(self) -> None:
        settings = PowerboxSettings()

        assert settings.mqtt_host == "127.0.0.1"
        assert settings.mqtt_port == 1883
        assert settings.mqtt_username == "admin"
        assert settings.app_name == "ConnectPowerboxApp"
        assert settings.target_device_id == ""
        assert settings.calculation_interval == 15
        assert settings.remote_broker_url == "mqtt://mqtt.smappeegenius.com:1883"
        assert settings.remote_broker_username == "admin"
        assert settings.health_path == "/data/health.json"
        assert settings.reconnect_interval_s == 5


class TestPowerboxSettingsValidation:
    """Invalid values are rejected at startup."""

    @pytest.mark.parametrize("port", ["0", "65536"])
    def test_port_out_of_range_raises(self, monkeypatch: pytest.MonkeyPatch, port: str) -> None:
        monkeypatch.setenv("MQTT_PORT", port)
        with pytest.raises(ValidationError, match="MQTT_PORT"):
            PowerboxSettings()

    def test_zero_interval_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CALCULATION_INTERVAL", "0")
        with pytest.raises(ValidationError, match="CALCULATION_INTERVAL"):
            PowerboxSettings()

    def test_zero_reconnect_interval_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("RECONNECT_INTERVAL_S", "0")
        with pytest.raises(ValidationError, match="RECONNECT_INTERVAL_S"):
            PowerboxSettings()

    def test_fractional_interval_accepted(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CALCULATION_INTERVAL", "7.5")
        assert PowerboxSettings().calculation_interval == 7.5

    def test_sub_second_interval_raises(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CALCULATION_INTERVAL", "0.5")
        with pytest.raises(ValidationError, match="CALCULATION_INTERVAL"):
            PowerboxSettings()

    @pytest.mark.parametrize(
        "url",
        ["http://broker:1883", "mqtt://", "broker.local", "mqtt://broker:0", "mqtt://broker:port"],
    )
    def test_bad_remote_broker_url_raises(self, monkeypatch: pytest.MonkeyPatch, url: str) -> None:
        monkeypatch.setenv("REMOTE_BROKER_URL", url)
        with pytest.raises(ValidationError):
            PowerboxSettings()

    def test_blank_remote_broker_url_allowed(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("REMOTE_BROKER_URL", "  ")
        assert PowerboxSettings().remote_broker_url == ""

    @pytest.mark.parametrize("name", ["my/app", "app+", "#", ""])
    def test_app_name_with_topic_wildcards_raises(
        self, monkeypatch: pytest.MonkeyPatch, name: str
    ) -> None:
        monkeypatch.setenv("APP_NAME", name)
        with pytest.raises(ValidationError, match="APP_NAME"):
            PowerboxSettings()


class TestRuntimeSettings:
    """WebUI-editable settings."""

    def test_seeded_from_startup_settings(self, env_vars_full: dict[str, str]) -> None:
        runtime = RuntimeSettings.from_settings(PowerboxSettings())
        assert runtime.target_device_id == env_vars_full["TARGET_DEVICE_ID"]
        assert runtime.calculation_interval == 30

    def test_topics_derived_from_target(self) -> None:
        runtime = RuntimeSettings(target_device_id="connect/AA:BB")
        assert runtime.data_topic == "connect/AA:BB/data"
        assert runtime.config_topic == "connect/AA:BB/config/in"

    def test_blank_target_has_no_topics(self) -> None:
        runtime = RuntimeSettings(target_device_id="   ")
        assert runtime.target_device_id == ""
        assert runtime.data_topic is None
        assert runtime.config_topic is None

    def test_merged_applies_known_keys_only(self) -> None:
        runtime = RuntimeSettings(target_device_id="connect/A", calculation_interval=15)
        updated = runtime.merged(
            {"calculation_interval": 5, "colour": "blue"}
        )
        assert updated.calculation_interval == 5
        assert updated.target_device_id == "connect/A"
        assert runtime.calculation_interval == 15

    def test_merged_rejects_invalid_interval(self) -> None:
        runtime = RuntimeSettings()
        with pytest.raises(ValidationError):
            runtime.merged({"calculation_interval": 0})


class TestSettingsSchema:
    def test_schema_defaults_match_runtime_defaults(self) -> None:
        runtime = RuntimeSettings()
        for key, field in SETTINGS_SCHEMA.items():
            assert getattr(runtime, key) == field["default"]


class TestRemoteBroker:
    """Remote broker endpoint and session change detection."""

    def test_seeded_from_startup_settings(self, env_vars_full: dict[str, str]) -> None:
        runtime = RuntimeSettings.from_settings(PowerboxSettings())
        assert runtime.remote_broker_url == env_vars_full["REMOTE_BROKER_URL"]
        assert runtime.remote_broker_username == "bridge"
        assert runtime.remote_broker_password == "br1dge"
        assert runtime.remote_endpoint == ("remote.example", 8883)

    def test_endpoint_defaults_to_port_1883(self) -> None:
        runtime = RuntimeSettings(remote_broker_url="tcp://remote.example")
        assert runtime.remote_endpoint == ("remote.example", 1883)

    def test_blank_url_disables_endpoint(self) -> None:
        assert RuntimeSettings(remote_broker_url="").remote_endpoint is None

    def test_merged_rejects_bad_url(self) -> None:
        with pytest.raises(ValidationError, match="REMOTE_BROKER_URL"):
            RuntimeSettings().merged({"remote_broker_url": "ftp://remote.example"})

    @pytest.mark.parametrize(
        "update",
        [
            {"target_device_id": "connect/B"},
            {"remote_broker_url": "mqtt://other.example"},
            {"remote_broker_username": "someone"},
            {"remote_broker_password": "changed"},
        ],
    )
    def test_remote_differs_on_session_fields(self, update: dict[str, str]) -> None:
        runtime = RuntimeSettings(target_device_id="connect/A")
        assert runtime.remote_differs(runtime.merged(update))

    def test_interval_change_keeps_remote_session(self) -> None:
        runtime = RuntimeSettings(target_device_id="connect/A")
        updated = runtime.merged({"calculation_interval": 7.5})
        assert updated.calculation_interval == 7.5
        assert not runtime.remote_differs(updated)
