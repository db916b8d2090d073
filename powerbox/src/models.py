"""
Pydantic models for inbound Connect telemetry and outbound payloads.

Inbound:
- ChannelReading: one CT channel reading inside a telemetry frame.
- TelemetryFrame: one validated telemetry record (voltages + channels).

Outbound:
- DeviceConfig: CT configuration map written back to the Connect device.
- CtSnapshot / UiSnapshot: rich per-window data published to the WebUI.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-102)

TODO:
- None
"""

from __future__ import annotations

from pydantic import BaseModel, Field

CHANNEL_COUNT = 28
"""Number of CT inputs on the Connect device."""

VOLTAGE_NAMES: tuple[str, ...] = ("L1N", "L2N", "L3N", "L1L2", "L2L3", "L3L1")
"""Semantic positions of the 6-element voltage vector."""


class ChannelReading(BaseModel):
    """A single CT channel reading from one telemetry frame.

    Attributes:
        id: Channel number, 1..28.
        current: Fundamental RMS current in amperes.
        active_power: Signed active power in watts.
        apparent_power: Apparent power in volt-amperes.
    """

    id: int = Field(ge=1, le=CHANNEL_COUNT)
    current: float = 0.0
    active_power: float = 0.0
    apparent_power: float = 0.0


class TelemetryFrame(BaseModel):
    """A validated telemetry record from the Connect device.

    Attributes:
        voltages: Exactly six voltages ordered as :data:`VOLTAGE_NAMES`.
        channels: Channel readings present in this frame (ids unique).
        frequency: Grid frequency in hertz, when the device reports it.
    """

    voltages: list[float] = Field(min_length=6, max_length=6)
    channels: list[ChannelReading]
    frequency: float | None = None


class DeviceConfig(BaseModel):
    """CT configuration map published to ``{target}/config/in``.

    Attributes:
        ct_types: Per-channel CT type; always 0 (50 A default) for now.
        ct_phases: Per-channel association code.
    """

    ct_types: list[int]
    ct_phases: list[int]


class CtSnapshot(BaseModel):
    """Per-channel row of the WebUI table.

    Numeric readings are pre-formatted strings with fixed precision so the
    UI renders them verbatim.
    """

    id: int
    tag: str
    phase: str
    locked: bool
    current: str
    activeP: str
    apparentP: str
    pf: str
    avgPf: str
    assoc: int


class UiSnapshot(BaseModel):
    """Window summary published to the WebUI.

    Attributes:
        topology: Detected installation topology label.
        voltages: Mean voltages keyed by :data:`VOLTAGE_NAMES`.
        frequency: Latest reported grid frequency, 0 when unknown.
        cts: One row per channel, ordered by id.
    """

    topology: str
    voltages: dict[str, float]
    frequency: float
    cts: list[CtSnapshot]
