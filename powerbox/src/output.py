"""
Output shaping for a closed window.

Builds the two payloads handed to the transport:

- DeviceConfig for the Connect's ``config/in`` topic.
- UiSnapshot for the WebUI, with numbers pre-formatted to fixed precision
  (current and PF: 2 places, powers: 1 place). An undefined running PF
  renders as ``"N/A"``.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-109)

TODO:
- None
"""

from __future__ import annotations

import math
from collections.abc import Sequence

from powerbox.src.models import (
    CHANNEL_COUNT,
    VOLTAGE_NAMES,
    CtSnapshot,
    DeviceConfig,
    UiSnapshot,
)
from powerbox.src.state import ChannelState
from powerbox.src.topology import Topology

NOT_AVAILABLE = "N/A"

DEFAULT_CT_TYPE = 0
"""CT type written for every channel (0 = 50 A default)."""


def _fixed(value: float, places: int) -> str:
    return f"{value:.{places}f}"


def build_device_config(phases: Sequence[int]) -> DeviceConfig:
    """Build the CT configuration map from per-channel association codes."""
    return DeviceConfig(
        ct_types=[DEFAULT_CT_TYPE] * CHANNEL_COUNT,
        ct_phases=list(phases),
    )


def build_ct_snapshot(channel: ChannelState) -> CtSnapshot:
    """Build one WebUI table row."""
    avg_pf = channel.avg_power_factor
    return CtSnapshot(
        id=channel.id,
        tag=channel.appliance_tag.value,
        phase=channel.phase_label,
        locked=channel.phase_locked,
        current=_fixed(channel.mean_current, 2),
        activeP=_fixed(channel.active_power_instant, 1),
        apparentP=_fixed(channel.apparent_power_instant, 1),
        pf=_fixed(channel.power_factor_instant, 2),
        avgPf=NOT_AVAILABLE if math.isnan(avg_pf) else _fixed(avg_pf, 2),
        assoc=channel.current_association,
    )


def build_ui_snapshot(
    *,
    topology: Topology,
    mean_voltages: Sequence[float],
    frequency: float | None,
    channels: Sequence[ChannelState],
) -> UiSnapshot:
    """Build the WebUI window summary.

    Args:
        topology: Topology resolved for the window.
        mean_voltages: The window's six mean voltages.
        frequency: Latest reported grid frequency, ``None`` if never reported.
        channels: Full channel table, ordered by id.
    """
    return UiSnapshot(
        topology=topology.value,
        voltages=dict(zip(VOLTAGE_NAMES, mean_voltages, strict=True)),
        frequency=frequency if frequency is not None else 0.0,
        cts=[build_ct_snapshot(channel) for channel in channels],
    )
