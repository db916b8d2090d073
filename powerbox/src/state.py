"""
Aggregation state: per-channel state table and the accumulation window.

ChannelState lives for the whole process lifetime (one per CT channel).
AggregationWindow holds the running sums for the current window and is
emptied every time the window closes.

Operations:
- AggregationWindow.ingest(frame, channels): add one frame to the sums and
  overwrite the instantaneous power readings of the channels it carries.
- AggregationWindow.take_mean_voltages(): mean voltage vector, resets sums.
- AggregationWindow.take_mean_current(index): mean current, resets the entry.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-105)

TODO:
- None
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from powerbox.src.models import CHANNEL_COUNT

if TYPE_CHECKING:
    from powerbox.src.models import TelemetryFrame


class Phase(StrEnum):
    """Voltage reference a CT channel can be associated with.

    Member order matches the voltage vector, so :attr:`index` is also the
    position of the reference voltage in ``TelemetryFrame.voltages``.
    """

    L1N = "L1N"
    L2N = "L2N"
    L3N = "L3N"
    L1L2 = "L1L2"
    L2L3 = "L2L3"
    L3L1 = "L3L1"

    @property
    def index(self) -> int:
        """Position of this phase's reference voltage in the voltage vector."""
        return list(Phase).index(self)


class ApplianceTag(StrEnum):
    """Behaviour class of the load behind a CT channel."""

    SOLAR = "Solar/Exporting"
    LOAD = "Load/Importing"
    IDLE = "Idle"


ANALYZING_LABEL = "Analyzing"
"""Display label of a channel without a resolved phase."""


@dataclass(slots=True)
class ChannelState:
    """Long-lived analysis state of one CT channel.

    Attributes:
        id: Channel number, 1..28.
        mean_current: Mean current of the last closed window (A).
        active_power_instant: Latest active power reading (W).
        apparent_power_instant: Latest apparent power reading (VA).
        max_active_power: Running max of ``|active_power_instant|``.
        power_factor_instant: Power factor of the last closed window.
        max_power_factor: Highest power factor seen.
        avg_power_factor: Running mean power factor (NaN-tolerant).
        power_factor_count: Number of windows in ``avg_power_factor``.
        long_term_avg_power: EMA of active power (alpha 0.1).
        phase: Resolved phase, ``None`` while analyzing.
        phase_forced: ``True`` when ``phase`` came from a single-phase override.
        phase_locked: Permanent once set.
        appliance_tag: Behaviour tag derived from ``long_term_avg_power``.
        current_association: Last association code written to the device.
    """

    id: int
    mean_current: float = 0.0
    active_power_instant: float = 0.0
    apparent_power_instant: float = 0.0
    max_active_power: float = 0.0
    power_factor_instant: float = 0.0
    max_power_factor: float = 0.0
    avg_power_factor: float = 0.0
    power_factor_count: int = 0
    long_term_avg_power: float = 0.0
    phase: Phase | None = None
    phase_forced: bool = False
    phase_locked: bool = False
    appliance_tag: ApplianceTag = ApplianceTag.IDLE
    current_association: int = 0

    @property
    def phase_label(self) -> str:
        """Human-readable phase, e.g. ``"L1N (Forced)"`` or ``"Analyzing"``."""
        if self.phase is None:
            return ANALYZING_LABEL
        if self.phase_forced:
            return f"{self.phase.value} (Forced)"
        return self.phase.value


def new_channel_table() -> list[ChannelState]:
    """Return a fresh state table for channels 1..28, indexed by ``id - 1``."""
    return [ChannelState(id=i + 1) for i in range(CHANNEL_COUNT)]


@dataclass(slots=True)
class AggregationWindow:
    """Running sums for one aggregation window.

    Attributes:
        voltage_acc: Summed voltages, ordered as the voltage vector.
        current_acc: Summed currents, indexed by ``channel id - 1``.
        sample_count: Number of frames ingested since the last close.
        window_start: Monotonic timestamp (s) the window opened at.
    """

    voltage_acc: list[float] = field(default_factory=lambda: [0.0] * 6)
    current_acc: list[float] = field(default_factory=lambda: [0.0] * CHANNEL_COUNT)
    sample_count: int = 0
    window_start: float = 0.0

    def ingest(self, frame: TelemetryFrame, channels: Sequence[ChannelState]) -> None:
        """Add one validated frame to the window.

        Power readings are not averaged: the frame's values overwrite the
        channel's instantaneous fields. Channels absent from the frame keep
        their previous readings.
        """
        for i, voltage in enumerate(frame.voltages):
            self.voltage_acc[i] += voltage

        for reading in frame.channels:
            self.current_acc[reading.id - 1] += reading.current
            channel = channels[reading.id - 1]
            channel.active_power_instant = reading.active_power
            channel.apparent_power_instant = reading.apparent_power

        self.sample_count += 1

    def take_mean_voltages(self) -> list[float]:
        """Return the mean voltage vector and zero the voltage sums.

        Must only be called with ``sample_count > 0``.
        """
        means = [v / self.sample_count for v in self.voltage_acc]
        self.voltage_acc = [0.0] * 6
        return means

    def take_mean_current(self, index: int) -> float:
        """Return the mean current of channel *index* and zero its sum."""
        mean = self.current_acc[index] / self.sample_count
        self.current_acc[index] = 0.0
        return mean

    def restart(self, now: float) -> None:
        """Empty the window and open the next one at *now*."""
        self.voltage_acc = [0.0] * 6
        self.current_acc = [0.0] * CHANNEL_COUNT
        self.sample_count = 0
        self.window_start = now
