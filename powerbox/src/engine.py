"""
Window driver: owns the aggregation state and runs the per-window pipeline.

PhaseEngine is the single owner of the accumulation window and the channel
state table. Every validated frame goes through :meth:`PhaseEngine.ingest`,
which accumulates it and, once the configured interval has elapsed since
the window opened, closes the window synchronously:

    mean voltages -> topology
    per channel:  metrics/tag -> phase match/lock -> association code
    -> DeviceConfig + UiSnapshot

Window close is driven by sample arrival, not by a timer. If no frames
arrive no window ever closes, and the effective window length is the
interval rounded up to the next arriving frame.

The engine does no I/O and never awaits, so a close always completes
before the caller hands it the next frame.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-110)

TODO:
- None
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

from powerbox.src.association import generate_association
from powerbox.src.models import DeviceConfig, TelemetryFrame, UiSnapshot
from powerbox.src.output import build_device_config, build_ui_snapshot
from powerbox.src.phase import update_phase
from powerbox.src.state import AggregationWindow, new_channel_table
from powerbox.src.tagger import update_channel_metrics
from powerbox.src.topology import Topology, resolve_topology

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_S: float = 15.0
"""Default aggregation interval in seconds."""


@dataclass(frozen=True, slots=True)
class WindowResult:
    """Everything produced by one window close.

    Attributes:
        topology: Topology resolved from the window's mean voltages.
        mean_voltages: The six mean voltages.
        sample_count: Number of frames the window aggregated.
        config: CT configuration map for the device.
        snapshot: WebUI summary.
    """

    topology: Topology
    mean_voltages: list[float]
    sample_count: int
    config: DeviceConfig
    snapshot: UiSnapshot


class PhaseEngine:
    """Aggregation state plus the window-close pipeline.

    Args:
        interval_s: Aggregation interval in seconds.
        now: Monotonic timestamp the first window opens at. Defaults to
            :func:`time.monotonic`.
    """

    def __init__(
        self,
        *,
        interval_s: float = DEFAULT_INTERVAL_S,
        now: float | None = None,
    ) -> None:
        self.interval_s = interval_s
        self.channels = new_channel_table()
        self.window = AggregationWindow(
            window_start=time.monotonic() if now is None else now,
        )
        self.topology = Topology.UNKNOWN
        self.frequency: float | None = None
        self.windows_closed = 0

    def ingest(self, frame: TelemetryFrame, now: float | None = None) -> WindowResult | None:
        """Accumulate one frame and close the window if the interval elapsed.

        Args:
            frame: A frame accepted by :func:`~powerbox.src.validator.parse_frame`.
            now: Monotonic timestamp of arrival. Defaults to
                :func:`time.monotonic`.

        Returns:
            The :class:`WindowResult` when this frame closed a window,
            otherwise ``None``.
        """
        self.window.ingest(frame, self.channels)
        self.frequency = frame.frequency

        if now is None:
            now = time.monotonic()

        if now - self.window.window_start < self.interval_s:
            return None

        result = self.close_window()
        self.window.restart(now)
        return result

    def close_window(self) -> WindowResult | None:
        """Run the full recomputation pass over the current window.

        Returns:
            The :class:`WindowResult`, or ``None`` when the window holds no
            samples (nothing is recomputed in that case).
        """
        sample_count = self.window.sample_count
        if sample_count == 0:
            logger.debug("Window close skipped: no samples accumulated")
            return None

        mean_v = self.window.take_mean_voltages()
        self.topology = resolve_topology(mean_v)

        codes: list[int] = []
        for channel in self.channels:
            power_factor = update_channel_metrics(channel, self.window)
            phase = update_phase(channel, self.topology, power_factor)
            codes.append(generate_association(channel, phase))

        self.window.sample_count = 0
        self.windows_closed += 1

        logger.debug(
            "Window %d closed: samples=%d topology=%s",
            self.windows_closed,
            sample_count,
            self.topology.value,
        )

        return WindowResult(
            topology=self.topology,
            mean_voltages=mean_v,
            sample_count=sample_count,
            config=build_device_config(codes),
            snapshot=build_ui_snapshot(
                topology=self.topology,
                mean_voltages=mean_v,
                frequency=self.frequency,
                channels=self.channels,
            ),
        )
