"""
Appliance tagger: per-window power statistics and behaviour tag of a channel.

For every channel at window close:

- Mean current of the window (sum reset afterwards).
- Running max of |active power|.
- Power factor estimate |P| / S clamped to [0, 1], only when S > 10 VA and
  both readings are numbers; otherwise the window's PF is 0 and it does not
  count towards the max or the running mean.
- Running mean PF over all contributing windows (NaN-tolerant restart).
- Long-term average power as an EMA with alpha 0.1. The first update after
  the average sits at exactly 0.0 takes the reading as-is (cold start).
  A non-finite reading is skipped, and a non-finite average restarts from
  the next finite reading.
- Behaviour tag from the long-term average.

CHANGELOG:
- 2026-10-20: Skip non-finite power in the long-term average (STORY-115)
- 2026-10-19: Initial creation (STORY-106)

TODO:
- None
"""

from __future__ import annotations

import math

from powerbox.src.state import AggregationWindow, ApplianceTag, ChannelState

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MIN_APPARENT_POWER_VA: float = 10.0
"""Apparent power at or below which no power factor is estimated."""

EMA_ALPHA: float = 0.1
"""Smoothing weight of the newest reading in the long-term average."""

TAG_THRESHOLD_W: float = 50.0
"""Long-term average magnitude separating Idle from Solar/Load."""


def _clamp_unit(value: float) -> float:
    # NaN passes through unchanged.
    return min(max(value, 0.0), 1.0)


def estimate_power_factor(active_power: float, apparent_power: float) -> float | None:
    """Estimate the power factor from one pair of instantaneous readings.

    Returns:
        ``|P| / S`` clamped to [0, 1], or ``None`` when S is not above
        :data:`MIN_APPARENT_POWER_VA` or either reading is NaN.
    """
    if math.isnan(active_power) or math.isnan(apparent_power):
        return None
    if not apparent_power > MIN_APPARENT_POWER_VA:
        return None
    return _clamp_unit(abs(active_power) / apparent_power)


def classify(long_term_avg_power: float) -> ApplianceTag:
    """Map a long-term average power to a behaviour tag."""
    if long_term_avg_power < -TAG_THRESHOLD_W:
        return ApplianceTag.SOLAR
    if long_term_avg_power > TAG_THRESHOLD_W:
        return ApplianceTag.LOAD
    return ApplianceTag.IDLE


def update_channel_metrics(
    channel: ChannelState,
    window: AggregationWindow,
) -> float | None:
    """Fold one closed window into a channel's statistics.

    Args:
        channel: The channel to update in place.
        window: The closing window; the channel's current sum is reset.

    Returns:
        The window's power factor estimate, or ``None`` when none could be
        made (``channel.power_factor_instant`` is then 0).
    """
    channel.mean_current = window.take_mean_current(channel.id - 1)

    p_inst = channel.active_power_instant
    s_inst = channel.apparent_power_instant

    if abs(p_inst) > channel.max_active_power:
        channel.max_active_power = abs(p_inst)

    pf = estimate_power_factor(p_inst, s_inst)
    if pf is None:
        channel.power_factor_instant = 0.0
    else:
        channel.power_factor_instant = pf
        if pf > channel.max_power_factor:
            channel.max_power_factor = pf

        if channel.power_factor_count == 0 or math.isnan(channel.avg_power_factor):
            channel.avg_power_factor = pf
            channel.power_factor_count = 1
        else:
            n = channel.power_factor_count
            channel.avg_power_factor = (channel.avg_power_factor * n + pf) / (n + 1)
            channel.power_factor_count = n + 1

    lta = channel.long_term_avg_power
    if math.isfinite(p_inst):
        if lta == 0.0 or not math.isfinite(lta):
            channel.long_term_avg_power = p_inst
        else:
            channel.long_term_avg_power = lta * (1.0 - EMA_ALPHA) + p_inst * EMA_ALPHA

    channel.appliance_tag = classify(channel.long_term_avg_power)
    return pf
