"""
Phase matcher/locker for a single CT channel.

Each channel is either *analyzing* (no phase, or a tentative one) or
*locked*. Per window close, in order:

1. An unlocked channel carrying current (> 0.05 A) drops back to analyzing.
2. A single-phase topology forces every channel onto the live phase,
   locked or not.
3. An unlocked channel with a concrete phase and PF > 0.95 locks. Locking
   is permanent for the process lifetime.
4. The channel's phase (or ``None``) is returned for association.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-107)

TODO:
- None
"""

from __future__ import annotations

import logging

from powerbox.src.state import ChannelState, Phase
from powerbox.src.topology import Topology

logger = logging.getLogger(__name__)

ACTIVE_CURRENT_A: float = 0.05
"""Mean current above which an unlocked channel restarts analysis."""

LOCK_POWER_FACTOR: float = 0.95
"""Power factor a channel must exceed to lock its phase."""

FORCED_PHASES: dict[Topology, Phase] = {
    Topology.SINGLE_PHASE_L1: Phase.L1N,
    Topology.SINGLE_PHASE_L2: Phase.L2N,
    Topology.SINGLE_PHASE_L3: Phase.L3N,
}
"""Phase every channel is forced onto under a single-phase topology."""


def update_phase(
    channel: ChannelState,
    topology: Topology,
    power_factor: float | None,
) -> Phase | None:
    """Advance the channel's phase state machine by one window.

    Args:
        channel: Channel to update in place. ``mean_current`` must already
            hold this window's value.
        topology: Topology resolved for this window.
        power_factor: This window's PF estimate, ``None`` when unavailable.

    Returns:
        The phase to associate the channel with this window, or ``None``
        when it has none.
    """
    if not channel.phase_locked and channel.mean_current > ACTIVE_CURRENT_A:
        channel.phase = None
        channel.phase_forced = False

    forced = FORCED_PHASES.get(topology)
    if forced is not None:
        channel.phase = forced
        channel.phase_forced = True

    if (
        power_factor is not None
        and power_factor > LOCK_POWER_FACTOR
        and not channel.phase_locked
        and channel.phase is not None
    ):
        channel.phase_locked = True
        logger.info(
            "CT%d | Locked Phase to %s (PF %.2f)",
            channel.id,
            channel.phase_label,
            power_factor,
        )

    return channel.phase
