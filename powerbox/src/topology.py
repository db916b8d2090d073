"""
Installation topology resolver.

Classifies the monitored installation from the six mean voltages of one
aggregation window. The result carries no memory of earlier windows: the
same mean vector always yields the same topology.

Rules are evaluated top to bottom and the first match wins. Ordering is
significant because the ranges overlap (a collapsed single-phase reading
can also show a line-to-line voltage above 330 V).

CHANGELOG:
- 2026-10-19: Initial creation (STORY-104)

TODO:
- None
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from enum import StrEnum

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Thresholds (volts)
# ---------------------------------------------------------------------------

SINGLE_PHASE_MATCH_V: float = 1.0
"""Max difference between two phase-to-neutral voltages on a bridged supply."""

DEAD_PHASE_V: float = 10.0
"""Phase-to-neutral voltage below which a phase is considered absent."""

STAR_400V_THRESHOLD_V: float = 330.0
"""Any line-to-line voltage above this indicates a 3x400V star network."""

DELTA_COLLAPSED_V: float = 150.0
"""Line-to-line voltage below this marks the collapsed delta pair."""

DELTA_RATIO: float = 0.7
"""Line-to-line voltage below this share of the other two marks the pair."""


class Topology(StrEnum):
    """Wiring topology of the monitored installation."""

    SINGLE_PHASE_L1 = "Single Phase (L1)"
    SINGLE_PHASE_L2 = "Single Phase (L2)"
    SINGLE_PHASE_L3 = "Single Phase (L3)"
    STAR_400V = "3x400V (3P+N)"
    DELTA_L1_L2 = "3x230V Delta (L1-L2)"
    DELTA_L2_L3 = "3x230V Delta (L2-L3)"
    DELTA_L3_L1 = "3x230V Delta (L3-L1)"
    UNKNOWN = "Unknown / Fluctuating"

    @property
    def is_single_phase(self) -> bool:
        """Whether this topology forces every channel onto one phase."""
        return self in (
            Topology.SINGLE_PHASE_L1,
            Topology.SINGLE_PHASE_L2,
            Topology.SINGLE_PHASE_L3,
        )


def _classify(mean_v: Sequence[float]) -> Topology:
    v_l1n, v_l2n, v_l3n, v_l1l2, v_l2l3, v_l3l1 = mean_v

    if abs(v_l1n - v_l2n) <= SINGLE_PHASE_MATCH_V and v_l3n < DEAD_PHASE_V:
        return Topology.SINGLE_PHASE_L1
    if abs(v_l2n - v_l3n) <= SINGLE_PHASE_MATCH_V and v_l1n < DEAD_PHASE_V:
        return Topology.SINGLE_PHASE_L2
    if abs(v_l1n - v_l3n) <= SINGLE_PHASE_MATCH_V and v_l2n < DEAD_PHASE_V:
        return Topology.SINGLE_PHASE_L3

    if any(v > STAR_400V_THRESHOLD_V for v in (v_l1l2, v_l2l3, v_l3l1)):
        return Topology.STAR_400V

    if v_l3l1 < DELTA_COLLAPSED_V or v_l3l1 < DELTA_RATIO * (v_l1l2 + v_l2l3) / 2.0:
        return Topology.DELTA_L1_L2
    if v_l1l2 < DELTA_COLLAPSED_V or v_l1l2 < DELTA_RATIO * (v_l2l3 + v_l3l1) / 2.0:
        return Topology.DELTA_L2_L3
    if v_l2l3 < DELTA_COLLAPSED_V or v_l2l3 < DELTA_RATIO * (v_l1l2 + v_l3l1) / 2.0:
        return Topology.DELTA_L3_L1

    return Topology.UNKNOWN


def resolve_topology(mean_v: Sequence[float]) -> Topology:
    """Classify the installation from one window's mean voltages.

    Args:
        mean_v: Six mean voltages ordered ``L1N, L2N, L3N, L1L2, L2L3, L3L1``.

    Returns:
        The first matching :class:`Topology`, or ``Topology.UNKNOWN``.

    Raises:
        ValueError: If *mean_v* does not hold exactly six values.
    """
    if len(mean_v) != 6:
        raise ValueError(f"Expected 6 mean voltages, got {len(mean_v)}")

    topology = _classify(mean_v)
    logger.info("Detected Topology: %s", topology.value)
    return topology
