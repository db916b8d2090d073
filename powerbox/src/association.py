"""
Association generator: per-channel CT configuration code for the Connect.

The Connect encodes a channel's voltage reference and current direction as
a single bitmask code. Each phase has a forward and a reversed code:

    ======  =======  ========
    phase   forward  reversed
    ======  =======  ========
    L1N     1        16
    L2N     2        32
    L3N     4        64
    L1L2    33       18
    L2L3    66       36
    L3L1    65       20
    ======  =======  ========

Direction uses hysteresis so a channel idling around zero does not chatter
between codes. Power is first corrected for the direction already written
to the device; then a Solar/Exporting channel is always forward, a
corrected power below -20 W flips to reversed, above +20 W flips to
forward, and anything in between keeps the current direction.

A channel without a resolved phase keeps its previous code.

CHANGELOG:
- 2026-10-19: Initial creation (STORY-108)

TODO:
- None
"""

from __future__ import annotations

from powerbox.src.state import ApplianceTag, ChannelState, Phase

DIRECTION_DEADBAND_W: float = 20.0
"""Corrected power magnitude needed to change direction."""

ASSOCIATION_CODES: dict[tuple[Phase, bool], int] = {
    (Phase.L1N, False): 1,
    (Phase.L1N, True): 16,
    (Phase.L2N, False): 2,
    (Phase.L2N, True): 32,
    (Phase.L3N, False): 4,
    (Phase.L3N, True): 64,
    (Phase.L1L2, False): 33,
    (Phase.L1L2, True): 18,
    (Phase.L2L3, False): 66,
    (Phase.L2L3, True): 36,
    (Phase.L3L1, False): 65,
    (Phase.L3L1, True): 20,
}
"""Connect association code keyed by ``(phase, reversed)``."""

REVERSED_CODES: frozenset[int] = frozenset(
    code for (_, reversed_), code in ASSOCIATION_CODES.items() if reversed_
)


def is_reversed(code: int) -> bool:
    """Return ``True`` when *code* is a reversed-direction association."""
    return code in REVERSED_CODES


def target_direction(
    currently_reversed: bool,
    active_power: float,
    tag: ApplianceTag,
) -> bool:
    """Decide whether the channel should be written as reversed.

    Args:
        currently_reversed: Direction of the code already on the device.
        active_power: Latest measured active power (W), as seen through the
            current device configuration.
        tag: Channel behaviour tag.

    Returns:
        ``True`` for reversed, ``False`` for forward.
    """
    true_power = -active_power if currently_reversed else active_power

    if tag is ApplianceTag.SOLAR:
        return False
    if true_power < -DIRECTION_DEADBAND_W:
        return True
    if true_power > DIRECTION_DEADBAND_W:
        return False
    return currently_reversed


def generate_association(channel: ChannelState, phase: Phase | None) -> int:
    """Compute the channel's association code and store it on the channel.

    Args:
        channel: Channel to update (``current_association`` is rewritten).
        phase: Phase resolved this window, or ``None``.

    Returns:
        The association code to publish for this channel.
    """
    if phase is None:
        return channel.current_association

    reversed_ = target_direction(
        is_reversed(channel.current_association),
        channel.active_power_instant,
        channel.appliance_tag,
    )
    channel.current_association = ASSOCIATION_CODES[(phase, reversed_)]
    return channel.current_association
