"""
Sample validator that turns a raw Connect telemetry message into a TelemetryFrame.

The Connect publishes JSON on ``{target}/data`` shaped as::

    {"voltages": [L1N, L2N, L3N, L1L2, L2L3, L3L1],
     "channels": [{"id": 1, "current": 0.4, "active_power": 90.0,
                   "apparent_power": 95.0}, ...],
     "frequency": 50.01}

A record is accepted only when it carries a 6-element ``voltages`` list and
a ``channels`` list. Anything else is dropped: the function returns ``None``
and the caller must not touch aggregation state.

Inside an accepted record the parser is lenient, matching the device's
habit of sending ``null`` for unavailable readings:

- ``null``, non-numeric or non-finite (``NaN``, ``Infinity``) voltage
  entries count as 0.
- Channel entries without an integer ``id`` in 1..28 are skipped.
- Missing, ``null``, non-numeric or non-finite current/power fields count
  as 0. A non-finite frequency is reported as 0.
- When an id appears twice, the first entry wins.

This is a pure function: no I/O besides logging, no clock.

CHANGELOG:
- 2026-10-20: Coerce NaN and Infinity readings to 0 (STORY-115)
- 2026-10-19: Initial creation (STORY-103)

TODO:
- None
"""

from __future__ import annotations

import json
import logging
import math
from collections.abc import Mapping
from typing import Any

from powerbox.src.models import CHANNEL_COUNT, ChannelReading, TelemetryFrame

logger = logging.getLogger(__name__)

_CHANNEL_FIELDS = ("current", "active_power", "apparent_power")


# ---------------------------------------------------------------------------
# Coercion helpers
# ---------------------------------------------------------------------------


def _to_float(value: Any) -> float:
    """Return *value* as a float, or 0.0 when it is not a finite JSON number."""
    if isinstance(value, bool) or not isinstance(value, int | float):
        return 0.0
    try:
        number = float(value)
    except OverflowError:
        return 0.0
    if not math.isfinite(number):
        return 0.0
    return number


def _to_channel_id(value: Any) -> int | None:
    """Return *value* as a valid channel id, or ``None``."""
    if isinstance(value, bool):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if not isinstance(value, int):
        return None
    if not 1 <= value <= CHANNEL_COUNT:
        return None
    return value


def _decode(payload: bytes | str | Mapping[str, Any]) -> Mapping[str, Any] | None:
    """Decode a transport payload into a mapping, or ``None`` if undecodable."""
    if isinstance(payload, Mapping):
        return payload
    try:
        decoded = json.loads(payload)
    except (ValueError, UnicodeDecodeError) as exc:
        logger.warning("Error parsing Connect telemetry: %s", exc)
        return None
    if not isinstance(decoded, Mapping):
        logger.debug("Telemetry payload is not a JSON object, dropping")
        return None
    return decoded


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def parse_frame(payload: bytes | str | Mapping[str, Any]) -> TelemetryFrame | None:
    """Validate a raw telemetry record and build a :class:`TelemetryFrame`.

    Args:
        payload: The MQTT message body (bytes or str holding JSON) or an
            already decoded mapping.

    Returns:
        A :class:`TelemetryFrame` when the record has the expected shape,
        otherwise ``None``.
    """
    record = _decode(payload)
    if record is None:
        return None

    voltages = record.get("voltages")
    channels = record.get("channels")

    if not isinstance(voltages, list | tuple) or len(voltages) != 6:
        logger.debug("Telemetry record without a 6-element voltage vector, dropping")
        return None
    if not isinstance(channels, list | tuple):
        logger.debug("Telemetry record without a channel list, dropping")
        return None

    readings: dict[int, ChannelReading] = {}
    for entry in channels:
        if not isinstance(entry, Mapping):
            continue
        channel_id = _to_channel_id(entry.get("id"))
        if channel_id is None or channel_id in readings:
            continue
        readings[channel_id] = ChannelReading(
            id=channel_id,
            **{name: _to_float(entry.get(name)) for name in _CHANNEL_FIELDS},
        )

    frequency = record.get("frequency")

    return TelemetryFrame(
        voltages=[_to_float(v) for v in voltages],
        channels=list(readings.values()),
        frequency=_to_float(frequency) if frequency is not None else None,
    )
