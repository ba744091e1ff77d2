"""
Channel Decoder - turns a decoded uplink payload into typed sensor readings

Payload fields are named ``<anything>_<channel>``, e.g. ``temperature_2``.
Only the channel number matters; the prefix is informational.
"""

import math
import re
from collections.abc import Iterator, Mapping
from typing import Any, NamedTuple

from roomclimate.models.sensor import SensorType


class ChannelSpec(NamedTuple):
    sensor_type: SensorType
    unit: str


class DecodedReading(NamedTuple):
    channel: int
    sensor_type: SensorType
    unit: str
    value: float


# Channel number -> what the sensor firmware sends on it
CHANNEL_TABLE: dict[int, ChannelSpec] = {
    1: ChannelSpec(SensorType.HUMIDITY, "%"),
    2: ChannelSpec(SensorType.TEMPERATURE, "°C"),
    3: ChannelSpec(SensorType.PRESENCE, "%"),
    4: ChannelSpec(SensorType.CO2, "ppm"),
    5: ChannelSpec(SensorType.LIGHT, "%"),
    6: ChannelSpec(SensorType.NOISE, "dB"),
}

_CHANNEL_RE = re.compile(r"_(\d+)$")


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    try:
        return math.isfinite(value)
    except OverflowError:
        # JSON integers beyond float range
        return False


def decode_channels(
    fields: Mapping[str, Any],
    table: Mapping[int, ChannelSpec] = CHANNEL_TABLE,
) -> Iterator[DecodedReading]:
    """
    Yield one reading per usable payload field, in payload order.

    Fields without a ``_<digits>`` suffix, with non-numeric values, or on a
    channel missing from ``table`` are skipped. Never raises for bad fields.
    """
    for key, value in fields.items():
        if not isinstance(key, str) or not _is_number(value):
            continue

        match = _CHANNEL_RE.search(key)
        if not match:
            continue

        channel = int(match.group(1))
        spec = table.get(channel)
        if spec is None:
            continue

        yield DecodedReading(channel, spec.sensor_type, spec.unit, value)
