"""Decoder for CORE temperature characteristic (0x2101) notifications.

Layout after the flags byte, consumed left to right:

    core temperature   int16 LE / 100            always
    skin temperature   int16 LE / 100            bit 0
    reserved core      int16 LE, unscaled        bit 1
    quality/state      uint8                     bit 2
    heart rate         uint8                     bit 4
    heat strain index  uint8                     bit 5

Bit 3 marks both temperatures as transmitted in Fahrenheit. Decoded samples
are always Celsius.
"""

from __future__ import annotations

import struct
import time

from coretemp.core.errors import TruncatedPayload
from coretemp.core.model import Sample

FLAG_SKIN = 0x01
FLAG_CORE_RESERVED = 0x02
FLAG_QUALITY = 0x04
FLAG_FAHRENHEIT = 0x08
FLAG_HEART_RATE = 0x10
FLAG_HEAT_STRAIN = 0x20

_INT16 = struct.Struct("<h")


def expected_length(flags: int) -> int:
    length = 1 + _INT16.size
    if flags & FLAG_SKIN:
        length += _INT16.size
    if flags & FLAG_CORE_RESERVED:
        length += _INT16.size
    for bit in (FLAG_QUALITY, FLAG_HEART_RATE, FLAG_HEAT_STRAIN):
        if flags & bit:
            length += 1
    return length


def fahrenheit_to_celsius(value: float) -> float:
    return (value - 32.0) * 5.0 / 9.0


def decode_sample(data: bytes | bytearray, *, received_at: int | None = None) -> Sample:
    """Decode one notification payload into a :class:`Sample`.

    ``received_at`` is the arrival time in milliseconds; the sensor sends no
    clock of its own, so it defaults to the current wall-clock time.
    """
    payload = bytes(data)
    if len(payload) < 1 + _INT16.size:
        raise TruncatedPayload(f"Payload has {len(payload)} bytes, need at least 3")

    flags = payload[0]
    needed = expected_length(flags)
    if len(payload) < needed:
        raise TruncatedPayload(
            f"Payload has {len(payload)} bytes but flags 0x{flags:02x} declare {needed}"
        )

    offset = 1
    (core_raw,) = _INT16.unpack_from(payload, offset)
    offset += _INT16.size
    core_c = core_raw / 100.0

    skin_c: float | None = None
    if flags & FLAG_SKIN:
        (skin_raw,) = _INT16.unpack_from(payload, offset)
        offset += _INT16.size
        skin_c = skin_raw / 100.0

    core_reserved: int | None = None
    if flags & FLAG_CORE_RESERVED:
        (core_reserved,) = _INT16.unpack_from(payload, offset)
        offset += _INT16.size

    quality: int | None = None
    if flags & FLAG_QUALITY:
        quality = payload[offset]
        offset += 1

    heart_rate: int | None = None
    if flags & FLAG_HEART_RATE:
        heart_rate = payload[offset]
        offset += 1

    heat_strain_index: int | None = None
    if flags & FLAG_HEAT_STRAIN:
        heat_strain_index = payload[offset]
        offset += 1

    fahrenheit = bool(flags & FLAG_FAHRENHEIT)
    if fahrenheit:
        core_c = fahrenheit_to_celsius(core_c)
        if skin_c is not None:
            skin_c = fahrenheit_to_celsius(skin_c)

    return Sample(
        received_at=received_at if received_at is not None else int(time.time() * 1000),
        flags=flags,
        core_c=core_c,
        skin_c=skin_c,
        core_reserved=core_reserved,
        quality=quality,
        heart_rate=heart_rate,
        heat_strain_index=heat_strain_index,
        fahrenheit_transmitted=fahrenheit,
    )
