from __future__ import annotations

import struct

import pytest

from coretemp.core.decoder import decode_sample, expected_length
from coretemp.core.errors import TruncatedPayload

_CORE_RAW = 3712
_SKIN_RAW = 3455
_RESERVED_RAW = -7
_QUALITY = 3
_HEART_RATE = 72
_HSI = 4


def _payload(flags: int) -> bytes:
    data = bytes((flags,)) + struct.pack("<h", _CORE_RAW)
    if flags & 0x01:
        data += struct.pack("<h", _SKIN_RAW)
    if flags & 0x02:
        data += struct.pack("<h", _RESERVED_RAW)
    if flags & 0x04:
        data += bytes((_QUALITY,))
    if flags & 0x10:
        data += bytes((_HEART_RATE,))
    if flags & 0x20:
        data += bytes((_HSI,))
    return data


def _celsius(raw: int, fahrenheit: bool) -> float:
    value = raw / 100.0
    return (value - 32.0) * 5.0 / 9.0 if fahrenheit else value


@pytest.mark.parametrize("flags", range(0x40))
def test_optional_fields_follow_flag_bits(flags: int) -> None:
    sample = decode_sample(_payload(flags), received_at=1)
    fahrenheit = bool(flags & 0x08)

    assert sample.flags == flags
    assert sample.fahrenheit_transmitted is fahrenheit
    assert sample.core_c == pytest.approx(_celsius(_CORE_RAW, fahrenheit))
    assert (sample.skin_c is not None) == bool(flags & 0x01)
    assert (sample.core_reserved is not None) == bool(flags & 0x02)
    assert (sample.quality is not None) == bool(flags & 0x04)
    assert (sample.heart_rate is not None) == bool(flags & 0x10)
    assert (sample.heat_strain_index is not None) == bool(flags & 0x20)

    if sample.skin_c is not None:
        assert sample.skin_c == pytest.approx(_celsius(_SKIN_RAW, fahrenheit))
    if sample.core_reserved is not None:
        assert sample.core_reserved == _RESERVED_RAW
    if sample.heart_rate is not None:
        assert sample.heart_rate == _HEART_RATE


@pytest.mark.parametrize("flags", range(0x40))
def test_payload_shorter_than_flags_declare_is_rejected(flags: int) -> None:
    payload = _payload(flags)
    assert len(payload) == expected_length(flags)
    with pytest.raises(TruncatedPayload):
        decode_sample(payload[:-1])


def test_core_skin_and_quality_scenario() -> None:
    sample = decode_sample(bytes([0x05, 0x10, 0x27, 0x2C, 0x23, 0x02]), received_at=42)
    assert sample.core_c == pytest.approx(100.00)
    assert sample.skin_c == pytest.approx(90.04)
    assert sample.quality == 2
    assert sample.heart_rate is None
    assert sample.core_reserved is None
    assert sample.received_at == 42


def test_flags_declaring_more_fields_than_sent_are_truncated() -> None:
    # 0x33 declares skin, reserved core, heart rate and HSI: 9 bytes.
    with pytest.raises(TruncatedPayload):
        decode_sample(bytes([0x33, 0x10, 0x27, 0x2C, 0x23, 0x02]))


def test_fahrenheit_payload_is_normalized_to_celsius() -> None:
    sample = decode_sample(bytes([0x09]) + struct.pack("<hh", 9860, 9500))
    assert sample.core_c == pytest.approx(37.0)
    assert sample.skin_c == pytest.approx(35.0)


def test_negative_core_temperature() -> None:
    sample = decode_sample(bytes([0x00]) + struct.pack("<h", -250))
    assert sample.core_c == pytest.approx(-2.5)


def test_minimum_length_enforced() -> None:
    with pytest.raises(TruncatedPayload):
        decode_sample(b"\x00\x10")
    with pytest.raises(TruncatedPayload):
        decode_sample(b"")


def test_arrival_time_defaults_to_wall_clock_ms() -> None:
    sample = decode_sample(bytes([0x00, 0x10, 0x0E]))
    assert isinstance(sample.received_at, int)
    assert sample.received_at > 1_600_000_000_000
