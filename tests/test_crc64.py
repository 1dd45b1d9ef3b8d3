from __future__ import annotations

import base64

import pytest
from hypothesis import given
from hypothesis import strategies as st

from tos.crc64 import CRC64, combine, combine_parts, crc64, to_trailer_value


def test_crc64_check_value() -> None:
    """CRC-64/XZ check value of the standard ``123456789`` input."""

    assert crc64(b"123456789") == 0x995DC9BBDF1939FA


def test_crc64_of_empty_input_is_zero() -> None:
    assert crc64(b"") == 0
    assert combine_parts([]) == 0


def test_incremental_register_matches_one_shot() -> None:
    register = CRC64()
    for piece in (b"hello", b" ", b"world"):
        register.update(piece)

    assert register.crc == crc64(b"hello world")
    clone = register.copy()
    register.reset()
    assert register.crc == 0
    assert clone.crc == crc64(b"hello world")


def test_register_continues_from_initial_crc() -> None:
    register = CRC64(crc64(b"head-"))
    register.update(b"tail")

    assert register.crc == crc64(b"head-tail")
    register.reset()
    assert register.crc == crc64(b"head-")


@given(st.binary(max_size=512), st.binary(max_size=512))
def test_combine_matches_concatenation(left: bytes, right: bytes) -> None:
    assert combine(crc64(left), crc64(right), len(right)) == crc64(left + right)


def test_combine_parts_folds_in_order() -> None:
    chunks = [b"a" * 7, b"b" * 1024, b"", b"c" * 3]
    expected = crc64(b"".join(chunks))

    assert combine_parts((crc64(chunk), len(chunk)) for chunk in chunks) == expected


@pytest.mark.parametrize("value", [0, 1, 0x995DC9BBDF1939FA, (1 << 64) - 1])
def test_trailer_value_is_base64_of_big_endian_bytes(value: int) -> None:
    encoded = to_trailer_value(value)

    assert len(encoded) == 12
    assert int.from_bytes(base64.b64decode(encoded), "big") == value
