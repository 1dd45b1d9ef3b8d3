from __future__ import annotations

import pytest
from hypothesis import given
from hypothesis import strategies as st

from tos.consts import DEFAULT_PART_SIZE, MAX_PART_SIZE, MIN_PART_SIZE
from tos.errors import TosClientError
from tos.validation import (
    validate_acl,
    validate_bucket_name,
    validate_expires,
    validate_names,
    validate_object_key,
    validate_part_count,
    validate_part_size,
    validate_ssec_algorithm,
    validate_storage_class,
)


@pytest.mark.parametrize("bucket", ["abc", "my-bucket-01", "a" * 63, "0-0"])
def test_valid_bucket_names(bucket: str) -> None:
    validate_bucket_name(bucket)


@pytest.mark.parametrize("bucket", ["", "ab", "a" * 64, "Upper", "under_score", "-edge", "edge-", "dot.ted"])
def test_invalid_bucket_names(bucket: str) -> None:
    with pytest.raises(TosClientError):
        validate_bucket_name(bucket)


def test_custom_domain_skips_bucket_check() -> None:
    validate_bucket_name("", is_custom_domain=True)
    validate_names("Not_A_Bucket", "key", is_custom_domain=True)


@pytest.mark.parametrize("key", ["a", "dir/sub/file.txt", "中文/名字.txt", "with space", "x" * 696])
def test_valid_object_keys(key: str) -> None:
    validate_object_key(key)


@pytest.mark.parametrize("key", ["", "/rooted", "\\rooted", "x" * 697, "bell\x07", "zero\u200bwidth", "中" * 233])
def test_invalid_object_keys(key: str) -> None:
    with pytest.raises(TosClientError):
        validate_object_key(key)


def test_key_length_counts_utf8_bytes() -> None:
    validate_object_key("中" * 232)


@given(st.text(alphabet=st.characters(categories=("Cc", "Cf")), min_size=1))
def test_keys_with_invisible_characters_are_rejected(text: str) -> None:
    with pytest.raises(TosClientError):
        validate_object_key("k" + text)


@pytest.mark.parametrize(
    "part_size,expected",
    [(0, DEFAULT_PART_SIZE), (MIN_PART_SIZE, MIN_PART_SIZE), (MAX_PART_SIZE, MAX_PART_SIZE)],
)
def test_part_size(part_size: int, expected: int) -> None:
    assert validate_part_size(part_size) == expected


@pytest.mark.parametrize("part_size", [1, MIN_PART_SIZE - 1, MAX_PART_SIZE + 1, -5])
def test_part_size_out_of_range(part_size: int) -> None:
    with pytest.raises(TosClientError):
        validate_part_size(part_size)


def test_part_count_limit() -> None:
    validate_part_count(10000)
    with pytest.raises(TosClientError):
        validate_part_count(10001)


@pytest.mark.parametrize("expires,ok", [(1, True), (604800, True), (0, False), (604801, False), (-1, False)])
def test_expires_range(expires: int, ok: bool) -> None:
    if ok:
        validate_expires(expires)
    else:
        with pytest.raises(TosClientError):
            validate_expires(expires)


def test_enumerated_values() -> None:
    validate_acl("")
    validate_acl("public-read")
    validate_storage_class("IA")
    validate_ssec_algorithm("AES256")

    with pytest.raises(TosClientError):
        validate_acl("world-writable")
    with pytest.raises(TosClientError):
        validate_storage_class("GLACIER")
    with pytest.raises(TosClientError):
        validate_ssec_algorithm("AES128")
