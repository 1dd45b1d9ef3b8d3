"""Pre-flight validation of names, sizes and enumerated header values.

Every check raises :class:`~tos.errors.TosClientError` before any network
traffic happens, so callers can rely on bad input never reaching the server.
"""

from __future__ import annotations

import unicodedata
from typing import Optional

from .consts import (
    DEFAULT_PART_SIZE,
    MAX_PART_COUNT,
    MAX_PART_SIZE,
    MAX_PRESIGNED_EXPIRES,
    MIN_PART_SIZE,
)
from .errors import TosClientError

__all__ = [
    "validate_bucket_name",
    "validate_object_key",
    "validate_names",
    "validate_part_size",
    "validate_part_count",
    "validate_expires",
    "validate_acl",
    "validate_storage_class",
    "validate_ssec_algorithm",
]

MAX_KEY_BYTES = 696

ACL_VALUES = frozenset(
    {
        "private",
        "public-read",
        "public-read-write",
        "authenticated-read",
        "bucket-owner-read",
        "bucket-owner-full-control",
        "bucket-owner-entrusted",
        "default",
    }
)

STORAGE_CLASS_VALUES = frozenset(
    {"STANDARD", "IA", "ARCHIVE_FR", "INTELLIGENT_TIERING", "COLD_ARCHIVE", "ARCHIVE", "DEEP_COLD_ARCHIVE"}
)

SSEC_ALGORITHMS = frozenset({"AES256"})


def validate_bucket_name(bucket: str, *, is_custom_domain: bool = False) -> None:
    """Reject bucket names outside ``[a-z0-9-]{3,63}`` or with edge hyphens."""
    if is_custom_domain:
        return
    if not bucket or not 3 <= len(bucket) <= 63:
        raise TosClientError("tos: bucket name length must between [3, 63]")
    for char in bucket:
        if not ("a" <= char <= "z" or "0" <= char <= "9" or char == "-"):
            raise TosClientError(
                "tos: bucket name can consist only of lowercase letters, numbers, and '-'"
            )
    if bucket[0] == "-" or bucket[-1] == "-":
        raise TosClientError("tos: bucket name must begin and end with a letter or number")


def _is_invisible(char: str) -> bool:
    if char == " ":
        return False
    return unicodedata.category(char) in {"Cc", "Cf"}


def validate_object_key(key: str) -> None:
    """Reject empty, oversized, rooted or non-UTF-8 keys and invisible controls."""
    if not key:
        raise TosClientError("tos: object name is empty")
    try:
        encoded = key.encode("utf-8")
    except UnicodeEncodeError as exc:
        raise TosClientError("tos: object name is not valid utf-8", exc) from exc
    if len(encoded) > MAX_KEY_BYTES:
        raise TosClientError(f"tos: object name length must be in [1, {MAX_KEY_BYTES}]")
    if key[0] in ("/", "\\"):
        raise TosClientError("tos: object name can not start with '/' or '\\'")
    if any(_is_invisible(char) for char in key):
        raise TosClientError("tos: object name contains invisible characters")


def validate_names(bucket: str, key: str, *, is_custom_domain: bool = False) -> None:
    validate_bucket_name(bucket, is_custom_domain=is_custom_domain)
    validate_object_key(key)


def validate_part_size(part_size: int) -> int:
    """Return the effective part size, defaulting ``0`` to 20 MiB."""
    if part_size == 0:
        return DEFAULT_PART_SIZE
    if part_size < MIN_PART_SIZE or part_size > MAX_PART_SIZE:
        raise TosClientError(
            f"tos: part size must be in [{MIN_PART_SIZE}, {MAX_PART_SIZE}], got {part_size}"
        )
    return part_size


def validate_part_count(count: int) -> None:
    if count > MAX_PART_COUNT:
        raise TosClientError(f"tos: the number of parts must not exceed {MAX_PART_COUNT}, got {count}")


def validate_expires(expires: int) -> None:
    if not 1 <= expires <= MAX_PRESIGNED_EXPIRES:
        raise TosClientError(f"tos: invalid pre-signed expires, must be in [1, {MAX_PRESIGNED_EXPIRES}]")


def validate_acl(acl: Optional[str]) -> None:
    if acl and acl not in ACL_VALUES:
        raise TosClientError(f"tos: invalid acl type {acl!r}")


def validate_storage_class(storage_class: Optional[str]) -> None:
    if storage_class and storage_class not in STORAGE_CLASS_VALUES:
        raise TosClientError(f"tos: invalid storage class {storage_class!r}")


def validate_ssec_algorithm(algorithm: Optional[str]) -> None:
    if algorithm and algorithm not in SSEC_ALGORITHMS:
        raise TosClientError(f"tos: invalid ssec algorithm {algorithm!r}")
