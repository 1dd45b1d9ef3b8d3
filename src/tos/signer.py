"""TOS Signature V4 (``TOS4-HMAC-SHA256``) request signing.

The canonical request mirrors AWS Signature V4 with service name ``tos``:

    METHOD \\n URI-encoded path \\n canonical query \\n
    canonical headers \\n signed header names \\n payload hash

Header signing covers ``host``, ``date``, ``x-tos-date``, every ``x-tos-*``
header and ``content-type``; query (pre-signed URL) signing covers ``host``
and ``x-tos-*`` headers with an ``UNSIGNED-PAYLOAD`` hash.  When the body is
sent tos-chunked with a trailer, the payload hash is the fixed literal carried
in ``X-Tos-Content-Sha256`` so the signature never depends on trailer values.

Example:
    >>> from datetime import datetime, timezone
    >>> from tos.credentials import StaticCredentials
    >>> signer = SignV4(StaticCredentials("ak", "sk"), "cn-beijing")
    >>> signer.region
    'cn-beijing'
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from .consts import (
    EMPTY_SHA256,
    HEADER_AUTHORIZATION,
    HEADER_CONTENT_SHA256,
    HEADER_DATE,
    HEADER_SECURITY_TOKEN,
    HEADER_TOS_DATE,
    ISO8601_FORMAT,
    SERVER_TIME_FORMAT,
    SIGN_PREFIX,
    UNSIGNED_PAYLOAD,
    YYMMDD_FORMAT,
)
from .credentials import Credential, Credentials

__all__ = [
    "Signer",
    "SignV4",
    "uri_encode",
    "signing_key",
    "hmac_sha256",
    "QUERY_ALGORITHM",
    "QUERY_CREDENTIAL",
    "QUERY_DATE",
    "QUERY_EXPIRES",
    "QUERY_SIGNED_HEADERS",
    "QUERY_SIGNATURE",
]

logger = logging.getLogger(__name__)

QUERY_ALGORITHM = "X-Tos-Algorithm"
QUERY_CREDENTIAL = "X-Tos-Credential"
QUERY_DATE = "X-Tos-Date"
QUERY_EXPIRES = "X-Tos-Expires"
QUERY_SIGNED_HEADERS = "X-Tos-SignedHeaders"
QUERY_SIGNATURE = "X-Tos-Signature"
QUERY_SECURITY_TOKEN = "X-Tos-Security-Token"

_UNRESERVED = frozenset(b"ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_.~")
# headers the signer appends itself on every signature
_SIGNER_OWNED = frozenset({"host", "date", "x-tos-date", "x-tos-security-token", "authorization"})


def uri_encode(value: str, encode_slash: bool) -> str:
    """Percent-encode ``value`` with uppercase hex, keeping unreserved bytes.

    ``/`` survives only when ``encode_slash`` is false; space becomes ``%20``.
    """
    out: List[str] = []
    for byte in value.encode("utf-8"):
        if byte in _UNRESERVED or (byte == 0x2F and not encode_slash):
            out.append(chr(byte))
        else:
            out.append("%%%02X" % byte)
    return "".join(out)


def hmac_sha256(key: bytes, message: str) -> bytes:
    return hmac.new(key, message.encode("utf-8"), hashlib.sha256).digest()


def signing_key(secret: str, date: str, region: str) -> bytes:
    """Derive ``kSigning`` through the date/region/service/request HMAC chain."""
    k_date = hmac_sha256(secret.encode("utf-8"), date)
    k_region = hmac_sha256(k_date, region)
    k_service = hmac_sha256(k_region, "tos")
    return hmac_sha256(k_service, "request")


def _normalize_value(value: str) -> str:
    return " ".join(value.split())


def _signing_header(key: str, is_query: bool) -> bool:
    return (key == "content-type" and not is_query) or key.startswith("x-tos")


class Signer:
    """Capability shared by request signers."""

    def sign_header(self, request) -> Dict[str, str]:  # pragma: no cover - interface
        raise NotImplementedError

    def sign_query(self, request, ttl: int) -> Dict[str, str]:  # pragma: no cover - interface
        raise NotImplementedError


class SignV4(Signer):
    """Stateless V4 signer; the region may be swapped while requests are in flight."""

    def __init__(
        self,
        credentials: Credentials,
        region: str,
        *,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        key_deriver: Callable[[str, str, str], bytes] = signing_key,
    ) -> None:
        self.credentials = credentials
        self._region = region
        self._region_lock = threading.Lock()
        self._now = now
        self._key_deriver = key_deriver

    @property
    def region(self) -> str:
        with self._region_lock:
            return self._region

    def set_region(self, region: str) -> None:
        with self._region_lock:
            self._region = region

    # ------------------------------------------------------------------
    # canonicalization

    @staticmethod
    def _signed_headers(headers, is_query: bool) -> List[Tuple[str, List[str]]]:
        grouped: Dict[str, List[str]] = {}
        if headers is None:
            return []
        for key, value in headers.multi_items():
            lower = key.lower()
            if lower in _SIGNER_OWNED or not _signing_header(lower, is_query):
                continue
            grouped.setdefault(lower, []).append(_normalize_value(value))
        return list(grouped.items())

    @staticmethod
    def _canonical_query(query: Mapping[str, str], extra: Optional[Mapping[str, str]] = None) -> str:
        pairs: List[Tuple[str, str]] = []
        for source in (query, extra or {}):
            for key, value in source.items():
                if key.lower() == QUERY_SIGNATURE.lower():
                    continue
                pairs.append((uri_encode(key, True), uri_encode(value or "", True)))
        pairs.sort()
        return "&".join(f"{key}={value}" for key, value in pairs)

    @staticmethod
    def canonical_request(
        method: str,
        path: str,
        canonical_query: str,
        headers: List[Tuple[str, List[str]]],
        payload_hash: str,
    ) -> str:
        ordered = sorted(headers, key=lambda item: item[0])
        canonical_headers = "".join(f"{key}:{','.join(values)}\n" for key, values in ordered)
        signed_names = ";".join(key for key, _ in ordered)
        return "\n".join(
            [
                method.upper(),
                uri_encode(path or "/", False),
                canonical_query,
                canonical_headers,
                signed_names,
                payload_hash,
            ]
        )

    def _signature(self, canonical: str, when: datetime, cred: Credential, region: str) -> str:
        scope = f"{when.strftime(YYMMDD_FORMAT)}/{region}/tos/request"
        string_to_sign = "\n".join(
            [
                SIGN_PREFIX,
                when.strftime(ISO8601_FORMAT),
                scope,
                hashlib.sha256(canonical.encode("utf-8")).hexdigest(),
            ]
        )
        key = self._key_deriver(cred.secret_access_key, when.strftime(YYMMDD_FORMAT), region)
        return hmac.new(key, string_to_sign.encode("utf-8"), hashlib.sha256).hexdigest()

    def _signing_time(self, request) -> datetime:
        override = getattr(request, "request_date", None)
        when = override or self._now()
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        return when.astimezone(timezone.utc)

    @staticmethod
    def _signing_host(request) -> str:
        return getattr(request, "request_host", None) or request.host

    # ------------------------------------------------------------------
    # public API

    def sign_header(self, request) -> Dict[str, str]:
        """Return the headers that authenticate ``request``."""
        when = self._signing_time(request)
        date = when.strftime(ISO8601_FORMAT)
        region = self.region
        cred = self.credentials.credential()

        signed: Dict[str, str] = {}
        headers = self._signed_headers(request.header, False)
        headers.append(("x-tos-date", [date]))
        headers.append(("date", [date]))
        headers.append(("host", [self._signing_host(request)]))
        if cred.security_token:
            headers.append(("x-tos-security-token", [cred.security_token]))
            signed[HEADER_SECURITY_TOKEN] = cred.security_token

        payload_hash = EMPTY_SHA256
        if request.header is not None:
            payload_hash = request.header.get(HEADER_CONTENT_SHA256) or EMPTY_SHA256

        canonical = self.canonical_request(
            request.method,
            request.path,
            self._canonical_query(request.query),
            headers,
            payload_hash,
        )
        signature = self._signature(canonical, when, cred, region)
        scope = f"{when.strftime(YYMMDD_FORMAT)}/{region}/tos/request"
        signed_names = ";".join(sorted(key for key, _ in headers))
        signed[HEADER_AUTHORIZATION] = (
            f"{SIGN_PREFIX} Credential={cred.access_key_id}/{scope},"
            f"SignedHeaders={signed_names},Signature={signature}"
        )
        signed[HEADER_TOS_DATE] = date
        signed[HEADER_DATE] = date
        logger.debug("request signed", extra={"method": request.method, "signed_headers": signed_names})
        return signed

    def sign_query(self, request, ttl: int) -> Dict[str, str]:
        """Return the query parameters of a pre-signed URL valid for ``ttl`` seconds."""
        when = self._signing_time(request)
        date = when.strftime(ISO8601_FORMAT)
        region = self.region
        cred = self.credentials.credential()
        scope = f"{when.strftime(YYMMDD_FORMAT)}/{region}/tos/request"

        query: Dict[str, str] = {
            QUERY_ALGORITHM: SIGN_PREFIX,
            QUERY_CREDENTIAL: f"{cred.access_key_id}/{scope}",
            QUERY_DATE: date,
            QUERY_EXPIRES: str(int(ttl)),
        }
        if cred.security_token:
            query[QUERY_SECURITY_TOKEN] = cred.security_token

        headers = self._signed_headers(request.header, True)
        headers.append(("host", [self._signing_host(request)]))
        query[QUERY_SIGNED_HEADERS] = ";".join(sorted(key for key, _ in headers))

        canonical = self.canonical_request(
            request.method,
            request.path,
            self._canonical_query(request.query, query),
            headers,
            UNSIGNED_PAYLOAD,
        )
        query[QUERY_SIGNATURE] = self._signature(canonical, when, cred, region)
        return query

    def sign_post_policy(
        self,
        *,
        bucket: str = "",
        key: str = "",
        expires: int,
        conditions: Sequence[Tuple[str, str, Optional[str]]] = (),
        content_length_range: Optional[Tuple[int, int]] = None,
    ) -> Dict[str, str]:
        """Build and sign a browser POST policy.

        ``conditions`` holds ``(key, value, operator)`` triples; an operator
        turns the condition into ``[operator, "$key", value]``.
        """
        when = self._now().astimezone(timezone.utc)
        region = self.region
        cred = self.credentials.credential()
        date = when.strftime(ISO8601_FORMAT)
        credential = f"{cred.access_key_id}/{when.strftime(YYMMDD_FORMAT)}/{region}/tos/request"

        policy_conditions: List[Any] = [
            {"x-tos-algorithm": SIGN_PREFIX},
            {"x-tos-credential": credential},
            {"x-tos-date": date},
        ]
        if cred.security_token:
            policy_conditions.append({"x-tos-security-token": cred.security_token})
        if bucket:
            policy_conditions.append({"bucket": bucket})
        if key:
            policy_conditions.append({"key": key})
        for name, value, operator in conditions:
            if operator:
                policy_conditions.append([operator, f"${name}", value])
            else:
                policy_conditions.append({name: value})
        if content_length_range is not None:
            policy_conditions.append(["content-length-range", *content_length_range])

        origin_policy = json.dumps(
            {
                "conditions": policy_conditions,
                "expiration": (when + timedelta(seconds=expires)).strftime(SERVER_TIME_FORMAT),
            },
            separators=(",", ":"),
        )
        policy = base64.b64encode(origin_policy.encode("utf-8")).decode("ascii")
        key_bytes = self._key_deriver(cred.secret_access_key, when.strftime(YYMMDD_FORMAT), region)
        return {
            "origin_policy": origin_policy,
            "policy": policy,
            "algorithm": SIGN_PREFIX,
            "credential": credential,
            "date": date,
            "signature": hmac.new(key_bytes, policy.encode("utf-8"), hashlib.sha256).hexdigest(),
        }
