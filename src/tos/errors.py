"""Exception hierarchy surfaced by the TOS client core.

Every failure a caller can observe is one of a handful of kinds: problems
detected before anything touched the network (``input``), local file or
socket trouble (``io``), serialization on either side (``serialize``),
structured server rejections, status codes that did not match the operation's
expectations, and integrity mismatches.  Transport exceptions from ``httpx``
never escape; they are wrapped in :class:`TosClientError` with the request
URL attached and ``timeout`` set when the cause was a deadline.
"""

from __future__ import annotations

from typing import Mapping, Optional, Sequence

__all__ = [
    "TosError",
    "TosClientError",
    "TosServerError",
    "UnexpectedStatusCodeError",
    "ChecksumError",
    "SerializeError",
    "PartialMultipartError",
    "CancelledError",
    "ClientErrorKind",
]


class ClientErrorKind:
    """String tags for :attr:`TosClientError.kind`."""

    INPUT = "input"
    IO = "io"
    SERIALIZE = "serialize"
    NETWORK = "network"


class TosError(RuntimeError):
    """Base exception for every TOS client failure."""

    def __init__(
        self,
        message: str,
        *,
        request_id: str = "",
        request_url: str = "",
        ec: str = "",
    ) -> None:
        super().__init__(message)
        self.message = message
        self.request_id = request_id
        self.request_url = request_url
        self.ec = ec


class TosClientError(TosError):
    """Raised for pre-flight validation, local I/O and transport failures."""

    def __init__(
        self,
        message: str,
        cause: Optional[BaseException] = None,
        *,
        kind: str = ClientErrorKind.INPUT,
        timeout: bool = False,
        request_url: str = "",
    ) -> None:
        super().__init__(message, request_url=request_url)
        self.cause = cause
        self.kind = kind
        self.timeout = timeout

    def __str__(self) -> str:
        if self.cause is not None:
            return f"{self.message}, caused by {self.cause!r}"
        return self.message


class TosServerError(TosError):
    """Raised when the server answered with a structured error body."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int,
        code: str = "",
        request_id: str = "",
        host_id: str = "",
        resource: str = "",
        ec: str = "",
        request_url: str = "",
        headers: Optional[Mapping[str, str]] = None,
        retry_after: Optional[int] = None,
    ) -> None:
        super().__init__(message, request_id=request_id, request_url=request_url, ec=ec)
        self.status_code = status_code
        self.code = code
        self.host_id = host_id
        self.resource = resource
        self.headers = dict(headers or {})
        self.retry_after = retry_after

    def __str__(self) -> str:
        return (
            f"tos: request error: StatusCode={self.status_code}, Code={self.code}, "
            f"Message={self.message}, RequestId={self.request_id}, HostId={self.host_id}"
        )


class SerializeError(TosServerError):
    """Raised when a successful response body cannot be decoded."""


class UnexpectedStatusCodeError(TosError):
    """Raised when the status code matched none of the expected codes."""

    def __init__(
        self,
        status_code: int,
        expected_codes: Sequence[int],
        *,
        request_id: str = "",
        request_url: str = "",
        retry_after: Optional[int] = None,
    ) -> None:
        expected = ",".join(str(code) for code in expected_codes)
        super().__init__(
            f"tos: unexpected status code error: StatusCode={status_code}, "
            f"ExpectedCodes={expected}, RequestId={request_id}",
            request_id=request_id,
            request_url=request_url,
        )
        self.status_code = status_code
        self.expected_codes = tuple(expected_codes)
        self.retry_after = retry_after


class ChecksumError(TosError):
    """Raised when a locally computed digest differs from the server's."""

    def __init__(
        self,
        message: str,
        *,
        expected: object = None,
        actual: object = None,
        request_id: str = "",
        request_url: str = "",
    ) -> None:
        super().__init__(message, request_id=request_id, request_url=request_url)
        self.expected = expected
        self.actual = actual

    def __str__(self) -> str:
        return (
            f"{self.message}: expected={self.expected}, actual={self.actual}, "
            f"RequestId={self.request_id}"
        )


class PartialMultipartError(TosClientError):
    """Raised when some part tasks of a multipart transfer did not succeed."""

    def __init__(self, message: str, errors: Sequence[BaseException] = ()) -> None:
        first = errors[0] if errors else None
        super().__init__(message, first, kind=ClientErrorKind.IO)
        self.errors = tuple(errors)


class CancelledError(TosClientError):
    """Raised when a transfer stops because its cancel hook fired."""

    def __init__(self, message: str = "tos: task cancelled", *, aborted: bool = False) -> None:
        super().__init__(message)
        self.aborted = aborted


# === NAVMAP v1 ===
# {
#   "module": "tos.errors",
#   "purpose": "Define the exception hierarchy surfaced by the TOS client core",
#   "sections": [
#     {"id": "base", "name": "TosError", "anchor": "BAS", "kind": "api"},
#     {"id": "client", "name": "Client-side Errors", "anchor": "CLI", "kind": "api"},
#     {"id": "server", "name": "Server & Status Errors", "anchor": "SRV", "kind": "api"},
#     {"id": "integrity", "name": "Checksum Errors", "anchor": "INT", "kind": "api"},
#     {"id": "transfer", "name": "Multipart Transfer Errors", "anchor": "XFR", "kind": "api"}
#   ]
# }
# === /NAVMAP ===
