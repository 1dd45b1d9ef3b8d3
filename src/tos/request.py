"""Request construction, signing and the per-request retry loop.

:class:`RequestBuilder` is a fluent accumulator of query parameters, headers
and options.  ``build`` turns it into a signed :class:`Request`; ``request``
additionally submits it through a round-tripper and replays it under the
builder's retry classifier:

    >>> builder = RequestBuilder(signer=None, scheme="https", host="tos-cn-beijing.volces.com",
    ...                          bucket="bkt", key="a.txt")
    >>> builder.with_query("versionId", "v1").build("GET").url()
    'https://bkt.tos-cn-beijing.volces.com/a.txt?versionId=v1'

Every replay restores the original body, refreshes the signing date, frames
the body again when trailer mode is on and signs again.
"""

from __future__ import annotations

import enum
import io
import ipaddress
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Optional
from urllib.parse import quote, quote_plus

import httpx

from .body import CRC64Trailer, CRCReader, ChunkEncodingReader, _tell, try_resolve_length
from .consts import (
    HEADER_ACCOUNT_ID,
    HEADER_CONTENT_ENCODING,
    HEADER_COPY_SOURCE,
    HEADER_EC,
    HEADER_ID2,
    HEADER_REQUEST_ID,
    HEADER_SDK_RETRY_COUNT,
    HEADER_TOS_DATE,
    TRAILER_CRC64,
)
from .errors import ClientErrorKind, TosClientError
from .models import Params, RequestInfo
from .retry import Classifier, Retryer, StatusCodeClassifier, retry_count_header
from .signer import Signer, uri_encode

__all__ = [
    "URLMode",
    "Request",
    "Response",
    "RequestBuilder",
    "host_path",
    "copy_source",
    "on_retry_from_start",
    "is_ip_host",
    "RoundTripper",
]

logger = logging.getLogger(__name__)

RoundTripper = Callable[["Request"], "Response"]


class URLMode(enum.Enum):
    DEFAULT = "virtual_host"
    PATH = "path"


def is_ip_host(host: str) -> bool:
    """Return ``True`` when ``host`` (optionally with a port) is an IP literal."""
    candidate = host
    if candidate.startswith("["):
        candidate = candidate[1:].split("]", 1)[0]
    elif candidate.count(":") == 1:
        candidate = candidate.split(":", 1)[0]
    try:
        ipaddress.ip_address(candidate)
    except ValueError:
        return False
    return True


def host_path(host: str, bucket: str, key: str, url_mode: URLMode, is_custom_domain: bool):
    """Return the ``(host, path)`` pair addressing ``bucket``/``key``."""
    if is_custom_domain:
        return host, f"/{key}" if key else "/"
    if url_mode is URLMode.PATH:
        if key:
            return host, f"/{bucket}/{key}"
        return host, f"/{bucket}" if bucket else "/"
    if not bucket:
        return host, "/"
    return f"{bucket}.{host}", f"/{key}"


def copy_source(bucket: str, key: str, version_id: str = "") -> str:
    source = f"/{bucket}/{quote_plus(key, safe='')}"
    if version_id:
        source += f"?versionId={version_id}"
    return source


@dataclass
class Request:
    scheme: str
    method: str
    host: str
    path: str
    query: Dict[str, str] = field(default_factory=dict)
    header: httpx.Headers = field(default_factory=httpx.Headers)
    content: Any = None
    content_length: Optional[int] = None
    raw_content: Any = None
    raw_content_length: Optional[int] = None
    raw_offset: Optional[int] = None
    request_date: Optional[datetime] = None
    request_host: str = ""
    enable_trailer: bool = False
    base_content_encoding: str = ""

    def url(self) -> str:
        url = f"{self.scheme}://{self.host}{uri_encode(self.path, False)}"
        if self.query:
            pairs = sorted(self.query.items())
            url += "?" + "&".join(f"{quote(k, safe='')}={quote(v, safe='')}" for k, v in pairs)
        return url


class Response:
    """Status, headers and a file-like body of one HTTP exchange."""

    def __init__(
        self,
        status_code: int,
        headers: httpx.Headers,
        body: Any = None,
        *,
        content_length: int = -1,
        request_url: str = "",
    ) -> None:
        self.status_code = status_code
        self.headers = headers
        self.body = body
        self.content_length = content_length
        self.request_url = request_url

    def request_info(self) -> RequestInfo:
        return RequestInfo(
            request_id=self.headers.get(HEADER_REQUEST_ID, ""),
            id2=self.headers.get(HEADER_ID2, ""),
            status_code=self.status_code,
            ec=self.headers.get(HEADER_EC, ""),
            headers=dict(self.headers),
        )

    @property
    def request_id(self) -> str:
        return self.headers.get(HEADER_REQUEST_ID, "")

    def read(self, size: int = -1) -> bytes:
        if self.body is None:
            return b""
        return self.body.read(size)

    def read_all(self, limit: int = -1) -> bytes:
        """Read the body to its end, or at most ``limit`` bytes."""
        if self.body is None:
            return b""
        if limit >= 0:
            chunks = []
            left = limit
            while left > 0:
                data = self.body.read(left)
                if not data:
                    break
                chunks.append(data)
                left -= len(data)
            return b"".join(chunks)
        return b"".join(iter(lambda: self.body.read(65536), b""))

    def close(self) -> None:
        if self.body is not None:
            close = getattr(self.body, "close", None)
            if callable(close):
                close()


def on_retry_from_start(req: Request) -> None:
    """Rewind the request body to where it stood before the first attempt."""
    content = req.raw_content
    if content is None or isinstance(content, (bytes, bytearray, str)):
        return
    reset = getattr(content, "reset", None)
    if callable(reset):
        reset()
        return
    if req.raw_offset is not None:
        content.seek(req.raw_offset)
        return
    raise TosClientError(
        "tos: request body is not seekable and can not be replayed", kind=ClientErrorKind.IO
    )


def _no_op_on_retry(req: Request) -> None:
    return None


class RequestBuilder:
    """Fluent builder of one signed request."""

    def __init__(
        self,
        *,
        signer: Optional[Signer],
        scheme: str,
        host: str,
        bucket: str = "",
        key: str = "",
        url_mode: URLMode = URLMode.DEFAULT,
        is_custom_domain: bool = False,
        retryer: Optional[Retryer] = None,
        encode_meta: bool = True,
        account_id: str = "",
        user_agent: str = "",
    ) -> None:
        self.signer = signer
        self.scheme = scheme
        self.host = host
        self.bucket = bucket
        self.key = key
        self.url_mode = url_mode
        self.is_custom_domain = is_custom_domain
        self.retryer = retryer
        self.encode_meta = encode_meta
        self.account_id = account_id
        self.query: Dict[str, str] = {}
        self.header = httpx.Headers()
        if user_agent:
            self.header["User-Agent"] = user_agent
        self.content_length: Optional[int] = None
        self.request_date: Optional[datetime] = None
        self.request_host = ""
        self.copy_source: Optional[tuple] = None
        self.enable_trailer = False
        self.on_retry: Callable[[Request], None] = _no_op_on_retry
        self.classifier: Classifier = StatusCodeClassifier()
        self.cancelled: Optional[Callable[[], bool]] = None

    # ------------------------------------------------------------------
    # fluent options

    def with_query(self, key: str, value: Optional[str]) -> "RequestBuilder":
        self.query[key] = "" if value is None else str(value)
        return self

    def with_header(self, key: str, value: Optional[str]) -> "RequestBuilder":
        if value:
            self.header[key] = str(value)
        return self

    def with_params(self, params: Params) -> "RequestBuilder":
        for key, value in params.header_params(encode_meta=self.encode_meta).items():
            self.with_header(key, value)
        for key, value in params.query_params().items():
            self.query[key] = value
        return self

    def with_generic(
        self, request_date: Optional[datetime] = None, request_host: str = ""
    ) -> "RequestBuilder":
        if request_date is not None:
            self.request_date = request_date
        if request_host:
            self.request_host = request_host
        return self

    def with_copy_source(self, src_bucket: str, src_key: str) -> "RequestBuilder":
        self.copy_source = (src_bucket, src_key)
        return self

    def with_retry(
        self,
        on_retry: Optional[Callable[[Request], None]] = None,
        classifier: Optional[Classifier] = None,
    ) -> "RequestBuilder":
        self.on_retry = on_retry or _no_op_on_retry
        self.classifier = classifier or StatusCodeClassifier()
        return self

    def with_cancel(self, cancelled: Optional[Callable[[], bool]]) -> "RequestBuilder":
        self.cancelled = cancelled
        return self

    def with_content_length(self, length: Optional[int]) -> "RequestBuilder":
        self.content_length = length
        return self

    def with_enable_trailer(self, enable: bool) -> "RequestBuilder":
        self.enable_trailer = enable
        return self

    # ------------------------------------------------------------------
    # building

    def _build(self, method: str, content: Any = None) -> Request:
        host, path = host_path(self.host, self.bucket, self.key, self.url_mode, self.is_custom_domain)
        req = Request(
            scheme=self.scheme,
            method=method,
            host=host,
            path=path,
            query=dict(self.query),
            header=httpx.Headers(self.header),
            content=content,
            raw_content=content,
            raw_offset=_tell(content) if content is not None else None,
            request_date=self.request_date,
            request_host=self.request_host,
        )
        if content is not None:
            if self.content_length is not None:
                req.content_length = self.content_length
            else:
                length = try_resolve_length(content)
                req.content_length = length if length >= 0 else None
        req.raw_content_length = req.content_length
        return req

    def _build_trailers(self, req: Request) -> None:
        if req.content is None:
            return
        content = req.content
        if isinstance(content, (bytes, bytearray)):
            content = io.BytesIO(bytes(content))
        crc_reader = CRCReader(content)
        length = req.content_length if req.content_length is not None else -1
        chunked = ChunkEncodingReader(crc_reader, length, {TRAILER_CRC64: CRC64Trailer(crc_reader)})
        req.content = chunked
        req.content_length = chunked.length if chunked.length >= 0 else None
        for key, value in chunked.headers(req.base_content_encoding).items():
            req.header[key] = value

    def _sign(self, req: Request) -> None:
        if self.signer is None:
            return
        for key, value in self.signer.sign_header(req).items():
            req.header[key] = value

    def _apply_copy_source(self, req: Request) -> None:
        if self.copy_source is None:
            return
        version_id = req.query.pop("versionId", "")
        src_bucket, src_key = self.copy_source
        req.header[HEADER_COPY_SOURCE] = copy_source(src_bucket, src_key, version_id)

    def build(self, method: str, content: Any = None) -> Request:
        req = self._build(method, content)
        if self.enable_trailer and content is not None:
            req.enable_trailer = True
            req.base_content_encoding = req.header.get(HEADER_CONTENT_ENCODING, "")
            self._build_trailers(req)
        self._apply_copy_source(req)
        self._sign(req)
        return req

    def build_control(self, method: str, content: Any = None, path: str = "/") -> Request:
        if not self.account_id:
            raise TosClientError("tos: control endpoint account id is empty")
        if not self.host:
            raise TosClientError("tos: control endpoint host is empty")
        req = self._build(method, content)
        req.path = path
        req.host = self.host
        req.header[HEADER_ACCOUNT_ID] = self.account_id
        self._apply_copy_source(req)
        self._sign(req)
        return req

    def _prepare_retry(self, req: Request, retry_count: int) -> None:
        max_count = self.retryer.max_retry_count if self.retryer else 0
        req.header[HEADER_SDK_RETRY_COUNT] = retry_count_header(retry_count, max_count)
        req.content = req.raw_content
        req.content_length = req.raw_content_length
        if HEADER_TOS_DATE in req.header:
            del req.header[HEADER_TOS_DATE]
        self.on_retry(req)
        if req.enable_trailer:
            self._build_trailers(req)
        self._sign(req)

    def _run(self, req: Request, round_trip: RoundTripper) -> Response:
        if self.retryer is None:
            return round_trip(req)

        def work(retry_count: int) -> Response:
            if retry_count > 0:
                self._prepare_retry(req, retry_count)
            return round_trip(req)

        return self.retryer.run(work, self.classifier, cancelled=self.cancelled)

    def request(self, method: str, content: Any = None, round_trip: Optional[RoundTripper] = None) -> Response:
        req = self.build(method, content)
        logger.debug(
            "submitting request",
            extra={"method": method, "host": req.host, "path": req.path},
        )
        return self._run(req, round_trip)

    def request_control(
        self, method: str, content: Any = None, path: str = "/", round_trip: Optional[RoundTripper] = None
    ) -> Response:
        req = self.build_control(method, content, path)
        return self._run(req, round_trip)

    def pre_signed_url(self, method: str, ttl: int) -> str:
        req = self._build(method)
        self._apply_copy_source(req)
        if self.signer is None:
            return req.url()
        req.query.update(self.signer.sign_query(req, ttl))
        return req.url()


