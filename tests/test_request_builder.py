from __future__ import annotations

import io
from datetime import datetime, timezone
from typing import List
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from tests.fixtures.fake_tos import decode_tos_chunked
from tos.credentials import StaticCredentials
from tos.crc64 import crc64, to_trailer_value
from tos.errors import TosClientError, TosServerError
from tos.models import PutObjectInput
from tos.request import (
    Request,
    RequestBuilder,
    Response,
    URLMode,
    copy_source,
    host_path,
    is_ip_host,
    on_retry_from_start,
)
from tos.retry import NoRetryClassifier, Retryer
from tos.signer import SignV4

HOST = "tos-cn-beijing.volces.com"


def _builder(**kwargs) -> RequestBuilder:
    params = {"signer": None, "scheme": "https", "host": HOST, "bucket": "bkt", "key": "a.txt"}
    params.update(kwargs)
    return RequestBuilder(**params)


def _signer() -> SignV4:
    return SignV4(StaticCredentials("AK", "SK"), "cn-beijing")


def test_url_uses_virtual_host_by_default() -> None:
    url = _builder().with_query("versionId", "v1").build("GET").url()

    assert url == "https://bkt.tos-cn-beijing.volces.com/a.txt?versionId=v1"


@pytest.mark.parametrize(
    "bucket,key,mode,custom,expected",
    [
        ("bkt", "a/b.txt", URLMode.DEFAULT, False, ("bkt." + HOST, "/a/b.txt")),
        ("bkt", "", URLMode.DEFAULT, False, ("bkt." + HOST, "/")),
        ("", "", URLMode.DEFAULT, False, (HOST, "/")),
        ("bkt", "a.txt", URLMode.PATH, False, (HOST, "/bkt/a.txt")),
        ("bkt", "", URLMode.PATH, False, (HOST, "/bkt")),
        ("bkt", "a.txt", URLMode.DEFAULT, True, (HOST, "/a.txt")),
    ],
)
def test_host_path(bucket, key, mode, custom, expected) -> None:
    assert host_path(HOST, bucket, key, mode, custom) == expected


@pytest.mark.parametrize(
    "host,expected",
    [("10.0.0.1", True), ("10.0.0.1:8080", True), ("[::1]:9000", True), ("::1", True), (HOST, False)],
)
def test_is_ip_host(host: str, expected: bool) -> None:
    assert is_ip_host(host) is expected


def test_copy_source_escapes_key_and_appends_version() -> None:
    assert copy_source("src", "dir/a b.txt") == "/src/dir%2Fa+b.txt"
    assert copy_source("src", "k", "v1") == "/src/k?versionId=v1"


def test_with_header_skips_empty_values() -> None:
    builder = _builder().with_header("X-Tos-Acl", "").with_header("X-Tos-Storage-Class", "IA")

    assert "X-Tos-Acl" not in builder.header
    assert builder.header["X-Tos-Storage-Class"] == "IA"


def test_with_params_encodes_metadata_and_disposition() -> None:
    params = PutObjectInput(
        bucket="bkt",
        key="a.txt",
        meta={"名字": "值"},
        content_disposition='attachment; filename="报告.pdf"',
        acl="private",
    )

    req = _builder().with_params(params).build("PUT")

    assert req.header["X-Tos-Meta-%E5%90%8D%E5%AD%97"] == "%E5%80%BC"
    assert req.header["Content-Disposition"] == 'attachment; filename="%E6%8A%A5%E5%91%8A.pdf"'
    assert req.header["X-Tos-Acl"] == "private"


def test_build_frames_body_when_trailer_enabled() -> None:
    req = _builder().with_enable_trailer(True).build("PUT", io.BytesIO(b"hello"))

    assert req.enable_trailer is True
    assert req.content_length == 50
    assert req.header["Content-Encoding"] == "tos-chunked"
    assert req.header["X-Tos-Trailer"] == "x-tos-hash-crc64ecma"
    payload, trailers = decode_tos_chunked(req.content.read())
    assert payload == b"hello"
    assert trailers["x-tos-hash-crc64ecma"] == to_trailer_value(crc64(b"hello"))


def test_build_keeps_plain_body_without_trailer() -> None:
    req = _builder().build("PUT", b"hello")

    assert req.content == b"hello"
    assert req.content_length == 5
    assert "Content-Encoding" not in req.header


def test_build_signs_when_signer_is_present() -> None:
    signed = _builder(signer=_signer()).with_generic(
        request_date=datetime(2026, 10, 19, tzinfo=timezone.utc)
    ).build("GET")
    anonymous = _builder().build("GET")

    assert signed.header["Authorization"].startswith("TOS4-HMAC-SHA256 Credential=AK/20261019/")
    assert signed.header["X-Tos-Date"] == "20261019T000000Z"
    assert "Authorization" not in anonymous.header


def test_copy_source_moves_version_id_out_of_query() -> None:
    req = (
        _builder()
        .with_query("uploadId", "u1")
        .with_query("versionId", "v9")
        .with_copy_source("src", "dir/k")
        .build("PUT")
    )

    assert req.header["X-Tos-Copy-Source"] == "/src/dir%2Fk?versionId=v9"
    assert req.query == {"uploadId": "u1"}


def test_request_retries_and_replays_framed_body() -> None:
    seen: List[bytes] = []
    retry_headers: List[str] = []

    def round_trip(req: Request) -> Response:
        seen.append(req.content.read())
        retry_headers.append(req.header.get("X-Sdk-Retry-Count", ""))
        if len(seen) == 1:
            raise TosServerError("busy", status_code=503)
        return Response(200, httpx.Headers({"X-Tos-Request-Id": "r2"}))

    sleeps: List[float] = []
    builder = _builder(signer=_signer(), retryer=Retryer([0.1, 0.2, 0.4], jitter=0, sleep=sleeps.append))
    builder.with_enable_trailer(True).with_retry(on_retry_from_start)

    response = builder.request("PUT", io.BytesIO(b"payload"), round_trip)

    assert response.request_id == "r2"
    assert seen[0] == seen[1]
    assert decode_tos_chunked(seen[1])[0] == b"payload"
    assert retry_headers == ["", "attempt=1; max=3"]
    assert sleeps == [0.1]


def test_request_honours_no_retry_classifier() -> None:
    calls: List[Request] = []

    def round_trip(req: Request) -> Response:
        calls.append(req)
        raise TosServerError("busy", status_code=503)

    builder = _builder(retryer=Retryer([0.1], jitter=0, sleep=lambda _: None))
    builder.with_retry(classifier=NoRetryClassifier())

    with pytest.raises(TosServerError):
        builder.request("POST", b"data", round_trip)
    assert len(calls) == 1


def test_on_retry_from_start_rewinds_seekable_body() -> None:
    body = io.BytesIO(b"0123456789")
    body.seek(3)
    req = _builder().build("PUT", body)
    body.read()

    on_retry_from_start(req)

    assert body.tell() == 3


def test_on_retry_from_start_rejects_unseekable_body() -> None:
    class OneShot:
        def read(self, size: int = -1) -> bytes:
            return b""

    req = _builder().build("PUT", OneShot())

    with pytest.raises(TosClientError):
        on_retry_from_start(req)


def test_build_control_requires_account_id() -> None:
    with pytest.raises(TosClientError):
        _builder(bucket="", key="").build_control("GET")

    req = _builder(bucket="", key="", account_id="123").build_control("GET", path="/qospolicy")
    assert req.header["X-Tos-Account-Id"] == "123"
    assert req.path == "/qospolicy"
    assert req.host == HOST


def test_pre_signed_url_carries_signature_query() -> None:
    url = _builder(signer=_signer()).with_query("versionId", "v1").pre_signed_url("GET", 600)

    parts = urlsplit(url)
    query = parse_qs(parts.query)
    assert parts.netloc == "bkt." + HOST
    assert query["versionId"] == ["v1"]
    assert query["X-Tos-Expires"] == ["600"]
    assert "X-Tos-Signature" in query


def test_pre_signed_url_without_signer_is_plain() -> None:
    assert _builder().pre_signed_url("GET", 600) == "https://bkt.tos-cn-beijing.volces.com/a.txt"
