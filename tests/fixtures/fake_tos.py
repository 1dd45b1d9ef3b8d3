# === NAVMAP v1 ===
# {
#   "module": "tests.fixtures.fake_tos",
#   "purpose": "In-memory TOS server behind httpx.MockTransport for hermetic client tests",
#   "sections": [
#     {"id": "framing", "name": "Body framing helpers", "anchor": "helpers", "kind": "section"},
#     {"id": "fake-tos", "name": "FakeTos", "anchor": "class-fake-tos", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""
In-memory TOS server for hermetic client tests.

:class:`FakeTos` answers the object and multipart operations the client
issues, decodes ``tos-chunked`` request bodies (checking their CRC trailer),
serves ranged reads as ``tos-raw-trailer`` bodies, and reports the
CRC-64/ECMA of every stored object.  Tests inject failures with
:meth:`FakeTos.fail` and inspect traffic through :attr:`FakeTos.requests`.
"""

from __future__ import annotations

import base64
import itertools
import json
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple
from urllib.parse import unquote_plus

import httpx

from tos.crc64 import crc64

ENDPOINT = "tos-cn-beijing.volces.com"


def _b64_crc(data: bytes) -> str:
    return base64.b64encode(crc64(data).to_bytes(8, "big")).decode("ascii")


def decode_tos_chunked(body: bytes) -> Tuple[bytes, Dict[str, str]]:
    """Split a ``tos-chunked`` body into its payload and trailers."""
    payload = bytearray()
    pos = 0
    while True:
        end = body.index(b"\r\n", pos)
        size = int(body[pos:end], 16)
        pos = end + 2
        if size == 0:
            break
        payload.extend(body[pos:pos + size])
        pos += size + 2
    trailers: Dict[str, str] = {}
    while True:
        end = body.index(b"\r\n", pos)
        line = body[pos:end]
        pos = end + 2
        if not line:
            break
        name, _, value = line.decode("ascii").partition(":")
        trailers[name.lower()] = value
    return bytes(payload), trailers


@dataclass
class StoredObject:
    data: bytes
    etag: str
    content_type: str = ""
    meta: Dict[str, str] = field(default_factory=dict)

    @property
    def crc(self) -> int:
        return crc64(self.data)


@dataclass
class _Failure:
    method: str
    status: int
    remaining: int
    when: Callable[[httpx.Request], bool]
    code: str
    headers: Dict[str, str]


class FakeTos:
    """Virtual-host (or path-style for IP endpoints) TOS emulation."""

    def __init__(self, endpoint: str = ENDPOINT) -> None:
        self.endpoint = endpoint
        self.objects: Dict[Tuple[str, str], StoredObject] = {}
        self.uploads: Dict[str, Dict[str, object]] = {}
        self.requests: List[httpx.Request] = []
        self.bad_crc = False
        self._failures: List[_Failure] = []
        self._ids = itertools.count(1)
        self._lock = threading.Lock()
        self.transport = httpx.MockTransport(self.handle)

    # ------------------------------------------------------------------
    # test helpers

    def put(self, bucket: str, key: str, data: bytes) -> StoredObject:
        obj = StoredObject(data=data, etag=f'"etag-{next(self._ids)}"')
        self.objects[(bucket, key)] = obj
        return obj

    def fail(
        self,
        method: str,
        status: int,
        *,
        times: int = 1,
        when: Callable[[httpx.Request], bool] = lambda request: True,
        code: str = "InternalError",
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        """Answer the next ``times`` matching requests with ``status``."""
        self._failures.append(_Failure(method, status, times, when, code, dict(headers or {})))

    def calls(self, method: str, param: Optional[str] = None) -> List[httpx.Request]:
        return [
            request
            for request in self.requests
            if request.method == method and (param is None or param in request.url.params)
        ]

    # ------------------------------------------------------------------
    # dispatch

    def _locate(self, request: httpx.Request) -> Tuple[str, str]:
        host = request.url.host
        path = request.url.path
        if host != self.endpoint and host.endswith("." + self.endpoint):
            return host[: -len(self.endpoint) - 1], path[1:]
        bucket, _, key = path[1:].partition("/")
        return bucket, key

    @staticmethod
    def _response(status: int, headers: Dict[str, str], content: bytes) -> httpx.Response:
        # streamed like a real transport so the client can read it with iter_raw
        headers.setdefault("Content-Length", str(len(content)))
        return httpx.Response(status, headers=headers, stream=httpx.ByteStream(content))

    def _error(self, status: int, code: str, message: str = "", headers: Optional[Dict[str, str]] = None):
        request_id = f"req-{next(self._ids)}"
        body = {"Code": code, "Message": message or code, "RequestId": request_id, "HostId": "fake"}
        merged = {"X-Tos-Request-Id": request_id, "Content-Type": "application/json"}
        merged.update(headers or {})
        return self._response(status, merged, json.dumps(body).encode("utf-8"))

    def _ok(self, status: int = 200, *, headers: Optional[Dict[str, str]] = None, content: bytes = b""):
        merged = {"X-Tos-Request-Id": f"req-{next(self._ids)}"}
        merged.update(headers or {})
        return self._response(status, merged, content)

    def _json(self, payload: Dict[str, object], headers: Optional[Dict[str, str]] = None):
        return self._ok(headers=headers, content=json.dumps(payload).encode("utf-8"))

    def handle(self, request: httpx.Request) -> httpx.Response:
        with self._lock:
            self.requests.append(request)
            for failure in self._failures:
                if failure.remaining > 0 and failure.method == request.method and failure.when(request):
                    failure.remaining -= 1
                    return self._error(failure.status, failure.code, headers=failure.headers)

        bucket, key = self._locate(request)
        params = request.url.params
        method = request.method
        if method == "PUT" and "uploadId" in params:
            if "X-Tos-Copy-Source" in request.headers:
                return self._upload_part_copy(request, params)
            return self._upload_part(request, params)
        if method == "PUT":
            return self._put_object(request, bucket, key)
        if method == "POST" and "uploads" in params:
            return self._create_upload(bucket, key)
        if method == "POST" and "uploadId" in params:
            return self._complete(request, bucket, key, params["uploadId"])
        if method == "POST" and "append" in params:
            return self._append(request, bucket, key, int(params.get("offset", "0")))
        if method == "DELETE" and "uploadId" in params:
            with self._lock:
                self.uploads.pop(params["uploadId"], None)
            return self._ok(204)
        if method == "DELETE":
            with self._lock:
                self.objects.pop((bucket, key), None)
            return self._ok(204)
        if method == "GET" and "uploadId" in params:
            return self._list_parts(bucket, key, params["uploadId"])
        if method in ("GET", "HEAD"):
            return self._get_object(request, bucket, key)
        return self._error(405, "MethodNotAllowed")

    # ------------------------------------------------------------------
    # bodies

    def _payload(self, request: httpx.Request) -> Tuple[bytes, Optional[httpx.Response]]:
        body = request.content
        if request.headers.get("Content-Encoding", "").startswith("tos-chunked"):
            body, trailers = decode_tos_chunked(body)
            if trailers.get("x-tos-hash-crc64ecma") != _b64_crc(body):
                return body, self._error(400, "InvalidTrailer")
        return body, None

    def _crc_header(self, data: bytes) -> Dict[str, str]:
        value = crc64(data)
        if self.bad_crc:
            value ^= 1
        return {"X-Tos-Hash-Crc64ecma": str(value)}

    # ------------------------------------------------------------------
    # objects

    def _put_object(self, request: httpx.Request, bucket: str, key: str) -> httpx.Response:
        data, error = self._payload(request)
        if error is not None:
            return error
        with self._lock:
            obj = self.put(bucket, key, data)
            obj.content_type = request.headers.get("Content-Type", "")
            obj.meta = {
                name[len("x-tos-meta-"):]: value
                for name, value in request.headers.items()
                if name.lower().startswith("x-tos-meta-")
            }
        return self._ok(headers={"ETag": obj.etag, **self._crc_header(data)})

    def _append(self, request: httpx.Request, bucket: str, key: str, offset: int) -> httpx.Response:
        data, error = self._payload(request)
        if error is not None:
            return error
        with self._lock:
            existing = self.objects.get((bucket, key))
            current = existing.data if existing else b""
            if offset != len(current):
                return self._error(409, "PositionNotEqualToLength")
            obj = self.put(bucket, key, current + data)
        headers = {"X-Tos-Next-Append-Offset": str(len(obj.data)), **self._crc_header(obj.data)}
        return self._ok(headers=headers)

    def _get_object(self, request: httpx.Request, bucket: str, key: str) -> httpx.Response:
        obj = self.objects.get((bucket, key))
        if obj is None:
            return self._error(404, "NoSuchKey")
        if_match = request.headers.get("If-Match")
        if if_match and if_match != obj.etag:
            return self._error(412, "PreconditionFailed")
        headers = {
            "ETag": obj.etag,
            "Last-Modified": "Mon, 19 Oct 2026 08:00:00 GMT",
            "Content-Type": obj.content_type or "application/octet-stream",
            **self._crc_header(obj.data),
        }
        for name, value in obj.meta.items():
            headers["X-Tos-Meta-" + name] = value
        if request.method == "HEAD":
            headers["Content-Length"] = str(len(obj.data))
            return self._ok(headers=headers)

        range_header = request.headers.get("Range")
        if not range_header:
            return self._ok(headers=headers, content=obj.data)
        start_text, _, end_text = range_header[len("bytes="):].partition("-")
        start = int(start_text)
        end = min(int(end_text) if end_text else len(obj.data) - 1, len(obj.data) - 1)
        piece = obj.data[start:end + 1]
        headers["Content-Range"] = f"bytes {start}-{end}/{len(obj.data)}"
        del headers["X-Tos-Hash-Crc64ecma"]
        if "tos-raw-trailer" in request.headers.get("Accept-Encoding", ""):
            trailer_crc = _b64_crc(piece if not self.bad_crc else piece + b"!")
            content = piece + b"\r\n" + f"x-tos-hash-range-crc64ecma:{trailer_crc}".encode("ascii") + b"\r\n\r\n"
            headers["X-Tos-Raw-Content-Length"] = str(len(piece))
            headers["Content-Encoding"] = "tos-raw-trailer"
            return self._ok(206, headers=headers, content=content)
        return self._ok(206, headers=headers, content=piece)

    # ------------------------------------------------------------------
    # multipart

    def _create_upload(self, bucket: str, key: str) -> httpx.Response:
        upload_id = f"upload-{next(self._ids)}"
        with self._lock:
            self.uploads[upload_id] = {"bucket": bucket, "key": key, "parts": {}}
        return self._json({"Bucket": bucket, "Key": key, "UploadId": upload_id})

    def _upload(self, upload_id: str):
        return self.uploads.get(upload_id)

    def _upload_part(self, request: httpx.Request, params) -> httpx.Response:
        upload = self._upload(params["uploadId"])
        if upload is None:
            return self._error(404, "NoSuchUpload")
        data, error = self._payload(request)
        if error is not None:
            return error
        etag = f'"part-{next(self._ids)}"'
        with self._lock:
            upload["parts"][int(params["partNumber"])] = (etag, data)
        return self._ok(headers={"ETag": etag, **self._crc_header(data)})

    def _upload_part_copy(self, request: httpx.Request, params) -> httpx.Response:
        upload = self._upload(params["uploadId"])
        if upload is None:
            return self._error(404, "NoSuchUpload")
        source = request.headers["X-Tos-Copy-Source"]
        src_bucket, _, src_key = source[1:].partition("/")
        src_key = unquote_plus(src_key.split("?versionId=")[0])
        obj = self.objects.get((src_bucket, src_key))
        if obj is None:
            return self._error(404, "NoSuchKey")
        if_match = request.headers.get("X-Tos-Copy-Source-If-Match")
        if if_match and if_match != obj.etag:
            return self._error(412, "PreconditionFailed")
        data = obj.data
        copy_range = request.headers.get("X-Tos-Copy-Source-Range")
        if copy_range:
            start_text, _, end_text = copy_range[len("bytes="):].partition("-")
            data = data[int(start_text):int(end_text) + 1]
        etag = f'"part-{next(self._ids)}"'
        with self._lock:
            upload["parts"][int(params["partNumber"])] = (etag, data)
        return self._json({"ETag": etag, "LastModified": "2026-10-19T08:00:00.000Z"})

    def _complete(self, request: httpx.Request, bucket: str, key: str, upload_id: str) -> httpx.Response:
        upload = self._upload(upload_id)
        if upload is None:
            return self._error(404, "NoSuchUpload")
        parts = upload["parts"]
        if request.headers.get("X-Tos-Complete-All") == "yes":
            numbers = sorted(parts)
        else:
            listed = json.loads(request.content)["Parts"]
            numbers = [item["PartNumber"] for item in listed]
            if numbers != sorted(numbers):
                return self._error(400, "InvalidPartOrder")
            for item in listed:
                if parts.get(item["PartNumber"], ("",))[0] != item["ETag"]:
                    return self._error(400, "InvalidPart")
        data = b"".join(parts[number][1] for number in numbers)
        with self._lock:
            obj = self.put(bucket, key, data)
            self.uploads.pop(upload_id, None)
        return self._json(
            {"Bucket": bucket, "Key": key, "ETag": obj.etag, "Location": f"https://{bucket}.{self.endpoint}/{key}"},
            headers={"X-Tos-Version-Id": "v1", **self._crc_header(data)},
        )

    def _list_parts(self, bucket: str, key: str, upload_id: str) -> httpx.Response:
        upload = self._upload(upload_id)
        if upload is None:
            return self._error(404, "NoSuchUpload")
        parts = [
            {"PartNumber": number, "ETag": etag, "Size": len(data)}
            for number, (etag, data) in sorted(upload["parts"].items())
        ]
        return self._json({"Bucket": bucket, "Key": key, "UploadId": upload_id, "Parts": parts})
