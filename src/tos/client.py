"""Client facade of the TOS core.

:class:`TosClient` owns everything a request needs: the endpoint (scheme,
host and addressing mode), the V4 signer and its credentials, the retry
policy, the HTTPX transport and, when enabled, the DNS cache.  Each public
method validates its input, builds a request through
:class:`~tos.request.RequestBuilder`, submits it with a round-tripper that
checks the expected status codes, and decodes the response into a pydantic
output model.

Endpoint, region and credentials can be swapped at runtime
(:meth:`TosClient.refresh_endpoint_region`, :meth:`TosClient.refresh_credentials`).
Requests started before a swap finish with the settings they were built
with; requests built afterwards see the new ones.

Example:
    >>> client = TosClient("ak", "sk", endpoint="tos-cn-beijing.volces.com")  # doctest: +SKIP
    >>> client.put_object(PutObjectInput(bucket="bkt", key="a.txt", content=b"hello"))  # doctest: +SKIP
    >>> client.close()  # doctest: +SKIP
"""

from __future__ import annotations

import contextlib
import io
import logging
import mimetypes
import os
import platform
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, Optional, Sequence, Tuple

import httpx

from .body import (
    ChunkDecodingReader,
    CRCCheckingReader,
    SectionReader,
    _tell,
    find_progress,
    iter_chunks,
    try_resolve_length,
    wrap_reader,
)
from .cancellation import CancelHook
from .consts import (
    DEFAULT_SIGN_EXPIRES,
    DISALLOWED_ENDPOINT_MARKERS,
    HEADER_ACCEPT_ENCODING,
    HEADER_COMPLETE_ALL,
    HEADER_CONTENT_ENCODING,
    HEADER_CONTENT_TYPE,
    HEADER_COPY_SOURCE_RANGE,
    HEADER_COPY_SOURCE_VERSION_ID,
    HEADER_DELETE_MARKER,
    HEADER_ETAG,
    HEADER_HASH_CRC64ECMA,
    HEADER_NEXT_APPEND_OFFSET,
    HEADER_RANGE,
    HEADER_RAW_CONTENT_LENGTH,
    HEADER_SSEC_ALGORITHM,
    HEADER_SSEC_KEY_MD5,
    HEADER_TRAILER,
    HEADER_VERSION_ID,
    SDK_VERSION,
    SUPPORTED_REGIONS,
    TEMP_FILE_SUFFIX,
    TOS_RAW_TRAILER_ENCODING,
    TRAILER_RANGE_CRC64,
    supported_endpoints,
)
from .credentials import (
    Credentials,
    CredentialsProvider,
    ProviderBackedCredentials,
    StaticCredentials,
)
from .dns_cache import DNSCache
from .errors import ClientErrorKind, TosClientError
from .logging_utils import setup_logging
from .models import (
    AbortMultipartUploadInput,
    AbortMultipartUploadOutput,
    AppendObjectInput,
    AppendObjectOutput,
    CompleteMultipartUploadBody,
    CompleteMultipartUploadInput,
    CompleteMultipartUploadOutput,
    CreateMultipartUploadBody,
    CreateMultipartUploadInput,
    CreateMultipartUploadOutput,
    DeleteObjectInput,
    DeleteObjectOutput,
    DownloadFileInput,
    DownloadFileOutput,
    GetObjectInput,
    GetObjectOutput,
    GetObjectToFileInput,
    HeadObjectInput,
    HeadObjectOutput,
    ListPartsBody,
    ListPartsInput,
    ListPartsOutput,
    ObjectMeta,
    PreSignedPostSignatureInput,
    PreSignedPostSignatureOutput,
    PutObjectFromFileInput,
    PutObjectInput,
    PutObjectOutput,
    ResumableCopyObjectInput,
    ResumableCopyObjectOutput,
    UploadFileInput,
    UploadFileOutput,
    UploadPartCopyBody,
    UploadPartCopyInput,
    UploadPartCopyOutput,
    UploadPartFromFileInput,
    UploadPartInput,
    UploadPartOutput,
)
from .parsing import check_crc64, check_error, parse_json_output
from .request import Request, RequestBuilder, Response, RoundTripper, URLMode, is_ip_host, on_retry_from_start
from .retry import (
    Classifier,
    NoRetryClassifier,
    Retryer,
    ServerErrorClassifier,
    StatusCodeClassifier,
    backoff_intervals,
)
from .settings import ClientSettings, RetryConfig, TransportConfig, load_settings
from .signer import SignV4
from .transfer import download_file, resumable_copy_object, upload_file
from .transfer.download import resolve_download_path
from .transport import DefaultTransport
from .validation import (
    validate_acl,
    validate_bucket_name,
    validate_expires,
    validate_names,
    validate_ssec_algorithm,
    validate_storage_class,
)

__all__ = ["TosClient", "Endpoint", "parse_endpoint"]

logger = logging.getLogger(__name__)

FILE_CHUNK = 64 * 1024


@dataclass(frozen=True)
class Endpoint:
    """Immutable snapshot of where requests go."""

    endpoint: str
    scheme: str
    host: str
    url_mode: URLMode


def parse_endpoint(endpoint: str) -> Endpoint:
    """Split ``endpoint`` into scheme and host; IP hosts use path-style addressing.

    >>> parse_endpoint("http://127.0.0.1:9000").url_mode
    <URLMode.PATH: 'path'>
    """
    endpoint = endpoint.strip()
    if not endpoint:
        raise TosClientError("tos: endpoint is empty")
    for marker in DISALLOWED_ENDPOINT_MARKERS:
        if marker in endpoint:
            raise TosClientError(f"tos: endpoint {endpoint!r} belongs to the s3 compatible service, use the tos endpoint")
    if endpoint.startswith("https://"):
        scheme, host = "https", endpoint[len("https://"):]
    elif endpoint.startswith("http://"):
        scheme, host = "http", endpoint[len("http://"):]
    else:
        scheme, host = "https", endpoint
    host = host.rstrip("/")
    url_mode = URLMode.PATH if is_ip_host(host) else URLMode.DEFAULT
    return Endpoint(endpoint=endpoint, scheme=scheme, host=host, url_mode=url_mode)


def _resolve_region(host: str, region: str) -> str:
    if region:
        return region
    known = supported_endpoints().get(host)
    if known:
        return known
    raise TosClientError("tos: missing Region option")


def _default_user_agent(suffix: str = "") -> str:
    agent = f"tos-core/{SDK_VERSION} ({platform.system()}/{platform.machine()};python {platform.python_version()})"
    if suffix:
        agent = f"{agent} {suffix}"
    return agent


def _can_replay(content: Any) -> bool:
    if content is None or isinstance(content, (bytes, bytearray, str)):
        return True
    can_reset = getattr(content, "can_reset", None)
    if callable(can_reset):
        return can_reset()
    return _tell(content) is not None


def _prepare_body(
    content: Any,
    length: int,
    *,
    listener: Any = None,
    limiter: Any = None,
    crc: bool = False,
    init_crc: int = 0,
):
    """Turn user content into a readable, resettable body with its wrappers."""
    if content is None:
        content = b""
    if isinstance(content, str):
        content = content.encode("utf-8")
    if isinstance(content, (bytes, bytearray, memoryview)):
        content = io.BytesIO(bytes(content))
    return wrap_reader(content, length, listener, limiter, crc=crc, init_crc=init_crc, auto_finish=False)


@contextlib.contextmanager
def _reporting_outcome(body: Any) -> Iterator[None]:
    """Send the final progress event of an upload body once the server answered."""
    progress = find_progress(body)
    try:
        yield
    except Exception:
        if progress is not None:
            progress.fail()
        raise
    if progress is not None:
        progress.succeed()


class TosClient:
    """Entry point of the object and multipart operations.

    Args:
        ak: Access key id; with ``sk`` builds static credentials.
        sk: Secret access key.
        endpoint: ``[scheme://]host[:port]``; resolved from ``region`` when empty.
        region: Signing region; resolved from known endpoints when empty.
        security_token: STS token accompanying ``ak``/``sk``.
        credentials: Ready-made :class:`~tos.credentials.Credentials`.
        credentials_provider: Source wrapped in
            :class:`~tos.credentials.ProviderBackedCredentials` (refreshed in the background).
        settings: Full :class:`~tos.settings.ClientSettings`; explicit arguments win.
        transport_config: Replaces ``settings.transport``.
        retry_config: Replaces ``settings.retry``.
        http_transport: HTTPX transport override, e.g. :class:`httpx.MockTransport`.
        retryer: Retry loop override.
    """

    def __init__(
        self,
        ak: str = "",
        sk: str = "",
        endpoint: str = "",
        region: str = "",
        *,
        security_token: str = "",
        credentials: Optional[Credentials] = None,
        credentials_provider: Optional[CredentialsProvider] = None,
        settings: Optional[ClientSettings] = None,
        transport_config: Optional[TransportConfig] = None,
        retry_config: Optional[RetryConfig] = None,
        http_transport: Optional[httpx.BaseTransport] = None,
        retryer: Optional[Retryer] = None,
    ) -> None:
        settings = settings or load_settings()
        endpoint = endpoint or settings.endpoint
        region = region or settings.region
        if not endpoint and region in SUPPORTED_REGIONS:
            endpoint = SUPPORTED_REGIONS[region]

        self.settings = settings
        self.enable_crc = settings.enable_crc
        self.disable_trailer_header = settings.disable_trailer_header
        self.is_custom_domain = settings.is_custom_domain
        self.user_agent = _default_user_agent(settings.user_agent_suffix)
        self.control_endpoint = settings.control_endpoint
        if settings.logging.enabled:
            setup_logging(
                level=settings.logging.level,
                max_log_size_mb=settings.logging.max_log_size_mb,
                log_dir=Path(settings.logging.log_dir) if settings.logging.log_dir else None,
            )

        self._lock = threading.Lock()
        self._endpoint = parse_endpoint(endpoint)

        if credentials is None and credentials_provider is not None:
            credentials = ProviderBackedCredentials(credentials_provider)
        if credentials is None and ak:
            credentials = StaticCredentials(ak, sk, security_token)
        self._credentials = credentials
        self.signer: Optional[SignV4] = None
        # region of an unsigned client; a signer carries its own
        self._region = region or supported_endpoints().get(self._endpoint.host, "")
        if credentials is not None:
            self.signer = SignV4(credentials, _resolve_region(self._endpoint.host, region))

        retry_cfg = retry_config or settings.retry
        self.retryer = retryer or Retryer(
            backoff_intervals(retry_cfg.max_retry_count, retry_cfg.backoff_base), retry_cfg.jitter
        )

        transport_cfg = transport_config or settings.transport
        self.dns_cache: Optional[DNSCache] = None
        if transport_cfg.dns_cache_enabled and http_transport is None:
            self.dns_cache = DNSCache(expiration=transport_cfg.dns_cache_time)
        self.transport = DefaultTransport(
            transport_cfg,
            dns_cache=self.dns_cache,
            user_agent=self.user_agent,
            transport=http_transport,
        )
        logger.debug(
            "tos client created",
            extra={
                "host": self._endpoint.host,
                "scheme": self._endpoint.scheme,
                "url_mode": self._endpoint.url_mode.value,
                "region": self.region,
                "enable_crc": self.enable_crc,
                "dns_cache": self.dns_cache is not None,
            },
        )

    @classmethod
    def from_settings(cls, settings: Optional[ClientSettings] = None, **kwargs: Any) -> "TosClient":
        """Build a client from settings (``TOS_*`` environment variables when omitted)."""
        return cls(settings=settings or load_settings(), **kwargs)

    def __enter__(self) -> "TosClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # ------------------------------------------------------------------
    # hot reload

    @property
    def endpoint(self) -> Endpoint:
        return self._endpoint

    @property
    def region(self) -> str:
        return self.signer.region if self.signer is not None else self._region

    def refresh_credentials(self, ak: str, sk: str, security_token: str = "") -> None:
        """Swap in static credentials; requests signed afterwards use them."""
        if not ak or not sk:
            raise TosClientError("tos: access key id and secret access key can not be empty")
        credentials = StaticCredentials(ak, sk, security_token)
        with self._lock:
            previous = self._credentials
            self._credentials = credentials
            if self.signer is None:
                self.signer = SignV4(credentials, _resolve_region(self._endpoint.host, self._region))
            else:
                self.signer.credentials = credentials
        stop = getattr(previous, "stop", None)
        if callable(stop):
            stop()
        logger.info("credentials refreshed", extra={"access_key_id": ak[:4] + "***"})

    def refresh_endpoint_region(self, endpoint: Optional[str] = None, region: Optional[str] = None) -> None:
        """Swap endpoint and/or region together."""
        with self._lock:
            new_endpoint = parse_endpoint(endpoint) if endpoint else self._endpoint
            new_region = region or supported_endpoints().get(new_endpoint.host, self.region)
            self._endpoint = new_endpoint
            if self.signer is not None and new_region:
                self.signer.set_region(new_region)
            elif self.signer is None:
                self._region = new_region
        logger.info(
            "endpoint and region refreshed",
            extra={"host": new_endpoint.host, "scheme": new_endpoint.scheme, "region": new_region},
        )

    def close(self) -> None:
        if self.dns_cache is not None:
            self.dns_cache.close()
        stop = getattr(self._credentials, "stop", None)
        if callable(stop):
            stop()
        self.transport.close()

    # ------------------------------------------------------------------
    # plumbing

    def _builder(self, bucket: str, key: str = "", cancel_hook: Optional[CancelHook] = None) -> RequestBuilder:
        snapshot = self._endpoint
        builder = RequestBuilder(
            signer=self.signer,
            scheme=snapshot.scheme,
            host=snapshot.host,
            bucket=bucket,
            key=key,
            url_mode=snapshot.url_mode,
            is_custom_domain=self.is_custom_domain,
            retryer=self.retryer,
            user_agent=self.user_agent,
        )
        if cancel_hook is not None:
            builder.with_cancel(cancel_hook.is_cancelled)
        return builder

    def _control_builder(self, account_id: str, cancel_hook: Optional[CancelHook] = None) -> RequestBuilder:
        if not self.control_endpoint:
            raise TosClientError("tos: control endpoint is empty")
        target = parse_endpoint(self.control_endpoint)
        builder = RequestBuilder(
            signer=self.signer,
            scheme=target.scheme,
            host=target.host,
            url_mode=target.url_mode,
            retryer=self.retryer,
            account_id=account_id,
            user_agent=self.user_agent,
        )
        if cancel_hook is not None:
            builder.with_cancel(cancel_hook.is_cancelled)
        return builder

    def _round_tripper(self, *expected_codes: int) -> RoundTripper:
        def round_trip(req: Request) -> Response:
            response = self.transport.round_trip(req)
            check_error(response, expected_codes, method=req.method)
            return response

        return round_trip

    def _trailer_enabled(self, content_md5: str) -> bool:
        return not content_md5 and not self.disable_trailer_header

    @staticmethod
    def _content_type(key: str, explicit: str) -> str:
        if explicit:
            return explicit
        guessed, _ = mimetypes.guess_type(key)
        return guessed or ""

    @staticmethod
    def _validate_object_options(acl: str, storage_class: str, ssec_algorithm: str) -> None:
        validate_acl(acl)
        validate_storage_class(storage_class)
        validate_ssec_algorithm(ssec_algorithm)

    def _upload_body(
        self,
        content: Any,
        content_length: Optional[int],
        listener: Any,
        limiter: Any,
        *,
        crc: bool,
        init_crc: int = 0,
    ) -> Tuple[Any, int, Optional[Callable[[Request], None]], Classifier]:
        length = content_length if content_length is not None and content_length >= 0 else try_resolve_length(content)
        body = _prepare_body(content, length, listener=listener, limiter=limiter, crc=crc, init_crc=init_crc)
        if _can_replay(body):
            return body, length, on_retry_from_start, StatusCodeClassifier()
        return body, length, None, NoRetryClassifier()

    # ------------------------------------------------------------------
    # objects

    def put_object(self, input: PutObjectInput, *, cancel_hook: Optional[CancelHook] = None) -> PutObjectOutput:
        validate_names(input.bucket, input.key, is_custom_domain=self.is_custom_domain)
        self._validate_object_options(input.acl, input.storage_class, input.ssec_algorithm)
        trailer = self._trailer_enabled(input.content_md5)
        crc = self.enable_crc and not trailer
        body, length, on_retry, classifier = self._upload_body(
            input.content, input.content_length, input.data_transfer_listener, input.rate_limiter, crc=crc
        )
        with _reporting_outcome(body):
            response = (
                self._builder(input.bucket, input.key, cancel_hook)
                .with_header(HEADER_CONTENT_TYPE, self._content_type(input.key, input.content_type))
                .with_params(input)
                .with_content_length(length if length >= 0 else None)
                .with_enable_trailer(trailer)
                .with_retry(on_retry, classifier)
                .request("PUT", body, round_trip=self._round_tripper(200))
            )
            try:
                if crc:
                    check_crc64(response, body.crc)
            finally:
                response.close()
        return PutObjectOutput(
            request_info=response.request_info(),
            etag=response.headers.get(HEADER_ETAG, ""),
            version_id=response.headers.get(HEADER_VERSION_ID, ""),
            hash_crc64ecma=int(response.headers.get(HEADER_HASH_CRC64ECMA, "0") or 0),
            ssec_algorithm=response.headers.get(HEADER_SSEC_ALGORITHM, ""),
            ssec_key_md5=response.headers.get(HEADER_SSEC_KEY_MD5, ""),
        )

    def put_object_from_file(
        self, input: PutObjectFromFileInput, *, cancel_hook: Optional[CancelHook] = None
    ) -> PutObjectOutput:
        try:
            handle = open(input.file_path, "rb")
        except OSError as exc:
            raise TosClientError(f"tos: open file {input.file_path} failed", exc, kind=ClientErrorKind.IO) from exc
        with handle:
            return self.put_object(input.model_copy(update={"content": handle}), cancel_hook=cancel_hook)

    def append_object(
        self, input: AppendObjectInput, *, cancel_hook: Optional[CancelHook] = None
    ) -> AppendObjectOutput:
        """Append to an appendable object.  Appends are never replayed."""
        validate_names(input.bucket, input.key, is_custom_domain=self.is_custom_domain)
        self._validate_object_options(input.acl, input.storage_class, input.ssec_algorithm)
        body, length, _, _ = self._upload_body(
            input.content,
            input.content_length,
            input.data_transfer_listener,
            input.rate_limiter,
            crc=self.enable_crc,
            init_crc=input.pre_hash_crc64ecma,
        )
        builder = self._builder(input.bucket, input.key, cancel_hook)
        if input.offset == 0:
            builder.with_header(HEADER_CONTENT_TYPE, self._content_type(input.key, input.content_type))
        with _reporting_outcome(body):
            response = (
                builder.with_params(input)
                .with_content_length(length if length >= 0 else None)
                .with_retry(None, NoRetryClassifier())
                .request("POST", body, round_trip=self._round_tripper(200))
            )
            try:
                if self.enable_crc:
                    check_crc64(response, body.crc)
            finally:
                response.close()
        return AppendObjectOutput(
            request_info=response.request_info(),
            version_id=response.headers.get(HEADER_VERSION_ID, ""),
            next_append_offset=int(response.headers.get(HEADER_NEXT_APPEND_OFFSET, "0") or 0),
            hash_crc64ecma=int(response.headers.get(HEADER_HASH_CRC64ECMA, "0") or 0),
        )

    def get_object(self, input: GetObjectInput, *, cancel_hook: Optional[CancelHook] = None) -> GetObjectOutput:
        """Open an object (or a range of it) for streaming.

        Full reads are checked against the server CRC at EOF when CRC is
        enabled; ranged reads ask for a ``tos-raw-trailer`` body and check
        its range CRC trailer.  The caller owns the returned output and must
        close it.
        """
        validate_names(input.bucket, input.key, is_custom_domain=self.is_custom_domain)
        if input.range_start is not None and input.range_end is not None and input.range_end < input.range_start:
            raise TosClientError("tos: invalid range, range end is smaller than range start")
        builder = self._builder(input.bucket, input.key, cancel_hook).with_params(input)
        range_value = input.range_header()
        expected: Sequence[int] = (200,)
        ranged = bool(range_value)
        if ranged:
            builder.with_header(HEADER_RANGE, range_value)
            expected = (200, 206)
            if not input.response_content_encoding and not self.disable_trailer_header:
                builder.with_header(HEADER_TRAILER, TRAILER_RANGE_CRC64)
                builder.with_header(HEADER_ACCEPT_ENCODING, TOS_RAW_TRAILER_ENCODING)
        response = builder.with_retry(None, StatusCodeClassifier()).request(
            "GET", round_trip=self._round_tripper(*expected)
        )

        meta = ObjectMeta.header_fields(response.headers)
        body: Any = response.body
        raw_length = response.headers.get(HEADER_RAW_CONTENT_LENGTH, "")
        if raw_length.isdigit() and response.headers.get(HEADER_CONTENT_ENCODING):
            meta["content_length"] = int(raw_length)
            body = ChunkDecodingReader(body, int(raw_length), request_id=response.request_id)
        elif response.status_code == 200 and self.enable_crc and response.headers.get(HEADER_HASH_CRC64ECMA):
            body = CRCCheckingReader(body, meta["hash_crc64ecma"], request_id=response.request_id)
        body = wrap_reader(body, meta["content_length"], input.data_transfer_listener, input.rate_limiter)
        return GetObjectOutput(request_info=response.request_info(), content=body, **meta)

    def get_object_to_file(
        self, input: GetObjectToFileInput, *, cancel_hook: Optional[CancelHook] = None
    ) -> GetObjectOutput:
        """Stream an object into ``input.file_path`` through a temp file renamed on success."""
        file_path = resolve_download_path(input.file_path, input.key)
        temp_path = file_path + TEMP_FILE_SUFFIX
        output = self.get_object(input, cancel_hook=cancel_hook)
        try:
            directory = os.path.dirname(file_path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            with output, open(temp_path, "wb") as handle:
                for chunk in iter_chunks(output.content, FILE_CHUNK):
                    handle.write(chunk)
            os.replace(temp_path, file_path)
        except OSError as exc:
            if os.path.exists(temp_path):
                os.remove(temp_path)
            raise TosClientError(f"tos: write file {file_path} failed", exc, kind=ClientErrorKind.IO) from exc
        except Exception:
            if os.path.exists(temp_path):
                os.remove(temp_path)
            raise
        return output

    def head_object(self, input: HeadObjectInput, *, cancel_hook: Optional[CancelHook] = None) -> HeadObjectOutput:
        validate_names(input.bucket, input.key, is_custom_domain=self.is_custom_domain)
        response = (
            self._builder(input.bucket, input.key, cancel_hook)
            .with_params(input)
            .with_retry(None, StatusCodeClassifier())
            .request("HEAD", round_trip=self._round_tripper(200))
        )
        response.close()
        return HeadObjectOutput(request_info=response.request_info(), **ObjectMeta.header_fields(response.headers))

    def delete_object(
        self, input: DeleteObjectInput, *, cancel_hook: Optional[CancelHook] = None
    ) -> DeleteObjectOutput:
        validate_names(input.bucket, input.key, is_custom_domain=self.is_custom_domain)
        response = (
            self._builder(input.bucket, input.key, cancel_hook)
            .with_params(input)
            .with_retry(None, StatusCodeClassifier())
            .request("DELETE", round_trip=self._round_tripper(204))
        )
        response.close()
        return DeleteObjectOutput(
            request_info=response.request_info(),
            delete_marker=response.headers.get(HEADER_DELETE_MARKER, "") == "true",
            version_id=response.headers.get(HEADER_VERSION_ID, ""),
        )

    # ------------------------------------------------------------------
    # control plane

    def control_request(
        self,
        account_id: str,
        method: str,
        path: str = "/",
        content: Any = None,
        *,
        expected_codes: Sequence[int] = (200,),
        cancel_hook: Optional[CancelHook] = None,
    ) -> Response:
        """Send one signed request to ``control_endpoint`` on behalf of ``account_id``.

        The request carries ``X-Tos-Account-Id`` and is retried like the data
        plane calls.  The caller reads and closes the returned response.
        """
        return (
            self._control_builder(account_id, cancel_hook)
            .with_retry(on_retry_from_start, StatusCodeClassifier())
            .request_control(method, content, path, round_trip=self._round_tripper(*expected_codes))
        )

    # ------------------------------------------------------------------
    # multipart

    def create_multipart_upload(
        self, input: CreateMultipartUploadInput, *, cancel_hook: Optional[CancelHook] = None
    ) -> CreateMultipartUploadOutput:
        validate_names(input.bucket, input.key, is_custom_domain=self.is_custom_domain)
        self._validate_object_options(input.acl, input.storage_class, input.ssec_algorithm)
        response = (
            self._builder(input.bucket, input.key, cancel_hook)
            .with_header(HEADER_CONTENT_TYPE, self._content_type(input.key, input.content_type))
            .with_params(input)
            .with_query("uploads", "")
            .with_retry(None, ServerErrorClassifier())
            .request("POST", round_trip=self._round_tripper(200))
        )
        body = parse_json_output(response, CreateMultipartUploadBody)
        return CreateMultipartUploadOutput(
            request_info=response.request_info(),
            bucket=body.bucket or input.bucket,
            key=body.key or input.key,
            upload_id=body.upload_id,
            encoding_type=body.encoding_type,
            ssec_algorithm=response.headers.get(HEADER_SSEC_ALGORITHM, ""),
            ssec_key_md5=response.headers.get(HEADER_SSEC_KEY_MD5, ""),
        )

    def upload_part(self, input: UploadPartInput, *, cancel_hook: Optional[CancelHook] = None) -> UploadPartOutput:
        validate_names(input.bucket, input.key, is_custom_domain=self.is_custom_domain)
        validate_ssec_algorithm(input.ssec_algorithm)
        trailer = self._trailer_enabled(input.content_md5)
        crc = self.enable_crc and not trailer
        body, length, on_retry, classifier = self._upload_body(
            input.content, input.content_length, input.data_transfer_listener, input.rate_limiter, crc=crc
        )
        with _reporting_outcome(body):
            response = (
                self._builder(input.bucket, input.key, cancel_hook)
                .with_params(input)
                .with_content_length(length if length >= 0 else None)
                .with_enable_trailer(trailer)
                .with_retry(on_retry, classifier)
                .request("PUT", body, round_trip=self._round_tripper(200))
            )
            try:
                if crc:
                    check_crc64(response, body.crc)
            finally:
                response.close()
        return UploadPartOutput(
            request_info=response.request_info(),
            part_number=input.part_number,
            etag=response.headers.get(HEADER_ETAG, ""),
            hash_crc64ecma=int(response.headers.get(HEADER_HASH_CRC64ECMA, "0") or 0),
            ssec_algorithm=response.headers.get(HEADER_SSEC_ALGORITHM, ""),
            ssec_key_md5=response.headers.get(HEADER_SSEC_KEY_MD5, ""),
        )

    def upload_part_from_file(
        self, input: UploadPartFromFileInput, *, cancel_hook: Optional[CancelHook] = None
    ) -> UploadPartOutput:
        """Upload ``part_size`` bytes of ``file_path`` from ``offset`` (``-1``: to the end)."""
        try:
            handle = open(input.file_path, "rb")
        except OSError as exc:
            raise TosClientError(f"tos: open file {input.file_path} failed", exc, kind=ClientErrorKind.IO) from exc
        with handle:
            file_size = os.fstat(handle.fileno()).st_size
            part_size = input.part_size if input.part_size >= 0 else file_size - input.offset
            if input.offset < 0 or input.offset + part_size > file_size:
                raise TosClientError(
                    f"tos: part [{input.offset}, {input.offset + part_size}) exceeds file size {file_size}"
                )
            section = SectionReader(handle, input.offset, part_size)
            return self.upload_part(
                input.model_copy(update={"content": section, "content_length": part_size}),
                cancel_hook=cancel_hook,
            )

    def complete_multipart_upload(
        self, input: CompleteMultipartUploadInput, *, cancel_hook: Optional[CancelHook] = None
    ) -> CompleteMultipartUploadOutput:
        validate_names(input.bucket, input.key, is_custom_domain=self.is_custom_domain)
        builder = self._builder(input.bucket, input.key, cancel_hook).with_params(input)
        content: Optional[bytes] = None
        if input.complete_all:
            if input.parts:
                raise TosClientError("tos: complete all and parts can not be specified together")
            builder.with_header(HEADER_COMPLETE_ALL, "yes")
        else:
            if not input.parts:
                raise TosClientError("tos: parts of complete multipart upload can not be empty")
            content = input.body()
        response = builder.with_retry(on_retry_from_start, ServerErrorClassifier()).request(
            "POST", content, round_trip=self._round_tripper(200)
        )
        headers = response.headers
        body = parse_json_output(response, CompleteMultipartUploadBody)
        return CompleteMultipartUploadOutput(
            request_info=response.request_info(),
            bucket=body.bucket or input.bucket,
            key=body.key or input.key,
            etag=body.etag,
            location=body.location,
            version_id=headers.get(HEADER_VERSION_ID, ""),
            hash_crc64ecma=int(headers.get(HEADER_HASH_CRC64ECMA, "0") or 0),
        )

    def abort_multipart_upload(
        self, input: AbortMultipartUploadInput, *, cancel_hook: Optional[CancelHook] = None
    ) -> AbortMultipartUploadOutput:
        validate_names(input.bucket, input.key, is_custom_domain=self.is_custom_domain)
        response = (
            self._builder(input.bucket, input.key, cancel_hook)
            .with_params(input)
            .with_retry(None, StatusCodeClassifier())
            .request("DELETE", round_trip=self._round_tripper(204))
        )
        response.close()
        return AbortMultipartUploadOutput(request_info=response.request_info())

    def upload_part_copy(
        self, input: UploadPartCopyInput, *, cancel_hook: Optional[CancelHook] = None
    ) -> UploadPartCopyOutput:
        validate_names(input.bucket, input.key, is_custom_domain=self.is_custom_domain)
        validate_names(input.src_bucket, input.src_key)
        builder = (
            self._builder(input.bucket, input.key, cancel_hook)
            .with_params(input)
            .with_copy_source(input.src_bucket, input.src_key)
            .with_header(HEADER_COPY_SOURCE_RANGE, input.copy_range())
        )
        response = builder.with_retry(None, ServerErrorClassifier()).request(
            "PUT", round_trip=self._round_tripper(200)
        )
        headers = response.headers
        body = parse_json_output(response, UploadPartCopyBody)
        return UploadPartCopyOutput(
            request_info=response.request_info(),
            part_number=input.part_number,
            etag=body.etag,
            last_modified=body.last_modified,
            copy_source_version_id=headers.get(HEADER_COPY_SOURCE_VERSION_ID, ""),
        )

    def list_parts(self, input: ListPartsInput, *, cancel_hook: Optional[CancelHook] = None) -> ListPartsOutput:
        validate_names(input.bucket, input.key, is_custom_domain=self.is_custom_domain)
        response = (
            self._builder(input.bucket, input.key, cancel_hook)
            .with_params(input)
            .with_retry(None, StatusCodeClassifier())
            .request("GET", round_trip=self._round_tripper(200))
        )
        body = parse_json_output(response, ListPartsBody)
        return ListPartsOutput(request_info=response.request_info(), **body.model_dump())

    # ------------------------------------------------------------------
    # resumable transfers

    def upload_file(self, input: UploadFileInput) -> UploadFileOutput:
        return upload_file(self, input)

    def download_file(self, input: DownloadFileInput) -> DownloadFileOutput:
        return download_file(self, input)

    def resumable_copy_object(self, input: ResumableCopyObjectInput) -> ResumableCopyObjectOutput:
        return resumable_copy_object(self, input)

    # ------------------------------------------------------------------
    # signing

    def pre_signed_url(
        self,
        method: str,
        bucket: str,
        key: str = "",
        expires: int = DEFAULT_SIGN_EXPIRES,
        *,
        header: Optional[Dict[str, str]] = None,
        query: Optional[Dict[str, str]] = None,
        alternative_endpoint: str = "",
    ) -> str:
        """Return a URL carrying its signature in the query string.

        ``expires`` is in seconds, ``0`` meaning the default hour; anything
        outside ``[1, 604800]`` is rejected.
        """
        validate_bucket_name(bucket, is_custom_domain=self.is_custom_domain)
        if expires == 0:
            expires = DEFAULT_SIGN_EXPIRES
        validate_expires(expires)
        builder = self._builder(bucket, key)
        if alternative_endpoint:
            builder.host = parse_endpoint(alternative_endpoint).host
        for name, value in (header or {}).items():
            builder.with_header(name, value)
        for name, value in (query or {}).items():
            builder.with_query(name, value)
        if "User-Agent" in builder.header:
            del builder.header["User-Agent"]
        return builder.pre_signed_url(method.upper(), expires)

    def pre_signed_post_signature(self, input: PreSignedPostSignatureInput) -> PreSignedPostSignatureOutput:
        """Sign a browser POST policy for ``input.bucket``/``input.key``."""
        if self.signer is None:
            raise TosClientError("tos: pre-signed post signature requires credentials")
        if input.bucket:
            validate_bucket_name(input.bucket, is_custom_domain=self.is_custom_domain)
        expires = input.expires or DEFAULT_SIGN_EXPIRES
        validate_expires(expires)
        content_range = None
        if input.content_length_range is not None:
            content_range = (input.content_length_range.start, input.content_length_range.end)
        signed = self.signer.sign_post_policy(
            bucket=input.bucket,
            key=input.key,
            expires=expires,
            conditions=[(cond.key, cond.value, cond.operator) for cond in input.conditions],
            content_length_range=content_range,
        )
        return PreSignedPostSignatureOutput(**signed)


# === NAVMAP v1 ===
# {
#   "module": "tos.client",
#   "purpose": "Expose object, multipart and resumable-transfer operations behind one client",
#   "sections": [
#     {"id": "endpoint", "name": "Endpoint parsing", "anchor": "END", "kind": "helpers"},
#     {"id": "client", "name": "TosClient", "anchor": "CLI", "kind": "api"},
#     {"id": "reload", "name": "Hot reload", "anchor": "REL", "kind": "api"},
#     {"id": "objects", "name": "Object operations", "anchor": "OBJ", "kind": "api"},
#     {"id": "multipart", "name": "Multipart operations", "anchor": "MPU", "kind": "api"},
#     {"id": "signing", "name": "Pre-signing", "anchor": "SIG", "kind": "api"}
#   ]
# }
# === /NAVMAP ===
