"""Input and output models of the object and multipart operations.

Inputs declare how their fields map onto the wire with two explicit tables,
``HEADER_FIELDS`` (field name -> header) and ``QUERY_FIELDS`` (field name -> query
parameter).  :meth:`Params.header_params` and :meth:`Params.query_params`
render the populated fields; user metadata in ``meta`` becomes
``X-Tos-Meta-*`` headers.  Non-ASCII metadata is percent-encoded, and so is
the ``filename=`` attribute of ``Content-Disposition``.

Outputs are built from response headers (and, for a few multipart calls,
from a JSON body parsed through the ``*Body`` wire models).
"""

from __future__ import annotations

import email.utils
import json
from datetime import datetime, timezone
from typing import Any, ClassVar, Dict, FrozenSet, List, Mapping, Optional
from urllib.parse import unquote

from pydantic import BaseModel, ConfigDict, Field

from .consts import (
    HEADER_ACL,
    HEADER_CACHE_CONTROL,
    HEADER_CONTENT_DISPOSITION,
    HEADER_CONTENT_ENCODING,
    HEADER_CONTENT_LANGUAGE,
    HEADER_CONTENT_LENGTH,
    HEADER_CONTENT_MD5,
    HEADER_CONTENT_RANGE,
    HEADER_CONTENT_TYPE,
    HEADER_ETAG,
    HEADER_EXPIRES,
    HEADER_FORBID_OVERWRITE,
    HEADER_HASH_CRC64ECMA,
    HEADER_IF_MATCH,
    HEADER_IF_MODIFIED_SINCE,
    HEADER_IF_NONE_MATCH,
    HEADER_IF_UNMODIFIED_SINCE,
    HEADER_LAST_MODIFIED,
    HEADER_META_PREFIX,
    HEADER_OBJECT_TYPE,
    HEADER_SERVER_SIDE_ENCRYPTION,
    HEADER_SSEC_ALGORITHM,
    HEADER_SSEC_KEY,
    HEADER_SSEC_KEY_MD5,
    HEADER_STORAGE_CLASS,
    HEADER_TRAFFIC_LIMIT,
    HEADER_VERSION_ID,
    TOS_RAW_TRAILER_ENCODING,
)

__all__ = [
    "Params",
    "RequestInfo",
    "ObjectMeta",
    "PutObjectInput",
    "PutObjectFromFileInput",
    "PutObjectOutput",
    "GetObjectInput",
    "GetObjectToFileInput",
    "GetObjectOutput",
    "HeadObjectInput",
    "HeadObjectOutput",
    "DeleteObjectInput",
    "DeleteObjectOutput",
    "AppendObjectInput",
    "AppendObjectOutput",
    "CreateMultipartUploadInput",
    "CreateMultipartUploadOutput",
    "UploadPartInput",
    "UploadPartFromFileInput",
    "UploadPartOutput",
    "UploadedPart",
    "CompleteMultipartUploadInput",
    "CompleteMultipartUploadOutput",
    "AbortMultipartUploadInput",
    "AbortMultipartUploadOutput",
    "UploadPartCopyInput",
    "UploadPartCopyOutput",
    "ListPartsInput",
    "ListPartsOutput",
    "ListedPart",
    "PreSignedPostSignatureInput",
    "PreSignedPostSignatureOutput",
    "UploadFileInput",
    "UploadFileOutput",
    "DownloadFileInput",
    "DownloadFileOutput",
    "ResumableCopyObjectInput",
    "ResumableCopyObjectOutput",
    "PostSignatureCondition",
    "ContentLengthRange",
    "encode_header_value",
    "encode_content_disposition",
    "user_metadata",
]

_UNRESERVED = frozenset(b"ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-._~")
_DISPOSITION_SAFE = _UNRESERVED | frozenset(b" '\"")


def _escape(value: str, safe: FrozenSet[int]) -> str:
    return "".join(chr(b) if b in safe else "%%%02X" % b for b in value.encode("utf-8"))


def encode_header_value(value: str) -> str:
    """Percent-encode every byte outside ``[A-Za-z0-9-._~]``."""
    return _escape(value, _UNRESERVED)


def encode_content_disposition(value: str) -> str:
    """Encode only the ``filename=`` attribute of a ``Content-Disposition`` value."""
    parts = []
    for item in value.split(";"):
        name, sep, rest = item.partition("=")
        if sep and name.strip().lower() == "filename":
            parts.append(f"{name}={_escape(rest, _DISPOSITION_SAFE)}")
        else:
            parts.append(item)
    return ";".join(parts)


def _format_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value) if value != 0 else ""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return email.utils.format_datetime(value.astimezone(timezone.utc), usegmt=True)
    return str(value)


def _parse_http_date(value: str) -> Optional[datetime]:
    if not value:
        return None
    try:
        return email.utils.parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None


def _parse_int(value: Optional[str]) -> int:
    try:
        return int(value) if value else 0
    except ValueError:
        return 0


def user_metadata(headers: Mapping[str, str], *, decode: bool = True) -> Dict[str, str]:
    """Collect ``X-Tos-Meta-*`` headers into a lower-cased dictionary."""
    prefix = HEADER_META_PREFIX.lower()
    meta: Dict[str, str] = {}
    for key, value in headers.items():
        if not key.lower().startswith(prefix):
            continue
        name = key[len(prefix):]
        if decode:
            name, value = unquote(name), unquote(value)
        meta[name.lower()] = value
    return meta


class RequestInfo(BaseModel):
    request_id: str = ""
    id2: str = ""
    status_code: int = 0
    ec: str = ""
    headers: Dict[str, str] = Field(default_factory=dict)


class Params(BaseModel):
    """Base of every operation input."""

    HEADER_FIELDS: ClassVar[Dict[str, str]] = {}
    QUERY_FIELDS: ClassVar[Dict[str, str]] = {}
    # header fields percent-encoded before sending
    ENCODED_FIELDS: ClassVar[FrozenSet[str]] = frozenset()

    model_config = ConfigDict(arbitrary_types_allowed=True, validate_assignment=True)

    def header_params(self, *, encode_meta: bool = True) -> Dict[str, str]:
        headers: Dict[str, str] = {}
        for field_name, header in self.HEADER_FIELDS.items():
            value = _format_value(getattr(self, field_name))
            if not value:
                continue
            if encode_meta and field_name in self.ENCODED_FIELDS:
                if header == HEADER_CONTENT_DISPOSITION:
                    value = encode_content_disposition(value)
                else:
                    value = encode_header_value(value)
            headers[header] = value
        meta = getattr(self, "meta", None) or {}
        for key, value in meta.items():
            if encode_meta:
                key, value = encode_header_value(key), encode_header_value(value)
            headers[HEADER_META_PREFIX + key] = value
        return headers

    def query_params(self) -> Dict[str, str]:
        query: Dict[str, str] = {}
        for field_name, name in self.QUERY_FIELDS.items():
            value = _format_value(getattr(self, field_name))
            if value:
                query[name] = value
        return query


_SSEC_HEADERS = {
    "ssec_algorithm": HEADER_SSEC_ALGORITHM,
    "ssec_key": HEADER_SSEC_KEY,
    "ssec_key_md5": HEADER_SSEC_KEY_MD5,
}

_OBJECT_HEADERS = {
    "content_type": HEADER_CONTENT_TYPE,
    "cache_control": HEADER_CACHE_CONTROL,
    "content_disposition": HEADER_CONTENT_DISPOSITION,
    "content_encoding": HEADER_CONTENT_ENCODING,
    "content_language": HEADER_CONTENT_LANGUAGE,
    "expires": HEADER_EXPIRES,
    "acl": HEADER_ACL,
    "storage_class": HEADER_STORAGE_CLASS,
    "server_side_encryption": HEADER_SERVER_SIDE_ENCRYPTION,
    **_SSEC_HEADERS,
}

_CONDITIONAL_HEADERS = {
    "if_match": HEADER_IF_MATCH,
    "if_none_match": HEADER_IF_NONE_MATCH,
    "if_modified_since": HEADER_IF_MODIFIED_SINCE,
    "if_unmodified_since": HEADER_IF_UNMODIFIED_SINCE,
}


class _ObjectFields(Params):
    bucket: str
    key: str
    content_type: str = ""
    cache_control: str = ""
    content_disposition: str = ""
    content_encoding: str = ""
    content_language: str = ""
    expires: Optional[datetime] = None
    acl: str = ""
    storage_class: str = ""
    server_side_encryption: str = ""
    ssec_algorithm: str = ""
    ssec_key: str = ""
    ssec_key_md5: str = ""
    meta: Dict[str, str] = Field(default_factory=dict)

    ENCODED_FIELDS: ClassVar[FrozenSet[str]] = frozenset({"content_disposition"})


class _TransferFields(BaseModel):
    data_transfer_listener: Optional[Any] = Field(default=None, exclude=True)
    rate_limiter: Optional[Any] = Field(default=None, exclude=True)
    traffic_limit: int = 0


# ----------------------------------------------------------------------
# object meta


class ObjectMeta(BaseModel):
    content_length: int = 0
    content_type: str = ""
    content_md5: str = ""
    content_language: str = ""
    content_encoding: str = ""
    content_disposition: str = ""
    content_range: str = ""
    cache_control: str = ""
    expires: Optional[datetime] = None
    last_modified: Optional[datetime] = None
    etag: str = ""
    version_id: str = ""
    object_type: str = ""
    storage_class: str = ""
    hash_crc64ecma: int = 0
    ssec_algorithm: str = ""
    ssec_key_md5: str = ""
    meta: Dict[str, str] = Field(default_factory=dict)

    @classmethod
    def header_fields(cls, headers: Mapping[str, str], *, decode_meta: bool = True) -> Dict[str, Any]:
        disposition = headers.get(HEADER_CONTENT_DISPOSITION, "")
        encoding = headers.get(HEADER_CONTENT_ENCODING, "")
        prefix = TOS_RAW_TRAILER_ENCODING + ","
        if encoding.startswith(prefix):
            encoding = encoding[len(prefix):]
        elif encoding == TOS_RAW_TRAILER_ENCODING:
            encoding = ""
        return dict(
            content_length=_parse_int(headers.get(HEADER_CONTENT_LENGTH)),
            content_type=headers.get(HEADER_CONTENT_TYPE, ""),
            content_md5=headers.get(HEADER_CONTENT_MD5, ""),
            content_language=headers.get(HEADER_CONTENT_LANGUAGE, ""),
            content_encoding=encoding,
            content_disposition=unquote(disposition) if decode_meta else disposition,
            content_range=headers.get(HEADER_CONTENT_RANGE, ""),
            cache_control=headers.get(HEADER_CACHE_CONTROL, ""),
            expires=_parse_http_date(headers.get(HEADER_EXPIRES, "")),
            last_modified=_parse_http_date(headers.get(HEADER_LAST_MODIFIED, "")),
            etag=headers.get(HEADER_ETAG, ""),
            version_id=headers.get(HEADER_VERSION_ID, ""),
            object_type=headers.get(HEADER_OBJECT_TYPE, ""),
            storage_class=headers.get(HEADER_STORAGE_CLASS, ""),
            hash_crc64ecma=_parse_int(headers.get(HEADER_HASH_CRC64ECMA)),
            ssec_algorithm=headers.get(HEADER_SSEC_ALGORITHM, ""),
            ssec_key_md5=headers.get(HEADER_SSEC_KEY_MD5, ""),
            meta=user_metadata(headers, decode=decode_meta),
        )


# ----------------------------------------------------------------------
# put / append


class PutObjectInput(_ObjectFields, _TransferFields):
    content: Optional[Any] = Field(default=None, exclude=True)
    content_length: Optional[int] = None
    content_md5: str = ""
    forbid_overwrite: Optional[bool] = None

    HEADER_FIELDS: ClassVar[Dict[str, str]] = {
        **_OBJECT_HEADERS,
        "content_md5": HEADER_CONTENT_MD5,
        "traffic_limit": HEADER_TRAFFIC_LIMIT,
        "forbid_overwrite": HEADER_FORBID_OVERWRITE,
    }


class PutObjectFromFileInput(PutObjectInput):
    file_path: str


class PutObjectOutput(BaseModel):
    request_info: RequestInfo
    etag: str = ""
    version_id: str = ""
    hash_crc64ecma: int = 0
    ssec_algorithm: str = ""
    ssec_key_md5: str = ""


class AppendObjectInput(_ObjectFields, _TransferFields):
    offset: int = 0
    content: Optional[Any] = Field(default=None, exclude=True)
    content_length: Optional[int] = None
    pre_hash_crc64ecma: int = 0

    HEADER_FIELDS: ClassVar[Dict[str, str]] = {**_OBJECT_HEADERS, "traffic_limit": HEADER_TRAFFIC_LIMIT}

    def query_params(self) -> Dict[str, str]:
        # offset 0 is meaningful for append
        return {"append": "", "offset": str(self.offset)}


class AppendObjectOutput(BaseModel):
    request_info: RequestInfo
    version_id: str = ""
    next_append_offset: int = 0
    hash_crc64ecma: int = 0


# ----------------------------------------------------------------------
# get / head / delete


class GetObjectInput(Params, _TransferFields):
    bucket: str
    key: str
    version_id: str = ""
    if_match: str = ""
    if_none_match: str = ""
    if_modified_since: Optional[datetime] = None
    if_unmodified_since: Optional[datetime] = None
    range_start: Optional[int] = None
    range_end: Optional[int] = None
    range: str = ""
    part_number: int = 0
    response_cache_control: str = ""
    response_content_disposition: str = ""
    response_content_encoding: str = ""
    response_content_language: str = ""
    response_content_type: str = ""
    response_expires: Optional[datetime] = None
    ssec_algorithm: str = ""
    ssec_key: str = ""
    ssec_key_md5: str = ""

    HEADER_FIELDS: ClassVar[Dict[str, str]] = {
        **_CONDITIONAL_HEADERS,
        **_SSEC_HEADERS,
        "traffic_limit": HEADER_TRAFFIC_LIMIT,
    }
    QUERY_FIELDS: ClassVar[Dict[str, str]] = {
        "version_id": "versionId",
        "part_number": "partNumber",
        "response_cache_control": "response-cache-control",
        "response_content_disposition": "response-content-disposition",
        "response_content_encoding": "response-content-encoding",
        "response_content_language": "response-content-language",
        "response_content_type": "response-content-type",
        "response_expires": "response-expires",
    }

    def range_header(self) -> str:
        if self.range:
            return self.range
        if self.range_start is None and self.range_end is None:
            return ""
        start = "" if self.range_start is None else str(self.range_start)
        end = "" if self.range_end is None else str(self.range_end)
        return f"bytes={start}-{end}"


class GetObjectToFileInput(GetObjectInput):
    file_path: str


class GetObjectOutput(ObjectMeta):
    request_info: RequestInfo
    content: Optional[Any] = Field(default=None, exclude=True)

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def read(self, size: int = -1) -> bytes:
        return self.content.read(size)

    def close(self) -> None:
        if self.content is not None:
            self.content.close()

    def __enter__(self) -> "GetObjectOutput":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


class HeadObjectInput(Params):
    bucket: str
    key: str
    version_id: str = ""
    if_match: str = ""
    if_none_match: str = ""
    if_modified_since: Optional[datetime] = None
    if_unmodified_since: Optional[datetime] = None
    ssec_algorithm: str = ""
    ssec_key: str = ""
    ssec_key_md5: str = ""

    HEADER_FIELDS: ClassVar[Dict[str, str]] = {**_CONDITIONAL_HEADERS, **_SSEC_HEADERS}
    QUERY_FIELDS: ClassVar[Dict[str, str]] = {"version_id": "versionId"}


class HeadObjectOutput(ObjectMeta):
    request_info: RequestInfo


class DeleteObjectInput(Params):
    bucket: str
    key: str
    version_id: str = ""

    QUERY_FIELDS: ClassVar[Dict[str, str]] = {"version_id": "versionId"}


class DeleteObjectOutput(BaseModel):
    request_info: RequestInfo
    delete_marker: bool = False
    version_id: str = ""


# ----------------------------------------------------------------------
# multipart


class CreateMultipartUploadInput(_ObjectFields):
    encoding_type: str = ""
    forbid_overwrite: Optional[bool] = None

    HEADER_FIELDS: ClassVar[Dict[str, str]] = {
        **_OBJECT_HEADERS,
        "forbid_overwrite": HEADER_FORBID_OVERWRITE,
    }
    QUERY_FIELDS: ClassVar[Dict[str, str]] = {"encoding_type": "encoding-type"}


class CreateMultipartUploadBody(BaseModel):
    bucket: str = Field(default="", alias="Bucket")
    key: str = Field(default="", alias="Key")
    upload_id: str = Field(alias="UploadId")
    encoding_type: str = Field(default="", alias="EncodingType")

    model_config = ConfigDict(populate_by_name=True)


class CreateMultipartUploadOutput(BaseModel):
    request_info: RequestInfo
    bucket: str
    key: str
    upload_id: str
    encoding_type: str = ""
    ssec_algorithm: str = ""
    ssec_key_md5: str = ""


class UploadPartInput(Params, _TransferFields):
    bucket: str
    key: str
    upload_id: str
    part_number: int
    content: Optional[Any] = Field(default=None, exclude=True)
    content_length: Optional[int] = None
    content_md5: str = ""
    ssec_algorithm: str = ""
    ssec_key: str = ""
    ssec_key_md5: str = ""

    HEADER_FIELDS: ClassVar[Dict[str, str]] = {
        "content_md5": HEADER_CONTENT_MD5,
        "traffic_limit": HEADER_TRAFFIC_LIMIT,
        **_SSEC_HEADERS,
    }
    QUERY_FIELDS: ClassVar[Dict[str, str]] = {"upload_id": "uploadId", "part_number": "partNumber"}


class UploadPartFromFileInput(UploadPartInput):
    file_path: str
    offset: int = 0
    part_size: int = -1


class UploadPartOutput(BaseModel):
    request_info: RequestInfo
    part_number: int
    etag: str = ""
    hash_crc64ecma: int = 0
    ssec_algorithm: str = ""
    ssec_key_md5: str = ""


class UploadedPart(BaseModel):
    part_number: int = Field(alias="PartNumber")
    etag: str = Field(alias="ETag")

    model_config = ConfigDict(populate_by_name=True)


class CompleteMultipartUploadInput(Params):
    bucket: str
    key: str
    upload_id: str
    parts: List[UploadedPart] = Field(default_factory=list)
    complete_all: bool = False

    QUERY_FIELDS: ClassVar[Dict[str, str]] = {"upload_id": "uploadId"}

    def body(self) -> bytes:
        ordered = sorted(self.parts, key=lambda part: part.part_number)
        payload = {"Parts": [part.model_dump(by_alias=True) for part in ordered]}
        return json.dumps(payload).encode("utf-8")


class CompleteMultipartUploadBody(BaseModel):
    bucket: str = Field(default="", alias="Bucket")
    key: str = Field(default="", alias="Key")
    etag: str = Field(default="", alias="ETag")
    location: str = Field(default="", alias="Location")

    model_config = ConfigDict(populate_by_name=True)


class CompleteMultipartUploadOutput(BaseModel):
    request_info: RequestInfo
    bucket: str = ""
    key: str = ""
    etag: str = ""
    location: str = ""
    version_id: str = ""
    hash_crc64ecma: int = 0


class AbortMultipartUploadInput(Params):
    bucket: str
    key: str
    upload_id: str

    QUERY_FIELDS: ClassVar[Dict[str, str]] = {"upload_id": "uploadId"}


class AbortMultipartUploadOutput(BaseModel):
    request_info: RequestInfo


class UploadPartCopyInput(Params):
    bucket: str
    key: str
    upload_id: str
    part_number: int
    src_bucket: str
    src_key: str
    src_version_id: str = ""
    copy_source_range_start: Optional[int] = None
    copy_source_range_end: Optional[int] = None
    copy_source_if_match: str = ""
    copy_source_if_none_match: str = ""
    copy_source_if_modified_since: Optional[datetime] = None
    copy_source_if_unmodified_since: Optional[datetime] = None
    copy_source_ssec_algorithm: str = ""
    copy_source_ssec_key: str = ""
    copy_source_ssec_key_md5: str = ""
    ssec_algorithm: str = ""
    ssec_key: str = ""
    ssec_key_md5: str = ""
    traffic_limit: int = 0

    HEADER_FIELDS: ClassVar[Dict[str, str]] = {
        "copy_source_if_match": "X-Tos-Copy-Source-If-Match",
        "copy_source_if_none_match": "X-Tos-Copy-Source-If-None-Match",
        "copy_source_if_modified_since": "X-Tos-Copy-Source-If-Modified-Since",
        "copy_source_if_unmodified_since": "X-Tos-Copy-Source-If-Unmodified-Since",
        "copy_source_ssec_algorithm": "X-Tos-Copy-Source-Server-Side-Encryption-Customer-Algorithm",
        "copy_source_ssec_key": "X-Tos-Copy-Source-Server-Side-Encryption-Customer-Key",
        "copy_source_ssec_key_md5": "X-Tos-Copy-Source-Server-Side-Encryption-Customer-Key-MD5",
        "traffic_limit": HEADER_TRAFFIC_LIMIT,
        **_SSEC_HEADERS,
    }
    # versionId names the source version; the builder moves it into the copy source
    QUERY_FIELDS: ClassVar[Dict[str, str]] = {
        "upload_id": "uploadId",
        "part_number": "partNumber",
        "src_version_id": "versionId",
    }

    def copy_range(self) -> str:
        if self.copy_source_range_start is None or self.copy_source_range_end is None:
            return ""
        return f"bytes={self.copy_source_range_start}-{self.copy_source_range_end}"


class UploadPartCopyBody(BaseModel):
    etag: str = Field(default="", alias="ETag")
    last_modified: str = Field(default="", alias="LastModified")

    model_config = ConfigDict(populate_by_name=True)


class UploadPartCopyOutput(BaseModel):
    request_info: RequestInfo
    part_number: int
    etag: str = ""
    last_modified: str = ""
    copy_source_version_id: str = ""


class ListPartsInput(Params):
    bucket: str
    key: str
    upload_id: str
    part_number_marker: int = 0
    max_parts: int = 0
    encoding_type: str = ""

    QUERY_FIELDS: ClassVar[Dict[str, str]] = {
        "upload_id": "uploadId",
        "part_number_marker": "part-number-marker",
        "max_parts": "max-parts",
        "encoding_type": "encoding-type",
    }


class ListedPart(BaseModel):
    part_number: int = Field(alias="PartNumber")
    etag: str = Field(default="", alias="ETag")
    size: int = Field(default=0, alias="Size")
    last_modified: str = Field(default="", alias="LastModified")

    model_config = ConfigDict(populate_by_name=True)


class ListPartsBody(BaseModel):
    bucket: str = Field(default="", alias="Bucket")
    key: str = Field(default="", alias="Key")
    upload_id: str = Field(default="", alias="UploadId")
    part_number_marker: int = Field(default=0, alias="PartNumberMarker")
    next_part_number_marker: int = Field(default=0, alias="NextPartNumberMarker")
    max_parts: int = Field(default=0, alias="MaxParts")
    is_truncated: bool = Field(default=False, alias="IsTruncated")
    storage_class: str = Field(default="", alias="StorageClass")
    parts: List[ListedPart] = Field(default_factory=list, alias="Parts")

    model_config = ConfigDict(populate_by_name=True)


class ListPartsOutput(ListPartsBody):
    request_info: RequestInfo


# ----------------------------------------------------------------------
# pre-signed POST


class ContentLengthRange(BaseModel):
    start: int
    end: int


class PostSignatureCondition(BaseModel):
    key: str
    value: str
    operator: Optional[str] = None


class PreSignedPostSignatureInput(BaseModel):
    bucket: str = ""
    key: str = ""
    expires: int = 0
    conditions: List[PostSignatureCondition] = Field(default_factory=list)
    content_length_range: Optional[ContentLengthRange] = None


class PreSignedPostSignatureOutput(BaseModel):
    origin_policy: str
    policy: str
    algorithm: str
    credential: str
    date: str
    signature: str


# ----------------------------------------------------------------------
# resumable transfers


class _ResumableFields(BaseModel):
    part_size: int = 0
    task_num: int = 1
    enable_checkpoint: bool = False
    checkpoint_file: str = ""
    cancel_hook: Optional[Any] = Field(default=None, exclude=True)


class UploadFileInput(CreateMultipartUploadInput, _ResumableFields, _TransferFields):
    file_path: str
    upload_event_listener: Optional[Any] = Field(default=None, exclude=True)


class UploadFileOutput(BaseModel):
    request_info: RequestInfo
    bucket: str
    key: str
    upload_id: str
    etag: str = ""
    location: str = ""
    version_id: str = ""
    hash_crc64ecma: int = 0
    ssec_algorithm: str = ""
    ssec_key_md5: str = ""
    encoding_type: str = ""


class DownloadFileInput(HeadObjectInput, _ResumableFields, _TransferFields):
    file_path: str
    download_event_listener: Optional[Any] = Field(default=None, exclude=True)


class DownloadFileOutput(HeadObjectOutput):
    file_path: str = ""


class ResumableCopyObjectInput(CreateMultipartUploadInput, _ResumableFields):
    src_bucket: str
    src_key: str
    src_version_id: str = ""
    copy_source_if_match: str = ""
    copy_source_if_none_match: str = ""
    copy_source_if_modified_since: Optional[datetime] = None
    copy_source_if_unmodified_since: Optional[datetime] = None
    copy_source_ssec_algorithm: str = ""
    copy_source_ssec_key: str = ""
    copy_source_ssec_key_md5: str = ""
    traffic_limit: int = 0
    copy_event_listener: Optional[Any] = Field(default=None, exclude=True)


class ResumableCopyObjectOutput(UploadFileOutput):
    pass
