"""Wire constants and defaults shared across the client core."""

from __future__ import annotations

__all__ = [
    "SDK_VERSION",
    "DEFAULT_SIGN_EXPIRES",
    "MAX_PRESIGNED_EXPIRES",
    "MIN_PART_SIZE",
    "MAX_PART_SIZE",
    "DEFAULT_PART_SIZE",
    "MAX_PART_COUNT",
    "MAX_TASK_NUM",
    "TEMP_FILE_SUFFIX",
    "SUPPORTED_REGIONS",
    "supported_endpoints",
]

SDK_VERSION = "0.3.0"

# Signature V4
SIGN_PREFIX = "TOS4-HMAC-SHA256"
ISO8601_FORMAT = "%Y%m%dT%H%M%SZ"
YYMMDD_FORMAT = "%Y%m%d"
SERVER_TIME_FORMAT = "%Y-%m-%dT%H:%M:%S.000Z"
EMPTY_SHA256 = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
UNSIGNED_PAYLOAD = "UNSIGNED-PAYLOAD"
STREAMING_UNSIGNED_PAYLOAD_TRAILER = "STREAMING-UNSIGNED-PAYLOAD-TRAILER"

DEFAULT_SIGN_EXPIRES = 3600
MAX_PRESIGNED_EXPIRES = 604800

# Request headers
HEADER_AUTHORIZATION = "Authorization"
HEADER_DATE = "Date"
HEADER_HOST = "Host"
HEADER_USER_AGENT = "User-Agent"
HEADER_CONTENT_LENGTH = "Content-Length"
HEADER_CONTENT_TYPE = "Content-Type"
HEADER_CONTENT_MD5 = "Content-MD5"
HEADER_CONTENT_ENCODING = "Content-Encoding"
HEADER_CONTENT_DISPOSITION = "Content-Disposition"
HEADER_CONTENT_RANGE = "Content-Range"
HEADER_CONTENT_LANGUAGE = "Content-Language"
HEADER_CACHE_CONTROL = "Cache-Control"
HEADER_EXPIRES = "Expires"
HEADER_RANGE = "Range"
HEADER_ETAG = "ETag"
HEADER_LAST_MODIFIED = "Last-Modified"
HEADER_IF_MATCH = "If-Match"
HEADER_IF_NONE_MATCH = "If-None-Match"
HEADER_IF_MODIFIED_SINCE = "If-Modified-Since"
HEADER_IF_UNMODIFIED_SINCE = "If-Unmodified-Since"
HEADER_RETRY_AFTER = "Retry-After"
HEADER_ACCEPT_ENCODING = "Accept-Encoding"

HEADER_TOS_DATE = "X-Tos-Date"
HEADER_CONTENT_SHA256 = "X-Tos-Content-Sha256"
HEADER_SECURITY_TOKEN = "X-Tos-Security-Token"
HEADER_ACCOUNT_ID = "X-Tos-Account-Id"
HEADER_TRAILER = "X-Tos-Trailer"
HEADER_RAW_CONTENT_LENGTH = "X-Tos-Raw-Content-Length"
HEADER_SDK_RETRY_COUNT = "X-Sdk-Retry-Count"
HEADER_ACL = "X-Tos-Acl"
HEADER_STORAGE_CLASS = "X-Tos-Storage-Class"
HEADER_META_PREFIX = "X-Tos-Meta-"
HEADER_COPY_SOURCE = "X-Tos-Copy-Source"
HEADER_COPY_SOURCE_RANGE = "X-Tos-Copy-Source-Range"
HEADER_SSEC_ALGORITHM = "X-Tos-Server-Side-Encryption-Customer-Algorithm"
HEADER_SSEC_KEY = "X-Tos-Server-Side-Encryption-Customer-Key"
HEADER_SSEC_KEY_MD5 = "X-Tos-Server-Side-Encryption-Customer-Key-MD5"
HEADER_SERVER_SIDE_ENCRYPTION = "X-Tos-Server-Side-Encryption"
HEADER_TRAFFIC_LIMIT = "X-Tos-Traffic-Limit"
HEADER_FORBID_OVERWRITE = "X-Tos-Forbid-Overwrite"
HEADER_COMPLETE_ALL = "X-Tos-Complete-All"

# Response headers
HEADER_REQUEST_ID = "X-Tos-Request-Id"
HEADER_ID2 = "X-Tos-Id-2"
HEADER_EC = "X-Tos-Ec"
HEADER_VERSION_ID = "X-Tos-Version-Id"
HEADER_HASH_CRC64ECMA = "X-Tos-Hash-Crc64ecma"
HEADER_NEXT_APPEND_OFFSET = "X-Tos-Next-Append-Offset"
HEADER_OBJECT_TYPE = "X-Tos-Object-Type"
HEADER_DELETE_MARKER = "X-Tos-Delete-Marker"
HEADER_COPY_SOURCE_VERSION_ID = "X-Tos-Copy-Source-Version-Id"

# Chunked upload framing
TOS_CHUNKED_ENCODING = "tos-chunked"
TOS_RAW_TRAILER_ENCODING = "tos-raw-trailer"
TRAILER_CRC64 = "x-tos-hash-crc64ecma"
TRAILER_RANGE_CRC64 = "x-tos-hash-range-crc64ecma"
DEFAULT_CHUNK_SIZE = 64 * 1024

# Multipart planning
MIN_PART_SIZE = 5 * 1024 * 1024
MAX_PART_SIZE = 5 * 1024 * 1024 * 1024
DEFAULT_PART_SIZE = 20 * 1024 * 1024
MAX_PART_COUNT = 10000
MAX_TASK_NUM = 1000
MAX_TASK_QUEUE = 100
TEMP_FILE_SUFFIX = ".temp"

# Error body parsing
MAX_ERROR_BODY = 64 * 1024

# Status codes that abort a multipart transfer instead of failing a single part
FATAL_MULTIPART_STATUS = frozenset({403, 404, 405})

DEFAULT_ECS_URL = "http://100.96.0.96/volcstack/latest/iam/security_credentials/{role_name}"
ECS_ROLE_PLACEHOLDER = "{role_name}"

SUPPORTED_REGIONS = {
    "cn-beijing": "tos-cn-beijing.volces.com",
    "cn-shanghai": "tos-cn-shanghai.volces.com",
    "cn-guangzhou": "tos-cn-guangzhou.volces.com",
    "cn-hongkong": "tos-cn-hongkong.volces.com",
    "ap-southeast-1": "tos-ap-southeast-1.volces.com",
}

# Substrings marking endpoints of a different service family
DISALLOWED_ENDPOINT_MARKERS = ("tos-s3-", "s3-tos-")


def supported_endpoints() -> dict[str, str]:
    """Return the endpoint -> region table derived from :data:`SUPPORTED_REGIONS`."""
    return {endpoint: region for region, endpoint in SUPPORTED_REGIONS.items()}
