"""Event records delivered to data-transfer and multipart listeners."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

__all__ = [
    "DataTransferType",
    "DataTransferStatus",
    "DataTransferListener",
    "UploadEventType",
    "DownloadEventType",
    "CopyEventType",
    "PartEventInfo",
    "UploadEvent",
    "DownloadEvent",
    "CopyEvent",
    "post_event",
]

logger = logging.getLogger(__name__)


class DataTransferType(enum.Enum):
    STARTED = "started"
    RW = "rw"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class DataTransferStatus:
    consumed_bytes: int
    total_bytes: int
    rw_once_bytes: int
    type: DataTransferType
    retry_count: int = 0


DataTransferListener = Callable[[DataTransferStatus], None]


class UploadEventType(enum.Enum):
    CREATE_MULTIPART_UPLOAD_SUCCEED = "create_multipart_upload_succeed"
    CREATE_MULTIPART_UPLOAD_FAILED = "create_multipart_upload_failed"
    UPLOAD_PART_SUCCEED = "upload_part_succeed"
    UPLOAD_PART_FAILED = "upload_part_failed"
    UPLOAD_PART_ABORTED = "upload_part_aborted"
    COMPLETE_MULTIPART_UPLOAD_SUCCEED = "complete_multipart_upload_succeed"
    COMPLETE_MULTIPART_UPLOAD_FAILED = "complete_multipart_upload_failed"


class DownloadEventType(enum.Enum):
    CREATE_TEMP_FILE_SUCCEED = "create_temp_file_succeed"
    CREATE_TEMP_FILE_FAILED = "create_temp_file_failed"
    DOWNLOAD_PART_SUCCEED = "download_part_succeed"
    DOWNLOAD_PART_FAILED = "download_part_failed"
    DOWNLOAD_PART_ABORTED = "download_part_aborted"
    RENAME_TEMP_FILE_SUCCEED = "rename_temp_file_succeed"
    RENAME_TEMP_FILE_FAILED = "rename_temp_file_failed"


class CopyEventType(enum.Enum):
    CREATE_MULTIPART_UPLOAD_SUCCEED = "create_multipart_upload_succeed"
    CREATE_MULTIPART_UPLOAD_FAILED = "create_multipart_upload_failed"
    UPLOAD_PART_COPY_SUCCEED = "upload_part_copy_succeed"
    UPLOAD_PART_COPY_FAILED = "upload_part_copy_failed"
    UPLOAD_PART_COPY_ABORTED = "upload_part_copy_aborted"
    COMPLETE_MULTIPART_UPLOAD_SUCCEED = "complete_multipart_upload_succeed"
    COMPLETE_MULTIPART_UPLOAD_FAILED = "complete_multipart_upload_failed"


@dataclass
class PartEventInfo:
    part_number: int
    offset: int
    size: int
    etag: str = ""
    hash_crc64ecma: int = 0


@dataclass
class UploadEvent:
    type: UploadEventType
    bucket: str
    key: str
    upload_id: str = ""
    file_path: str = ""
    checkpoint_file: Optional[str] = None
    part: Optional[PartEventInfo] = None
    error: Optional[BaseException] = None


@dataclass
class DownloadEvent:
    type: DownloadEventType
    bucket: str
    key: str
    version_id: str = ""
    file_path: str = ""
    temp_file_path: str = ""
    checkpoint_file: Optional[str] = None
    part: Optional[PartEventInfo] = None
    error: Optional[BaseException] = None


@dataclass
class CopyEvent:
    type: CopyEventType
    bucket: str
    key: str
    src_bucket: str
    src_key: str
    upload_id: str = ""
    checkpoint_file: Optional[str] = None
    part: Optional[PartEventInfo] = None
    error: Optional[BaseException] = None


def post_event(listener: Optional[Callable[[Any], None]], event: Any) -> None:
    """Deliver ``event``; listener failures are logged and never interrupt a transfer."""
    if listener is None:
        return
    try:
        listener(event)
    except Exception:
        logger.exception("event listener raised", extra={"event_type": str(getattr(event, "type", ""))})
