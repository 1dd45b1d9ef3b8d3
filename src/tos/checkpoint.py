"""Resumable-transfer checkpoints.

A checkpoint is a human-readable JSON file recording which parts of a
multipart upload, download or copy have completed.  It is loaded before any
part is issued, checked against the current inputs with ``is_valid_for``,
and rewritten atomically after every completed part.

Example:
    >>> cp = UploadCheckpoint(bucket="bkt", key="k", upload_id="u1", part_size=5 << 20,
    ...                       file_path="/tmp/a.bin", file_info=FileInfo(size=1, last_modified=0),
    ...                       parts=[PartInfo(part_number=1, offset=0, size=1)])
    >>> cp.pending_parts()[0].part_number
    1
"""

from __future__ import annotations

import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Type, TypeVar

from pydantic import BaseModel, Field, ValidationError

from .errors import ClientErrorKind, TosClientError
from .models import UploadedPart

__all__ = [
    "FileInfo",
    "PartInfo",
    "UploadCheckpoint",
    "DownloadObjectInfo",
    "DownloadFileInfo",
    "DownloadPartInfo",
    "DownloadCheckpoint",
    "CopySourceObjectInfo",
    "CopyPartInfo",
    "CopyCheckpoint",
    "load_checkpoint",
    "dump_checkpoint",
    "remove_checkpoint",
    "default_checkpoint_path",
    "file_info_of",
]

logger = logging.getLogger(__name__)

C = TypeVar("C", bound=BaseModel)


class FileInfo(BaseModel):
    size: int
    last_modified: int


def file_info_of(path: str) -> FileInfo:
    try:
        stat = os.stat(path)
    except OSError as exc:
        raise TosClientError(f"tos: stat file {path} failed", exc, kind=ClientErrorKind.IO) from exc
    return FileInfo(size=stat.st_size, last_modified=int(stat.st_mtime))


class _Checkpoint(BaseModel):
    checkpoint_path: str = Field(default="", exclude=True)


# ----------------------------------------------------------------------
# upload


class PartInfo(BaseModel):
    part_number: int
    offset: int
    size: int
    etag: str = ""
    hash_crc64ecma: int = 0
    is_completed: bool = False


class UploadCheckpoint(_Checkpoint):
    bucket: str
    key: str
    upload_id: str
    part_size: int
    ssec_algorithm: str = ""
    ssec_key_md5: str = ""
    encoding_type: str = ""
    file_path: str
    file_info: FileInfo
    parts: List[PartInfo] = Field(default_factory=list)

    def is_valid_for(
        self,
        *,
        bucket: str,
        key: str,
        file_path: str,
        file_info: FileInfo,
        part_size: int,
        ssec_key_md5: str = "",
    ) -> bool:
        return (
            bool(self.upload_id)
            and self.bucket == bucket
            and self.key == key
            and self.file_path == file_path
            and self.file_info == file_info
            and self.part_size == part_size
            and self.ssec_key_md5 == ssec_key_md5
        )

    def pending_parts(self) -> List[PartInfo]:
        return [part for part in self.parts if not part.is_completed]

    def update_part(self, part: PartInfo) -> None:
        self.parts[part.part_number - 1] = part

    def uploaded_parts(self) -> List[UploadedPart]:
        return [UploadedPart(part_number=part.part_number, etag=part.etag) for part in self.parts]


# ----------------------------------------------------------------------
# download


class DownloadObjectInfo(BaseModel):
    etag: str = ""
    hash_crc64ecma: int = 0
    last_modified: Optional[datetime] = None
    object_size: int = 0


class DownloadFileInfo(BaseModel):
    file_path: str
    temp_file_path: str


class DownloadPartInfo(BaseModel):
    part_number: int
    range_start: int
    range_end: int
    hash_crc64ecma: int = 0
    is_completed: bool = False

    @property
    def size(self) -> int:
        return self.range_end - self.range_start + 1


class DownloadCheckpoint(_Checkpoint):
    bucket: str
    key: str
    version_id: str = ""
    part_size: int
    if_match: str = ""
    if_none_match: str = ""
    if_modified_since: Optional[datetime] = None
    if_unmodified_since: Optional[datetime] = None
    ssec_algorithm: str = ""
    ssec_key_md5: str = ""
    object_info: DownloadObjectInfo
    file_info: DownloadFileInfo
    parts: List[DownloadPartInfo] = Field(default_factory=list)

    def is_valid_for(
        self,
        *,
        bucket: str,
        key: str,
        version_id: str,
        part_size: int,
        object_info: DownloadObjectInfo,
        file_path: str,
        ssec_key_md5: str = "",
    ) -> bool:
        return (
            self.bucket == bucket
            and self.key == key
            and self.version_id == version_id
            and self.part_size == part_size
            and self.object_info.etag == object_info.etag
            and self.object_info.object_size == object_info.object_size
            and self.file_info.file_path == file_path
            and self.ssec_key_md5 == ssec_key_md5
            and os.path.exists(self.file_info.temp_file_path)
        )

    def pending_parts(self) -> List[DownloadPartInfo]:
        return [part for part in self.parts if not part.is_completed]

    def update_part(self, part: DownloadPartInfo) -> None:
        self.parts[part.part_number - 1] = part


# ----------------------------------------------------------------------
# copy


class CopySourceObjectInfo(BaseModel):
    etag: str = ""
    hash_crc64ecma: int = 0
    last_modified: Optional[datetime] = None
    object_size: int = 0


class CopyPartInfo(BaseModel):
    part_number: int
    copy_source_range_start: int
    copy_source_range_end: int
    etag: str = ""
    is_completed: bool = False

    @property
    def size(self) -> int:
        return self.copy_source_range_end - self.copy_source_range_start + 1


class CopyCheckpoint(_Checkpoint):
    bucket: str
    key: str
    src_bucket: str
    src_key: str
    src_version_id: str = ""
    upload_id: str
    part_size: int
    copy_source_if_match: str = ""
    copy_source_if_none_match: str = ""
    copy_source_if_modified_since: Optional[datetime] = None
    copy_source_if_unmodified_since: Optional[datetime] = None
    copy_source_ssec_algorithm: str = ""
    copy_source_ssec_key_md5: str = ""
    ssec_algorithm: str = ""
    ssec_key_md5: str = ""
    encoding_type: str = ""
    source_object_info: CopySourceObjectInfo
    parts: List[CopyPartInfo] = Field(default_factory=list)

    def is_valid_for(
        self,
        *,
        bucket: str,
        key: str,
        src_bucket: str,
        src_key: str,
        src_version_id: str,
        part_size: int,
        source_object_info: CopySourceObjectInfo,
        ssec_key_md5: str = "",
    ) -> bool:
        return (
            bool(self.upload_id)
            and self.bucket == bucket
            and self.key == key
            and self.src_bucket == src_bucket
            and self.src_key == src_key
            and self.src_version_id == src_version_id
            and self.part_size == part_size
            and self.source_object_info.etag == source_object_info.etag
            and self.source_object_info.object_size == source_object_info.object_size
            and self.ssec_key_md5 == ssec_key_md5
        )

    def pending_parts(self) -> List[CopyPartInfo]:
        return [part for part in self.parts if not part.is_completed]

    def update_part(self, part: CopyPartInfo) -> None:
        self.parts[part.part_number - 1] = part

    def uploaded_parts(self) -> List[UploadedPart]:
        return [UploadedPart(part_number=part.part_number, etag=part.etag) for part in self.parts]


# ----------------------------------------------------------------------
# persistence


def default_checkpoint_path(checkpoint_file: str, base_path: str, bucket: str, key: str, kind: str) -> str:
    """Resolve where a checkpoint lives.

    An empty ``checkpoint_file`` derives ``<base_path>.<bucket>.<key>.<kind>``
    next to ``base_path``; a directory gets that name appended.  Path
    separators inside the key are replaced so the checkpoint stays one file.
    """
    safe_key = key.replace("/", "_").replace("\\", "_")
    name = f"{os.path.basename(base_path)}.{bucket}.{safe_key}.{kind}"
    if not checkpoint_file:
        return os.path.join(os.path.dirname(os.path.abspath(base_path)), name)
    if os.path.isdir(checkpoint_file):
        return os.path.join(checkpoint_file, name)
    return checkpoint_file


def load_checkpoint(path: str, model: Type[C]) -> Optional[C]:
    """Return the checkpoint stored at ``path``, or ``None`` when absent or unreadable."""
    try:
        data = Path(path).read_bytes()
    except FileNotFoundError:
        return None
    except OSError as exc:
        logger.warning("checkpoint unreadable, starting over", extra={"path": path, "error": str(exc)})
        return None
    if not data.strip():
        return None
    try:
        checkpoint = model.model_validate_json(data)
    except ValidationError as exc:
        logger.warning(
            "checkpoint is corrupt, starting over",
            extra={"path": path, "errors": exc.error_count()},
        )
        return None
    checkpoint.checkpoint_path = path
    return checkpoint


def dump_checkpoint(checkpoint: BaseModel, path: str) -> None:
    """Atomically persist ``checkpoint`` as JSON to ``path``."""
    resolved = Path(path).expanduser()
    try:
        resolved.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            "w", encoding="utf-8", dir=str(resolved.parent), prefix=resolved.name, suffix=".tmp", delete=False
        ) as handle:
            handle.write(checkpoint.model_dump_json(indent=2))
            handle.flush()
            os.fsync(handle.fileno())
            temp_name = handle.name
        os.replace(temp_name, resolved)
    except OSError as exc:
        raise TosClientError(f"tos: write checkpoint {path} failed", exc, kind=ClientErrorKind.IO) from exc


def remove_checkpoint(path: str) -> None:
    if not path:
        return
    try:
        os.remove(path)
    except FileNotFoundError:
        return
    logger.debug("checkpoint removed", extra={"path": path})
