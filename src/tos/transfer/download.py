"""Resumable ranged download of an object into a local file.

Parts are fetched with ranged GETs and written at their offsets into
``<file_path>.temp``.  When every part succeeded the combined CRC-64 is
compared with the object's and the temp file is renamed into place, once.
"""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING, Optional

from ..checkpoint import (
    DownloadCheckpoint,
    DownloadFileInfo,
    DownloadObjectInfo,
    DownloadPartInfo,
    default_checkpoint_path,
    dump_checkpoint,
    load_checkpoint,
    remove_checkpoint,
)
from ..consts import TEMP_FILE_SUFFIX
from ..crc64 import CRC64, combine_parts
from ..errors import CancelledError, ChecksumError, ClientErrorKind, PartialMultipartError, TosClientError
from ..events import DownloadEvent, DownloadEventType, PartEventInfo, post_event
from ..models import DownloadFileInput, DownloadFileOutput, GetObjectInput, HeadObjectOutput
from ..validation import validate_names, validate_part_size
from .planning import clamp_task_num, plan_parts
from .workers import TransferProgress, TransferWorkerPool, drive_pool

if TYPE_CHECKING:
    from ..client import TosClient

__all__ = ["download_file", "resolve_download_path"]

logger = logging.getLogger(__name__)


COPY_CHUNK = 64 * 1024


def resolve_download_path(file_path: str, key: str) -> str:
    """A directory (or a path ending in a separator) receives the object key."""
    if file_path.endswith(("/", os.sep)) or os.path.isdir(file_path):
        return os.path.join(file_path, key)
    return file_path


def _remove_quietly(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        return
    except OSError as exc:
        logger.warning("could not remove temp file", extra={"path": path, "error": str(exc)})


class _Download:
    def __init__(self, client: "TosClient", input: DownloadFileInput, file_path: str, part_size: int) -> None:
        self.client = client
        self.input = input
        self.file_path = file_path
        self.temp_path = file_path + TEMP_FILE_SUFFIX
        self.part_size = part_size
        self.cancel_hook = input.cancel_hook
        self.checkpoint_path = ""
        if input.enable_checkpoint:
            self.checkpoint_path = default_checkpoint_path(
                input.checkpoint_file, file_path, input.bucket, input.key, "download"
            )
        self.checkpoint: Optional[DownloadCheckpoint] = None
        self.progress: Optional[TransferProgress] = None

    def _event(
        self,
        kind: DownloadEventType,
        *,
        part: Optional[DownloadPartInfo] = None,
        error: Optional[BaseException] = None,
    ) -> None:
        part_info = None
        if part is not None:
            part_info = PartEventInfo(
                part_number=part.part_number,
                offset=part.range_start,
                size=part.size,
                hash_crc64ecma=part.hash_crc64ecma,
            )
        post_event(
            self.input.download_event_listener,
            DownloadEvent(
                type=kind,
                bucket=self.input.bucket,
                key=self.input.key,
                version_id=self.input.version_id,
                file_path=self.file_path,
                temp_file_path=self.temp_path,
                checkpoint_file=self.checkpoint_path or None,
                part=part_info,
                error=error,
            ),
        )

    def _save(self) -> None:
        if self.checkpoint_path and self.checkpoint is not None:
            dump_checkpoint(self.checkpoint, self.checkpoint_path)

    def _resume(self, object_info: DownloadObjectInfo) -> Optional[DownloadCheckpoint]:
        if not self.checkpoint_path:
            return None
        checkpoint = load_checkpoint(self.checkpoint_path, DownloadCheckpoint)
        if checkpoint is None:
            return None
        if checkpoint.is_valid_for(
            bucket=self.input.bucket,
            key=self.input.key,
            version_id=self.input.version_id,
            part_size=self.part_size,
            object_info=object_info,
            file_path=self.file_path,
            ssec_key_md5=self.input.ssec_key_md5,
        ):
            logger.info("resuming download from checkpoint", extra={"path": self.checkpoint_path})
            return checkpoint
        logger.info("checkpoint does not match, starting over", extra={"path": self.checkpoint_path})
        return None

    def _create_temp_file(self, size: int) -> None:
        try:
            directory = os.path.dirname(self.temp_path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            with open(self.temp_path, "wb") as handle:
                handle.truncate(size)
        except OSError as exc:
            self._event(DownloadEventType.CREATE_TEMP_FILE_FAILED, error=exc)
            raise TosClientError(
                f"tos: create temp file {self.temp_path} failed", exc, kind=ClientErrorKind.IO
            ) from exc
        self._event(DownloadEventType.CREATE_TEMP_FILE_SUCCEED)

    def _create(self, object_info: DownloadObjectInfo) -> DownloadCheckpoint:
        self._create_temp_file(object_info.object_size)
        parts = [
            DownloadPartInfo(part_number=plan.part_number, range_start=plan.offset, range_end=plan.end)
            for plan in plan_parts(object_info.object_size, self.part_size)
        ]
        checkpoint = DownloadCheckpoint(
            bucket=self.input.bucket,
            key=self.input.key,
            version_id=self.input.version_id,
            part_size=self.part_size,
            if_match=self.input.if_match,
            if_none_match=self.input.if_none_match,
            if_modified_since=self.input.if_modified_since,
            if_unmodified_since=self.input.if_unmodified_since,
            ssec_algorithm=self.input.ssec_algorithm,
            ssec_key_md5=self.input.ssec_key_md5,
            object_info=object_info,
            file_info=DownloadFileInfo(file_path=self.file_path, temp_file_path=self.temp_path),
            parts=parts,
        )
        self.checkpoint = checkpoint
        self._save()
        return checkpoint

    def _cleanup(self) -> None:
        _remove_quietly(self.temp_path)
        remove_checkpoint(self.checkpoint_path)

    def _download_part(self, part: DownloadPartInfo) -> DownloadPartInfo:
        output = self.client.get_object(
            GetObjectInput(
                bucket=self.input.bucket,
                key=self.input.key,
                version_id=self.input.version_id,
                if_match=self.input.if_match or self.checkpoint.object_info.etag,
                range_start=part.range_start,
                range_end=part.range_end,
                ssec_algorithm=self.input.ssec_algorithm,
                ssec_key=self.input.ssec_key,
                ssec_key_md5=self.input.ssec_key_md5,
                traffic_limit=self.input.traffic_limit,
                rate_limiter=self.input.rate_limiter,
                data_transfer_listener=self.progress.part_listener(part.part_number),
            ),
            cancel_hook=self.cancel_hook,
        )
        crc = CRC64()
        written = 0
        with output, open(self.temp_path, "r+b") as handle:
            handle.seek(part.range_start)
            while True:
                chunk = output.read(COPY_CHUNK)
                if not chunk:
                    break
                handle.write(chunk)
                crc.update(chunk)
                written += len(chunk)
        if written != part.size:
            raise TosClientError(
                f"tos: part {part.part_number} returned {written} bytes, expected {part.size}",
                kind=ClientErrorKind.IO,
            )
        return part.model_copy(update={"hash_crc64ecma": crc.crc, "is_completed": True})

    def _on_success(self, part: DownloadPartInfo, done: DownloadPartInfo) -> None:
        self.checkpoint.update_part(done)
        self._save()
        self._event(DownloadEventType.DOWNLOAD_PART_SUCCEED, part=done)

    def _on_failed(self, part: DownloadPartInfo, error: BaseException) -> None:
        logger.warning("download part failed", extra={"part_number": part.part_number, "error": str(error)})
        self._event(DownloadEventType.DOWNLOAD_PART_FAILED, part=part, error=error)

    def _on_fatal(self, part: DownloadPartInfo, error: BaseException) -> None:
        self._cleanup()
        self._event(DownloadEventType.DOWNLOAD_PART_ABORTED, part=part, error=error)

    def _finish(self) -> None:
        checkpoint = self.checkpoint
        expected = checkpoint.object_info.hash_crc64ecma
        if self.client.enable_crc and expected:
            combined = combine_parts((part.hash_crc64ecma, part.size) for part in checkpoint.parts)
            if combined != expected:
                self._cleanup()
                raise ChecksumError("tos: crc of downloaded file mismatch", expected=expected, actual=combined)
        try:
            os.replace(self.temp_path, self.file_path)
        except OSError as exc:
            self._event(DownloadEventType.RENAME_TEMP_FILE_FAILED, error=exc)
            raise TosClientError(
                f"tos: rename {self.temp_path} to {self.file_path} failed", exc, kind=ClientErrorKind.IO
            ) from exc
        self._event(DownloadEventType.RENAME_TEMP_FILE_SUCCEED)
        remove_checkpoint(self.checkpoint_path)

    def run(self, head: HeadObjectOutput) -> DownloadFileOutput:
        object_info = DownloadObjectInfo(
            etag=head.etag,
            hash_crc64ecma=head.hash_crc64ecma,
            last_modified=head.last_modified,
            object_size=head.content_length,
        )
        self.checkpoint = self._resume(object_info) or self._create(object_info)
        checkpoint = self.checkpoint
        done_bytes = sum(part.size for part in checkpoint.parts if part.is_completed)
        self.progress = TransferProgress(
            self.input.data_transfer_listener, total=object_info.object_size, consumed=done_bytes
        )
        if self.cancel_hook is not None:
            self.cancel_hook.bind_aborter(self._cleanup)

        pool = TransferWorkerPool(
            checkpoint.pending_parts(),
            self._download_part,
            task_num=clamp_task_num(self.input.task_num),
            cancel_hook=self.cancel_hook,
            name="tos-download",
        )
        self.progress.started()
        try:
            errors = drive_pool(pool, on_success=self._on_success, on_failed=self._on_failed, on_fatal=self._on_fatal)
            if self.cancel_hook is not None and self.cancel_hook.is_cancelled():
                aborted = self.cancel_hook.is_aborted()
                if aborted:
                    self._cleanup()
                raise CancelledError(aborted=aborted)
            if errors:
                if not self.checkpoint_path:
                    # nothing can resume without a checkpoint
                    _remove_quietly(self.temp_path)
                raise PartialMultipartError("tos: some download tasks failed.", errors)
            self._finish()
        except Exception:
            self.progress.failed()
            raise
        self.progress.succeeded()
        return DownloadFileOutput(**head.model_dump(), file_path=self.file_path)


def download_file(client: "TosClient", input: DownloadFileInput) -> DownloadFileOutput:
    """Download ``bucket/key`` into ``input.file_path`` with parallel ranged GETs."""
    validate_names(input.bucket, input.key, is_custom_domain=client.is_custom_domain)
    part_size = validate_part_size(input.part_size)
    file_path = resolve_download_path(input.file_path, input.key)
    head = client.head_object(input, cancel_hook=input.cancel_hook)
    return _Download(client, input, file_path, part_size).run(head)
