"""Resumable multipart upload of a local file.

The flow is: validate, load or create the checkpoint (creating the multipart
upload when nothing resumable exists), upload the pending parts on a
:class:`~tos.transfer.workers.TransferWorkerPool`, complete the upload with
the parts in ascending order, verify the combined CRC-64 and drop the
checkpoint.  The checkpoint is rewritten after every successful part, so a
failed or cancelled call can be resumed by repeating it with the same inputs.
"""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING, Optional

from ..checkpoint import (
    FileInfo,
    PartInfo,
    UploadCheckpoint,
    default_checkpoint_path,
    dump_checkpoint,
    file_info_of,
    load_checkpoint,
    remove_checkpoint,
)
from ..crc64 import combine_parts
from ..errors import CancelledError, PartialMultipartError, TosClientError, TosError, TosServerError
from ..events import PartEventInfo, UploadEvent, UploadEventType, post_event
from ..models import (
    AbortMultipartUploadInput,
    CompleteMultipartUploadInput,
    CompleteMultipartUploadOutput,
    UploadFileInput,
    UploadFileOutput,
    UploadPartFromFileInput,
)
from ..validation import validate_names, validate_part_size
from .planning import PartPlan, clamp_task_num, plan_parts
from .workers import TransferProgress, TransferWorkerPool, drive_pool

if TYPE_CHECKING:
    from ..client import TosClient

__all__ = ["upload_file"]

logger = logging.getLogger(__name__)


def _upload_plans(size: int, part_size: int) -> list:
    # an empty file still needs one (empty) part to complete the upload
    return plan_parts(size, part_size) or [PartPlan(1, 0, 0)]


class _Upload:
    def __init__(self, client: "TosClient", input: UploadFileInput, file_info: FileInfo, part_size: int) -> None:
        self.client = client
        self.input = input
        self.file_info = file_info
        self.part_size = part_size
        self.cancel_hook = input.cancel_hook
        self.checkpoint_path = ""
        if input.enable_checkpoint:
            self.checkpoint_path = default_checkpoint_path(
                input.checkpoint_file, input.file_path, input.bucket, input.key, "upload"
            )
        self.checkpoint: Optional[UploadCheckpoint] = None
        self.progress: Optional[TransferProgress] = None

    # ------------------------------------------------------------------
    # events

    def _event(
        self,
        kind: UploadEventType,
        *,
        part: Optional[PartInfo] = None,
        error: Optional[BaseException] = None,
    ) -> None:
        part_info = None
        if part is not None:
            part_info = PartEventInfo(
                part_number=part.part_number,
                offset=part.offset,
                size=part.size,
                etag=part.etag,
                hash_crc64ecma=part.hash_crc64ecma,
            )
        post_event(
            self.input.upload_event_listener,
            UploadEvent(
                type=kind,
                bucket=self.input.bucket,
                key=self.input.key,
                upload_id=self.checkpoint.upload_id if self.checkpoint else "",
                file_path=self.input.file_path,
                checkpoint_file=self.checkpoint_path or None,
                part=part_info,
                error=error,
            ),
        )

    # ------------------------------------------------------------------
    # checkpoint

    def _resume(self) -> Optional[UploadCheckpoint]:
        if not self.checkpoint_path:
            return None
        checkpoint = load_checkpoint(self.checkpoint_path, UploadCheckpoint)
        if checkpoint is None:
            return None
        if checkpoint.is_valid_for(
            bucket=self.input.bucket,
            key=self.input.key,
            file_path=self.input.file_path,
            file_info=self.file_info,
            part_size=self.part_size,
            ssec_key_md5=self.input.ssec_key_md5,
        ):
            logger.info(
                "resuming upload from checkpoint",
                extra={"path": self.checkpoint_path, "upload_id": checkpoint.upload_id},
            )
            return checkpoint
        logger.info("checkpoint does not match, starting a new upload", extra={"path": self.checkpoint_path})
        return None

    def _create(self) -> UploadCheckpoint:
        try:
            created = self.client.create_multipart_upload(self.input, cancel_hook=self.cancel_hook)
        except TosError as exc:
            self._event(UploadEventType.CREATE_MULTIPART_UPLOAD_FAILED, error=exc)
            raise
        parts = [
            PartInfo(part_number=plan.part_number, offset=plan.offset, size=plan.size)
            for plan in _upload_plans(self.file_info.size, self.part_size)
        ]
        checkpoint = UploadCheckpoint(
            bucket=self.input.bucket,
            key=self.input.key,
            upload_id=created.upload_id,
            part_size=self.part_size,
            ssec_algorithm=self.input.ssec_algorithm,
            ssec_key_md5=self.input.ssec_key_md5,
            encoding_type=created.encoding_type,
            file_path=self.input.file_path,
            file_info=self.file_info,
            parts=parts,
        )
        self.checkpoint = checkpoint
        self._event(UploadEventType.CREATE_MULTIPART_UPLOAD_SUCCEED)
        self._save()
        return checkpoint

    def _save(self) -> None:
        if self.checkpoint_path and self.checkpoint is not None:
            dump_checkpoint(self.checkpoint, self.checkpoint_path)

    # ------------------------------------------------------------------
    # parts

    def _abort_upload(self) -> None:
        checkpoint = self.checkpoint
        try:
            self.client.abort_multipart_upload(
                AbortMultipartUploadInput(bucket=checkpoint.bucket, key=checkpoint.key, upload_id=checkpoint.upload_id)
            )
        except TosError as exc:
            logger.warning(
                "abort multipart upload failed",
                extra={"upload_id": checkpoint.upload_id, "error": str(exc)},
            )
        remove_checkpoint(self.checkpoint_path)

    def _upload_part(self, part: PartInfo) -> PartInfo:
        output = self.client.upload_part_from_file(
            UploadPartFromFileInput(
                bucket=self.input.bucket,
                key=self.input.key,
                upload_id=self.checkpoint.upload_id,
                part_number=part.part_number,
                file_path=self.input.file_path,
                offset=part.offset,
                part_size=part.size,
                ssec_algorithm=self.input.ssec_algorithm,
                ssec_key=self.input.ssec_key,
                ssec_key_md5=self.input.ssec_key_md5,
                traffic_limit=self.input.traffic_limit,
                rate_limiter=self.input.rate_limiter,
                data_transfer_listener=self.progress.part_listener(part.part_number),
            ),
            cancel_hook=self.cancel_hook,
        )
        return part.model_copy(
            update={"etag": output.etag, "hash_crc64ecma": output.hash_crc64ecma, "is_completed": True}
        )

    def _on_success(self, part: PartInfo, done: PartInfo) -> None:
        self.checkpoint.update_part(done)
        self._save()
        self._event(UploadEventType.UPLOAD_PART_SUCCEED, part=done)

    def _on_failed(self, part: PartInfo, error: BaseException) -> None:
        logger.warning(
            "upload part failed",
            extra={"part_number": part.part_number, "upload_id": self.checkpoint.upload_id, "error": str(error)},
        )
        self._event(UploadEventType.UPLOAD_PART_FAILED, part=part, error=error)

    def _on_fatal(self, part: PartInfo, error: BaseException) -> None:
        self._abort_upload()
        self._event(UploadEventType.UPLOAD_PART_ABORTED, part=part, error=error)

    # ------------------------------------------------------------------
    # complete

    def _complete(self) -> CompleteMultipartUploadOutput:
        checkpoint = self.checkpoint
        try:
            complete = self.client.complete_multipart_upload(
                CompleteMultipartUploadInput(
                    bucket=checkpoint.bucket,
                    key=checkpoint.key,
                    upload_id=checkpoint.upload_id,
                    parts=checkpoint.uploaded_parts(),
                ),
                cancel_hook=self.cancel_hook,
            )
        except TosError as exc:
            self._event(UploadEventType.COMPLETE_MULTIPART_UPLOAD_FAILED, error=exc)
            raise
        self._event(UploadEventType.COMPLETE_MULTIPART_UPLOAD_SUCCEED)
        if self.client.enable_crc and complete.hash_crc64ecma:
            combined = combine_parts((part.hash_crc64ecma, part.size) for part in checkpoint.parts)
            if combined != complete.hash_crc64ecma:
                raise TosServerError(
                    "tos: crc of entire file mismatch.",
                    status_code=complete.request_info.status_code,
                    request_id=complete.request_info.request_id,
                )
        return complete

    def run(self) -> UploadFileOutput:
        self.checkpoint = self._resume() or self._create()
        checkpoint = self.checkpoint
        pending = checkpoint.pending_parts()
        done_bytes = sum(part.size for part in checkpoint.parts if part.is_completed)
        self.progress = TransferProgress(
            self.input.data_transfer_listener, total=self.file_info.size, consumed=done_bytes
        )
        if self.cancel_hook is not None:
            self.cancel_hook.bind_aborter(self._abort_upload)

        pool = TransferWorkerPool(
            pending,
            self._upload_part,
            task_num=clamp_task_num(self.input.task_num),
            cancel_hook=self.cancel_hook,
            name="tos-upload",
        )
        self.progress.started()
        try:
            errors = drive_pool(pool, on_success=self._on_success, on_failed=self._on_failed, on_fatal=self._on_fatal)
        except Exception:
            self.progress.failed()
            raise
        if self.cancel_hook is not None and self.cancel_hook.is_cancelled():
            self.progress.failed()
            aborted = self.cancel_hook.is_aborted()
            if aborted:
                # a part may have finished after the aborter removed the checkpoint
                remove_checkpoint(self.checkpoint_path)
            raise CancelledError(aborted=aborted)
        if errors:
            self.progress.failed()
            raise PartialMultipartError("tos: some upload tasks failed.", errors)

        try:
            complete = self._complete()
        except Exception:
            self.progress.failed()
            raise
        remove_checkpoint(self.checkpoint_path)
        self.progress.succeeded()
        return UploadFileOutput(
            request_info=complete.request_info,
            bucket=checkpoint.bucket,
            key=checkpoint.key,
            upload_id=checkpoint.upload_id,
            etag=complete.etag,
            location=complete.location,
            version_id=complete.version_id,
            hash_crc64ecma=complete.hash_crc64ecma,
            ssec_algorithm=checkpoint.ssec_algorithm,
            ssec_key_md5=checkpoint.ssec_key_md5,
            encoding_type=checkpoint.encoding_type,
        )


def upload_file(client: "TosClient", input: UploadFileInput) -> UploadFileOutput:
    """Upload ``input.file_path`` to ``bucket/key`` through a multipart upload."""
    validate_names(input.bucket, input.key, is_custom_domain=client.is_custom_domain)
    part_size = validate_part_size(input.part_size)
    if os.path.isdir(input.file_path):
        raise TosClientError(f"tos: {input.file_path} is a directory, a file is required")
    file_info = file_info_of(input.file_path)
    return _Upload(client, input, file_info, part_size).run()
