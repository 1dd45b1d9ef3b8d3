"""Resumable server-side copy built from ``UploadPartCopy`` calls."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from ..checkpoint import (
    CopyCheckpoint,
    CopyPartInfo,
    CopySourceObjectInfo,
    default_checkpoint_path,
    dump_checkpoint,
    load_checkpoint,
    remove_checkpoint,
)
from ..errors import CancelledError, PartialMultipartError, TosError, TosServerError
from ..events import CopyEvent, CopyEventType, PartEventInfo, post_event
from ..models import (
    AbortMultipartUploadInput,
    CompleteMultipartUploadInput,
    HeadObjectInput,
    ResumableCopyObjectInput,
    ResumableCopyObjectOutput,
    UploadPartCopyInput,
)
from ..validation import validate_names, validate_part_size
from .planning import clamp_task_num, plan_parts
from .workers import TransferWorkerPool, drive_pool

if TYPE_CHECKING:
    from ..client import TosClient

__all__ = ["resumable_copy_object"]

logger = logging.getLogger(__name__)


class _Copy:
    def __init__(self, client: "TosClient", input: ResumableCopyObjectInput, part_size: int) -> None:
        self.client = client
        self.input = input
        self.part_size = part_size
        self.cancel_hook = input.cancel_hook
        self.checkpoint_path = ""
        if input.enable_checkpoint:
            safe_src_key = input.src_key.replace("/", "_").replace("\\", "_")
            source = f"{input.src_bucket}.{safe_src_key}"
            self.checkpoint_path = default_checkpoint_path(
                input.checkpoint_file, source, input.bucket, input.key, "copy"
            )
        self.checkpoint: Optional[CopyCheckpoint] = None

    def _event(
        self,
        kind: CopyEventType,
        *,
        part: Optional[CopyPartInfo] = None,
        error: Optional[BaseException] = None,
    ) -> None:
        part_info = None
        if part is not None:
            part_info = PartEventInfo(
                part_number=part.part_number,
                offset=part.copy_source_range_start,
                size=max(part.size, 0),
                etag=part.etag,
            )
        post_event(
            self.input.copy_event_listener,
            CopyEvent(
                type=kind,
                bucket=self.input.bucket,
                key=self.input.key,
                src_bucket=self.input.src_bucket,
                src_key=self.input.src_key,
                upload_id=self.checkpoint.upload_id if self.checkpoint else "",
                checkpoint_file=self.checkpoint_path or None,
                part=part_info,
                error=error,
            ),
        )

    def _save(self) -> None:
        if self.checkpoint_path and self.checkpoint is not None:
            dump_checkpoint(self.checkpoint, self.checkpoint_path)

    def _resume(self, source: CopySourceObjectInfo) -> Optional[CopyCheckpoint]:
        if not self.checkpoint_path:
            return None
        checkpoint = load_checkpoint(self.checkpoint_path, CopyCheckpoint)
        if checkpoint is None:
            return None
        if checkpoint.is_valid_for(
            bucket=self.input.bucket,
            key=self.input.key,
            src_bucket=self.input.src_bucket,
            src_key=self.input.src_key,
            src_version_id=self.input.src_version_id,
            part_size=self.part_size,
            source_object_info=source,
            ssec_key_md5=self.input.ssec_key_md5,
        ):
            logger.info("resuming copy from checkpoint", extra={"path": self.checkpoint_path})
            return checkpoint
        logger.info("checkpoint does not match, starting a new copy", extra={"path": self.checkpoint_path})
        return None

    def _create(self, source: CopySourceObjectInfo) -> CopyCheckpoint:
        try:
            created = self.client.create_multipart_upload(self.input, cancel_hook=self.cancel_hook)
        except TosError as exc:
            self._event(CopyEventType.CREATE_MULTIPART_UPLOAD_FAILED, error=exc)
            raise
        plans = plan_parts(source.object_size, self.part_size)
        if plans:
            parts = [
                CopyPartInfo(
                    part_number=plan.part_number,
                    copy_source_range_start=plan.offset,
                    copy_source_range_end=plan.end,
                )
                for plan in plans
            ]
        else:
            # an empty source is copied whole, without a range
            parts = [CopyPartInfo(part_number=1, copy_source_range_start=0, copy_source_range_end=-1)]
        checkpoint = CopyCheckpoint(
            bucket=self.input.bucket,
            key=self.input.key,
            src_bucket=self.input.src_bucket,
            src_key=self.input.src_key,
            src_version_id=self.input.src_version_id,
            upload_id=created.upload_id,
            part_size=self.part_size,
            copy_source_if_match=self.input.copy_source_if_match,
            copy_source_if_none_match=self.input.copy_source_if_none_match,
            copy_source_if_modified_since=self.input.copy_source_if_modified_since,
            copy_source_if_unmodified_since=self.input.copy_source_if_unmodified_since,
            copy_source_ssec_algorithm=self.input.copy_source_ssec_algorithm,
            copy_source_ssec_key_md5=self.input.copy_source_ssec_key_md5,
            ssec_algorithm=self.input.ssec_algorithm,
            ssec_key_md5=self.input.ssec_key_md5,
            encoding_type=created.encoding_type,
            source_object_info=source,
            parts=parts,
        )
        self.checkpoint = checkpoint
        self._event(CopyEventType.CREATE_MULTIPART_UPLOAD_SUCCEED)
        self._save()
        return checkpoint

    def _abort_upload(self) -> None:
        checkpoint = self.checkpoint
        try:
            self.client.abort_multipart_upload(
                AbortMultipartUploadInput(bucket=checkpoint.bucket, key=checkpoint.key, upload_id=checkpoint.upload_id)
            )
        except TosError as exc:
            logger.warning("abort multipart upload failed", extra={"upload_id": checkpoint.upload_id, "error": str(exc)})
        remove_checkpoint(self.checkpoint_path)

    def _copy_part(self, part: CopyPartInfo) -> CopyPartInfo:
        ranged = part.size > 0
        output = self.client.upload_part_copy(
            UploadPartCopyInput(
                bucket=self.input.bucket,
                key=self.input.key,
                upload_id=self.checkpoint.upload_id,
                part_number=part.part_number,
                src_bucket=self.input.src_bucket,
                src_key=self.input.src_key,
                src_version_id=self.input.src_version_id,
                copy_source_range_start=part.copy_source_range_start if ranged else None,
                copy_source_range_end=part.copy_source_range_end if ranged else None,
                copy_source_if_match=self.input.copy_source_if_match or self.checkpoint.source_object_info.etag,
                copy_source_if_none_match=self.input.copy_source_if_none_match,
                copy_source_if_modified_since=self.input.copy_source_if_modified_since,
                copy_source_if_unmodified_since=self.input.copy_source_if_unmodified_since,
                copy_source_ssec_algorithm=self.input.copy_source_ssec_algorithm,
                copy_source_ssec_key=self.input.copy_source_ssec_key,
                copy_source_ssec_key_md5=self.input.copy_source_ssec_key_md5,
                ssec_algorithm=self.input.ssec_algorithm,
                ssec_key=self.input.ssec_key,
                ssec_key_md5=self.input.ssec_key_md5,
                traffic_limit=self.input.traffic_limit,
            ),
            cancel_hook=self.cancel_hook,
        )
        return part.model_copy(update={"etag": output.etag, "is_completed": True})

    def _on_success(self, part: CopyPartInfo, done: CopyPartInfo) -> None:
        self.checkpoint.update_part(done)
        self._save()
        self._event(CopyEventType.UPLOAD_PART_COPY_SUCCEED, part=done)

    def _on_failed(self, part: CopyPartInfo, error: BaseException) -> None:
        logger.warning("upload part copy failed", extra={"part_number": part.part_number, "error": str(error)})
        self._event(CopyEventType.UPLOAD_PART_COPY_FAILED, part=part, error=error)

    def _on_fatal(self, part: CopyPartInfo, error: BaseException) -> None:
        self._abort_upload()
        self._event(CopyEventType.UPLOAD_PART_COPY_ABORTED, part=part, error=error)

    def run(self, source: CopySourceObjectInfo) -> ResumableCopyObjectOutput:
        self.checkpoint = self._resume(source) or self._create(source)
        checkpoint = self.checkpoint
        if self.cancel_hook is not None:
            self.cancel_hook.bind_aborter(self._abort_upload)

        pool = TransferWorkerPool(
            checkpoint.pending_parts(),
            self._copy_part,
            task_num=clamp_task_num(self.input.task_num),
            cancel_hook=self.cancel_hook,
            name="tos-copy",
        )
        errors = drive_pool(pool, on_success=self._on_success, on_failed=self._on_failed, on_fatal=self._on_fatal)
        if self.cancel_hook is not None and self.cancel_hook.is_cancelled():
            aborted = self.cancel_hook.is_aborted()
            if aborted:
                remove_checkpoint(self.checkpoint_path)
            raise CancelledError(aborted=aborted)
        if errors:
            raise PartialMultipartError("tos: some upload part copy tasks failed.", errors)

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
            self._event(CopyEventType.COMPLETE_MULTIPART_UPLOAD_FAILED, error=exc)
            raise
        self._event(CopyEventType.COMPLETE_MULTIPART_UPLOAD_SUCCEED)
        expected = checkpoint.source_object_info.hash_crc64ecma
        if self.client.enable_crc and expected and complete.hash_crc64ecma and expected != complete.hash_crc64ecma:
            raise TosServerError(
                "tos: crc of copied object mismatch.",
                status_code=complete.request_info.status_code,
                request_id=complete.request_info.request_id,
            )
        remove_checkpoint(self.checkpoint_path)
        return ResumableCopyObjectOutput(
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


def resumable_copy_object(client: "TosClient", input: ResumableCopyObjectInput) -> ResumableCopyObjectOutput:
    """Copy ``src_bucket/src_key`` to ``bucket/key`` part by part."""
    validate_names(input.bucket, input.key, is_custom_domain=client.is_custom_domain)
    validate_names(input.src_bucket, input.src_key)
    part_size = validate_part_size(input.part_size)
    head = client.head_object(
        HeadObjectInput(
            bucket=input.src_bucket,
            key=input.src_key,
            version_id=input.src_version_id,
            if_match=input.copy_source_if_match,
            if_none_match=input.copy_source_if_none_match,
            if_modified_since=input.copy_source_if_modified_since,
            if_unmodified_since=input.copy_source_if_unmodified_since,
            ssec_algorithm=input.copy_source_ssec_algorithm,
            ssec_key=input.copy_source_ssec_key,
            ssec_key_md5=input.copy_source_ssec_key_md5,
        ),
        cancel_hook=input.cancel_hook,
    )
    source = CopySourceObjectInfo(
        etag=head.etag,
        hash_crc64ecma=head.hash_crc64ecma,
        last_modified=head.last_modified,
        object_size=head.content_length,
    )
    return _Copy(client, input, part_size).run(source)
