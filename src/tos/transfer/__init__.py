"""Multipart upload, download and copy orchestrators."""

from .copy import resumable_copy_object
from .download import download_file
from .planning import PartPlan, clamp_task_num, plan_parts
from .upload import upload_file
from .workers import PartOutcome, TransferProgress, TransferWorkerPool

__all__ = [
    "upload_file",
    "download_file",
    "resumable_copy_object",
    "PartPlan",
    "plan_parts",
    "clamp_task_num",
    "PartOutcome",
    "TransferProgress",
    "TransferWorkerPool",
]
