"""Cooperative cancellation for multipart transfers.

A :class:`CancelHook` is handed to :meth:`tos.client.TosClient.upload_file`
and friends.  Workers and the scheduler check it between parts instead of
being interrupted, so the checkpoint always reflects completed parts.

Two flavours of cancellation exist:

* ``cancel(False)`` stops the transfer and keeps the checkpoint so the same
  call can resume later.
* ``cancel(True)`` additionally runs the bound aborter (for uploads and copies
  this aborts the multipart upload server-side) and removes the checkpoint
  and any temp file.

Examples:
    >>> hook = CancelHook()
    >>> hook.is_cancelled()
    False
    >>> hook.cancel(False)
    >>> hook.is_cancelled(), hook.is_aborted()
    (True, False)
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

__all__ = ["CancelHook"]

logger = logging.getLogger(__name__)


class CancelHook:
    """Thread-safe pending/cancelled/aborted state shared with a transfer."""

    def __init__(self) -> None:
        self._cancelled = threading.Event()
        self._aborted = threading.Event()
        self._lock = threading.Lock()
        self._aborter: Optional[Callable[[], None]] = None

    def cancel(self, abort: bool) -> None:
        """Request cancellation; ``abort`` also runs the bound aborter once."""
        with self._lock:
            already_aborted = self._aborted.is_set()
            self._cancelled.set()
            if abort:
                self._aborted.set()
            aborter = self._aborter
        if abort and not already_aborted and aborter is not None:
            aborter()

    def is_cancelled(self) -> bool:
        return self._cancelled.is_set()

    def is_aborted(self) -> bool:
        return self._aborted.is_set()

    def bind_aborter(self, aborter: Optional[Callable[[], None]]) -> None:
        """Attach the cleanup run on ``cancel(True)``; a pending abort runs it now."""
        with self._lock:
            self._aborter = aborter
            run_now = aborter is not None and self._aborted.is_set()
        if run_now:
            logger.debug("cancel hook already aborted, running aborter on bind")
            aborter()


# === NAVMAP v1 ===
# {
#   "module": "tos.cancellation",
#   "purpose": "Provide the cooperative cancel hook shared by multipart transfers",
#   "sections": [
#     {"id": "hook", "name": "CancelHook", "anchor": "HOOK", "kind": "api"}
#   ]
# }
# === /NAVMAP ===
