"""Streaming request and response body wrappers.

Bodies are plain file-like objects exposing ``read(size)``.  The wrappers in
this module compose around them:

* :class:`ProgressReader` reports transfer progress to a listener.
* :class:`LimitedReader` throttles reads through a :class:`RateLimiter`.
* :class:`CRCReader` tees bytes into a CRC-64/ECMA register.
* :class:`ChunkEncodingReader` frames a body as ``tos-chunked`` with a trailer
  section whose values are computed once the body is exhausted.
* :class:`ChunkDecodingReader` and :class:`CRCCheckingReader` validate the
  server's CRC on response bodies.

Every wrapper records the position of a seekable base at wrap time and
exposes ``reset()`` which rewinds the innermost stream to that position,
clearing its own counters on the way, so a failed request can be replayed.

Example:
    >>> import io
    >>> reader = wrap_reader(io.BytesIO(b"payload"), 7, crc=True)
    >>> reader.read()
    b'payload'
    >>> reader.crc != 0
    True
"""

from __future__ import annotations

import io
import logging
import math
import os
import threading
import time
from typing import Callable, Dict, Iterator, List, Optional, Protocol, Tuple

from pyrate_limiter import Duration, Limiter, Rate

from .consts import (
    DEFAULT_CHUNK_SIZE,
    HEADER_CONTENT_ENCODING,
    HEADER_CONTENT_SHA256,
    HEADER_TRAILER,
    STREAMING_UNSIGNED_PAYLOAD_TRAILER,
    TOS_CHUNKED_ENCODING,
    TRAILER_CRC64,
    TRAILER_RANGE_CRC64,
)
from .crc64 import CRC64, to_trailer_value
from .errors import ChecksumError, ClientErrorKind, TosClientError
from .events import DataTransferListener, DataTransferStatus, DataTransferType

__all__ = [
    "RateLimiter",
    "DefaultRateLimiter",
    "ProgressReader",
    "LimitedReader",
    "CRCReader",
    "TrailerValue",
    "CRC64Trailer",
    "ChunkEncodingReader",
    "ChunkDecodingReader",
    "CRCCheckingReader",
    "StreamReader",
    "wrap_reader",
    "try_resolve_length",
    "iter_chunks",
    "find_progress",
    "SectionReader",
]

logger = logging.getLogger(__name__)

_CRLF = b"\r\n"


def _tell(reader) -> Optional[int]:
    seekable = getattr(reader, "seekable", None)
    if seekable is None or not seekable():
        return None
    try:
        return reader.tell()
    except (OSError, ValueError):
        return None


def iter_chunks(reader, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[bytes]:
    """Yield successive reads of ``reader`` until it is exhausted."""
    while True:
        data = reader.read(chunk_size)
        if not data:
            return
        yield data


class _ReaderWrapper:
    """Base class of the resettable wrappers."""

    def __init__(self, base) -> None:
        self._base = base
        self._offset = _tell(base)

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return False

    def can_reset(self) -> bool:
        inner = getattr(self._base, "can_reset", None)
        if callable(inner):
            return inner()
        return self._offset is not None

    def reset(self) -> None:
        inner = getattr(self._base, "reset", None)
        if callable(inner):
            inner()
            return
        if self._offset is None:
            raise TosClientError(
                "tos: request body is not seekable and can not be replayed",
                kind=ClientErrorKind.IO,
            )
        self._base.seek(self._offset, io.SEEK_SET)

    def read(self, size: int = -1) -> bytes:  # pragma: no cover - interface
        raise NotImplementedError

    def close(self) -> None:
        close = getattr(self._base, "close", None)
        if callable(close):
            close()

    def __iter__(self) -> Iterator[bytes]:
        return iter_chunks(self)


class SectionReader:
    """Read ``size`` bytes of ``handle`` starting at ``offset``.

    The section can be replayed from its start with :meth:`reset`.
    """

    def __init__(self, handle, offset: int, size: int) -> None:
        self._handle = handle
        self._start = offset
        self.length = size
        self._remaining = size
        handle.seek(offset, io.SEEK_SET)

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return False

    def can_reset(self) -> bool:
        return True

    def reset(self) -> None:
        self._handle.seek(self._start, io.SEEK_SET)
        self._remaining = self.length

    def read(self, size: int = -1) -> bytes:
        if self._remaining <= 0:
            return b""
        want = self._remaining if size is None or size < 0 else min(size, self._remaining)
        data = self._handle.read(want)
        self._remaining -= len(data)
        return data

    def close(self) -> None:
        self._handle.close()

    def __iter__(self) -> Iterator[bytes]:
        return iter_chunks(self)


# ----------------------------------------------------------------------
# progress


class ProgressReader(_ReaderWrapper):
    """Report ``STARTED``/``RW``/``SUCCEEDED``/``FAILED`` transitions of a read.

    With ``auto_finish`` the reader reports ``SUCCEEDED`` at EOF.  Request
    bodies are built without it: the owner calls :meth:`succeed` or
    :meth:`fail` once the server answered.
    """

    def __init__(self, base, total: int, listener: DataTransferListener, *, auto_finish: bool = True) -> None:
        super().__init__(base)
        self.total = total
        self.listener = listener
        self.auto_finish = auto_finish
        self.consumed = 0
        self.retry_count = 0
        self._started = False
        self._finished = False

    def _emit(self, kind: DataTransferType, once: int = 0) -> None:
        self.listener(
            DataTransferStatus(
                consumed_bytes=self.consumed,
                total_bytes=self.total,
                rw_once_bytes=once,
                type=kind,
                retry_count=self.retry_count,
            )
        )

    def read(self, size: int = -1) -> bytes:
        if not self._started:
            self._started = True
            self._emit(DataTransferType.STARTED)
        try:
            data = self._base.read(size)
        except Exception:
            if not self._finished:
                self._finished = True
                self._emit(DataTransferType.FAILED)
            raise
        if data:
            self.consumed += len(data)
            self._emit(DataTransferType.RW, len(data))
        elif size != 0 and self.auto_finish and not self._finished:
            self._finished = True
            self._emit(DataTransferType.SUCCEEDED)
        return data

    def succeed(self) -> None:
        """Report the end of a transfer whose response came back OK."""
        if self._finished:
            return
        if not self._started:
            self._started = True
            self._emit(DataTransferType.STARTED)
        self._finished = True
        self._emit(DataTransferType.SUCCEEDED)

    def fail(self) -> None:
        """Report a failure that happened outside of ``read``."""
        if not self._finished:
            self._finished = True
            self._emit(DataTransferType.FAILED)

    def reset(self) -> None:
        super().reset()
        self.consumed = 0
        self.retry_count += 1
        self._started = False
        self._finished = False


# ----------------------------------------------------------------------
# bandwidth limiting


class RateLimiter(Protocol):
    """Grants permission to move ``want`` bytes.

    Returns ``(True, 0)`` when the bytes may be transferred now, otherwise
    ``(False, seconds_to_wait)``.
    """

    def acquire(self, want: int) -> Tuple[bool, float]:
        ...


class DefaultRateLimiter:
    """Byte-rate limiter backed by a pyrate-limiter sliding window.

    Weights are counted in KiB so that the window never tracks more than
    ``rate / 1024`` entries.

    Args:
        rate: Sustained bytes per second.
        capacity: Largest burst a single acquisition may claim, in bytes.
    """

    def __init__(self, rate: int, capacity: int) -> None:
        if rate <= 0 or capacity <= 0:
            raise TosClientError("tos: rate and capacity of a rate limiter must be positive")
        self.rate = rate
        self.capacity = capacity
        self._rate_kib = max(1, rate // 1024)
        self._capacity_kib = max(1, min(capacity // 1024, self._rate_kib))
        self._limiter = Limiter(
            Rate(self._rate_kib, Duration.SECOND), raise_when_fail=False, max_delay=None
        )
        self._lock = threading.Lock()

    def acquire(self, want: int) -> Tuple[bool, float]:
        weight = min(max(1, math.ceil(want / 1024)), self._capacity_kib)
        with self._lock:
            acquired = bool(self._limiter.try_acquire("tos-bandwidth", weight=weight))
        if acquired:
            return True, 0.0
        return False, min(want, self.capacity) / self.rate


class LimitedReader(_ReaderWrapper):
    """Throttle reads of ``base`` through ``limiter``.

    ``total`` is the number of bytes available from the wrap position, or
    ``-1`` when unknown.  Seeking from the end is refused.
    """

    def __init__(
        self,
        base,
        limiter: RateLimiter,
        total: int = -1,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        super().__init__(base)
        self.limiter = limiter
        self.total = total
        self.remaining = total
        self._sleep = sleep

    def read(self, size: int = -1) -> bytes:
        want = DEFAULT_CHUNK_SIZE if size is None or size < 0 else size
        if self.remaining >= 0:
            want = min(want, self.remaining)
        if want == 0:
            return b""
        while True:
            ok, wait = self.limiter.acquire(want)
            if ok:
                break
            self._sleep(wait)
        data = self._base.read(want)
        if self.remaining >= 0:
            self.remaining -= len(data)
        return data

    def seekable(self) -> bool:
        return self._offset is not None

    def tell(self) -> int:
        return self._base.tell()

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        if whence not in (io.SEEK_SET, io.SEEK_CUR):
            raise TosClientError("tos: limited reader does not support seeking from the end")
        position = self._base.seek(offset, whence)
        if self.total >= 0 and self._offset is not None:
            self.remaining = max(0, self.total - (position - self._offset))
        return position

    def reset(self) -> None:
        super().reset()
        self.remaining = self.total


# ----------------------------------------------------------------------
# crc tee


class CRCReader(_ReaderWrapper):
    """Pass bytes through while accumulating their CRC-64/ECMA."""

    def __init__(self, base, init_crc: int = 0) -> None:
        super().__init__(base)
        self._hash = CRC64(init_crc)

    @property
    def crc(self) -> int:
        return self._hash.crc

    def read(self, size: int = -1) -> bytes:
        data = self._base.read(size)
        self._hash.update(data)
        return data

    def reset(self) -> None:
        super().reset()
        self._hash.reset()


def wrap_reader(
    reader,
    total: int,
    listener: Optional[DataTransferListener] = None,
    limiter: Optional[RateLimiter] = None,
    crc: bool = False,
    init_crc: int = 0,
    auto_finish: bool = True,
):
    """Compose progress, bandwidth and CRC wrappers around ``reader``.

    The CRC tee is outermost so its ``crc`` property is reachable on the
    returned object when ``crc`` is requested.
    """
    if listener is not None:
        reader = ProgressReader(reader, total, listener, auto_finish=auto_finish)
    if limiter is not None:
        reader = LimitedReader(reader, limiter, total)
    if crc:
        reader = CRCReader(reader, init_crc)
    return reader


def find_progress(reader) -> Optional[ProgressReader]:
    """Return the progress wrapper somewhere inside ``reader``, if any."""
    while reader is not None:
        if isinstance(reader, ProgressReader):
            return reader
        reader = getattr(reader, "_base", None)
    return None


# ----------------------------------------------------------------------
# tos-chunked encoding


class TrailerValue(Protocol):
    def value(self) -> str:
        ...

    def length(self) -> int:
        ...


class CRC64Trailer:
    """Trailer carrying the final CRC of a :class:`CRCReader`."""

    def __init__(self, reader: CRCReader) -> None:
        self.reader = reader

    def value(self) -> str:
        return to_trailer_value(self.reader.crc)

    def length(self) -> int:
        # base64 of 8 bytes
        return 12


class ChunkEncodingReader(_ReaderWrapper):
    """Frame ``base`` as a ``tos-chunked`` body followed by trailers.

    A known ``content_length`` produces a single chunk; an unknown one
    (``-1``) produces chunks of at most 64 KiB.
    """

    def __init__(self, base, content_length: int, trailers: Dict[str, TrailerValue]) -> None:
        super().__init__(base)
        self.content_length = content_length
        self.trailers = dict(trailers)
        self._frames = self._generate()
        self._buffer = bytearray()

    @property
    def length(self) -> int:
        """Framed length, or ``-1`` when the inner length is unknown."""
        if self.content_length < 0:
            return -1
        size = 0
        if self.content_length > 0:
            size = len(f"{self.content_length:x}") + 2 + self.content_length + 2
        trailer = sum(len(name) + 1 + value.length() + 2 for name, value in self.trailers.items())
        return size + 3 + trailer + 2

    def headers(self, content_encoding: str = "") -> Dict[str, str]:
        encoding = TOS_CHUNKED_ENCODING
        if content_encoding:
            encoding = f"{TOS_CHUNKED_ENCODING},{content_encoding}"
        return {
            HEADER_CONTENT_ENCODING: encoding,
            HEADER_CONTENT_SHA256: STREAMING_UNSIGNED_PAYLOAD_TRAILER,
            HEADER_TRAILER: ",".join(self.trailers),
        }

    def _read_full(self, size: int) -> bytes:
        parts: List[bytes] = []
        missing = size
        while missing > 0:
            data = self._base.read(missing)
            if not data:
                break
            parts.append(data)
            missing -= len(data)
        return b"".join(parts)

    def _generate(self) -> Iterator[bytes]:
        if self.content_length > 0:
            yield f"{self.content_length:x}".encode("ascii") + _CRLF
            left = self.content_length
            while left > 0:
                data = self._base.read(min(left, DEFAULT_CHUNK_SIZE))
                if not data:
                    raise TosClientError(
                        f"tos: body ended {left} bytes before its declared content length",
                        kind=ClientErrorKind.IO,
                    )
                left -= len(data)
                yield data
            yield _CRLF
        elif self.content_length < 0:
            while True:
                data = self._read_full(DEFAULT_CHUNK_SIZE)
                if not data:
                    break
                yield f"{len(data):x}".encode("ascii") + _CRLF + data + _CRLF
        yield b"0" + _CRLF
        for name, value in self.trailers.items():
            yield f"{name}:{value.value()}".encode("ascii") + _CRLF
        yield _CRLF

    def read(self, size: int = -1) -> bytes:
        while size is None or size < 0 or len(self._buffer) < size:
            piece = next(self._frames, None)
            if piece is None:
                break
            self._buffer.extend(piece)
        if size is None or size < 0:
            size = len(self._buffer)
        data = bytes(self._buffer[:size])
        del self._buffer[:size]
        return data

    def reset(self) -> None:
        super().reset()
        self._frames = self._generate()
        self._buffer = bytearray()


# ----------------------------------------------------------------------
# response validation


class StreamReader:
    """File-like view over an iterator of byte chunks (for example a response stream)."""

    def __init__(self, chunks: Iterator[bytes], on_close: Optional[Callable[[], None]] = None) -> None:
        self._chunks = chunks
        self._buffer = bytearray()
        self._on_close = on_close
        self._closed = False

    def readable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return False

    def read(self, size: int = -1) -> bytes:
        if size is not None and 0 <= size <= len(self._buffer):
            data = bytes(self._buffer[:size])
            del self._buffer[:size]
            return data
        while size is None or size < 0 or len(self._buffer) < size:
            piece = next(self._chunks, None)
            if piece is None:
                break
            self._buffer.extend(piece)
            if size is not None and size >= 0:
                break
        if size is None or size < 0:
            size = len(self._buffer)
        data = bytes(self._buffer[:size])
        del self._buffer[:size]
        return data

    def __iter__(self) -> Iterator[bytes]:
        return iter_chunks(self)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._on_close is not None:
            self._on_close()


class ChunkDecodingReader(_ReaderWrapper):
    """Read a ``tos-raw-trailer`` response body and verify its CRC trailer.

    The body is ``raw_content_length`` bytes of payload, a CRLF, and
    ``name:value`` trailer lines terminated by an empty line.
    """

    def __init__(self, base, raw_content_length: int, *, request_id: str = "") -> None:
        super().__init__(base)
        self.remaining = raw_content_length
        self.request_id = request_id
        self.trailers: Dict[str, str] = {}
        self._hash = CRC64()
        self._verified = False

    @property
    def crc(self) -> int:
        return self._hash.crc

    def read(self, size: int = -1) -> bytes:
        if self.remaining <= 0:
            if not self._verified:
                self._verified = True
                self._read_trailers()
            return b""
        want = self.remaining if size is None or size < 0 else min(size, self.remaining)
        data = self._base.read(want)
        if not data:
            raise TosClientError(
                f"tos: response body ended {self.remaining} bytes early",
                kind=ClientErrorKind.IO,
            )
        self.remaining -= len(data)
        self._hash.update(data)
        return data

    def _read_exact(self, size: int) -> bytes:
        data = b""
        while len(data) < size:
            piece = self._base.read(size - len(data))
            if not piece:
                break
            data += piece
        return data

    def _read_line(self) -> Optional[bytes]:
        line = bytearray()
        while not line.endswith(_CRLF):
            piece = self._base.read(1)
            if not piece:
                return bytes(line) if line else None
            line.extend(piece)
        return bytes(line[:-2])

    def _read_trailers(self) -> None:
        if self._read_exact(2) != _CRLF:
            raise TosClientError("tos: malformed chunked encoding", kind=ClientErrorKind.SERIALIZE)
        while True:
            line = self._read_line()
            if not line:
                break
            name, _, value = line.decode("utf-8").partition(":")
            self.trailers[name.strip().lower()] = value.strip()
        expected = self.trailers.get(TRAILER_CRC64) or self.trailers.get(TRAILER_RANGE_CRC64)
        actual = to_trailer_value(self._hash.crc)
        if expected != actual:
            raise ChecksumError(
                "tos: crc64 of response body does not match its trailer",
                expected=expected,
                actual=actual,
                request_id=self.request_id,
            )


class CRCCheckingReader(_ReaderWrapper):
    """Verify a full object body against the server's decimal CRC at EOF."""

    def __init__(self, base, server_crc: int, *, request_id: str = "") -> None:
        super().__init__(base)
        self.server_crc = server_crc
        self.request_id = request_id
        self._hash = CRC64()
        self._verified = False

    @property
    def crc(self) -> int:
        return self._hash.crc

    def read(self, size: int = -1) -> bytes:
        data = self._base.read(size)
        if data:
            self._hash.update(data)
        elif size != 0 and not self._verified:
            self._verified = True
            if self._hash.crc != self.server_crc:
                raise ChecksumError(
                    "tos: crc64 of response body does not match the server",
                    expected=self.server_crc,
                    actual=self._hash.crc,
                    request_id=self.request_id,
                )
        return data


# ----------------------------------------------------------------------
# length discovery


def try_resolve_length(content) -> int:
    """Best-effort number of bytes ``content`` will yield, ``-1`` when unknown."""
    if content is None:
        return 0
    if isinstance(content, (bytes, bytearray, memoryview)):
        return len(content)
    if isinstance(content, str):
        return len(content.encode("utf-8"))
    length = getattr(content, "length", None)
    if isinstance(length, int):
        return length
    getbuffer = getattr(content, "getbuffer", None)
    if callable(getbuffer):
        return len(getbuffer()) - content.tell()
    fileno = getattr(content, "fileno", None)
    if callable(fileno):
        try:
            size = os.fstat(fileno()).st_size
            return size - content.tell()
        except (OSError, ValueError, io.UnsupportedOperation):
            return -1
    return -1


