"""Host -> IP cache with TTL, bounded expiry heap and background refresh.

The transport dials endpoint hosts through :class:`DNSCache` when DNS caching
is enabled.  Entries live for ``expiration`` seconds; a daemon thread
re-resolves every cached host on a fixed interval so the data path almost
never blocks on ``getaddrinfo``.  When re-resolution fails the entry is
flagged ``keep_alive`` and keeps being served past its expiry: a transient DNS
outage must not starve requests of addresses.

Entries sit in an indexed :class:`ExpiryHeap` ordered by ``expire_at``; each
entry records its heap slot, so ``put`` updates an existing entry in place and
re-sifts it, and ``remove`` deletes it from the middle of the heap.  Mutations
hold a single writer lock.  Readers look entries up without it and copy the
IP list; writers always rebind ``ip_list`` to a new list, never edit it.

Example:
    >>> cache = DNSCache(expiration=600)
    >>> ips = cache.get_ip_list("tos-cn-beijing.volces.com")  # doctest: +SKIP
    >>> cache.close()
"""

from __future__ import annotations

import logging
import socket
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

__all__ = ["DNSCache", "DNSCacheEntry", "ExpiryHeap", "resolve_host"]

logger = logging.getLogger(__name__)

DEFAULT_CACHE_CAP = 100
DEFAULT_REFRESH_INTERVAL = 30.0
MAX_CLEAN_PER_PUT = 5


@dataclass
class DNSCacheEntry:
    host: str
    ip_list: List[str]
    expire_at: float
    index: int = -1
    keep_alive: bool = False

    def is_valid(self, now: float) -> bool:
        return self.keep_alive or now < self.expire_at


def resolve_host(host: str) -> List[str]:
    """Resolve ``host`` to its distinct addresses in resolver order."""
    infos = socket.getaddrinfo(host, None, proto=socket.IPPROTO_TCP)
    seen: Dict[str, None] = {}
    for info in infos:
        seen.setdefault(info[4][0], None)
    return list(seen)


class ExpiryHeap:
    """Binary min-heap of entries keyed by ``expire_at``; entries track their index."""

    def __init__(self) -> None:
        self._items: List[DNSCacheEntry] = []

    def __len__(self) -> int:
        return len(self._items)

    def _less(self, i: int, j: int) -> bool:
        return self._items[i].expire_at < self._items[j].expire_at

    def _swap(self, i: int, j: int) -> None:
        items = self._items
        items[i], items[j] = items[j], items[i]
        items[i].index = i
        items[j].index = j

    def _up(self, j: int) -> None:
        while j > 0:
            parent = (j - 1) // 2
            if parent == j or not self._less(j, parent):
                break
            self._swap(parent, j)
            j = parent

    def _down(self, i: int) -> bool:
        start = i
        size = len(self._items)
        while True:
            left = 2 * i + 1
            if left >= size:
                break
            smallest = left
            right = left + 1
            if right < size and self._less(right, left):
                smallest = right
            if not self._less(smallest, i):
                break
            self._swap(i, smallest)
            i = smallest
        return i > start

    def push(self, entry: DNSCacheEntry) -> None:
        entry.index = len(self._items)
        self._items.append(entry)
        self._up(entry.index)

    def peek(self) -> Optional[DNSCacheEntry]:
        return self._items[0] if self._items else None

    def pop(self) -> DNSCacheEntry:
        last = len(self._items) - 1
        self._swap(0, last)
        entry = self._items.pop()
        if self._items:
            self._down(0)
        entry.index = -1
        return entry

    def remove(self, entry: DNSCacheEntry) -> None:
        i = entry.index
        if i < 0 or i >= len(self._items) or self._items[i] is not entry:
            return
        last = len(self._items) - 1
        if i != last:
            self._swap(i, last)
            self._items.pop()
            if not self._down(i):
                self._up(i)
        else:
            self._items.pop()
        entry.index = -1

    def fix(self, entry: DNSCacheEntry) -> None:
        if not self._down(entry.index):
            self._up(entry.index)


class DNSCache:
    """TTL cache of resolved endpoint addresses with a background refresher."""

    def __init__(
        self,
        expiration: float,
        *,
        refresh_interval: float = DEFAULT_REFRESH_INTERVAL,
        capacity: int = DEFAULT_CACHE_CAP,
        resolver: Callable[[str], List[str]] = resolve_host,
        clock: Callable[[], float] = time.monotonic,
        start_refresh: bool = True,
    ) -> None:
        self._expiration = expiration
        self._refresh_interval = refresh_interval
        self._capacity = capacity
        self._resolve = resolver
        self._clock = clock
        self._data: Dict[str, DNSCacheEntry] = {}
        self._heap = ExpiryHeap()
        self._lock = threading.Lock()
        self._clean_at = clock() + expiration
        self._closed = threading.Event()
        self._close_once = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        if start_refresh:
            self._thread = threading.Thread(
                target=self._refresh_loop, name="tos-dns-refresh", daemon=True
            )
            self._thread.start()

    def __len__(self) -> int:
        return len(self._data)

    def get(self, host: str) -> Optional[DNSCacheEntry]:
        entry = self._data.get(host)
        if entry is None or not entry.is_valid(self._clock()):
            return None
        return entry

    def get_ip_list(self, host: str) -> List[str]:
        """Return cached addresses for ``host``, resolving on a miss."""
        entry = self.get(host)
        if entry is not None:
            return list(entry.ip_list)
        ips = self._resolve(host)
        if ips:
            self.put(host, ips)
        return list(ips)

    def put(self, host: str, ips: List[str]) -> None:
        now = self._clock()
        with self._lock:
            entry = self._data.get(host)
            if entry is not None:
                entry.ip_list = list(ips)
                entry.expire_at = now + self._expiration
                entry.keep_alive = False
                self._heap.fix(entry)
            else:
                entry = DNSCacheEntry(host=host, ip_list=list(ips), expire_at=now + self._expiration)
                self._data[host] = entry
                self._heap.push(entry)

            while len(self._heap) > self._capacity:
                evicted = self._heap.pop()
                self._data.pop(evicted.host, None)
                logger.debug("dns cache evicted host", extra={"host": evicted.host})

            if now > self._clean_at:
                self._clean_expired(now)
                self._clean_at = now + self._expiration

    def _clean_expired(self, now: float) -> None:
        kept: List[DNSCacheEntry] = []
        for _ in range(MAX_CLEAN_PER_PUT):
            top = self._heap.peek()
            if top is None or top.expire_at > now:
                break
            self._heap.pop()
            if top.keep_alive:
                kept.append(top)
                continue
            self._data.pop(top.host, None)
        for entry in kept:
            entry.expire_at = now + self._expiration
            self._heap.push(entry)

    def remove(self, host: str, ip: str) -> None:
        """Drop ``ip`` from ``host``'s entry, deleting the entry once empty."""
        with self._lock:
            entry = self._data.get(host)
            if entry is None:
                return
            remaining = [candidate for candidate in entry.ip_list if candidate != ip]
            if remaining:
                entry.ip_list = remaining
                return
            del self._data[host]
            self._heap.remove(entry)

    def set_keep_alive(self, host: str) -> None:
        with self._lock:
            entry = self._data.get(host)
            if entry is not None:
                entry.keep_alive = True

    def hosts(self) -> List[str]:
        with self._lock:
            return list(self._data)

    def refresh(self) -> None:
        """Re-resolve every cached host; failures mark the entry keep-alive."""
        for host in self.hosts():
            try:
                ips = self._resolve(host)
            except (OSError, UnicodeError) as exc:
                logger.warning(
                    "dns refresh failed, keeping cached addresses",
                    extra={"host": host, "error": str(exc)},
                )
                self.set_keep_alive(host)
                continue
            if ips:
                self.put(host, ips)
            else:
                self.set_keep_alive(host)

    def _refresh_loop(self) -> None:
        while not self._closed.wait(self._refresh_interval):
            self.refresh()

    def close(self) -> None:
        with self._close_once:
            if self._closed.is_set():
                return
            self._closed.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=1.0)
