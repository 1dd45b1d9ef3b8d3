"""HTTPX transport for the TOS client.

:class:`DefaultTransport` owns one :class:`httpx.Client` configured from
:class:`~tos.settings.TransportConfig`:

- **TLS**: certifi bundle by default, a custom CA file, or verification
  disabled (``insecure_skip_verify``) with a warning.
- **Pooling**: idle connection limits and keepalive expiry map to
  :class:`httpx.Limits`; ``keep_alive`` turns on TCP keepalive probes with
  that idle time through socket options.
- **Timeouts**: dial, read and write timeouts map to :class:`httpx.Timeout`.
- **DNS cache**: when enabled the connection pool dials through
  :class:`DNSCacheBackend`, which tries cached addresses in random order and
  evicts the ones that refuse connections.
- **Streaming**: request bodies are streamed from file-like objects and
  response bodies are exposed as raw (undecoded) file-like streams.

Each round trip emits an access log record at DEBUG with per-phase timings
collected through the httpcore ``trace`` extension, and a WARNING slow log
when an upload moved fewer bytes per second than the configured threshold.
"""

from __future__ import annotations

import logging
import random
import socket
import ssl
import threading
import time
from typing import Any, Dict, Iterator, List, Optional, Tuple

import certifi
import httpcore
import httpx

from .body import StreamReader, iter_chunks
from .consts import HEADER_HOST, HEADER_REQUEST_ID
from .dns_cache import DNSCache
from .errors import ClientErrorKind, TosClientError
from .request import Request, Response, is_ip_host
from .settings import TransportConfig

__all__ = [
    "DefaultTransport",
    "DNSCacheBackend",
    "create_limits",
    "create_ssl_context",
    "is_slow",
    "socket_options",
]

logger = logging.getLogger(__name__)

SLOW_REQUEST_SECONDS = 0.5

_dns_timing = threading.local()


def is_slow(total_bytes: int, threshold_kib: int, cost: float) -> bool:
    """Return ``True`` when ``total_bytes`` moved in ``cost`` seconds is below ``threshold_kib`` KiB/s."""
    if threshold_kib <= 0 or cost <= SLOW_REQUEST_SECONDS:
        return False
    return int(total_bytes / cost) < threshold_kib * 1024


def create_ssl_context(config: TransportConfig) -> ssl.SSLContext:
    """Create the SSL context used by the connection pool."""
    if config.insecure_skip_verify:
        ctx = ssl.create_default_context()
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
        logger.warning("TLS verification DISABLED for TOS client")
        return ctx

    ctx = ssl.create_default_context(cafile=config.ca_file or certifi.where())
    ctx.check_hostname = True
    ctx.verify_mode = ssl.CERT_REQUIRED
    return ctx


def create_limits(config: TransportConfig) -> httpx.Limits:
    """Map the pool settings; all requests share one host, so both idle caps apply."""
    return httpx.Limits(
        max_connections=config.max_conns_per_host,
        max_keepalive_connections=min(config.max_idle_conns, config.max_idle_conns_per_host),
        keepalive_expiry=config.idle_conn_timeout,
    )


def socket_options(config: TransportConfig) -> List[Tuple[int, int, int]]:
    """TCP keepalive options for ``config.keep_alive`` seconds; empty when disabled."""
    if config.keep_alive <= 0:
        return []
    idle = max(1, int(config.keep_alive))
    options = [(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)]
    if hasattr(socket, "TCP_KEEPIDLE"):
        options.append((socket.IPPROTO_TCP, socket.TCP_KEEPIDLE, idle))
    elif hasattr(socket, "TCP_KEEPALIVE"):
        # macOS
        options.append((socket.IPPROTO_TCP, socket.TCP_KEEPALIVE, idle))
    if hasattr(socket, "TCP_KEEPINTVL"):
        options.append((socket.IPPROTO_TCP, socket.TCP_KEEPINTVL, idle))
    return options


class DNSCacheBackend(httpcore.NetworkBackend):
    """Network backend dialing the addresses held by a :class:`DNSCache`."""

    def __init__(self, cache: DNSCache, backend: Optional[httpcore.NetworkBackend] = None) -> None:
        self._cache = cache
        self._backend = backend or httpcore.SyncBackend()

    def connect_tcp(
        self,
        host: str,
        port: int,
        timeout: Optional[float] = None,
        local_address: Optional[str] = None,
        socket_options: Any = None,
    ) -> httpcore.NetworkStream:
        if is_ip_host(host):
            return self._backend.connect_tcp(
                host, port, timeout=timeout, local_address=local_address, socket_options=socket_options
            )

        started = time.monotonic()
        try:
            ips = self._cache.get_ip_list(host)
        except (OSError, UnicodeError) as exc:
            logger.debug("dns lookup failed, dialing by name", extra={"host": host, "error": str(exc)})
            ips = []
        _dns_timing.cost = time.monotonic() - started

        random.shuffle(ips)
        for ip in ips:
            try:
                return self._backend.connect_tcp(
                    ip, port, timeout=timeout, local_address=local_address, socket_options=socket_options
                )
            except (httpcore.ConnectError, httpcore.ConnectTimeout) as exc:
                logger.debug(
                    "dial to cached address failed",
                    extra={"host": host, "ip": ip, "error": str(exc)},
                )
                self._cache.remove(host, ip)
        return self._backend.connect_tcp(
            host, port, timeout=timeout, local_address=local_address, socket_options=socket_options
        )

    def connect_unix_socket(
        self, path: str, timeout: Optional[float] = None, socket_options: Any = None
    ) -> httpcore.NetworkStream:
        return self._backend.connect_unix_socket(path, timeout=timeout, socket_options=socket_options)

    def sleep(self, seconds: float) -> None:
        self._backend.sleep(seconds)


class _DNSCachingTransport(httpx.HTTPTransport):
    """HTTP transport whose connection pool dials through :class:`DNSCacheBackend`."""

    def __init__(
        self,
        *,
        dns_cache: DNSCache,
        ssl_context: ssl.SSLContext,
        limits: httpx.Limits,
        socket_options: Optional[List[Tuple[int, int, int]]] = None,
    ) -> None:
        super().__init__(verify=ssl_context, limits=limits)
        self._pool = httpcore.ConnectionPool(
            ssl_context=ssl_context,
            max_connections=limits.max_connections,
            max_keepalive_connections=limits.max_keepalive_connections,
            keepalive_expiry=limits.keepalive_expiry,
            http1=True,
            http2=False,
            socket_options=socket_options or None,
            network_backend=DNSCacheBackend(dns_cache),
        )


class _RequestTrace:
    """Collects httpcore trace events of one request."""

    def __init__(self) -> None:
        self.started = time.monotonic()
        self.marks: Dict[str, float] = {}

    def __call__(self, event_name: str, info: Dict[str, Any]) -> None:
        self.marks[event_name] = time.monotonic()

    def _span(self, begin: str, end: str) -> Optional[float]:
        if begin in self.marks and end in self.marks:
            return round((self.marks[end] - self.marks[begin]) * 1000, 3)
        return None

    def timings(self) -> Dict[str, Optional[float]]:
        prefix = "http11."
        return {
            "connect_ms": self._span("connection.connect_tcp.started", "connection.connect_tcp.complete"),
            "tls_ms": self._span("connection.start_tls.started", "connection.start_tls.complete"),
            "send_ms": self._span(
                prefix + "send_request_headers.started", prefix + "send_request_body.complete"
            ),
            "wait_ms": self._span(
                prefix + "send_request_body.complete", prefix + "receive_response_headers.complete"
            ),
        }


class _CountingBody:
    """Iterates a request body while counting the bytes handed to the socket."""

    def __init__(self, chunks: Iterator[bytes]) -> None:
        self._chunks = chunks
        self.size = 0

    def __iter__(self) -> Iterator[bytes]:
        for chunk in self._chunks:
            self.size += len(chunk)
            yield chunk


def _raw_stream(response: httpx.Response, url: str) -> Iterator[bytes]:
    try:
        yield from response.iter_raw()
    except httpx.TimeoutException as exc:
        raise TosClientError(
            "tos: timed out reading response body", exc, kind=ClientErrorKind.NETWORK, timeout=True, request_url=url
        ) from exc
    except httpx.HTTPError as exc:
        raise TosClientError(
            "tos: failed reading response body", exc, kind=ClientErrorKind.NETWORK, request_url=url
        ) from exc


class DefaultTransport:
    """Round-trip :class:`~tos.request.Request` objects over HTTPX.

    Args:
        config: Pooling, timeout, TLS and DNS settings.
        dns_cache: Shared cache used when ``config.dns_cache_enabled``.
        user_agent: Value of the ``User-Agent`` header.
        transport: Replacement HTTPX transport, e.g. :class:`httpx.MockTransport`.
    """

    def __init__(
        self,
        config: Optional[TransportConfig] = None,
        *,
        dns_cache: Optional[DNSCache] = None,
        user_agent: str = "",
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.config = config or TransportConfig()
        self.dns_cache = dns_cache
        self.user_agent = user_agent
        self._client = self._create_http_client(transport)

    def _timeout(self) -> httpx.Timeout:
        cfg = self.config

        def _cap(value: float) -> float:
            if cfg.request_timeout is None:
                return value
            return min(value, cfg.request_timeout)

        return httpx.Timeout(
            connect=_cap(cfg.dial_timeout + cfg.tls_handshake_timeout),
            read=_cap(max(cfg.read_timeout, cfg.response_header_timeout)),
            write=_cap(cfg.write_timeout),
            pool=_cap(cfg.dial_timeout),
        )

    def _create_http_client(self, transport: Optional[httpx.BaseTransport]) -> httpx.Client:
        cfg = self.config
        ssl_context = create_ssl_context(cfg)
        limits = create_limits(cfg)
        options = socket_options(cfg) or None
        if transport is None:
            if self.dns_cache is not None and cfg.dns_cache_enabled and not cfg.proxy:
                transport = _DNSCachingTransport(
                    dns_cache=self.dns_cache, ssl_context=ssl_context, limits=limits, socket_options=options
                )
            else:
                transport = httpx.HTTPTransport(
                    verify=ssl_context, limits=limits, proxy=cfg.proxy, socket_options=options
                )

        client = httpx.Client(
            transport=transport,
            timeout=self._timeout(),
            follow_redirects=False,
        )
        # raw bodies carry the server's CRC; never ask for compression
        client.headers.pop("Accept-Encoding", None)
        if self.user_agent:
            client.headers["User-Agent"] = self.user_agent

        logger.debug(
            "HTTPX client created",
            extra={
                "max_keepalive_connections": limits.max_keepalive_connections,
                "max_connections": cfg.max_conns_per_host,
                "keepalive_expiry": cfg.idle_conn_timeout,
                "tcp_keepalive": cfg.keep_alive,
                "dns_cache": bool(self.dns_cache is not None and cfg.dns_cache_enabled),
                "proxy": bool(cfg.proxy),
            },
        )
        return client

    def round_trip(self, req: Request) -> Response:
        url = req.url()
        headers = httpx.Headers(req.header)
        if req.request_host:
            headers[HEADER_HOST] = req.request_host

        body: Any = None
        counter: Optional[_CountingBody] = None
        if req.content is not None:
            if isinstance(req.content, (bytes, bytearray)):
                body = bytes(req.content)
            elif isinstance(req.content, str):
                body = req.content.encode("utf-8")
            else:
                counter = _CountingBody(iter_chunks(req.content))
                body = iter(counter)
            if req.content_length is not None:
                headers["Content-Length"] = str(req.content_length)

        trace = _RequestTrace()
        _dns_timing.cost = None
        try:
            request = self._client.build_request(
                req.method, url, headers=headers, content=body, extensions={"trace": trace}
            )
            http_response = self._client.send(request, stream=True, follow_redirects=False)
        except httpx.TimeoutException as exc:
            self._log_access(req, url, trace, None, exc)
            raise TosClientError(
                f"tos: request timed out: {exc}", exc, kind=ClientErrorKind.NETWORK, timeout=True, request_url=url
            ) from exc
        except httpx.HTTPError as exc:
            self._log_access(req, url, trace, None, exc)
            raise TosClientError(
                f"tos: request failed: {exc}", exc, kind=ClientErrorKind.NETWORK, request_url=url
            ) from exc

        self._log_access(req, url, trace, http_response, None)
        cost = time.monotonic() - trace.started
        if counter is not None and is_slow(counter.size, self.config.high_latency_log_threshold, cost):
            logger.warning(
                "slow request",
                extra={
                    "method": req.method,
                    "host": req.host,
                    "path": req.path,
                    "status_code": http_response.status_code,
                    "request_id": http_response.headers.get(HEADER_REQUEST_ID, ""),
                    "bytes": counter.size,
                    "cost_ms": round(cost * 1000, 3),
                },
            )

        length = http_response.headers.get("Content-Length")
        response_body: Optional[StreamReader]
        if req.method.upper() == "HEAD":
            http_response.close()
            response_body = None
        else:
            response_body = StreamReader(_raw_stream(http_response, url), on_close=http_response.close)
        return Response(
            http_response.status_code,
            http_response.headers,
            response_body,
            content_length=int(length) if length and length.isdigit() else -1,
            request_url=url,
        )

    def _log_access(
        self,
        req: Request,
        url: str,
        trace: _RequestTrace,
        response: Optional[httpx.Response],
        error: Optional[BaseException],
    ) -> None:
        if not logger.isEnabledFor(logging.DEBUG):
            return
        dns_cost = getattr(_dns_timing, "cost", None)
        logger.debug(
            "http request",
            extra={
                "method": req.method,
                "host": req.host,
                "path": req.path,
                "status_code": response.status_code if response is not None else None,
                "request_id": response.headers.get(HEADER_REQUEST_ID, "") if response is not None else "",
                "dns_ms": round(dns_cost * 1000, 3) if dns_cost is not None else None,
                **trace.timings(),
                "total_ms": round((time.monotonic() - trace.started) * 1000, 3),
                "error": str(error) if error is not None else None,
            },
        )

    def close(self) -> None:
        self._client.close()
        logger.debug("HTTPX client closed")
