"""Credential sources and the background refresh wrapper used by the signer.

Signing must never block on a slow or failing credential source.  Providers
(:class:`StaticCredentialsProvider`, :class:`EnvCredentialsProvider`,
:class:`EcsCredentialsProvider` or anything implementing
:class:`CredentialsProvider`) are wrapped in :class:`ProviderBackedCredentials`,
which caches the last good credential, refreshes it on a ticker thread, and
falls back to the cached value (marked *immortal*) when the source is down.

Example:
    >>> creds = ProviderBackedCredentials(StaticCredentialsProvider("ak", "sk"))
    >>> creds.credential().access_key_id
    'ak'
    >>> creds.stop()
"""

from __future__ import annotations

import logging
import os
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

import httpx

from .consts import DEFAULT_ECS_URL, ECS_ROLE_PLACEHOLDER
from .errors import ClientErrorKind, TosClientError

__all__ = [
    "Credential",
    "Credentials",
    "CredentialsProvider",
    "StaticCredentials",
    "StaticCredentialsProvider",
    "EnvCredentialsProvider",
    "EcsCredentialsProvider",
    "EcsCredentials",
    "ProviderBackedCredentials",
    "CachedCredential",
]

logger = logging.getLogger(__name__)

DEFAULT_EXPIRES = 10 * 60 * 60
DEFAULT_REFRESH_INTERVAL = 10 * 60
PREFETCH_SECONDS = 600
ECS_TIMEOUT = 10.0


@dataclass(frozen=True)
class Credential:
    access_key_id: str = ""
    secret_access_key: str = ""
    security_token: str = ""

    def __repr__(self) -> str:
        masked = f"{self.access_key_id[:4]}***" if self.access_key_id else ""
        return f"Credential(access_key_id={masked!r})"


class CredentialsProvider:
    """Source of credentials valid for at least ``expires`` seconds."""

    def credentials(self, expires: int) -> Credential:  # pragma: no cover - interface
        raise NotImplementedError


class Credentials:
    """Hot-path accessor consulted by the signer on every request."""

    def credential(self) -> Credential:  # pragma: no cover - interface
        raise NotImplementedError


class StaticCredentials(Credentials):
    def __init__(self, access_key_id: str, secret_access_key: str, security_token: str = "") -> None:
        self._credential = Credential(access_key_id, secret_access_key, security_token)

    def credential(self) -> Credential:
        return self._credential


class StaticCredentialsProvider(CredentialsProvider):
    def __init__(self, access_key_id: str, secret_access_key: str, security_token: str = "") -> None:
        self._credential = Credential(access_key_id, secret_access_key, security_token)

    def credentials(self, expires: int) -> Credential:
        return self._credential


class EnvCredentialsProvider(CredentialsProvider):
    """Read ``TOS_ACCESS_KEY``, ``TOS_SECRET_KEY`` and ``TOS_SECURITY_TOKEN``."""

    def credentials(self, expires: int) -> Credential:
        access_key = os.environ.get("TOS_ACCESS_KEY", "").strip()
        secret_key = os.environ.get("TOS_SECRET_KEY", "").strip()
        token = os.environ.get("TOS_SECURITY_TOKEN", "").strip()
        if not access_key or not secret_key:
            raise TosClientError(
                "tos: env credentials not found: require TOS_ACCESS_KEY and TOS_SECRET_KEY"
            )
        return Credential(access_key, secret_key, token)


class EcsCredentialsProvider(CredentialsProvider):
    """Fetch role credentials from the cloud instance metadata service."""

    def __init__(
        self,
        role_name: str,
        url: str = DEFAULT_ECS_URL,
        *,
        client: Optional[httpx.Client] = None,
    ) -> None:
        if ECS_ROLE_PLACEHOLDER in url:
            url = url.replace(ECS_ROLE_PLACEHOLDER, role_name)
        elif url.endswith("/"):
            url = url + role_name
        self.url = url
        self._client = client

    def credentials(self, expires: int) -> Credential:
        try:
            if self._client is not None:
                response = self._client.get(self.url, timeout=ECS_TIMEOUT)
            else:
                response = httpx.get(self.url, timeout=ECS_TIMEOUT)
        except httpx.HTTPError as exc:
            raise TosClientError(
                "tos: request ecs credentials failed", exc, kind=ClientErrorKind.NETWORK
            ) from exc

        if response.status_code != 200:
            raise TosClientError(
                f"tos: get ecs credentials failed, status code {response.status_code}"
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise TosClientError(
                "tos: invalid ecs credentials response", exc, kind=ClientErrorKind.SERIALIZE
            ) from exc
        if not isinstance(payload, dict):
            raise TosClientError(
                f"tos: ecs credentials response is not an object: {type(payload).__name__}",
                kind=ClientErrorKind.SERIALIZE,
            )

        access_key = payload.get("AccessKeyId", "")
        secret_key = payload.get("SecretAccessKey", "")
        if not access_key or not secret_key:
            raise TosClientError("tos: ecs credentials response missing AccessKeyId or SecretAccessKey")
        logger.debug("ecs credentials fetched", extra={"expired_time": payload.get("ExpiredTime")})
        return Credential(access_key, secret_key, payload.get("SessionToken", ""))


@dataclass
class CachedCredential:
    credential: Credential
    expires_at: float
    immortal: bool = False

    def is_valid(self, now: float) -> bool:
        return self.immortal or now < self.expires_at


class ProviderBackedCredentials(Credentials):
    """Cache a provider's credential and keep it fresh from a daemon thread.

    Args:
        provider: Underlying credential source.
        expires: Validity requested from the provider, in seconds.
        refresh_interval: Ticker period of the background refresh thread.
        clock: Monotonic time source (overridable in tests).
        start_refresh: Whether to spawn the ticker thread.
    """

    def __init__(
        self,
        provider: CredentialsProvider,
        expires: int = DEFAULT_EXPIRES,
        refresh_interval: float = DEFAULT_REFRESH_INTERVAL,
        *,
        clock: Callable[[], float] = time.monotonic,
        start_refresh: bool = True,
    ) -> None:
        self._provider = provider
        self._expires = expires
        self._refresh_interval = refresh_interval
        self._clock = clock
        self._cache: Optional[CachedCredential] = None
        self._lock = threading.Lock()
        self._stopped = threading.Event()
        self._stop_once = threading.Lock()

        self.refresh()

        self._thread: Optional[threading.Thread] = None
        if start_refresh:
            self._thread = threading.Thread(
                target=self._refresh_loop, name="tos-credentials-refresh", daemon=True
            )
            self._thread.start()

    @property
    def cached(self) -> Optional[CachedCredential]:
        return self._cache

    def refresh(self) -> None:
        """Fetch a new credential; on failure keep serving the cached one."""
        with self._lock:
            try:
                credential = self._provider.credentials(self._expires)
            except Exception as exc:
                logger.warning(
                    "credentials refresh failed, falling back to cached value",
                    extra={"error": str(exc)},
                )
                if self._cache is not None:
                    self._cache.immortal = True
                return

            valid_for = self._expires - PREFETCH_SECONDS
            if valid_for <= 0:
                valid_for = self._expires
            self._cache = CachedCredential(credential, self._clock() + valid_for)

    def credential(self) -> Credential:
        cache = self._cache
        if cache is not None and cache.is_valid(self._clock()):
            return cache.credential
        self.refresh()
        cache = self._cache
        return cache.credential if cache is not None else Credential()

    def _refresh_loop(self) -> None:
        while not self._stopped.wait(self._refresh_interval):
            self.refresh()

    def stop(self) -> None:
        with self._stop_once:
            if self._stopped.is_set():
                return
            self._stopped.set()


class EcsCredentials(ProviderBackedCredentials):
    """Role credentials from the metadata service, refreshed in the background."""

    def __init__(
        self,
        role_name: str,
        url: str = DEFAULT_ECS_URL,
        *,
        client: Optional[httpx.Client] = None,
        **kwargs,
    ) -> None:
        super().__init__(EcsCredentialsProvider(role_name, url, client=client), **kwargs)
