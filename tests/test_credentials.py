from __future__ import annotations

import json
from typing import List
from unittest.mock import Mock

import httpx
import pytest

from tos.credentials import (
    Credential,
    EcsCredentials,
    EcsCredentialsProvider,
    EnvCredentialsProvider,
    ProviderBackedCredentials,
    StaticCredentials,
    StaticCredentialsProvider,
)
from tos.errors import ClientErrorKind, TosClientError


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _ecs_client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


def test_static_credentials() -> None:
    cred = StaticCredentials("AK", "SK", "TOKEN").credential()

    assert (cred.access_key_id, cred.secret_access_key, cred.security_token) == ("AK", "SK", "TOKEN")
    assert StaticCredentialsProvider("AK", "SK").credentials(60) == Credential("AK", "SK")


def test_credential_repr_masks_secrets() -> None:
    text = repr(Credential("AKLTexample", "very-secret", "token"))

    assert "very-secret" not in text
    assert "AKLT***" in text


def test_env_provider_reads_variables(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TOS_ACCESS_KEY", " AK ")
    monkeypatch.setenv("TOS_SECRET_KEY", "SK")
    monkeypatch.setenv("TOS_SECURITY_TOKEN", "T")

    assert EnvCredentialsProvider().credentials(60) == Credential("AK", "SK", "T")


def test_env_provider_requires_keys(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TOS_ACCESS_KEY", "AK")

    with pytest.raises(TosClientError):
        EnvCredentialsProvider().credentials(60)


def test_ecs_provider_fetches_role_credentials() -> None:
    seen: List[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(str(request.url))
        body = {"AccessKeyId": "AK", "SecretAccessKey": "SK", "SessionToken": "ST", "ExpiredTime": "2026-10-19T10:00:00Z"}
        return httpx.Response(200, content=json.dumps(body).encode())

    provider = EcsCredentialsProvider("reader", client=_ecs_client(handler))

    assert provider.credentials(3600) == Credential("AK", "SK", "ST")
    assert seen == ["http://100.96.0.96/volcstack/latest/iam/security_credentials/reader"]


def test_ecs_provider_appends_role_to_directory_url() -> None:
    provider = EcsCredentialsProvider("reader", "http://meta.local/creds/")

    assert provider.url == "http://meta.local/creds/reader"


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(404, content=b"not found"),
        httpx.Response(200, content=b"not json"),
        httpx.Response(200, content=b'{"AccessKeyId": "AK"}'),
    ],
)
def test_ecs_provider_rejects_bad_responses(response: httpx.Response) -> None:
    provider = EcsCredentialsProvider("reader", client=_ecs_client(lambda request: response))

    with pytest.raises(TosClientError):
        provider.credentials(3600)


@pytest.mark.parametrize("body", [b'["AK", "SK"]', b'"token"', b"null", b"42"])
def test_ecs_provider_rejects_non_object_payload(body: bytes) -> None:
    provider = EcsCredentialsProvider("reader", client=_ecs_client(lambda request: httpx.Response(200, content=body)))

    with pytest.raises(TosClientError) as excinfo:
        provider.credentials(3600)
    assert excinfo.value.kind == ClientErrorKind.SERIALIZE


def test_ecs_provider_wraps_transport_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("metadata service unreachable", request=request)

    provider = EcsCredentialsProvider("reader", client=_ecs_client(handler))

    with pytest.raises(TosClientError) as excinfo:
        provider.credentials(3600)
    assert excinfo.value.kind == "network"


def test_provider_backed_credentials_refresh_after_validity() -> None:
    """Credentials are reused until ``expires - 600`` seconds have passed."""
    clock = FakeClock()
    provider = Mock()
    provider.credentials.side_effect = [Credential("AK1", "SK1"), Credential("AK2", "SK2")]
    creds = ProviderBackedCredentials(provider, expires=3600, clock=clock, start_refresh=False)

    assert creds.credential().access_key_id == "AK1"
    clock.now = 2999
    assert creds.credential().access_key_id == "AK1"
    clock.now = 3000
    assert creds.credential().access_key_id == "AK2"
    provider.credentials.assert_called_with(3600)


def test_short_expiry_is_used_as_is() -> None:
    clock = FakeClock()
    creds = ProviderBackedCredentials(
        StaticCredentialsProvider("AK", "SK"), expires=300, clock=clock, start_refresh=False
    )

    assert creds.cached.expires_at == 300


def test_failed_refresh_keeps_cached_credential_forever() -> None:
    clock = FakeClock()
    provider = Mock()
    provider.credentials.side_effect = [Credential("AK1", "SK1"), TosClientError("down"), TosClientError("down")]
    creds = ProviderBackedCredentials(provider, expires=3600, clock=clock, start_refresh=False)

    creds.refresh()
    clock.now = 10 ** 6

    assert creds.cached.immortal is True
    assert creds.credential().access_key_id == "AK1"
    assert provider.credentials.call_count == 2


def test_provider_failure_without_cache_yields_empty_credential() -> None:
    provider = Mock()
    provider.credentials.side_effect = TosClientError("down")
    creds = ProviderBackedCredentials(provider, start_refresh=False)

    assert creds.credential() == Credential()
    assert creds.cached is None


def test_stop_ends_background_refresh() -> None:
    creds = ProviderBackedCredentials(StaticCredentialsProvider("AK", "SK"), refresh_interval=3600)

    creds.stop()
    creds.stop()

    assert creds._stopped.is_set()


def test_ecs_credentials_fetch_on_construction() -> None:
    calls: List[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(1)
        body = {"AccessKeyId": "AK", "SecretAccessKey": "SK", "SessionToken": "ST"}
        return httpx.Response(200, content=json.dumps(body).encode())

    creds = EcsCredentials("reader", client=_ecs_client(handler), start_refresh=False)

    assert creds.credential() == Credential("AK", "SK", "ST")
    assert calls == [1]
    creds.stop()
