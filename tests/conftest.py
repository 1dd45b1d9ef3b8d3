# === NAVMAP v1 ===
# {
#   "module": "tests.conftest",
#   "purpose": "Shared pytest fixtures for the TOS client suite",
#   "sections": [
#     {"id": "isolate-env", "name": "isolate_tos_env", "anchor": "fixture-isolate-tos-env", "kind": "fixture"},
#     {"id": "fake-tos", "name": "fake_tos", "anchor": "fixture-fake-tos", "kind": "fixture"},
#     {"id": "client", "name": "client", "anchor": "fixture-client", "kind": "fixture"}
#   ]
# }
# === /NAVMAP ===

"""
Pytest Configuration

Shared fixtures wiring :class:`tos.client.TosClient` to the in-memory
:class:`tests.fixtures.fake_tos.FakeTos` server so that every test runs
without network access, with ``TOS_*`` environment variables cleared and
retries that never sleep.
"""

from __future__ import annotations

import os
from typing import Any, Callable, Generator, List

import pytest

from tests.fixtures.fake_tos import ENDPOINT, FakeTos
from tos.client import TosClient
from tos.retry import Retryer
from tos.settings import ClientSettings

BUCKET = "bkt"


@pytest.fixture(autouse=True)
def isolate_tos_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Drop ``TOS_*`` variables so settings only see what a test sets."""
    for name in list(os.environ):
        if name.upper().startswith("TOS_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def fake_tos() -> FakeTos:
    return FakeTos()


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def make_client(fake_tos: FakeTos, sleeps: List[float]) -> Generator[Callable[..., TosClient], None, None]:
    """Factory building clients against ``fake_tos``; closed at teardown."""
    created: List[TosClient] = []

    def _make(**overrides: Any) -> TosClient:
        settings = overrides.pop("settings", None) or ClientSettings(**overrides.pop("settings_fields", {}))
        kwargs: dict = {
            "ak": "AKTEST",
            "sk": "SKTEST",
            "endpoint": ENDPOINT,
            "region": "cn-beijing",
            "settings": settings,
            "http_transport": fake_tos.transport,
            "retryer": Retryer([0.1, 0.2, 0.4], jitter=0, sleep=sleeps.append),
        }
        kwargs.update(overrides)
        client = TosClient(**kwargs)
        created.append(client)
        return client

    yield _make
    for client in created:
        client.close()


@pytest.fixture
def client(make_client: Callable[..., TosClient]) -> TosClient:
    return make_client()
