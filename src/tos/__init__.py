"""Public API of the TOS object-storage client core.

The facade is :class:`TosClient`; inputs and outputs live in
:mod:`tos.models`, errors in :mod:`tos.errors`.  Names are imported lazily so
that ``import tos`` stays cheap for callers that only need the constants or
the error types.
"""

from __future__ import annotations

from importlib import import_module
from typing import TYPE_CHECKING, Any, Dict

from .consts import SDK_VERSION

__version__ = SDK_VERSION

_EXPORTS: Dict[str, str] = {
    "TosClient": "tos.client",
    "ClientSettings": "tos.settings",
    "TransportConfig": "tos.settings",
    "RetryConfig": "tos.settings",
    "load_settings": "tos.settings",
    "CancelHook": "tos.cancellation",
    "StaticCredentials": "tos.credentials",
    "StaticCredentialsProvider": "tos.credentials",
    "EnvCredentialsProvider": "tos.credentials",
    "EcsCredentialsProvider": "tos.credentials",
    "EcsCredentials": "tos.credentials",
    "ProviderBackedCredentials": "tos.credentials",
    "DefaultRateLimiter": "tos.body",
    "DataTransferListener": "tos.events",
    "DataTransferStatus": "tos.events",
    "DataTransferType": "tos.events",
    "UploadEvent": "tos.events",
    "DownloadEvent": "tos.events",
    "CopyEvent": "tos.events",
    "TosError": "tos.errors",
    "TosClientError": "tos.errors",
    "TosServerError": "tos.errors",
    "ChecksumError": "tos.errors",
    "CancelledError": "tos.errors",
    "PartialMultipartError": "tos.errors",
    "setup_logging": "tos.logging_utils",
}

__all__ = ["__version__", *_EXPORTS]

if TYPE_CHECKING:  # pragma: no cover - import for static analysis only
    from .body import DefaultRateLimiter
    from .cancellation import CancelHook
    from .client import TosClient
    from .credentials import (
        EcsCredentials,
        EcsCredentialsProvider,
        EnvCredentialsProvider,
        ProviderBackedCredentials,
        StaticCredentials,
        StaticCredentialsProvider,
    )
    from .errors import (
        CancelledError,
        ChecksumError,
        PartialMultipartError,
        TosClientError,
        TosError,
        TosServerError,
    )
    from .events import (
        CopyEvent,
        DataTransferListener,
        DataTransferStatus,
        DataTransferType,
        DownloadEvent,
        UploadEvent,
    )
    from .logging_utils import setup_logging
    from .settings import ClientSettings, RetryConfig, TransportConfig, load_settings


def __getattr__(name: str) -> Any:
    module_name = _EXPORTS.get(name)
    if module_name is None:
        raise AttributeError(f"module '{__name__}' has no attribute '{name}'")
    value = getattr(import_module(module_name), name)
    globals()[name] = value
    return value


def __dir__() -> list:
    return sorted(set(globals()) | set(_EXPORTS))
