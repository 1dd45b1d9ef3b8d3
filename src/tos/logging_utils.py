"""Structured logging helpers for the TOS client."""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Dict, Mapping, Optional

from platformdirs import user_log_dir

__all__ = ["JSONFormatter", "mask_sensitive_data", "setup_logging", "LOG_DIR"]

LOG_DIR = Path(user_log_dir("tos"))

_SENSITIVE_KEYS = frozenset(
    {
        "authorization",
        "x-tos-security-token",
        "x-tos-signature",
        "x-tos-server-side-encryption-customer-key",
        "secret_key",
        "secret_access_key",
        "security_token",
        "sk",
        "token",
        "password",
    }
)
_MASK = "***"
# standard LogRecord attributes never copied into the JSON payload
_RECORD_FIELDS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


def _mask_value(value: object, key_hint: Optional[str] = None) -> object:
    if key_hint is not None and key_hint.lower() in _SENSITIVE_KEYS and value:
        return _MASK
    if isinstance(value, Mapping):
        return {key: _mask_value(item, str(key)) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        masked = []
        for item in value:
            if isinstance(item, tuple) and len(item) == 2 and isinstance(item[0], str):
                masked.append((item[0], _mask_value(item[1], item[0])))
            else:
                masked.append(_mask_value(item, key_hint))
        return masked if isinstance(value, list) else tuple(masked)
    return value


def mask_sensitive_data(payload: Mapping[str, object]) -> Dict[str, object]:
    """Return a copy of ``payload`` with credentials and signatures masked."""
    return {key: _mask_value(value, key) for key, value in payload.items()}


class JSONFormatter(logging.Formatter):
    """Formatter emitting masked JSON log entries."""

    def format(self, record: logging.LogRecord) -> str:
        now = datetime.now(timezone.utc)
        payload: Dict[str, object] = {
            "timestamp": now.isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", None),
            "stage": getattr(record, "stage", None),
        }
        for key, value in vars(record).items():
            if key not in _RECORD_FIELDS and key not in payload:
                payload[key] = value
        if isinstance(getattr(record, "extra_fields", None), dict):
            payload.update(record.extra_fields)
            payload.pop("extra_fields", None)
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(mask_sensitive_data(payload), default=str)


def setup_logging(
    *,
    level: str = "INFO",
    max_log_size_mb: int = 100,
    log_dir: Optional[Path] = None,
    propagate: bool = False,
) -> logging.Logger:
    """Attach console and rotating JSONL handlers to the ``tos`` logger.

    Calling it again replaces the handlers it installed previously.
    """
    if log_dir is not None:
        resolved_dir = Path(log_dir)
    else:
        env_value = os.environ.get("TOS_LOG_DIR", "").strip()
        resolved_dir = Path(env_value) if env_value else LOG_DIR
    resolved_dir.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger("tos")
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in list(logger.handlers):
        if getattr(handler, "_tos_managed", False):
            logger.removeHandler(handler)
            if getattr(handler, "stream", None) in (sys.stdout, sys.stderr):
                continue
            handler.close()

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    stream_handler._tos_managed = True  # type: ignore[attr-defined]
    logger.addHandler(stream_handler)

    today = datetime.now(timezone.utc).strftime("%Y%m%d")
    file_handler = RotatingFileHandler(
        resolved_dir / f"tos-{today}.jsonl",
        maxBytes=int(max_log_size_mb * 1024 * 1024),
        backupCount=5,
    )
    file_handler.setFormatter(JSONFormatter())
    file_handler._tos_managed = True  # type: ignore[attr-defined]
    logger.addHandler(file_handler)

    logger.propagate = propagate
    return logger
