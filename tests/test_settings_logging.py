from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest
from pydantic import ValidationError

from tos.errors import TosClientError
from tos.logging_utils import JSONFormatter, mask_sensitive_data, setup_logging
from tos.settings import ClientSettings, LoggingConfiguration, TransportConfig, load_settings


def test_defaults() -> None:
    settings = ClientSettings()

    assert settings.enable_crc is True
    assert settings.retry.max_retry_count == 3
    assert settings.transport.max_idle_conns == 128
    assert settings.transport.dns_cache_enabled is False


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TOS_ENDPOINT", "  tos-cn-shanghai.volces.com ")
    monkeypatch.setenv("TOS_ENABLE_CRC", "false")
    monkeypatch.setenv("TOS_TRANSPORT__READ_TIMEOUT", "12.5")
    monkeypatch.setenv("TOS_RETRY__MAX_RETRY_COUNT", "5")

    settings = load_settings()

    assert settings.endpoint == "tos-cn-shanghai.volces.com"
    assert settings.enable_crc is False
    assert settings.transport.read_timeout == 12.5
    assert settings.retry.max_retry_count == 5


def test_explicit_values_beat_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TOS_REGION", "cn-shanghai")

    assert load_settings(region="cn-beijing").region == "cn-beijing"


def test_invalid_settings_raise_client_error() -> None:
    with pytest.raises(TosClientError):
        load_settings(retry={"max_retry_count": 50})
    with pytest.raises(TosClientError):
        load_settings(transport={"read_timeout": 0})


@pytest.mark.parametrize("seconds,enabled", [(0, False), (59, False), (60, True), (3600, True)])
def test_dns_cache_enable_threshold(seconds: float, enabled: bool) -> None:
    assert TransportConfig(dns_cache_time=seconds).dns_cache_enabled is enabled


def test_logging_level_is_normalised() -> None:
    assert LoggingConfiguration(level="debug").level == "DEBUG"
    with pytest.raises(ValidationError):
        LoggingConfiguration(level="chatty")


def test_mask_sensitive_data_recurses() -> None:
    masked = mask_sensitive_data(
        {
            "authorization": "TOS4-HMAC-SHA256 Credential=...",
            "headers": {"X-Tos-Security-Token": "tok", "Content-Type": "text/plain"},
            "pairs": [("secret_access_key", "sk"), ("region", "cn-beijing")],
            "sk": "",
        }
    )

    assert masked["authorization"] == "***"
    assert masked["headers"] == {"X-Tos-Security-Token": "***", "Content-Type": "text/plain"}
    assert masked["pairs"] == [("secret_access_key", "***"), ("region", "cn-beijing")]
    assert masked["sk"] == ""


def test_json_formatter_includes_extra_fields() -> None:
    record = logging.LogRecord("tos.client", logging.INFO, __file__, 1, "hello %s", ("world",), None)
    record.request_id = "req-1"
    record.host = "bkt.tos-cn-beijing.volces.com"
    record.authorization = "secret"

    payload = json.loads(JSONFormatter().format(record))

    assert payload["message"] == "hello world"
    assert payload["level"] == "INFO"
    assert payload["request_id"] == "req-1"
    assert payload["host"] == "bkt.tos-cn-beijing.volces.com"
    assert payload["authorization"] == "***"
    assert payload["timestamp"].endswith("Z")


def test_setup_logging_replaces_its_handlers(tmp_path: Path) -> None:
    logger = setup_logging(level="DEBUG", log_dir=tmp_path)
    setup_logging(level="DEBUG", log_dir=tmp_path)
    try:
        managed = [handler for handler in logger.handlers if getattr(handler, "_tos_managed", False)]
        assert len(managed) == 2
        assert logger.level == logging.DEBUG

        logging.getLogger("tos.client").info("client ready", extra={"endpoint": "tos-cn-beijing.volces.com"})
        for handler in managed:
            handler.flush()

        lines = [json.loads(line) for path in tmp_path.glob("tos-*.jsonl") for line in path.read_text().splitlines()]
        assert any(line["message"] == "client ready" and line["endpoint"] for line in lines)
    finally:
        for handler in list(logger.handlers):
            if getattr(handler, "_tos_managed", False):
                logger.removeHandler(handler)
                handler.close()
        logger.propagate = True
        logger.setLevel(logging.NOTSET)
