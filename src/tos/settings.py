"""Configuration models for the TOS client.

:class:`TransportConfig` and :class:`RetryConfig` are plain pydantic models;
:class:`ClientSettings` is a :class:`pydantic_settings.BaseSettings` so every
field can also come from ``TOS_*`` environment variables (nested fields use a
double underscore, e.g. ``TOS_TRANSPORT__READ_TIMEOUT=10``).

Example:
    >>> settings = ClientSettings(endpoint="tos-cn-beijing.volces.com", region="cn-beijing")
    >>> settings.transport.max_idle_conns
    128
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import TosClientError

__all__ = [
    "TransportConfig",
    "RetryConfig",
    "LoggingConfiguration",
    "ClientSettings",
    "load_settings",
]

MIN_DNS_CACHE_SECONDS = 60


class TransportConfig(BaseModel):
    max_idle_conns: int = Field(default=128, ge=1)
    max_idle_conns_per_host: int = Field(default=1024, ge=1)
    max_conns_per_host: Optional[int] = Field(default=None, ge=1)
    dial_timeout: float = Field(default=10.0, gt=0)
    keep_alive: float = Field(default=30.0, ge=0)
    idle_conn_timeout: float = Field(default=60.0, gt=0)
    tls_handshake_timeout: float = Field(default=10.0, gt=0)
    response_header_timeout: float = Field(default=60.0, gt=0)
    read_timeout: float = Field(default=30.0, gt=0)
    write_timeout: float = Field(default=30.0, gt=0)
    request_timeout: Optional[float] = Field(default=None, gt=0)
    insecure_skip_verify: bool = False
    ca_file: Optional[str] = Field(default=None, description="PEM bundle; certifi when unset")
    dns_cache_time: float = Field(
        default=0.0, ge=0, description="DNS cache lifetime in seconds; enabled from 60"
    )
    proxy: Optional[str] = None
    high_latency_log_threshold: int = Field(
        default=100, description="Slow-log throughput threshold in KiB/s; <= 0 disables"
    )

    @property
    def dns_cache_enabled(self) -> bool:
        return self.dns_cache_time >= MIN_DNS_CACHE_SECONDS

    model_config = {"validate_assignment": True}


class RetryConfig(BaseModel):
    max_retry_count: int = Field(default=3, ge=0, le=20)
    backoff_base: float = Field(default=0.1, gt=0, le=10.0)
    jitter: float = Field(default=0.25, ge=0, lt=1)

    model_config = {"validate_assignment": True}


class LoggingConfiguration(BaseModel):
    enabled: bool = Field(default=False, description="Install the tos console and JSONL handlers on client start")
    level: str = Field(default="INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR)")
    max_log_size_mb: int = Field(default=100, gt=0, description="Maximum size of rotated log files")
    log_dir: Optional[str] = None

    @field_validator("level")
    @classmethod
    def validate_level(cls, value: str) -> str:
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR"}
        upper = value.upper()
        if upper not in valid_levels:
            raise ValueError(f"level must be one of {valid_levels}")
        return upper

    model_config = {"validate_assignment": True}


class ClientSettings(BaseSettings):
    endpoint: str = ""
    region: str = ""
    control_endpoint: str = ""
    enable_crc: bool = True
    disable_trailer_header: bool = False
    is_custom_domain: bool = False
    user_agent_suffix: str = ""
    transport: TransportConfig = Field(default_factory=TransportConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    logging: LoggingConfiguration = Field(default_factory=LoggingConfiguration)

    @field_validator("endpoint", "control_endpoint", "region")
    @classmethod
    def strip_value(cls, value: str) -> str:
        return value.strip()

    model_config = SettingsConfigDict(
        env_prefix="TOS_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )


def load_settings(**overrides: Any) -> ClientSettings:
    """Build :class:`ClientSettings`, surfacing validation failures as client errors."""
    try:
        return ClientSettings(**overrides)
    except ValidationError as exc:
        raise TosClientError(f"tos: invalid client settings: {exc.errors()}", exc) from exc
