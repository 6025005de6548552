"""12-factor configuration adapter using environment variables and an optional .env.local file."""

import ipaddress
import logging
from dataclasses import dataclass
from typing import Literal

from pydantic import Field, HttpUrl, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from nearby_station.domain.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_PORT = 3000
DEFAULT_HOST = "[::1]"


@dataclass(frozen=True)
class BindAddress:
    """A parsed socket address to listen on."""

    ip: str
    port: int

    @property
    def is_ipv6(self) -> bool:
        """Whether the address is an IPv6 literal."""
        return ":" in self.ip

    def __str__(self) -> str:
        if self.is_ipv6:
            return f"[{self.ip}]:{self.port}"
        return f"{self.ip}:{self.port}"


def parse_socket_address(address: str) -> BindAddress:
    """Parse `ipv4:port` or `[ipv6]:port` into a BindAddress.

    Host names and unbracketed IPv6 literals are rejected.

    Raises:
        ValueError: The address is not a socket address literal.
    """
    host, sep, port_text = address.rpartition(":")
    if not sep or not host or not port_text.isdigit():
        raise ValueError(f"invalid socket address syntax: {address!r}")

    port = int(port_text)
    if port > 65535:
        raise ValueError(f"port out of range in socket address: {address!r}")

    try:
        if host.startswith("[") and host.endswith("]"):
            ip = str(ipaddress.IPv6Address(host[1:-1]))
        else:
            ip = str(ipaddress.IPv4Address(host))
    except ipaddress.AddressValueError as e:
        raise ValueError(f"invalid socket address syntax: {address!r}") from e

    return BindAddress(ip=ip, port=port)


class AppConfig(BaseSettings):
    """Application configuration following 12-factor principles.

    Resolved once at startup and never mutated afterwards.
    """

    model_config = SettingsConfigDict(
        env_file=".env.local",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    # Server configuration
    host: str | None = Field(
        default=None,
        description="IPv4 literal or bracketed IPv6 literal to bind to (default [::1])",
    )
    port: int | None = Field(
        default=None, ge=0, le=65535, description="Port to bind the server to (default 3000)"
    )

    # Station API configuration
    sapi_url: HttpUrl = Field(description="Base URL of the upstream station API")
    sapi_transport: Literal["grpc-web", "h2c"] = Field(
        default="grpc-web",
        description="'grpc-web' for gRPC-Web over HTTP/1.1 (TLS), 'h2c' for gRPC over cleartext HTTP/2",
    )
    sapi_timeout_seconds: float = Field(
        default=10.0, gt=0, description="Timeout for a single station API call in seconds"
    )
    sapi_reuse_connections: bool = Field(
        default=False,
        description="Keep one upgraded h2c connection per origin instead of one per call",
    )

    # Logging
    log_level: str = Field(default="INFO", description="Root log level")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is one the logging module knows."""
        level = v.upper()
        if level not in ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"):
            raise ValueError("log_level must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG")
        return level

    @model_validator(mode="after")
    def validate_endpoints(self) -> "AppConfig":
        """Validate the bind address and the transport/URL combination."""
        # Raises ValueError for a malformed HOST/PORT combination.
        self.bind_address  # noqa: B018
        if self.sapi_transport == "h2c" and self.sapi_url.scheme != "http":
            raise ValueError("sapi_transport 'h2c' requires an http:// SAPI_URL")
        return self

    @property
    def resolved_port(self) -> int:
        """Port to listen on, falling back to the default."""
        return DEFAULT_PORT if self.port is None else self.port

    @property
    def bind_address(self) -> BindAddress:
        """Socket address to listen on, built from HOST and PORT."""
        host = DEFAULT_HOST if self.host is None else self.host
        return parse_socket_address(f"{host}:{self.resolved_port}")

    @property
    def upstream_base_url(self) -> str:
        """SAPI_URL without a trailing slash, ready for a method path to be appended."""
        return str(self.sapi_url).rstrip("/")


def _describe_validation_error(error: ValidationError) -> str:
    """Turn a pydantic validation error into `ENV_VAR: message` lines."""
    messages = []
    for detail in error.errors():
        location = ".".join(str(part) for part in detail["loc"]).upper()
        messages.append(f"{location}: {detail['msg']}" if location else detail["msg"])
    return "; ".join(messages)


def load_app_config(**overrides: object) -> AppConfig:
    """Build the process-wide configuration and announce any fallbacks.

    Raises:
        ConfigurationError: A required setting is missing or a setting is malformed.
    """
    try:
        config = AppConfig(**overrides)  # type: ignore[arg-type]
    except ValidationError as e:
        raise ConfigurationError(_describe_validation_error(e)) from e

    if config.port is None:
        logger.info(f"$PORT is not set. Falling back to {DEFAULT_PORT}.")
    if config.host is None:
        logger.info(f"$HOST is not set. Falling back to {config.bind_address}.")
    return config
