"""Configuration adapters."""

from nearby_station.adapters.config.app_config import (
    AppConfig,
    BindAddress,
    load_app_config,
    parse_socket_address,
)

__all__ = ["AppConfig", "BindAddress", "load_app_config", "parse_socket_address"]
