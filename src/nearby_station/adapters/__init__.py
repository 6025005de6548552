"""Adapters layer - external system integrations."""

from nearby_station.adapters.config import AppConfig
from nearby_station.adapters.grpc import GrpcStationRepository, create_channel

__all__ = [
    "AppConfig",
    "GrpcStationRepository",
    "create_channel",
]
