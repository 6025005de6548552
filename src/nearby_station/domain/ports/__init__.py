"""Ports (interfaces) for the ports-and-adapters architecture."""

from nearby_station.domain.ports.station_repository import StationRepository

__all__ = [
    "StationRepository",
]
