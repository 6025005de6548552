"""Application services (use cases) for nearby station lookups."""

from nearby_station.application.services.nearby_station_service import (
    NearbyStationService,
    format_station,
)

__all__ = ["NearbyStationService", "format_station"]
