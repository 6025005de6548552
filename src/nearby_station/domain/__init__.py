"""Domain layer - core models, ports and errors."""

from nearby_station.domain.models import CoordinateQuery, Line, Locale, Station
from nearby_station.domain.ports import StationRepository

__all__ = [
    "CoordinateQuery",
    "Line",
    "Locale",
    "Station",
    "StationRepository",
]
