"""Domain models for nearby station lookups."""

from nearby_station.domain.models.coordinate_query import CoordinateQuery, Locale
from nearby_station.domain.models.station import Line, Station

__all__ = [
    "CoordinateQuery",
    "Line",
    "Locale",
    "Station",
]
