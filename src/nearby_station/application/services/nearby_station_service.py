"""Nearby station lookup and plain-text rendering."""

import logging
from typing import TYPE_CHECKING

from nearby_station.domain.models import CoordinateQuery, Locale, Station

logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from nearby_station.domain.ports import StationRepository


def format_station(station: Station, locale: Locale) -> str:
    """Render a station as its name followed by a line listing its lines.

    Localized rendering falls back to an empty string wherever the directory
    has no localized name, for the station as well as for each line.
    """
    if locale is Locale.LOCALIZED:
        name = station.name_localized or ""
        line_names = [line.localized_name or "" for line in station.lines]
    else:
        name = station.name
        line_names = [line.short_name for line in station.lines]
    return f"{name}\n{', '.join(line_names)}"


class NearbyStationService:
    """Service answering "which station is near this coordinate?"."""

    def __init__(self, station_repository: "StationRepository") -> None:
        """Initialize with a station repository."""
        self._station_repository = station_repository

    async def find_nearest(self, query: CoordinateQuery) -> Station:
        """Look up the station nearest to the query coordinate."""
        station = await self._station_repository.find_nearest_station(
            query.latitude, query.longitude
        )
        logger.debug(
            f"Nearest station to ({query.latitude}, {query.longitude}) is '{station.name}' "
            f"with {len(station.lines)} line(s)"
        )
        return station

    async def describe_nearby(self, query: CoordinateQuery) -> str:
        """Look up the nearest station and render it for the query's locale."""
        station = await self.find_nearest(query)
        return format_station(station, query.locale)
