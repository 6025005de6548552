"""Station repository port."""

from typing import Protocol

from nearby_station.domain.models.station import Station


class StationRepository(Protocol):
    """Port for looking up stations in the station directory."""

    async def find_nearest_station(self, latitude: float, longitude: float) -> Station:
        """Find the station nearest to the given coordinates.

        Raises:
            StationNotFoundError: The directory returned no station.
            UpstreamError: The directory could not be queried.
        """
        ...
