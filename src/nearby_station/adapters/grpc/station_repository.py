"""Station repository backed by the gRPC station API."""

import logging
from typing import TYPE_CHECKING

from nearby_station.adapters.grpc.messages import (
    GET_STATIONS_BY_COORDINATES,
    decode_stations_response,
    encode_coordinates_request,
)
from nearby_station.domain.errors import StationNotFoundError
from nearby_station.domain.models import Station
from nearby_station.domain.ports import StationRepository

logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from nearby_station.adapters.grpc.channel import GrpcChannel

NEAREST_STATION_LIMIT = 1


class GrpcStationRepository(StationRepository):
    """Adapter issuing GetStationsByCoordinates over a gRPC channel."""

    def __init__(self, channel: "GrpcChannel") -> None:
        """Initialize with the channel to send RPCs on."""
        self._channel = channel

    async def find_nearest_station(self, latitude: float, longitude: float) -> Station:
        """Find the nearest station; the upstream is asked for exactly one result."""
        request = encode_coordinates_request(latitude, longitude, limit=NEAREST_STATION_LIMIT)
        response = await self._channel.unary_call(GET_STATIONS_BY_COORDINATES, request)
        stations = decode_stations_response(response)

        if not stations:
            logger.info(f"Station API returned no station near ({latitude}, {longitude})")
            raise StationNotFoundError(latitude, longitude)
        if len(stations) > NEAREST_STATION_LIMIT:
            logger.debug(
                f"Station API returned {len(stations)} stations despite limit "
                f"{NEAREST_STATION_LIMIT}; using the first"
            )
        return stations[0]
