"""gRPC station API adapters (gRPC-Web and h2c transports)."""

from typing import TYPE_CHECKING

from nearby_station.adapters.grpc.channel import GrpcChannel
from nearby_station.adapters.grpc.grpc_web_channel import GrpcWebChannel
from nearby_station.adapters.grpc.h2c_channel import H2cChannel, H2cConnection, H2cState
from nearby_station.adapters.grpc.station_repository import GrpcStationRepository

if TYPE_CHECKING:
    from aiohttp import ClientSession

    from nearby_station.adapters.config import AppConfig


def create_channel(config: "AppConfig", session: "ClientSession") -> GrpcChannel:
    """Build the channel selected by SAPI_TRANSPORT."""
    if config.sapi_transport == "h2c":
        return H2cChannel(
            config.upstream_base_url,
            timeout_seconds=config.sapi_timeout_seconds,
            reuse_connections=config.sapi_reuse_connections,
        )
    return GrpcWebChannel(
        config.upstream_base_url, session, timeout_seconds=config.sapi_timeout_seconds
    )


__all__ = [
    "GrpcChannel",
    "GrpcStationRepository",
    "GrpcWebChannel",
    "H2cChannel",
    "H2cConnection",
    "H2cState",
    "create_channel",
]
