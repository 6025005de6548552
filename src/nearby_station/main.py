"""Main entry point for the nearby station service."""

import asyncio
import logging
import sys

import aiohttp

from nearby_station.adapters.config import load_app_config
from nearby_station.adapters.grpc import GrpcStationRepository, create_channel
from nearby_station.adapters.web import StarletteWebAdapter
from nearby_station.application.services import NearbyStationService
from nearby_station.domain.errors import ConfigurationError

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stderr,
)

logger = logging.getLogger(__name__)


async def main() -> None:
    """Main application entry point."""
    try:
        config = load_app_config()
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)

    logging.getLogger().setLevel(config.log_level)
    logger.info(
        f"Station API at {config.upstream_base_url} via {config.sapi_transport}"
        + (" (reusing connections)" if config.sapi_reuse_connections else "")
    )

    # One aiohttp session for the process; the gRPC-Web channel shares it.
    async with aiohttp.ClientSession() as session:
        channel = create_channel(config, session)
        station_repo = GrpcStationRepository(channel)
        service = NearbyStationService(station_repo)
        web_adapter = StarletteWebAdapter(service, config)

        try:
            await web_adapter.start()
        except KeyboardInterrupt:
            logger.info("Shutting down...")
            await web_adapter.stop()
        finally:
            await channel.close()


def run() -> None:
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
