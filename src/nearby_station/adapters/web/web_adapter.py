"""Uvicorn-backed web adapter serving the nearby-station application."""

import logging
from typing import TYPE_CHECKING

from nearby_station.adapters.config import AppConfig
from nearby_station.adapters.web.starlette_app import create_app

logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    import uvicorn

    from nearby_station.application.services import NearbyStationService


class StarletteWebAdapter:
    """Binds the configured address and serves the Starlette application."""

    def __init__(self, service: "NearbyStationService", config: AppConfig) -> None:
        """Initialize the web adapter.

        Args:
            service: Service answering nearby-station queries.
            config: Application configuration.
        """
        if not isinstance(config, AppConfig):
            raise TypeError("config must be an AppConfig instance")
        self.service = service
        self.config = config
        self.app = create_app(service)
        self._server: uvicorn.Server | None = None

    async def start(self) -> None:
        """Start the web server and serve until it is asked to exit."""
        import uvicorn

        bind_address = self.config.bind_address
        uvicorn_config = uvicorn.Config(
            self.app,
            host=bind_address.ip,
            port=bind_address.port,
            log_level=self.config.log_level.lower(),
            # Request tracing middleware already logs every request.
            access_log=False,
        )
        self._server = uvicorn.Server(uvicorn_config)
        logger.info(f"Serving /nearby on http://{bind_address}")
        await self._server.serve()

    async def stop(self) -> None:
        """Stop the web server."""
        if self._server:
            self._server.should_exit = True
