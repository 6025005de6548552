"""Web adapters."""

from nearby_station.adapters.web.starlette_app import create_app
from nearby_station.adapters.web.web_adapter import StarletteWebAdapter

__all__ = ["StarletteWebAdapter", "create_app"]
