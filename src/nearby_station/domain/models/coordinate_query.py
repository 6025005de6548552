"""Coordinate query domain model."""

from dataclasses import dataclass
from enum import Enum


class Locale(Enum):
    """Which set of names a response is rendered with."""

    DEFAULT = "default"
    LOCALIZED = "localized"

    @classmethod
    def from_flag(cls, en: bool | None) -> "Locale":
        """Resolve the optional `en` query flag; only an explicit true selects localized names."""
        return cls.LOCALIZED if en is True else cls.DEFAULT


@dataclass(frozen=True)
class CoordinateQuery:
    """A request for the station nearest to a coordinate."""

    latitude: float
    longitude: float
    locale: Locale = Locale.DEFAULT
