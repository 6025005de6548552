"""Tests for application services."""

import pytest

from nearby_station.application.services import NearbyStationService, format_station
from nearby_station.domain.errors import StationNotFoundError, UpstreamUnavailableError
from nearby_station.domain.models import CoordinateQuery, Line, Locale, Station


class MockStationRepository:
    """Mock station repository for testing."""

    def __init__(self, station: Station | None = None, error: Exception | None = None) -> None:
        """Initialize with the station to return or the error to raise."""
        self.station = station
        self.error = error
        self.calls: list[tuple[float, float]] = []

    async def find_nearest_station(self, latitude: float, longitude: float) -> Station:
        """Record the call and return the configured station."""
        self.calls.append((latitude, longitude))
        if self.error is not None:
            raise self.error
        assert self.station is not None
        return self.station


@pytest.fixture
def shibuya() -> Station:
    """Create a sample station with two lines."""
    return Station(
        name="Shibuya",
        name_localized="Shibuya",
        lines=(
            Line(short_name="JY", localized_name="Yamanote Line"),
            Line(short_name="JR", localized_name="Shinkansen"),
        ),
    )


def test_format_station_with_default_locale(shibuya: Station) -> None:
    """Given the default locale, when formatting, then name and short line names are used."""
    assert format_station(shibuya, Locale.DEFAULT) == "Shibuya\nJY, JR"


def test_format_station_with_localized_locale(shibuya: Station) -> None:
    """Given the localized locale, when formatting, then localized names are used."""
    assert format_station(shibuya, Locale.LOCALIZED) == "Shibuya\nYamanote Line, Shinkansen"


def test_format_station_falls_back_to_empty_localized_names() -> None:
    """Given missing localized names, when formatting localized, then empty strings are used."""
    station = Station(
        name="渋谷",
        name_localized=None,
        lines=(
            Line(short_name="JY", localized_name=None),
            Line(short_name="G", localized_name="Ginza"),
        ),
    )

    assert format_station(station, Locale.LOCALIZED) == "\n, Ginza"


def test_format_station_without_lines() -> None:
    """Given a station without lines, when formatting, then the second line is empty."""
    assert format_station(Station(name="Shibuya"), Locale.DEFAULT) == "Shibuya\n"


@pytest.mark.asyncio
async def test_describe_nearby_issues_one_lookup(shibuya: Station) -> None:
    """Given a query, when describing, then the repository is asked exactly once."""
    repository = MockStationRepository(station=shibuya)
    service = NearbyStationService(repository)

    text = await service.describe_nearby(CoordinateQuery(latitude=35.658, longitude=139.7016))

    assert text == "Shibuya\nJY, JR"
    assert repository.calls == [(35.658, 139.7016)]


@pytest.mark.asyncio
async def test_describe_nearby_is_idempotent(shibuya: Station) -> None:
    """Given unchanged upstream state, when repeating a query, then the text is identical."""
    service = NearbyStationService(MockStationRepository(station=shibuya))
    query = CoordinateQuery(latitude=35.658, longitude=139.7016, locale=Locale.LOCALIZED)

    first = await service.describe_nearby(query)
    second = await service.describe_nearby(query)

    assert first == second == "Shibuya\nYamanote Line, Shinkansen"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [StationNotFoundError(0.0, 0.0), UpstreamUnavailableError("connection refused")],
)
async def test_describe_nearby_propagates_lookup_errors(error: Exception) -> None:
    """Given a failing repository, when describing, then the lookup error propagates."""
    service = NearbyStationService(MockStationRepository(error=error))

    with pytest.raises(type(error)):
        await service.describe_nearby(CoordinateQuery(latitude=0.0, longitude=0.0))
