"""Tests for the Starlette nearby endpoint."""

import asyncio
import logging

import pytest
from starlette.testclient import TestClient

from nearby_station.adapters.web import create_app
from nearby_station.adapters.web.starlette_app import (
    ClientDisconnectedError,
    run_until_disconnect,
)
from nearby_station.application.services import NearbyStationService
from nearby_station.domain.errors import (
    StationNotFoundError,
    UpstreamProtocolError,
    UpstreamStatusError,
    UpstreamTimeoutError,
    UpstreamUnavailableError,
)
from nearby_station.domain.models import Line, Station

SHIBUYA = Station(
    name="渋谷",
    name_localized="Shibuya",
    lines=(
        Line(short_name="JR山手線", localized_name="JR Yamanote Line"),
        Line(short_name="銀座線", localized_name="Ginza Line"),
    ),
)


class FakeStationRepository:
    """Repository answering from a queue of stations or errors."""

    def __init__(self, *outcomes: Station | Exception) -> None:
        self.outcomes = list(outcomes)
        self.calls: list[tuple[float, float]] = []

    async def find_nearest_station(self, latitude: float, longitude: float) -> Station:
        self.calls.append((latitude, longitude))
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def make_client(*outcomes: Station | Exception) -> tuple[TestClient, FakeStationRepository]:
    repository = FakeStationRepository(*outcomes)
    return TestClient(create_app(NearbyStationService(repository))), repository


class TestQueryParameters:
    """Tests for query string handling."""

    def test_when_latitude_missing_then_names_latitude(self) -> None:
        """Given no latitude, when requesting, then the exact latitude message is returned."""
        client, repository = make_client(SHIBUYA)

        response = client.get("/nearby", params={"longitude": "139.7016"})

        assert response.status_code == 400
        assert response.text == "ERROR! The parameter `latitude` isn't present."
        assert repository.calls == []

    def test_when_longitude_missing_then_names_longitude(self) -> None:
        """Given no longitude, when requesting, then the exact longitude message is returned."""
        client, _ = make_client(SHIBUYA)

        response = client.get("/nearby", params={"latitude": "35.658"})

        assert response.status_code == 400
        assert response.text == "ERROR! The parameter `longitude` isn't present."

    def test_when_both_missing_then_latitude_is_reported_first(self) -> None:
        """Given no parameters at all, when requesting, then latitude is reported."""
        client, _ = make_client(SHIBUYA)

        response = client.get("/nearby")

        assert response.text == "ERROR! The parameter `latitude` isn't present."

    def test_when_latitude_is_not_a_number_then_rejects(self) -> None:
        """Given a non-numeric latitude, when requesting, then 400 names the field."""
        client, repository = make_client(SHIBUYA)

        response = client.get("/nearby", params={"latitude": "north", "longitude": "139.7"})

        assert response.status_code == 400
        assert "latitude" in response.text
        assert repository.calls == []

    @pytest.mark.parametrize("en", ["1", "yes", "on", "True", "t"])
    def test_when_en_is_not_true_or_false_then_rejects(self, en: str) -> None:
        """Given an `en` value other than true/false, when requesting, then 400 names `en`."""
        client, repository = make_client(SHIBUYA)

        response = client.get(
            "/nearby", params={"latitude": "35.658", "longitude": "139.7016", "en": en}
        )

        assert response.status_code == 400
        assert response.text == "ERROR! Failed to parse the query string: invalid en."
        assert repository.calls == []


class TestLookup:
    """Tests for successful lookups."""

    def test_when_found_then_returns_name_and_lines(self) -> None:
        """Given a nearby station, when requesting, then name and line names are returned."""
        client, repository = make_client(SHIBUYA)

        response = client.get("/nearby", params={"latitude": "35.658", "longitude": "139.7016"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert response.text == "渋谷\nJR山手線, 銀座線"
        assert repository.calls == [(35.658, 139.7016)]

    def test_when_en_true_then_returns_localized_names(self) -> None:
        """Given en=true, when requesting, then localized names are returned."""
        client, _ = make_client(SHIBUYA)

        response = client.get(
            "/nearby", params={"latitude": "35.658", "longitude": "139.7016", "en": "true"}
        )

        assert response.text == "Shibuya\nJR Yamanote Line, Ginza Line"

    def test_when_en_false_then_returns_default_names(self) -> None:
        """Given en=false, when requesting, then default names are returned."""
        client, _ = make_client(SHIBUYA)

        response = client.get(
            "/nearby", params={"latitude": "35.658", "longitude": "139.7016", "en": "false"}
        )

        assert response.text == "渋谷\nJR山手線, 銀座線"


class TestLookupFailures:
    """Tests for failed lookups."""

    def test_when_nothing_found_then_not_found(self) -> None:
        """Given an empty upstream result, when requesting, then 404 is returned."""
        client, _ = make_client(StationNotFoundError(0.0, 0.0))

        response = client.get("/nearby", params={"latitude": "0", "longitude": "0"})

        assert response.status_code == 404
        assert "No station was found" in response.text

    @pytest.mark.parametrize(
        ("error", "status_code", "fragment"),
        [
            (UpstreamTimeoutError("slow"), 504, "did not answer in time"),
            (UpstreamUnavailableError("refused"), 503, "unreachable"),
            (UpstreamStatusError(13, "INTERNAL", "boom"), 502, "failed with INTERNAL"),
            (UpstreamProtocolError("garbage"), 502, "invalid response"),
        ],
    )
    def test_when_upstream_fails_then_maps_status(
        self, error: Exception, status_code: int, fragment: str
    ) -> None:
        """Given an upstream failure, when requesting, then a matching error response is sent."""
        client, _ = make_client(error)

        response = client.get("/nearby", params={"latitude": "35.658", "longitude": "139.7016"})

        assert response.status_code == status_code
        assert response.text.startswith("ERROR! ")
        assert fragment in response.text

    def test_when_upstream_recovers_then_server_keeps_serving(self) -> None:
        """Given one failed lookup, when requesting again, then the next lookup succeeds."""
        client, _ = make_client(UpstreamUnavailableError("refused"), SHIBUYA)
        params = {"latitude": "35.658", "longitude": "139.7016"}

        first = client.get("/nearby", params=params)
        second = client.get("/nearby", params=params)

        assert first.status_code == 503
        assert second.status_code == 200
        assert second.text == "渋谷\nJR山手線, 銀座線"

    def test_when_upstream_fails_then_logs_error(self, caplog: pytest.LogCaptureFixture) -> None:
        """Given an upstream failure, when requesting, then the failure is logged."""
        client, _ = make_client(UpstreamUnavailableError("connection refused"))

        with caplog.at_level(logging.ERROR):
            client.get("/nearby", params={"latitude": "1", "longitude": "2"})

        assert "connection refused" in caplog.text


def test_healthz_answers_ok() -> None:
    """Given a running app, when probing health, then Ok is returned."""
    client, _ = make_client(SHIBUYA)

    response = client.get("/healthz")

    assert response.status_code == 200
    assert response.text == "Ok"


def test_requests_are_traced(caplog: pytest.LogCaptureFixture) -> None:
    """Given a request, when it completes, then one trace line with the status is logged."""
    client, _ = make_client(SHIBUYA)

    with caplog.at_level(
        logging.INFO, logger="nearby_station.adapters.web.request_tracing_middleware"
    ):
        client.get("/nearby", params={"latitude": "35.658"})

    assert "GET /nearby?latitude=35.658 -> 400" in caplog.text


class FakeRequest:
    """Request stand-in whose receive channel is scripted."""

    def __init__(self, disconnect_after: float | None) -> None:
        self.disconnect_after = disconnect_after

    async def receive(self) -> dict[str, str]:
        if self.disconnect_after is None:
            await asyncio.Event().wait()
        else:
            await asyncio.sleep(self.disconnect_after)
        return {"type": "http.disconnect"}


@pytest.mark.asyncio
async def test_run_until_disconnect_returns_result() -> None:
    """Given a connected client, when the work finishes, then its result is returned."""

    async def work() -> str:
        return "done"

    assert await run_until_disconnect(FakeRequest(None), work()) == "done"  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_run_until_disconnect_cancels_work_on_disconnect() -> None:
    """Given a client that disconnects, when work is pending, then the work is cancelled."""
    cancelled = asyncio.Event()

    async def work() -> str:
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            cancelled.set()
            raise
        return "late"

    with pytest.raises(ClientDisconnectedError):
        await run_until_disconnect(FakeRequest(0.01), work())  # type: ignore[arg-type]

    assert cancelled.is_set()
