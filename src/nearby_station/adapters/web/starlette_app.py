"""Starlette application exposing the nearby-station text endpoint."""

import asyncio
import logging
from collections.abc import Awaitable
from typing import TYPE_CHECKING, Any, TypeVar

from pydantic import BaseModel, ValidationError, field_validator
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response
from starlette.routing import Route

from nearby_station.adapters.web.request_tracing_middleware import RequestTracingMiddleware
from nearby_station.domain.errors import (
    StationLookupError,
    StationNotFoundError,
    UpstreamProtocolError,
    UpstreamStatusError,
    UpstreamTimeoutError,
    UpstreamUnavailableError,
)
from nearby_station.domain.models import CoordinateQuery, Locale

logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from nearby_station.application.services import NearbyStationService

T = TypeVar("T")

CLIENT_CLOSED_REQUEST = 499


class NearbyParams(BaseModel):
    """Raw query parameters of GET /nearby."""

    latitude: float | None = None
    longitude: float | None = None
    en: bool | None = None

    @field_validator("en", mode="before")
    @classmethod
    def validate_en(cls, v: object) -> object:
        """Accept only the literal words `true` and `false`."""
        if isinstance(v, str) and v not in ("true", "false"):
            raise ValueError("expected `true` or `false`")
        return v


class ClientDisconnectedError(Exception):
    """The caller went away before the response was ready."""


def missing_parameter_message(name: str) -> str:
    """Body returned when a required query parameter is absent."""
    return f"ERROR! The parameter `{name}` isn't present."


def parse_query(params: NearbyParams) -> CoordinateQuery | PlainTextResponse:
    """Turn query parameters into a CoordinateQuery, or a 400 response naming what is missing.

    Latitude is checked before longitude.
    """
    if params.latitude is None:
        return PlainTextResponse(missing_parameter_message("latitude"), status_code=400)
    if params.longitude is None:
        return PlainTextResponse(missing_parameter_message("longitude"), status_code=400)
    return CoordinateQuery(
        latitude=params.latitude,
        longitude=params.longitude,
        locale=Locale.from_flag(params.en),
    )


def error_response(error: StationLookupError) -> PlainTextResponse:
    """Map a lookup failure to a status code and a plain-text body."""
    if isinstance(error, StationNotFoundError):
        return PlainTextResponse(
            "ERROR! No station was found near the given coordinates.", status_code=404
        )
    if isinstance(error, UpstreamTimeoutError):
        return PlainTextResponse(
            "ERROR! The station service did not answer in time.", status_code=504
        )
    if isinstance(error, UpstreamUnavailableError):
        return PlainTextResponse(
            "ERROR! The station service is unreachable.", status_code=503
        )
    if isinstance(error, UpstreamStatusError):
        return PlainTextResponse(
            f"ERROR! The station service failed with {error.code_name}.", status_code=502
        )
    if isinstance(error, UpstreamProtocolError):
        return PlainTextResponse(
            "ERROR! The station service sent an invalid response.", status_code=502
        )
    return PlainTextResponse("ERROR! The station lookup failed.", status_code=502)


async def _wait_for_disconnect(request: Request) -> None:
    while True:
        message = await request.receive()
        if message["type"] == "http.disconnect":
            return


async def run_until_disconnect(request: Request, work: Awaitable[T]) -> T:
    """Await `work`, cancelling it if the client disconnects first.

    Raises:
        ClientDisconnectedError: The client disconnected before `work` finished.
    """
    work_task = asyncio.ensure_future(work)
    disconnect_task = asyncio.ensure_future(_wait_for_disconnect(request))
    try:
        done, _pending = await asyncio.wait(
            {work_task, disconnect_task}, return_when=asyncio.FIRST_COMPLETED
        )
    finally:
        disconnect_task.cancel()
        if not work_task.done():
            work_task.cancel()

    if work_task in done:
        return work_task.result()

    # Let the cancelled work unwind before answering.
    await asyncio.gather(work_task, return_exceptions=True)
    raise ClientDisconnectedError


def create_app(service: "NearbyStationService") -> Starlette:
    """Create the Starlette application with its single lookup route."""

    async def nearby(request: Request) -> Response:
        try:
            params = NearbyParams.model_validate(dict(request.query_params))
        except ValidationError as e:
            fields = ", ".join(str(err["loc"][0]) for err in e.errors() if err["loc"])
            return PlainTextResponse(
                f"ERROR! Failed to parse the query string: invalid {fields}.", status_code=400
            )

        query = parse_query(params)
        if isinstance(query, Response):
            return query

        try:
            text = await run_until_disconnect(request, service.describe_nearby(query))
        except StationNotFoundError as e:
            return error_response(e)
        except StationLookupError as e:
            logger.error(f"Station lookup for ({query.latitude}, {query.longitude}) failed: {e}")
            return error_response(e)
        except ClientDisconnectedError:
            logger.info(
                f"Client disconnected during lookup for ({query.latitude}, {query.longitude})"
            )
            return Response(status_code=CLIENT_CLOSED_REQUEST)

        return PlainTextResponse(text)

    async def healthz(_request: Any) -> Response:
        """Health check endpoint for load balancers and monitoring."""
        return PlainTextResponse("Ok")

    return Starlette(
        routes=[
            Route("/nearby", nearby, methods=["GET"]),
            Route("/healthz", healthz, methods=["GET"]),
        ],
        middleware=[Middleware(RequestTracingMiddleware)],
    )
