"""gRPC-Web channel over HTTP/1.1 (TLS when the base URL is https)."""

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING

import aiohttp

from nearby_station import __version__
from nearby_station.adapters.api_request_logger import log_api_request
from nearby_station.adapters.grpc.framing import (
    check_status,
    decode_frames,
    encode_message,
    parse_trailer_block,
    single_message,
)
from nearby_station.domain.errors import (
    UpstreamProtocolError,
    UpstreamTimeoutError,
    UpstreamUnavailableError,
)

logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from aiohttp import ClientSession

GRPC_WEB_CONTENT_TYPE = "application/grpc-web+proto"

GRPC_WEB_HEADERS = {
    "content-type": GRPC_WEB_CONTENT_TYPE,
    "accept": GRPC_WEB_CONTENT_TYPE,
    "x-grpc-web": "1",
    "x-user-agent": f"grpc-web-python/nearby-station-{__version__}",
}


class GrpcWebChannel:
    """Issues unary gRPC calls framed as gRPC-Web over an aiohttp session."""

    def __init__(
        self, base_url: str, session: "ClientSession", timeout_seconds: float = 10.0
    ) -> None:
        """Initialize the channel.

        Args:
            base_url: Upstream base URL; the RPC method path is appended to it.
            session: Shared aiohttp session, owned by the caller.
            timeout_seconds: Total timeout for one call.
        """
        self._base_url = base_url.rstrip("/")
        self._session = session
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)

    async def unary_call(self, method_path: str, message: bytes) -> bytes:
        """Send one framed request and return the single response message."""
        url = f"{self._base_url}{method_path}"
        body = encode_message(message)
        log_api_request("POST", url, GRPC_WEB_HEADERS, body)

        try:
            async with self._session.post(
                url, data=body, headers=GRPC_WEB_HEADERS, timeout=self._timeout
            ) as response:
                payload = await response.read()
                headers = {name.lower(): value for name, value in response.headers.items()}
                return self._handle_response(url, response.status, headers, payload)
        except TimeoutError as e:
            logger.warning(f"gRPC-Web call to {url} timed out")
            raise UpstreamTimeoutError(f"Timed out calling {url}") from e
        except aiohttp.ClientConnectionError as e:
            logger.warning(f"gRPC-Web call to {url} failed to connect: {e}")
            raise UpstreamUnavailableError(f"Could not reach {url}: {e}") from e
        except aiohttp.ClientError as e:
            logger.warning(f"gRPC-Web call to {url} failed: {e}")
            raise UpstreamProtocolError(f"Invalid HTTP exchange with {url}: {e}") from e

    @staticmethod
    def _handle_response(
        url: str, status: int, headers: Mapping[str, str], payload: bytes
    ) -> bytes:
        """Validate a gRPC-Web response and extract the response message."""
        # Trailers-only responses carry the status in the HTTP headers.
        if "grpc-status" in headers and not payload:
            check_status(headers)
            raise UpstreamProtocolError(f"{url} returned OK without a message", http_status=status)

        if status != 200:
            raise UpstreamProtocolError(f"{url} returned HTTP {status}", http_status=status)

        content_type = headers.get("content-type", "")
        if not content_type.startswith("application/grpc-web") or content_type.startswith(
            "application/grpc-web-text"
        ):
            raise UpstreamProtocolError(
                f"{url} returned unexpected content type {content_type!r}", http_status=status
            )

        frames = decode_frames(payload)
        metadata = dict(headers)
        for frame in frames:
            if frame.is_trailer:
                metadata.update(parse_trailer_block(frame.payload))
        check_status(metadata)
        return single_message(frames)

    async def close(self) -> None:
        """Nothing to release; the aiohttp session belongs to the caller."""
