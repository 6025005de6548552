"""Native gRPC channel over cleartext HTTP/2 reached through an `Upgrade: h2c` request.

A connection walks through IDLE -> AWAITING_UPGRADE -> UPGRADED -> READY:
an HTTP/1.1 request proposing the upgrade is sent with h11, the 101 response
hands the socket over to an h2 connection, and a background task drives the
HTTP/2 read loop until the connection is closed.
"""

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from enum import Enum
from urllib.parse import urlsplit

import h11
from h2.config import H2Configuration
from h2.connection import H2Connection
from h2.errors import ErrorCodes
from h2.events import (
    ConnectionTerminated,
    DataReceived,
    RemoteSettingsChanged,
    ResponseReceived,
    StreamEnded,
    StreamReset,
    TrailersReceived,
)
from h2.exceptions import ProtocolError as H2ProtocolError

from nearby_station import __version__
from nearby_station.adapters.api_request_logger import log_api_request
from nearby_station.adapters.grpc.framing import (
    check_status,
    decode_frames,
    encode_message,
    single_message,
)
from nearby_station.domain.errors import (
    H2cUpgradeRefusedError,
    UpstreamError,
    UpstreamProtocolError,
    UpstreamTimeoutError,
    UpstreamUnavailableError,
)

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 65536
USER_AGENT = f"grpc-python-h2c/nearby-station-{__version__}"
GRPC_HEADERS = {
    "content-type": "application/grpc",
    "te": "trailers",
    "user-agent": USER_AGENT,
}


class H2cState(Enum):
    """Lifecycle of an upgraded connection."""

    IDLE = "idle"
    AWAITING_UPGRADE = "awaiting_upgrade"
    UPGRADED = "upgraded"
    READY = "ready"
    CLOSED = "closed"


def _decode_headers(headers: list[tuple[bytes, bytes]]) -> dict[str, str]:
    # Values such as grpc-message are not guaranteed to be valid UTF-8.
    return {
        name.decode("ascii", "replace"): value.decode("utf-8", "replace")
        for name, value in headers
    }


@dataclass
class _PendingStream:
    """Response parts collected for one in-flight RPC stream."""

    done: asyncio.Future[None]
    headers: dict[str, str] = field(default_factory=dict)
    trailers: dict[str, str] = field(default_factory=dict)
    data: bytearray = field(default_factory=bytearray)


class H2cConnection:
    """One HTTP/2 connection obtained by upgrading an HTTP/1.1 connection."""

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        authority: str,
    ) -> None:
        """Wrap an open TCP connection; call `upgrade()` before sending RPCs."""
        self._reader = reader
        self._writer = writer
        self._authority = authority
        self._h2 = H2Connection(
            config=H2Configuration(client_side=True, header_encoding=None)
        )
        self._streams: dict[int, _PendingStream] = {}
        self._handshake: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._read_task: asyncio.Task[None] | None = None
        self._error: UpstreamError | None = None
        self._accepting_streams = True
        self.state = H2cState.IDLE

    @classmethod
    async def open(cls, host: str, port: int, authority: str) -> "H2cConnection":
        """Connect to `host:port` and complete the upgrade and HTTP/2 handshake.

        Raises:
            UpstreamUnavailableError: The TCP connection could not be opened.
            UpstreamProtocolError: The upgrade or the HTTP/2 handshake failed.
        """
        try:
            reader, writer = await asyncio.open_connection(host, port)
        except OSError as e:
            raise UpstreamUnavailableError(f"Could not connect to {authority}: {e}") from e

        connection = cls(reader, writer, authority)
        try:
            await connection.upgrade()
        except OSError as e:
            await connection.close()
            raise UpstreamUnavailableError(f"Connection to {authority} failed: {e}") from e
        except BaseException:
            await connection.close()
            raise
        return connection

    @property
    def is_usable(self) -> bool:
        """Whether new RPCs may be started on this connection."""
        return self.state is H2cState.READY and self._accepting_streams and self._error is None

    async def upgrade(self) -> None:
        """Run the HTTP/1.1 upgrade and wait for the server's HTTP/2 SETTINGS."""
        settings_header = self._h2.initiate_upgrade_connection()

        http1 = h11.Connection(our_role=h11.CLIENT)
        request = h11.Request(
            method="GET",
            target="/",
            headers=[
                ("Host", self._authority),
                ("User-Agent", USER_AGENT),
                ("Connection", "Upgrade, HTTP2-Settings"),
                ("Upgrade", "h2c"),
                ("HTTP2-Settings", settings_header),
            ],
        )
        self._writer.write(http1.send(request) + http1.send(h11.EndOfMessage()))
        await self._writer.drain()
        self.state = H2cState.AWAITING_UPGRADE

        trailing_data = await self._await_switching_protocols(http1)
        self.state = H2cState.UPGRADED
        logger.debug(f"Upstream {self._authority} switched protocols to h2c")

        # Client connection preface and SETTINGS, queued by initiate_upgrade_connection().
        self._writer.write(self._h2.data_to_send())
        await self._writer.drain()

        self._read_task = asyncio.create_task(
            self._read_loop(trailing_data), name=f"h2c-read-{self._authority}"
        )
        await self._handshake
        self.state = H2cState.READY

    async def _await_switching_protocols(self, http1: h11.Connection) -> bytes:
        """Read the response to the upgrade request; return bytes already read past it."""
        try:
            while True:
                event = http1.next_event()
                if event is h11.NEED_DATA:
                    http1.receive_data(await self._reader.read(READ_CHUNK_SIZE))
                    continue
                if isinstance(event, h11.InformationalResponse):
                    if event.status_code == 101:
                        data, _closed = http1.trailing_data
                        return bytes(data)
                    continue
                if isinstance(event, h11.Response):
                    logger.warning(
                        f"Upstream {self._authority} refused h2c upgrade with {event.status_code}"
                    )
                    raise H2cUpgradeRefusedError(event.status_code)
                if isinstance(event, h11.ConnectionClosed):
                    raise UpstreamProtocolError(
                        f"{self._authority} closed the connection before switching protocols"
                    )
        except h11.RemoteProtocolError as e:
            raise UpstreamProtocolError(
                f"Invalid HTTP/1.1 response to h2c upgrade from {self._authority}: {e}"
            ) from e

    async def _read_loop(self, initial_data: bytes) -> None:
        """Feed received bytes to h2 and dispatch events until the connection ends.

        However the loop ends, the connection is failed so waiting streams resolve
        and a shared connection is not handed out again.
        """
        data = initial_data
        error: UpstreamError = UpstreamProtocolError(f"{self._authority} closed the connection")
        try:
            while True:
                if data:
                    self._handle_events(self._h2.receive_data(data))
                    await self._flush()
                data = await self._reader.read(READ_CHUNK_SIZE)
                if not data:
                    return
        except H2ProtocolError as e:
            error = UpstreamProtocolError(f"HTTP/2 protocol error from {self._authority}: {e}")
        except OSError as e:
            error = UpstreamUnavailableError(f"Connection to {self._authority} failed: {e}")
        except Exception as e:
            logger.exception(f"Unexpected failure reading from {self._authority}")
            error = UpstreamProtocolError(f"Unreadable response from {self._authority}: {e}")
        finally:
            self._fail(error)

    def _handle_events(self, events: list[object]) -> None:
        for event in events:
            if isinstance(event, RemoteSettingsChanged):
                if not self._handshake.done():
                    self._handshake.set_result(None)
            elif isinstance(event, ResponseReceived):
                if pending := self._streams.get(event.stream_id):
                    pending.headers = _decode_headers(event.headers)
            elif isinstance(event, TrailersReceived):
                if pending := self._streams.get(event.stream_id):
                    pending.trailers = _decode_headers(event.headers)
            elif isinstance(event, DataReceived):
                self._h2.acknowledge_received_data(event.flow_controlled_length, event.stream_id)
                if pending := self._streams.get(event.stream_id):
                    pending.data.extend(event.data)
            elif isinstance(event, StreamEnded):
                if (pending := self._streams.get(event.stream_id)) and not pending.done.done():
                    pending.done.set_result(None)
            elif isinstance(event, StreamReset):
                if (pending := self._streams.get(event.stream_id)) and not pending.done.done():
                    pending.done.set_exception(
                        UpstreamProtocolError(f"Upstream reset stream with code {event.error_code}")
                    )
            elif isinstance(event, ConnectionTerminated):
                self._accepting_streams = False
                error = UpstreamProtocolError(
                    f"{self._authority} sent GOAWAY with code {event.error_code}"
                )
                for stream_id, pending in self._streams.items():
                    if stream_id > (event.last_stream_id or 0) and not pending.done.done():
                        pending.done.set_exception(error)

    def _fail(self, error: UpstreamError) -> None:
        """Mark the connection broken and fail everything waiting on it."""
        if self._error is None:
            self._error = error
        if not self._handshake.done():
            self._handshake.set_exception(error)
        for pending in self._streams.values():
            if not pending.done.done():
                pending.done.set_exception(error)

    async def _flush(self) -> None:
        data = self._h2.data_to_send()
        if data:
            self._writer.write(data)
            await self._writer.drain()

    async def unary_call(self, path: str, message: bytes) -> bytes:
        """Send one RPC on a new stream and return the response message."""
        if not self.is_usable:
            raise UpstreamProtocolError(
                f"Connection to {self._authority} is not ready"
            ) from self._error

        stream_id = self._h2.get_next_available_stream_id()
        pending = _PendingStream(done=asyncio.get_running_loop().create_future())
        self._streams[stream_id] = pending
        completed = False
        try:
            self._h2.send_headers(
                stream_id,
                [
                    (":method", "POST"),
                    (":scheme", "http"),
                    (":path", path),
                    (":authority", self._authority),
                    *GRPC_HEADERS.items(),
                ],
            )
            self._h2.send_data(stream_id, encode_message(message), end_stream=True)
            await self._flush()
            await pending.done
            completed = True
        finally:
            del self._streams[stream_id]
            if not completed:
                self._cancel_stream(stream_id)

        return self._handle_response(path, pending)

    def _cancel_stream(self, stream_id: int) -> None:
        """Reset an abandoned stream so the upstream stops working on it."""
        with contextlib.suppress(H2ProtocolError):
            self._h2.reset_stream(stream_id, ErrorCodes.CANCEL)
            self._writer.write(self._h2.data_to_send())

    def _handle_response(self, path: str, pending: _PendingStream) -> bytes:
        headers = pending.headers
        status = headers.get(":status", "")
        # Trailers-only responses put grpc-status into the response headers.
        if not pending.trailers and "grpc-status" in headers:
            check_status(headers)
            if not pending.data:
                raise UpstreamProtocolError(f"{path} returned OK without a message")

        if status != "200":
            raise UpstreamProtocolError(
                f"{path} returned HTTP {status or 'without status'}",
                http_status=int(status) if status.isdigit() else None,
            )
        content_type = headers.get("content-type", "")
        if not content_type.startswith("application/grpc"):
            raise UpstreamProtocolError(f"{path} returned unexpected content type {content_type!r}")

        check_status({**headers, **pending.trailers})
        return single_message(decode_frames(bytes(pending.data)))

    async def close(self) -> None:
        """Send GOAWAY, stop the read loop and close the socket."""
        if self.state is H2cState.CLOSED:
            return
        if self.state is H2cState.READY:
            with contextlib.suppress(H2ProtocolError, OSError):
                self._h2.close_connection()
                self._writer.write(self._h2.data_to_send())
        self.state = H2cState.CLOSED
        if not self._handshake.done():
            self._handshake.cancel()
        self._fail(UpstreamProtocolError(f"Connection to {self._authority} was closed"))

        if self._read_task is not None:
            self._read_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._read_task
        self._writer.close()
        with contextlib.suppress(OSError):
            await self._writer.wait_closed()


class H2cChannel:
    """Issues unary gRPC calls over upgraded cleartext HTTP/2 connections.

    By default every call performs the whole upgrade on a fresh connection and
    closes it afterwards. With `reuse_connections` one connection for the
    origin is kept and shared by concurrent calls; opening it is serialized so
    two handshakes never race for the same slot.
    """

    def __init__(
        self, base_url: str, timeout_seconds: float = 10.0, reuse_connections: bool = False
    ) -> None:
        """Initialize the channel for an `http://host[:port][/prefix]` base URL."""
        parts = urlsplit(base_url)
        if parts.scheme != "http" or not parts.hostname:
            raise ValueError(f"h2c requires an http:// URL with a host, got {base_url!r}")
        self._host = parts.hostname
        self._port = parts.port or 80
        self._authority = parts.netloc.rpartition("@")[2]
        self._path_prefix = parts.path.rstrip("/")
        self._timeout_seconds = timeout_seconds
        self._reuse_connections = reuse_connections
        self._connection: H2cConnection | None = None
        self._connection_lock = asyncio.Lock()

    async def unary_call(self, method_path: str, message: bytes) -> bytes:
        """Upgrade (or reuse) a connection and send one RPC over it."""
        path = f"{self._path_prefix}{method_path}"
        log_api_request(
            "POST", f"http://{self._authority}{path}", GRPC_HEADERS, encode_message(message)
        )

        try:
            async with asyncio.timeout(self._timeout_seconds):
                if self._reuse_connections:
                    connection = await self._shared_connection()
                    return await connection.unary_call(path, message)

                connection = await H2cConnection.open(self._host, self._port, self._authority)
                try:
                    return await connection.unary_call(path, message)
                finally:
                    await connection.close()
        except TimeoutError as e:
            logger.warning(f"h2c call to {self._authority}{path} timed out")
            raise UpstreamTimeoutError(f"Timed out calling {self._authority}{path}") from e

    async def _shared_connection(self) -> H2cConnection:
        async with self._connection_lock:
            if self._connection is None or not self._connection.is_usable:
                if self._connection is not None:
                    await self._connection.close()
                    self._connection = None
                logger.info(f"Opening shared h2c connection to {self._authority}")
                self._connection = await H2cConnection.open(
                    self._host, self._port, self._authority
                )
            return self._connection

    async def close(self) -> None:
        """Close the shared connection, if any."""
        async with self._connection_lock:
            if self._connection is not None:
                await self._connection.close()
                self._connection = None
