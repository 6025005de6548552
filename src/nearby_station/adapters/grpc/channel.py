"""Channel capability shared by the gRPC-Web and h2c transports."""

from typing import Protocol


class GrpcChannel(Protocol):
    """Sends one unary gRPC call and returns the serialized response message."""

    async def unary_call(self, method_path: str, message: bytes) -> bytes:
        """Call `method_path` (e.g. `/pkg.Service/Method`) with a serialized request.

        Raises:
            UpstreamError: The call could not be completed or returned a non-OK status.
        """
        ...

    async def close(self) -> None:
        """Release any connection held by the channel."""
        ...
