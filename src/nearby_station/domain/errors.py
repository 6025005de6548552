"""Error taxonomy for configuration and station lookups."""


class ConfigurationError(Exception):
    """The process environment does not describe a usable configuration."""


class StationLookupError(Exception):
    """Base class for failures while answering a single nearby-station request."""


class StationNotFoundError(StationLookupError):
    """The station directory answered, but with no station."""

    def __init__(self, latitude: float, longitude: float) -> None:
        super().__init__(f"No station found near ({latitude}, {longitude})")
        self.latitude = latitude
        self.longitude = longitude


class UpstreamError(StationLookupError):
    """The station directory could not be queried."""


class UpstreamUnavailableError(UpstreamError):
    """The upstream could not be reached (connection refused, DNS, TLS, reset)."""


class UpstreamTimeoutError(UpstreamError):
    """The upstream did not answer within the configured timeout."""


class UpstreamProtocolError(UpstreamError):
    """The upstream answered with something that is not a well-formed gRPC response."""

    def __init__(self, message: str, http_status: int | None = None) -> None:
        super().__init__(message)
        self.http_status = http_status


class H2cUpgradeRefusedError(UpstreamProtocolError):
    """The upstream answered the `Upgrade: h2c` request with a final response instead of 101."""

    def __init__(self, http_status: int) -> None:
        super().__init__(
            f"Upstream refused the h2c upgrade with HTTP {http_status}", http_status=http_status
        )


class UpstreamStatusError(UpstreamError):
    """The RPC completed with a non-OK gRPC status."""

    def __init__(self, code: int, code_name: str, message: str = "") -> None:
        detail = f": {message}" if message else ""
        super().__init__(f"Upstream RPC failed with {code_name} ({code}){detail}")
        self.code = code
        self.code_name = code_name
        self.grpc_message = message
