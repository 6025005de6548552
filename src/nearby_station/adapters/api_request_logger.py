"""Utility for logging upstream RPC requests when NEARBY_LOG_REQUESTS is enabled."""

import json
import logging
import os
from collections.abc import Mapping

logger = logging.getLogger(__name__)

PAYLOAD_PREVIEW_BYTES = 32


def should_log_requests() -> bool:
    """Check if request logging is enabled via NEARBY_LOG_REQUESTS environment variable."""
    return os.getenv("NEARBY_LOG_REQUESTS", "").lower() == "true"


def _summarize_payload(payload: bytes) -> str:
    preview = payload[:PAYLOAD_PREVIEW_BYTES].hex()
    suffix = "..." if len(payload) > PAYLOAD_PREVIEW_BYTES else ""
    return f"<{len(payload)} bytes: {preview}{suffix}>"


def log_api_request(
    method: str,
    url: str,
    headers: Mapping[str, str],
    payload: bytes,
) -> None:
    """Log upstream request details if NEARBY_LOG_REQUESTS is enabled.

    Args:
        method: HTTP method (POST for every gRPC call).
        url: Request URL, including the RPC method path.
        headers: gRPC request headers sent alongside the call.
        payload: Framed request body, logged as a size and hex preview.
    """
    if not should_log_requests():
        return

    log_parts = [
        f"{method} {url}",
        f"Headers: {json.dumps(dict(headers), indent=2)}",
        f"Payload: {_summarize_payload(payload)}",
    ]
    logger.info("API Request:\n" + "\n".join(log_parts))
