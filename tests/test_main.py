"""Tests for the application entry point."""

import logging
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from nearby_station import main as main_module
from nearby_station.domain.errors import ConfigurationError


@pytest.mark.asyncio
async def test_when_config_is_invalid_then_exits_before_serving(
    caplog: pytest.LogCaptureFixture,
) -> None:
    """Given an invalid configuration, when starting, then it exits with 1 and never serves."""
    adapter = MagicMock()
    adapter.start = AsyncMock()

    with (
        patch.object(
            main_module,
            "load_app_config",
            side_effect=ConfigurationError("SAPI_TRANSPORT: Input should be 'grpc-web' or 'h2c'"),
        ),
        patch.object(main_module, "StarletteWebAdapter", return_value=adapter) as adapter_class,
        caplog.at_level(logging.ERROR, logger="nearby_station.main"),
        pytest.raises(SystemExit) as excinfo,
    ):
        await main_module.main()

    assert excinfo.value.code == 1
    adapter_class.assert_not_called()
    adapter.start.assert_not_awaited()
    assert "Invalid configuration: SAPI_TRANSPORT" in caplog.text
    assert "SAPI_URL must be set" not in caplog.text
