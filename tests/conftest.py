"""
Pytest configuration and shared fixtures.
"""
import os
import sys
from unittest.mock import AsyncMock, patch

import pytest

# Add src directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "src"))

from cdpwright.cdp.transport import TransportSession  # noqa: E402
from tests.fakes import FakeWebSocket, ok  # noqa: E402

WS_URL = "ws://localhost:9222/devtools/page/TEST"


@pytest.fixture
def fake_ws():
    """A websocket that answers every command with an empty result."""
    return FakeWebSocket(responder=lambda message: ok())


@pytest.fixture
async def session(fake_ws):
    """An open TransportSession wired to ``fake_ws``."""
    s = TransportSession(command_timeout=2.0)
    with patch("cdpwright.cdp.transport.connect", AsyncMock(return_value=fake_ws)):
        await s.open(WS_URL)
    yield s
    await s.close()


def pytest_configure(config):
    """Configure pytest."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test (requires Chrome)"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )


def pytest_collection_modifyitems(config, items):
    """Modify test collection."""
    # Add markers based on test names or locations
    for item in items:
        if "integration" in item.nodeid.lower():
            item.add_marker(pytest.mark.integration)
        if "slow" in item.nodeid.lower():
            item.add_marker(pytest.mark.slow)
