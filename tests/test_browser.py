"""
Tests for the Browser facade: launch/connect wiring, pages and shutdown.

Run with: pytest tests/test_browser.py -v

Integration tests need a local Chrome/Chromium and are skipped otherwise:
    pytest tests/test_browser.py -v -m integration
"""
import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from cdpwright import Browser, connect, launch
from cdpwright.cdp.connection import ConnectionManager, find_chrome_executable
from cdpwright.core.errors import CDPClosedError
from cdpwright.core.models import TargetInfo
from tests.fakes import FakeBrowser, FakeWebSocket, settle

WS_URL = "ws://localhost:9222/devtools/page/PAGE1"


@pytest.fixture
def chrome():
    return FakeBrowser()


@pytest.fixture
def fake_ws(chrome):
    return FakeWebSocket(responder=chrome)


@pytest.fixture
def patched_launch(fake_ws):
    """Replace process spawning with a direct attach to ``fake_ws``."""
    async def fake_launch(self):
        await self.session.open(WS_URL)
        self.initial_target = TargetInfo("PAGE1", "page", "about:blank")
        return self.session

    with patch("cdpwright.cdp.transport.connect", AsyncMock(return_value=fake_ws)), \
            patch.object(ConnectionManager, "launch", fake_launch):
        yield


# =============================================================================
# Launch & Connect
# =============================================================================

class TestBrowserLifecycle:
    """Tests for starting and stopping a Browser."""

    @pytest.mark.asyncio
    async def test_launch_reuses_initial_tab(self, patched_launch, fake_ws):
        browser = await launch(command_timeout=2.0)
        assert isinstance(browser, Browser)
        assert browser.is_connected
        assert browser.auth is None

        page = await browser.new_page()
        assert page.target_id == "PAGE1"
        assert fake_ws.find("Target.createTarget") == []
        assert browser.pages == [page]

        await browser.close()
        assert not browser.is_connected

    @pytest.mark.asyncio
    async def test_context_manager_closes(self, patched_launch, fake_ws):
        async with await launch(command_timeout=2.0) as browser:
            await browser.new_page()
            second = await browser.new_page()
        assert second.closed
        assert {m["params"]["targetId"] for m in fake_ws.find("Target.closeTarget")} == {"PAGE1", "PAGE2"}

    @pytest.mark.asyncio
    async def test_operations_after_close_fail(self, patched_launch):
        browser = await launch(command_timeout=2.0)
        await browser.close()
        await browser.close()

        with pytest.raises(CDPClosedError):
            await browser.new_page()
        with pytest.raises(CDPClosedError):
            await browser.send("Browser.getVersion")

    @pytest.mark.asyncio
    async def test_proxy_auth_activates_negotiator(self, patched_launch, fake_ws):
        browser = await launch(proxy="10.0.0.1:3128:alice:pw", auth_settle_period=0, command_timeout=2.0)

        assert browser.auth is not None and browser.auth.is_listening
        assert fake_ws.methods()[:3] == ["Network.enable", "Fetch.enable", "Runtime.evaluate"]

        await browser.new_page()
        second = await browser.new_page()
        fetch_enables = [m for m in fake_ws.find("Fetch.enable") if m.get("sessionId") == second.session_id]
        assert len(fetch_enables) == 1

        await browser.close()
        assert not browser.auth.is_listening

    @pytest.mark.asyncio
    async def test_connect_to_running_browser(self, fake_ws, chrome):
        chrome.overrides["Browser.getVersion"] = {"result": {"product": "HeadlessChrome/120.0"}}

        with patch("cdpwright.cdp.transport.connect", AsyncMock(return_value=fake_ws)):
            browser = await connect(WS_URL, command_timeout=2.0)

            assert browser.ws_endpoint == WS_URL
            assert (await browser.version())["product"] == "HeadlessChrome/120.0"

            page = await browser.new_page()
            assert page.session_id == "SESSION-PAGE2"
            await browser.close()

        assert fake_ws.closed

    @pytest.mark.asyncio
    async def test_contexts_are_isolated(self, patched_launch, fake_ws):
        browser = await launch(command_timeout=2.0)
        context = browser.new_context()
        page = await context.new_page()

        await context.close()

        assert page.closed
        assert context not in browser.contexts
        assert browser.default_context in browser.contexts
        await browser.close()

    @pytest.mark.asyncio
    async def test_close_after_channel_loss_skips_remote_close(self, patched_launch, fake_ws):
        """Pages are forgotten without reattaching when the channel is already gone."""
        browser = await launch(command_timeout=2.0)
        pages = [await browser.new_page() for _ in range(3)]
        fake_ws.drop()
        await settle()
        assert not browser.session.is_open

        reattach = AsyncMock()
        browser.session.reattach = reattach
        closes_before = len(fake_ws.find("Target.closeTarget"))
        loop = asyncio.get_running_loop()
        started = loop.time()

        await browser.close()

        assert loop.time() - started < 1.0
        reattach.assert_not_awaited()
        assert len(fake_ws.find("Target.closeTarget")) == closes_before
        assert all(page.closed for page in pages)
        assert browser.pages == []


# =============================================================================
# Integration (real Chrome)
# =============================================================================

requires_chrome = pytest.mark.skipif(find_chrome_executable() is None, reason="Chrome not installed")


@requires_chrome
class TestIntegration:
    """End-to-end checks against a real headless browser."""

    @pytest.mark.asyncio
    async def test_integration_set_content_and_read(self):
        async with await launch(headless=True, args=["--no-sandbox"]) as browser:
            page = await browser.new_page()
            await page.set_content("<h1 id='title'>Hello</h1><input id='name'>")

            assert await page.inner_text("#title") == "Hello"
            await page.fill("#name", "world")
            assert await page.evaluate("() => document.querySelector('#name').value") == "world"

    @pytest.mark.asyncio
    async def test_integration_expose_function(self):
        async with await launch(headless=True, args=["--no-sandbox"]) as browser:
            page = await browser.new_page()
            await page.expose_function("add", lambda a, b: a + b)
            assert await page.evaluate("async () => await window.add(2, 3)") == 5
