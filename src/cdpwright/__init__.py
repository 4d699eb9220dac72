"""
cdpwright - asyncio browser automation over the Chrome DevTools Protocol.

Usage:
    from cdpwright import launch

    browser = await launch(headless=True)
    page = await browser.new_page()
    await page.goto("https://example.com", wait_until="domcontentloaded")
    await page.fill("#search", "hello world")
    await page.click("button[type=submit]")
    await browser.close()

Through an authenticating proxy:
    browser = await launch(proxy="10.0.0.1:3128:user:secret")

Raw protocol access:
    result = await page.cdp("Runtime.evaluate", {"expression": "1 + 1"})
"""
from cdpwright.browser import Browser, connect, launch
from cdpwright.cdp.targets import BrowserContext
from cdpwright.cdp.transport import TransportSession, setup_logging
from cdpwright.core.config import LaunchConfig, ProxyConfig, parse_proxy_url
from cdpwright.core.errors import (
    CdpwrightError,
    BrowserLaunchError,
    CDPClosedError,
    CDPConnectionError,
    CDPProtocolError,
    CDPTimeoutError,
    ElementNotFoundError,
    EvaluationError,
    NavigationError,
)
from cdpwright.core.models import CDPEvent, ElementState, TargetInfo, WaitUntil
from cdpwright.locator import Locator
from cdpwright.page import Page
from cdpwright.wait import wait_until

__version__ = "0.1.0"

__all__ = [
    # Main API
    "launch",
    "connect",
    "Browser",
    "BrowserContext",
    "Page",
    "Locator",
    "LaunchConfig",
    "ProxyConfig",
    "parse_proxy_url",
    # Low level
    "TransportSession",
    "CDPEvent",
    "TargetInfo",
    "ElementState",
    "WaitUntil",
    "wait_until",
    "setup_logging",
    # Errors
    "CdpwrightError",
    "BrowserLaunchError",
    "CDPClosedError",
    "CDPConnectionError",
    "CDPProtocolError",
    "CDPTimeoutError",
    "ElementNotFoundError",
    "EvaluationError",
    "NavigationError",
    # Version
    "__version__",
]
