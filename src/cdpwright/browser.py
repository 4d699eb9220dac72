"""
Browser - High-level async interface over one launched (or connected) Chrome.

Wires the pieces together: ConnectionManager supplies the channel,
AuthNegotiator answers proxy challenges, TargetRegistry hands out pages.
"""
from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Dict, List, Optional

from cdpwright.cdp.auth import AuthNegotiator
from cdpwright.cdp.bindings import BindingBridge
from cdpwright.cdp.connection import ConnectionManager, ExecutableResolver
from cdpwright.cdp.targets import BrowserContext, TargetRegistry
from cdpwright.cdp.transport import TransportSession, setup_logging
from cdpwright.core.config import LaunchConfig, ProxyConfig
from cdpwright.core.errors import CdpwrightError, CDPClosedError
from cdpwright.page import Page

logger = logging.getLogger("cdpwright")


class Browser:
    """
    Handle on a running browser.

    Usage:
        async with await launch(headless=True) as browser:
            page = await browser.new_page()
            await page.goto("https://example.com")
            print(await page.title())
    """

    def __init__(self, manager: ConnectionManager):
        self.manager = manager
        self.config = manager.config
        self.auth: Optional[AuthNegotiator] = None
        self.bridge = BindingBridge(self.session)
        self.registry: Optional[TargetRegistry] = None
        self.default_context: Optional[BrowserContext] = None
        self._closed = False

    async def __aenter__(self) -> Browser:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @property
    def session(self) -> TransportSession:
        return self.manager.session

    async def _start(self) -> None:
        proxy = self.config.proxy
        if isinstance(proxy, ProxyConfig) and proxy.has_auth:
            self.auth = AuthNegotiator(
                self.session,
                proxy.username,
                proxy.password,
                settle_period=self.config.auth_settle_period,
            )
            await self.auth.activate()

        self.registry = TargetRegistry(
            self.session,
            self.manager.initial_target,
            auth=self.auth,
            bridge=self.bridge,
            default_timeout=self.config.default_timeout,
            navigation_timeout=self.config.navigation_timeout,
        )
        await self.registry.start()
        self.default_context = self.registry.new_context(is_default=True)

    def _ensure_connected(self) -> TargetRegistry:
        if self._closed or self.registry is None:
            raise CDPClosedError("Browser has been closed", method="_ensure_connected")
        return self.registry

    # =========================================================================
    # Pages & contexts
    # =========================================================================

    def new_context(self) -> BrowserContext:
        return self._ensure_connected().new_context()

    @property
    def contexts(self) -> List[BrowserContext]:
        return list(self.registry.contexts) if self.registry else []

    async def new_page(self) -> Page:
        """Open a page in the default context."""
        self._ensure_connected()
        return await self.default_context.new_page()

    @property
    def pages(self) -> List[Page]:
        return list(self.registry.pages.values()) if self.registry else []

    # =========================================================================
    # Protocol
    # =========================================================================

    async def send(self, method: str, params: Optional[Dict[str, Any]] = None, *,
                   session_id: Optional[str] = None, timeout: Optional[float] = None) -> Dict[str, Any]:
        """Send any CDP command over the browser's channel."""
        if self._closed:
            raise CDPClosedError("Browser has been closed", method=method)
        return await self.session.send(method, params, session_id=session_id, timeout=timeout)

    async def version(self) -> Dict[str, Any]:
        return await self.send("Browser.getVersion")

    @property
    def is_connected(self) -> bool:
        return not self._closed and self.session.is_open

    @property
    def ws_endpoint(self) -> Optional[str]:
        return self.session.ws_url

    async def close(self) -> None:
        """Close pages and contexts, then the channel, process and profile directory."""
        if self._closed:
            return
        self._closed = True

        if self.registry is not None:
            try:
                await self.registry.close_all()
            except CdpwrightError as e:
                logger.warning(f"Error while closing contexts: {e}")
        if self.auth is not None:
            self.auth.deactivate()

        await self.manager.teardown()
        logger.info("Browser closed successfully")


def _merge_config(config: Optional[LaunchConfig], overrides: Dict[str, Any]) -> LaunchConfig:
    config = config or LaunchConfig()
    if overrides:
        config = replace(config, **overrides)
    return config


async def launch(config: Optional[LaunchConfig] = None, *,
                 resolver: Optional[ExecutableResolver] = None, **overrides) -> Browser:
    """
    Launch Chrome and return a connected Browser.

    Keyword overrides are applied on top of ``config``, e.g.
    ``await launch(headless=True, proxy="host:8080:user:pass")``.
    """
    config = _merge_config(config, overrides)
    if config.debug:
        setup_logging(debug=True)

    manager = ConnectionManager(config, resolver=resolver)
    await manager.launch()

    browser = Browser(manager)
    try:
        await browser._start()
    except BaseException:
        await browser.close()
        raise
    return browser


async def connect(ws_endpoint: str, config: Optional[LaunchConfig] = None, **overrides) -> Browser:
    """Attach to a running browser's websocket endpoint without spawning one."""
    config = _merge_config(config, overrides)
    manager = ConnectionManager(config)
    await manager.connect(ws_endpoint)

    browser = Browser(manager)
    try:
        await browser._start()
    except BaseException:
        await browser.close()
        raise
    return browser
