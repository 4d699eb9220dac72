"""
Page - page-level operations built on the CDP command API.
"""
from __future__ import annotations

import asyncio
import base64
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from cdpwright import js
from cdpwright.cdp.transport import TransportSession
from cdpwright.core.errors import CDPClosedError, EvaluationError, NavigationError
from cdpwright.core.models import CDPEvent, ElementState, TargetInfo, WaitUntil
from cdpwright.locator import Locator
from cdpwright.wait import (
    FUNCTION_INTERVAL,
    navigation_spec,
    polling_interval,
    wait_for_spec,
    wait_until,
)

if TYPE_CHECKING:
    from cdpwright.cdp.bindings import BindingBridge

logger = logging.getLogger("cdpwright")

DEFAULT_TIMEOUT = 30.0


def _exception_message(details: Dict[str, Any]) -> str:
    exception = details.get("exception") or {}
    return exception.get("description") or details.get("text") or "Evaluation failed"


def _read_text(path: str) -> str:
    with open(path, encoding="utf-8") as f:
        return f.read()


class Page:
    """
    A single browser tab.

    Every command carries the page's CDP session id (``None`` for the tab the
    websocket itself is attached to). Once closed, every operation raises
    CDPClosedError.
    """

    def __init__(
        self,
        session: TransportSession,
        target: TargetInfo,
        *,
        bridge: Optional["BindingBridge"] = None,
        on_close: Optional[Callable[["Page"], Awaitable[None]]] = None,
        default_timeout: float = DEFAULT_TIMEOUT,
        navigation_timeout: float = DEFAULT_TIMEOUT,
    ):
        self.session = session
        self.target = target
        self.bridge = bridge
        self.default_timeout = default_timeout
        self.navigation_timeout = navigation_timeout
        self.closed = False
        self._on_close = on_close
        self._listeners: Dict[Tuple[str, Callable], Callable[[CDPEvent], Any]] = {}
        self._last_url = target.url or "about:blank"

    def __repr__(self) -> str:
        return f"<Page target_id={self.target_id} closed={self.closed}>"

    @property
    def target_id(self) -> str:
        return self.target.target_id

    @property
    def session_id(self) -> Optional[str]:
        return self.target.session_id

    def _ensure_open(self, method: str) -> None:
        if self.closed:
            raise CDPClosedError(
                "Page has been closed",
                target_id=self.target_id,
                session_id=self.session_id,
                method=method,
            )

    def _mark_closed(self) -> None:
        if self.closed:
            return
        self.closed = True
        for (event, _), wrapper in list(self._listeners.items()):
            self.session.off(event, wrapper)
        self._listeners.clear()
        if self.bridge is not None:
            self.bridge.forget(self.session_id)

    # =========================================================================
    # Raw protocol access
    # =========================================================================

    async def cdp(self, method: str, params: Optional[Dict[str, Any]] = None,
                  *, timeout: Optional[float] = None) -> Dict[str, Any]:
        """Send any CDP command in this page's session."""
        self._ensure_open(method)
        return await self.session.send(method, params, session_id=self.session_id, timeout=timeout)

    def on(self, event: str, handler: Callable[[CDPEvent], Any]) -> None:
        """Listen for a CDP event emitted by this page."""
        session_id = self.session_id

        def wrapper(cdp_event: CDPEvent):
            if cdp_event.session_id == session_id:
                return handler(cdp_event)
            return None

        self._listeners[(event, handler)] = wrapper
        self.session.on(event, wrapper)

    def off(self, event: str, handler: Callable[[CDPEvent], Any]) -> None:
        wrapper = self._listeners.pop((event, handler), None)
        if wrapper is not None:
            self.session.off(event, wrapper)

    def set_default_timeout(self, timeout: float) -> None:
        self.default_timeout = timeout

    def set_default_navigation_timeout(self, timeout: float) -> None:
        self.navigation_timeout = timeout

    # =========================================================================
    # Evaluation
    # =========================================================================

    def _build_expression(self, page_function: str, args: Tuple[Any, ...]) -> str:
        if args or js.is_function_source(page_function):
            return js.call_expression(page_function, *args)
        return page_function

    async def _evaluate_remote(self, expression: str, *, return_by_value: bool) -> Dict[str, Any]:
        result = await self.cdp("Runtime.evaluate", {
            "expression": expression,
            "returnByValue": return_by_value,
            "awaitPromise": True,
        })
        details = result.get("exceptionDetails")
        if details:
            raise EvaluationError(
                _exception_message(details),
                exception_details=details,
                target_id=self.target_id,
                session_id=self.session_id,
                method="Runtime.evaluate",
            )
        return result.get("result", {})

    async def evaluate_expression(self, expression: str) -> Any:
        """Evaluate a ready-made expression and return its JSON value."""
        remote = await self._evaluate_remote(expression, return_by_value=True)
        return remote.get("value")

    async def evaluate(self, page_function: str, *args: Any) -> Any:
        """
        Evaluate JavaScript in the page and return its value.

        ``page_function`` is either an expression or a function source; with
        a function, ``args`` are JSON-encoded and passed to it.
        """
        return await self.evaluate_expression(self._build_expression(page_function, args))

    async def evaluate_handle(self, page_function: str, *args: Any) -> Dict[str, Any]:
        """Like ``evaluate`` but return the CDP RemoteObject."""
        return await self._evaluate_remote(self._build_expression(page_function, args), return_by_value=False)

    # =========================================================================
    # Navigation
    # =========================================================================

    async def wait_for_navigation(self, wait_until: Union[WaitUntil, str] = WaitUntil.LOAD,
                                  timeout: Optional[float] = None) -> None:
        """Poll document.readyState until ``wait_until`` is reached."""
        self._ensure_open("wait_for_navigation")
        spec = navigation_spec(
            self.evaluate_expression,
            wait_until,
            timeout if timeout is not None else self.navigation_timeout,
        )
        await wait_for_spec(spec)

    async def goto(self, url: str, *, wait_until: Union[WaitUntil, str] = WaitUntil.LOAD,
                   timeout: Optional[float] = None) -> Dict[str, Any]:
        """
        Navigate to ``url`` and wait for the requested lifecycle point.

        Raises:
            NavigationError: If the browser reports a navigation failure.
            CDPTimeoutError: If the page does not settle within ``timeout``.
        """
        logger.info(f"Navigating to: {url}", extra={"target_id": self.target_id})
        await self.cdp("Page.enable")
        result = await self.cdp("Page.navigate", {"url": url})

        error_text = result.get("errorText")
        if error_text:
            raise NavigationError(
                f"Navigation to {url} failed: {error_text}",
                target_id=self.target_id,
                method="Page.navigate",
            )

        self._last_url = url
        await self.wait_for_navigation(wait_until, timeout)
        return result

    async def reload(self, *, wait_until: Union[WaitUntil, str] = WaitUntil.LOAD,
                     timeout: Optional[float] = None, ignore_cache: bool = False) -> None:
        await self.cdp("Page.reload", {"ignoreCache": ignore_cache})
        await self.wait_for_navigation(wait_until, timeout)

    async def _go_to_history_offset(self, offset: int, wait_until, timeout) -> bool:
        history = await self.cdp("Page.getNavigationHistory")
        current_index = history.get("currentIndex", 0)
        entries = history.get("entries", [])

        index = current_index + offset
        if index < 0 or index >= len(entries):
            logger.debug("No history entry to navigate to", extra={"target_id": self.target_id})
            return False

        await self.cdp("Page.navigateToHistoryEntry", {"entryId": entries[index]["id"]})
        await self.wait_for_navigation(wait_until, timeout)
        return True

    async def go_back(self, *, wait_until: Union[WaitUntil, str] = WaitUntil.LOAD,
                      timeout: Optional[float] = None) -> bool:
        """Navigate back; returns False when there is no history to go back to."""
        return await self._go_to_history_offset(-1, wait_until, timeout)

    async def go_forward(self, *, wait_until: Union[WaitUntil, str] = WaitUntil.LOAD,
                         timeout: Optional[float] = None) -> bool:
        """Navigate forward; returns False when there is no history to go forward to."""
        return await self._go_to_history_offset(1, wait_until, timeout)

    # =========================================================================
    # Waiting
    # =========================================================================

    def locator(self, selector: str) -> Locator:
        return Locator(self, selector)

    async def wait_for_selector(self, selector: str, *, state: Union[ElementState, str] = ElementState.VISIBLE,
                                timeout: Optional[float] = None) -> Locator:
        locator = self.locator(selector)
        await locator.wait_for(state=state, timeout=timeout)
        return locator

    async def wait_for_function(self, page_function: str, *args: Any,
                                polling: Union[str, float, None] = FUNCTION_INTERVAL,
                                timeout: Optional[float] = None) -> Any:
        """Poll ``page_function`` until it returns a truthy value and return it."""
        self._ensure_open("wait_for_function")
        expression = self._build_expression(page_function, args)

        async def predicate():
            return await self.evaluate_expression(expression)

        return await wait_until(
            predicate,
            timeout=timeout if timeout is not None else self.default_timeout,
            interval=polling_interval(polling),
            description="function to return a truthy value",
        )

    async def wait_for_timeout(self, seconds: float) -> None:
        await asyncio.sleep(seconds)

    # =========================================================================
    # Content
    # =========================================================================

    async def title(self) -> str:
        return await self.evaluate_expression("document.title") or ""

    async def url(self) -> str:
        value = await self.evaluate_expression("window.location.href")
        if value:
            self._last_url = value
        return self._last_url

    async def content(self) -> str:
        return await self.evaluate_expression("document.documentElement.outerHTML") or ""

    async def set_content(self, html: str, *, wait_until: Union[WaitUntil, str] = WaitUntil.LOAD,
                          timeout: Optional[float] = None) -> None:
        await self.evaluate(js.SET_CONTENT, html)
        await self.wait_for_navigation(wait_until, timeout)

    async def _add_tag(self, url_script: str, content_script: str, url: Optional[str],
                       path: Optional[str], content: Optional[str]) -> None:
        if url:
            await self.evaluate(url_script, url)
            return
        if path:
            content = await asyncio.to_thread(_read_text, path)
        if not content:
            raise ValueError("Either url, path or content must be specified")
        await self.evaluate(content_script, content)

    async def add_script_tag(self, *, url: Optional[str] = None, path: Optional[str] = None,
                             content: Optional[str] = None) -> None:
        """
        Append a <script> to the document head.

        ``url`` waits for the script to load; ``path`` reads a local file and
        inlines it, as does ``content``.
        """
        await self._add_tag(js.ADD_SCRIPT_URL, js.ADD_SCRIPT_CONTENT, url, path, content)

    async def add_style_tag(self, *, url: Optional[str] = None, path: Optional[str] = None,
                            content: Optional[str] = None) -> None:
        """Append a stylesheet <link> (``url``) or an inline <style> (``path``/``content``)."""
        await self._add_tag(js.ADD_STYLE_URL, js.ADD_STYLE_CONTENT, url, path, content)

    async def screenshot(self, *, format: str = "png", quality: Optional[int] = None,
                         full_page: bool = False, clip: Optional[Dict[str, float]] = None) -> bytes:
        """Capture the page and return the decoded image bytes."""
        params: Dict[str, Any] = {"format": format}
        if format == "jpeg" and quality is not None:
            params["quality"] = quality
        if full_page:
            params["captureBeyondViewport"] = True
        if clip is not None:
            params["clip"] = {"scale": 1, **clip}

        result = await self.cdp("Page.captureScreenshot", params)
        return base64.b64decode(result.get("data", ""))

    # =========================================================================
    # Network state
    # =========================================================================

    async def set_extra_http_headers(self, headers: Dict[str, str]) -> None:
        await self.cdp("Network.enable")
        await self.cdp("Network.setExtraHTTPHeaders", {"headers": headers})

    async def cookies(self) -> List[Dict[str, Any]]:
        result = await self.cdp("Network.getAllCookies")
        return result.get("cookies", [])

    async def set_cookies(self, cookies: List[Dict[str, Any]]) -> None:
        for cookie in cookies:
            await self.cdp("Network.setCookie", cookie)

    async def delete_cookies(self, name: Optional[str] = None, *, url: Optional[str] = None,
                             domain: Optional[str] = None, path: Optional[str] = None) -> None:
        """Delete one named cookie, or every cookie when ``name`` is omitted."""
        if name is None:
            await self.cdp("Network.clearBrowserCookies")
            return
        params = {"name": name, "url": url, "domain": domain, "path": path}
        await self.cdp("Network.deleteCookies", {k: v for k, v in params.items() if v is not None})

    async def emulate_media(self, media: Optional[str] = None) -> None:
        await self.cdp("Emulation.setEmulatedMedia", {"media": media or ""})

    async def expose_function(self, name: str, fn: Callable[..., Any]) -> None:
        """Make ``window[name](...)`` call ``fn`` and resolve with its result."""
        self._ensure_open("expose_function")
        if self.bridge is None:
            raise RuntimeError("Page was created without a binding bridge")
        await self.bridge.expose(name, fn, session_id=self.session_id)

    async def close(self) -> None:
        if self.closed:
            return
        if self._on_close is not None:
            await self._on_close(self)
        else:
            await self.session.send("Target.closeTarget", {"targetId": self.target_id})
            self._mark_closed()

    # =========================================================================
    # Selector shortcuts
    # =========================================================================

    async def click(self, selector: str, **kwargs) -> None:
        await self.locator(selector).click(**kwargs)

    async def dblclick(self, selector: str, **kwargs) -> None:
        await self.locator(selector).dblclick(**kwargs)

    async def fill(self, selector: str, value: str, **kwargs) -> None:
        await self.locator(selector).fill(value, **kwargs)

    async def type(self, selector: str, text: str, **kwargs) -> None:
        await self.locator(selector).type(text, **kwargs)

    async def type_with_mistakes(self, selector: str, text: str, **kwargs) -> None:
        await self.locator(selector).type_with_mistakes(text, **kwargs)

    async def press(self, selector: str, key: str, **kwargs) -> None:
        await self.locator(selector).press(key, **kwargs)

    async def hover(self, selector: str, **kwargs) -> None:
        await self.locator(selector).hover(**kwargs)

    async def focus(self, selector: str, **kwargs) -> None:
        await self.locator(selector).focus(**kwargs)

    async def inner_text(self, selector: str) -> str:
        return await self.locator(selector).inner_text()

    async def text_content(self, selector: str) -> Optional[str]:
        return await self.locator(selector).text_content()

    async def get_attribute(self, selector: str, name: str) -> Optional[str]:
        return await self.locator(selector).get_attribute(name)

    async def is_visible(self, selector: str) -> bool:
        return await self.locator(selector).is_visible()

    async def select_option(self, selector: str, values) -> List[str]:
        return await self.locator(selector).select_option(values)

    async def selected_options(self, selector: str) -> List[Dict[str, str]]:
        return await self.locator(selector).selected_options()

    async def highlight(self, selector: str, **kwargs) -> None:
        await self.locator(selector).highlight(**kwargs)

    async def set_checked(self, selector: str, checked: bool = True) -> None:
        await self.locator(selector).set_checked(checked)
