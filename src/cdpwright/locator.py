"""
Locator - element-level operations addressed by CSS selector.
"""
from __future__ import annotations

import asyncio
import logging
import random
import string
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Union

from cdpwright import js
from cdpwright.core.errors import ElementNotFoundError
from cdpwright.core.models import ElementState
from cdpwright.wait import ELEMENT_INTERVAL, element_predicate, element_spec, wait_for_spec

if TYPE_CHECKING:
    from cdpwright.page import Page

logger = logging.getLogger("cdpwright")

# key -> (code, windowsVirtualKeyCode, text)
SPECIAL_KEYS: Dict[str, tuple] = {
    "Enter": ("Enter", 13, "\r"),
    "Tab": ("Tab", 9, ""),
    "Escape": ("Escape", 27, ""),
    "Backspace": ("Backspace", 8, ""),
    "Delete": ("Delete", 46, ""),
    "Space": ("Space", 32, " "),
    "ArrowUp": ("ArrowUp", 38, ""),
    "ArrowDown": ("ArrowDown", 40, ""),
    "ArrowLeft": ("ArrowLeft", 37, ""),
    "ArrowRight": ("ArrowRight", 39, ""),
    "Home": ("Home", 36, ""),
    "End": ("End", 35, ""),
    "PageUp": ("PageUp", 33, ""),
    "PageDown": ("PageDown", 34, ""),
}


class Locator:
    """Lazy handle on the first element matching ``selector``."""

    def __init__(self, page: "Page", selector: str, *, timeout: Optional[float] = None,
                 interval: float = ELEMENT_INTERVAL):
        self.page = page
        self.selector = selector
        self.timeout = timeout
        self.interval = interval

    def __repr__(self) -> str:
        return f"<Locator selector={self.selector!r}>"

    def _timeout(self, timeout: Optional[float]) -> float:
        if timeout is not None:
            return timeout
        if self.timeout is not None:
            return self.timeout
        return self.page.default_timeout

    async def _call(self, function_source: str, *args: Any) -> Any:
        return await self.page.evaluate(function_source, self.selector, *args)

    def _not_found(self) -> ElementNotFoundError:
        return ElementNotFoundError(self.selector, target_id=self.page.target_id)

    # =========================================================================
    # State
    # =========================================================================

    async def exists(self) -> bool:
        return await element_predicate(self.page.evaluate_expression, self.selector, ElementState.ATTACHED)()

    async def is_visible(self) -> bool:
        return await element_predicate(self.page.evaluate_expression, self.selector, ElementState.VISIBLE)()

    async def wait_for(self, *, state: Union[ElementState, str] = ElementState.VISIBLE,
                       timeout: Optional[float] = None) -> bool:
        """Wait until the element reaches ``state``; raises CDPTimeoutError otherwise."""
        self.page._ensure_open("wait_for")
        spec = element_spec(
            self.page.evaluate_expression,
            self.selector,
            state,
            self._timeout(timeout),
            interval=self.interval,
        )
        await wait_for_spec(spec)
        return True

    # =========================================================================
    # Input
    # =========================================================================

    async def _center(self) -> Dict[str, float]:
        point = await self._call(js.ELEMENT_CENTER)
        if not point:
            raise self._not_found()
        return point

    async def _mouse(self, event_type: str, point: Dict[str, float], **extra) -> None:
        params = {"type": event_type, "x": float(point["x"]), "y": float(point["y"]), "modifiers": 0}
        params.update(extra)
        await self.page.cdp("Input.dispatchMouseEvent", params)

    async def click(self, *, button: str = "left", click_count: int = 1,
                    delay: float = 0.05, timeout: Optional[float] = None) -> None:
        await self.wait_for(state=ElementState.VISIBLE, timeout=timeout)
        point = await self._center()

        await self._mouse("mouseMoved", point)
        for count in range(1, click_count + 1):
            await self._mouse("mousePressed", point, button=button, clickCount=count)
            if delay > 0:
                await asyncio.sleep(delay)
            await self._mouse("mouseReleased", point, button=button, clickCount=count)
        logger.debug(f"Clicked on selector: {self.selector}")

    async def dblclick(self, **kwargs) -> None:
        await self.click(click_count=2, **kwargs)

    async def hover(self, *, timeout: Optional[float] = None) -> None:
        await self.wait_for(state=ElementState.VISIBLE, timeout=timeout)
        await self._mouse("mouseMoved", await self._center())

    async def focus(self, *, timeout: Optional[float] = None) -> None:
        await self.wait_for(state=ElementState.VISIBLE, timeout=timeout)
        if not await self._call(js.FOCUS_ELEMENT):
            raise self._not_found()

    async def fill(self, value: str, *, timeout: Optional[float] = None) -> None:
        """Replace the element's value with ``value``."""
        await self.wait_for(state=ElementState.VISIBLE, timeout=timeout)
        if not await self._call(js.CLEAR_ELEMENT):
            raise self._not_found()
        if value:
            await self.page.cdp("Input.insertText", {"text": value})

    async def type(self, text: str, *, delay: float = 0.0, timeout: Optional[float] = None) -> None:
        """Type ``text`` one character at a time into the focused element."""
        await self.focus(timeout=timeout)
        for char in text:
            await self.page.cdp("Input.dispatchKeyEvent", {"type": "keyDown", "key": char, "text": char})
            await self.page.cdp("Input.dispatchKeyEvent", {"type": "keyUp", "key": char})
            if delay > 0:
                await asyncio.sleep(delay)

    async def type_with_mistakes(self, text: str, *, delay: float = 0.1,
                                 mistake_probability: float = 0.3,
                                 timeout: Optional[float] = None) -> None:
        """
        Type ``text`` like a hurried human: now and then a wrong lowercase
        letter is inserted and erased with Backspace before the right one.
        """
        await self.focus(timeout=timeout)
        for char in text:
            if random.random() < mistake_probability:
                await self.page.cdp("Input.insertText", {"text": random.choice(string.ascii_lowercase)})
                await asyncio.sleep(delay)
                await self.page.cdp("Input.dispatchKeyEvent", {
                    "type": "rawKeyDown",
                    "key": "Backspace",
                    "windowsVirtualKeyCode": 8,
                    "nativeVirtualKeyCode": 8,
                })
                await asyncio.sleep(delay)
            await self.page.cdp("Input.insertText", {"text": char})
            await asyncio.sleep(delay)

    async def press(self, key: str, *, timeout: Optional[float] = None) -> None:
        """Press a single key, e.g. "Enter", "Tab" or "a"."""
        await self.focus(timeout=timeout)
        code, key_code, text = SPECIAL_KEYS.get(key, (None, None, key if len(key) == 1 else ""))

        down: Dict[str, Any] = {"type": "keyDown", "key": key}
        if code:
            down["code"] = code
            down["windowsVirtualKeyCode"] = key_code
        if text:
            down["text"] = text
        await self.page.cdp("Input.dispatchKeyEvent", down)

        up: Dict[str, Any] = {"type": "keyUp", "key": key}
        if code:
            up["code"] = code
            up["windowsVirtualKeyCode"] = key_code
        await self.page.cdp("Input.dispatchKeyEvent", up)

    async def select_option(self, values: Union[str, Sequence[str]], *,
                            timeout: Optional[float] = None) -> List[str]:
        """Select options by value or label; returns the selected values."""
        await self.wait_for(state=ElementState.VISIBLE, timeout=timeout)
        wanted = [values] if isinstance(values, str) else list(values)
        selected = await self._call(js.SELECT_OPTIONS, wanted)
        if selected is None:
            raise self._not_found()
        return selected

    async def selected_options(self, *, timeout: Optional[float] = None) -> List[Dict[str, str]]:
        """``{"value", "text"}`` for each selected option; empty for a non-<select> element."""
        await self.wait_for(state=ElementState.ATTACHED, timeout=timeout)
        options = await self._call(js.SELECTED_OPTIONS)
        if options is None:
            raise self._not_found()
        return options

    async def is_checked(self, *, timeout: Optional[float] = None) -> bool:
        return bool(await self._read_property("checked", timeout))

    async def set_checked(self, checked: bool = True, *, timeout: Optional[float] = None) -> None:
        if await self.is_checked(timeout=timeout) != checked:
            await self.click(timeout=timeout)

    # =========================================================================
    # Reading
    # =========================================================================

    async def _read_property(self, name: str, timeout: Optional[float]) -> Any:
        await self.wait_for(state=ElementState.ATTACHED, timeout=timeout)
        result = await self._call(js.READ_PROPERTY, name)
        if not result or not result.get("found"):
            raise self._not_found()
        return result.get("value")

    async def inner_text(self, *, timeout: Optional[float] = None) -> str:
        return await self._read_property("innerText", timeout) or ""

    async def text_content(self, *, timeout: Optional[float] = None) -> Optional[str]:
        return await self._read_property("textContent", timeout)

    async def get_attribute(self, name: str, *, timeout: Optional[float] = None) -> Optional[str]:
        await self.wait_for(state=ElementState.ATTACHED, timeout=timeout)
        result = await self._call(js.READ_ATTRIBUTE, name)
        if not result or not result.get("found"):
            raise self._not_found()
        return result.get("value")

    async def bounding_box(self, *, timeout: Optional[float] = None) -> Optional[Dict[str, float]]:
        await self.wait_for(state=ElementState.ATTACHED, timeout=timeout)
        return await self._call(js.BOUNDING_BOX)

    async def highlight(self, *, duration: float = 2.0, timeout: Optional[float] = None) -> None:
        """Outline the element in red; the page restores the old outline after ``duration``."""
        await self.wait_for(state=ElementState.ATTACHED, timeout=timeout)
        if not await self._call(js.HIGHLIGHT_ELEMENT, int(duration * 1000)):
            raise self._not_found()
