"""
Exposed functions - page-callable Python handlers routed through Runtime bindings.

Handlers live in the owning TransportSession's ``bindings`` table, keyed by
(CDP session id, name), so they disappear when the session closes.
"""
import inspect
import json
import logging
from typing import Any, Callable, Optional, Set

from cdpwright import js
from cdpwright.cdp.transport import TransportSession
from cdpwright.core.errors import CdpwrightError
from cdpwright.core.models import CDPEvent

logger = logging.getLogger("cdpwright")

BINDING_NAME = "__cdpwright_binding"


class BindingBridge:
    """Installs the page-side wrapper and answers ``Runtime.bindingCalled``."""

    def __init__(self, session: TransportSession):
        self.session = session
        self._installed: Set[Optional[str]] = set()
        session.on("Runtime.bindingCalled", self.handle_binding_called)

    async def expose(self, name: str, fn: Callable[..., Any], session_id: Optional[str] = None) -> None:
        key = (session_id, name)
        if key in self.session.bindings:
            raise ValueError(f"Function {name!r} is already exposed on this page")
        self.session.bindings[key] = fn

        if session_id not in self._installed:
            await self.session.send("Runtime.enable", {}, session_id=session_id)
            await self.session.send("Runtime.addBinding", {"name": BINDING_NAME}, session_id=session_id)
            self._installed.add(session_id)

        script = js.call_expression(js.EXPOSE_BINDING, BINDING_NAME, name)
        await self.session.send(
            "Page.addScriptToEvaluateOnNewDocument", {"source": script}, session_id=session_id
        )
        await self.session.send("Runtime.evaluate", {"expression": script}, session_id=session_id)
        logger.debug(f"Exposed function {name}", extra={"session_id": session_id})

    def forget(self, session_id: Optional[str]) -> None:
        """Drop every handler registered for one CDP session."""
        for key in [k for k in self.session.bindings if k[0] == session_id]:
            del self.session.bindings[key]
        self._installed.discard(session_id)

    async def handle_binding_called(self, event: CDPEvent) -> None:
        if event.params.get("name") != BINDING_NAME:
            return

        try:
            payload = json.loads(event.params.get("payload") or "{}")
            name = payload["name"]
            seq = payload["seq"]
            args = payload.get("args") or []
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Malformed binding payload: {e}")
            return

        handler = self.session.bindings.get((event.session_id, name))
        if handler is None:
            logger.debug(f"No handler for exposed function {name}", extra={"session_id": event.session_id})
            return

        result: Any = None
        error: Optional[str] = None
        try:
            result = handler(*args)
            if inspect.isawaitable(result):
                result = await result
            js.serialize_argument(result)
        except Exception as e:
            logger.warning(f"Exposed function {name} raised: {e}")
            result, error = None, f"{type(e).__name__}: {e}"

        params = {"expression": js.call_expression(js.DELIVER_BINDING_RESULT, seq, result, error)}
        context_id = event.params.get("executionContextId")
        if context_id is not None:
            params["contextId"] = context_id
        try:
            await self.session.send("Runtime.evaluate", params, session_id=event.session_id)
        except CdpwrightError as e:
            logger.error(f"Failed to deliver result of {name}: {e}")
