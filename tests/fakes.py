"""
In-memory doubles for the Chrome side of a CDP connection.
"""
import asyncio
import json
from typing import Any, Callable, Dict, List, Optional

from websockets.exceptions import ConnectionClosedOK

Responder = Callable[[Dict[str, Any]], Optional[Dict[str, Any]]]


class FakeWebSocket:
    """
    Stand-in for a websocket connection to Chrome.

    ``send()`` records each outbound message; when a ``responder`` is set it
    is called with the decoded message and whatever it returns is delivered
    back as that message's response. ``push()`` delivers any frame, which is
    how tests inject events or out-of-order responses.
    """

    def __init__(self, responder: Optional[Responder] = None):
        self.responder = responder
        self.sent: List[Dict[str, Any]] = []
        self.closed = False
        self._inbox: asyncio.Queue = asyncio.Queue()

    async def send(self, raw: str) -> None:
        if self.closed:
            raise ConnectionClosedOK(None, None)
        message = json.loads(raw)
        self.sent.append(message)
        if self.responder is not None:
            reply = self.responder(message)
            if reply is not None:
                self.push({"id": message["id"], **reply})

    async def recv(self) -> str:
        item = await self._inbox.get()
        if item is None:
            raise ConnectionClosedOK(None, None)
        return item

    async def close(self) -> None:
        if not self.closed:
            self.drop()

    def push(self, message: Any) -> None:
        self._inbox.put_nowait(message if isinstance(message, str) else json.dumps(message))

    def drop(self) -> None:
        """Simulate the browser going away."""
        self.closed = True
        self._inbox.put_nowait(None)

    def methods(self) -> List[str]:
        return [m["method"] for m in self.sent]

    def find(self, method: str) -> List[Dict[str, Any]]:
        return [m for m in self.sent if m["method"] == method]


def ok(result: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return {"result": result or {}}


def event(method: str, params: Optional[Dict[str, Any]] = None,
          session_id: Optional[str] = None) -> Dict[str, Any]:
    message: Dict[str, Any] = {"method": method, "params": params or {}}
    if session_id is not None:
        message["sessionId"] = session_id
    return message


def evaluate_result(value: Any) -> Dict[str, Any]:
    return ok({"result": {"type": type(value).__name__, "value": value}})


async def settle(rounds: int = 10) -> None:
    """Give the listen loop and handler tasks a few turns of the event loop."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeBrowser:
    """
    Responder that answers like a small Chrome instance.

    Targets are tracked so that create/attach/close round-trip; page-side
    evaluation is answered from ``expressions`` (exact match) or ``scripts``
    (matched on the leading function source of a call expression).
    """

    def __init__(self):
        self.targets: List[Dict[str, Any]] = [
            {"targetId": "PAGE1", "type": "page", "url": "about:blank", "title": ""},
        ]
        self.counter = 1
        self.expressions: Dict[str, Any] = {"document.readyState": "complete"}
        self.scripts: List[Any] = []
        self.overrides: Dict[str, Any] = {}
        self.evaluated: List[str] = []

    def script(self, source: str, value: Any) -> None:
        self.scripts.insert(0, (f"({source.strip()})", value))

    def evaluate(self, expression: str) -> Any:
        self.evaluated.append(expression)
        if expression in self.expressions:
            return self.expressions[expression]
        for prefix, value in self.scripts:
            if expression.startswith(prefix):
                return value(expression) if callable(value) else value
        return None

    def __call__(self, message: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        method = message["method"]
        params = message.get("params", {})

        if method in self.overrides:
            override = self.overrides[method]
            return override(message) if callable(override) else override

        if method == "Target.getTargets":
            return ok({"targetInfos": list(self.targets)})
        if method == "Target.createTarget":
            self.counter += 1
            target_id = f"PAGE{self.counter}"
            self.targets.append({"targetId": target_id, "type": "page", "url": params.get("url", ""), "title": ""})
            return ok({"targetId": target_id})
        if method == "Target.attachToTarget":
            return ok({"sessionId": f"SESSION-{params['targetId']}"})
        if method == "Target.closeTarget":
            self.targets = [t for t in self.targets if t["targetId"] != params["targetId"]]
            return ok({"success": True})
        if method == "Page.navigate":
            return ok({"frameId": "FRAME1", "loaderId": "LOADER1"})
        if method == "Runtime.evaluate":
            value = self.evaluate(params["expression"])
            if value is None:
                return ok({"result": {"type": "undefined"}})
            return evaluate_result(value)
        return ok()
