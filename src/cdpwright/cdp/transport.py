"""
CDP Transport - One websocket channel turned into a command/response API.

Outbound commands are correlated with inbound responses through a table of
pending calls keyed by message id; messages without an id are protocol events
and are fanned out to subscribers.
"""
import asyncio
import inspect
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

import websockets
from websockets.asyncio.client import connect

from cdpwright.core.errors import (
    CdpwrightError,
    CDPClosedError,
    CDPConnectionError,
    CDPProtocolError,
    CDPTimeoutError,
)
from cdpwright.core.models import CDPEvent

logger = logging.getLogger("cdpwright")

EventHandler = Callable[[CDPEvent], Any]

DEFAULT_COMMAND_TIMEOUT = 30.0


def setup_logging(level: int = logging.INFO, debug: bool = False):
    """Configure logging for cdpwright."""
    if debug:
        level = logging.DEBUG

    logger.setLevel(level)

    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)


@dataclass
class PendingCall:
    """A command awaiting its response."""
    id: int
    method: str
    future: asyncio.Future
    deadline: float
    timeout: float
    session_id: Optional[str] = None
    timer: Optional[asyncio.TimerHandle] = None

    def _settle(self):
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None

    def resolve(self, result: Dict[str, Any]) -> bool:
        self._settle()
        if self.future.done():
            return False
        self.future.set_result(result)
        return True

    def reject(self, error: BaseException) -> bool:
        self._settle()
        if self.future.done():
            return False
        self.future.set_exception(error)
        return True


class TransportSession:
    """
    Chrome DevTools Protocol session over a single websocket.

    Any number of ``send()`` calls may be outstanding at once; each completes
    when the response bearing its id arrives, when its deadline elapses, or
    when the session is closed. Ids are never reused for the lifetime of the
    object, reattachments included.
    """

    def __init__(
        self,
        command_timeout: float = DEFAULT_COMMAND_TIMEOUT,
        reattach: Optional[Callable[[], Awaitable[Any]]] = None,
        debug: bool = False,
    ):
        self.command_timeout = command_timeout
        self.reattach = reattach
        self.debug = debug
        self.ws = None
        self.ws_url: Optional[str] = None
        self.message_id = 0
        self.pending: Dict[int, PendingCall] = {}
        self.bindings: Dict[Tuple[Optional[str], str], Callable[..., Any]] = {}
        self.closed = False
        self._subscribers: Dict[str, List[EventHandler]] = {}
        self._wildcard: List[EventHandler] = []
        self._handler_tasks: Set[asyncio.Task] = set()
        self._listen_task: Optional[asyncio.Task] = None
        self._reattach_task: Optional[asyncio.Task] = None

    def _now(self) -> float:
        return asyncio.get_running_loop().time()

    @property
    def is_open(self) -> bool:
        return self.ws is not None and not self.closed

    @property
    def next_id(self) -> int:
        """Id the next command will carry."""
        return self.message_id + 1

    # =========================================================================
    # Channel lifecycle
    # =========================================================================

    async def open(self, ws_url: str) -> None:
        """Open (or replace) the websocket channel and start listening."""
        if self.closed:
            raise CDPClosedError("Session is closed", method="open")

        await self._drop_channel("WebSocket channel replaced")

        logger.info(f"Connecting to Chrome via WebSocket: {ws_url}")
        try:
            ws = await connect(ws_url, max_size=None)
        except Exception as e:
            logger.error(f"Failed to establish WebSocket connection: {e}")
            raise CDPConnectionError(
                f"Failed to connect to Chrome WebSocket: {e}",
                method="open",
            ) from e

        self.ws = ws
        self.ws_url = ws_url
        self._listen_task = asyncio.create_task(self._listen(ws))
        logger.info("WebSocket connection established")

    async def _drop_channel(self, reason: str) -> None:
        ws, self.ws = self.ws, None
        task, self._listen_task = self._listen_task, None
        self._reject_all(reason)
        if task is not None and task is not asyncio.current_task():
            task.cancel()
        if ws is not None:
            try:
                await ws.close()
            except Exception as e:
                logger.debug(f"Ignoring error while closing websocket: {e}")

    def _reject_all(self, reason: str) -> int:
        calls = list(self.pending.values())
        self.pending.clear()
        rejected = 0
        for call in calls:
            if call.reject(CDPClosedError(reason, method=call.method, session_id=call.session_id)):
                rejected += 1
        if rejected:
            logger.warning(
                f"Rejected {rejected} pending call(s): {reason}",
                extra={"pending_count": rejected},
            )
        return rejected

    async def close(self) -> None:
        """
        Close the session.

        Every outstanding call is rejected with CDPClosedError, subscribers and
        exposed bindings are dropped, and later sends fail immediately.
        """
        if self.closed:
            return
        self.closed = True

        await self._drop_channel("Session closed")

        self._subscribers.clear()
        self._wildcard.clear()
        self.bindings.clear()

        current = asyncio.current_task()
        for task in list(self._handler_tasks):
            if task is not current:
                task.cancel()
        self._handler_tasks.clear()

        if self._reattach_task is not None and self._reattach_task is not current:
            self._reattach_task.cancel()
        self._reattach_task = None

        logger.info("Transport session closed")

    async def _reattach_once(self, method: str) -> None:
        """Make one reattachment attempt, shared by concurrent callers."""
        if self.reattach is None:
            raise CDPClosedError("WebSocket channel is not open", method=method)

        if self._reattach_task is None:
            logger.info(
                "Channel not open, attempting reattachment",
                extra={"method": method},
            )
            self._reattach_task = asyncio.ensure_future(self._run_reattach())

        task = self._reattach_task
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            # A cancelled attempt means close() ran; the caller itself was not cancelled.
            if task.cancelled():
                raise CDPClosedError("Session is closed", method=method) from None
            raise
        except Exception as e:
            reason = e.message if isinstance(e, CdpwrightError) else str(e)
            raise CDPClosedError(
                f"Failed to reattach WebSocket channel: {reason}",
                method=method,
            ) from e

        if not self.is_open:
            raise CDPClosedError("WebSocket channel is not open after reattachment", method=method)

    async def _run_reattach(self) -> None:
        try:
            await self.reattach()
        finally:
            self._reattach_task = None

    # =========================================================================
    # Commands
    # =========================================================================

    async def send(
        self,
        method: str,
        params: Optional[Dict[str, Any]] = None,
        *,
        session_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Send a CDP command and wait for its response."""
        if self.closed:
            raise CDPClosedError("Session is closed", session_id=session_id, method=method)

        if not self.is_open:
            await self._reattach_once(method)

        loop = asyncio.get_running_loop()
        timeout = self.command_timeout if timeout is None else timeout

        self.message_id += 1
        msg_id = self.message_id
        start_time = loop.time()

        call = PendingCall(
            id=msg_id,
            method=method,
            future=loop.create_future(),
            deadline=start_time + timeout,
            timeout=timeout,
            session_id=session_id,
        )
        call.timer = loop.call_later(timeout, self._expire, msg_id)
        self.pending[msg_id] = call

        message: Dict[str, Any] = {"id": msg_id, "method": method, "params": params or {}}
        if session_id is not None:
            message["sessionId"] = session_id

        if self.debug:
            logger.debug(
                f"CDP command: {method}",
                extra={
                    "method": method,
                    "params": params,
                    "session_id": session_id,
                    "message_id": msg_id,
                }
            )

        try:
            await self.ws.send(json.dumps(message))
        except Exception as e:
            self._discard(msg_id)
            if call.future.done() and not call.future.cancelled():
                # The listen loop already rejected this call.
                call.future.exception()
            raise CDPClosedError(
                f"Failed to send {method}: {e}",
                session_id=session_id,
                method=method,
            ) from e

        try:
            result = await call.future
        except asyncio.CancelledError:
            self._discard(msg_id)
            raise
        except CdpwrightError:
            duration = loop.time() - start_time
            logger.debug(
                f"CDP command failed: {method}",
                extra={
                    "method": method,
                    "session_id": session_id,
                    "message_id": msg_id,
                    "duration_ms": duration * 1000,
                }
            )
            raise

        if self.debug:
            duration = loop.time() - start_time
            logger.debug(
                f"CDP response: {method} (duration={duration:.3f}s)",
                extra={
                    "method": method,
                    "session_id": session_id,
                    "message_id": msg_id,
                    "duration_ms": duration * 1000,
                }
            )
        return result

    def _discard(self, msg_id: int) -> None:
        call = self.pending.pop(msg_id, None)
        if call is not None and call.timer is not None:
            call.timer.cancel()
            call.timer = None

    def _expire(self, msg_id: int) -> None:
        call = self.pending.pop(msg_id, None)
        if call is None:
            return
        call.timer = None
        logger.error(
            f"CDP command timeout: {call.method} after {call.timeout:.3f}s",
            extra={
                "method": call.method,
                "session_id": call.session_id,
                "message_id": msg_id,
            }
        )
        call.reject(CDPTimeoutError(
            f"CDP command {call.method} timed out after {call.timeout:.3f}s",
            timeout=call.timeout,
            session_id=call.session_id,
            method=call.method,
        ))

    # =========================================================================
    # Inbound
    # =========================================================================

    async def _listen(self, ws) -> None:
        """Listen for CDP responses and events on one websocket."""
        try:
            while True:
                raw = await ws.recv()
                try:
                    data = json.loads(raw)
                except (TypeError, ValueError) as e:
                    logger.warning(f"Dropping unparseable CDP frame: {e}")
                    continue
                if not isinstance(data, dict):
                    logger.warning("Dropping non-object CDP frame")
                    continue
                self._dispatch(data)
        except websockets.exceptions.ConnectionClosed:
            logger.warning("WebSocket connection closed")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error in listen loop: {e}", exc_info=True)
        finally:
            if self.ws is ws:
                self.ws = None
                self._listen_task = None
                self._reject_all("WebSocket connection closed")

    def _dispatch(self, data: Dict[str, Any]) -> None:
        """Route one inbound message: ``id`` -> completion, ``method`` -> event."""
        if "id" in data:
            call = self.pending.pop(data["id"], None)
            if call is None:
                logger.debug(
                    "Dropping response with no pending call",
                    extra={"message_id": data.get("id")},
                )
                return

            if "error" in data:
                error_data = data["error"] if isinstance(data["error"], dict) else {"message": str(data["error"])}
                error_code = error_data.get("code")
                error_message = error_data.get("message", "Unknown CDP error")
                logger.error(
                    f"CDP protocol error: {error_message}",
                    extra={
                        "error_code": error_code,
                        "message_id": call.id,
                        "method": call.method,
                    }
                )
                call.reject(CDPProtocolError(
                    f"CDP Error: {error_message}",
                    code=error_code,
                    cdp_error=error_data,
                    session_id=call.session_id,
                    method=call.method,
                ))
            else:
                result = data.get("result", {})
                if not isinstance(result, dict):
                    call.reject(CDPProtocolError(
                        "Malformed CDP response: result is not an object",
                        session_id=call.session_id,
                        method=call.method,
                    ))
                else:
                    call.resolve(result)

        elif "method" in data:
            event = CDPEvent(
                method=data["method"],
                params=data.get("params") or {},
                session_id=data.get("sessionId"),
            )
            if self.debug:
                logger.debug(
                    f"CDP event: {event.method}",
                    extra={"method": event.method, "session_id": event.session_id}
                )
            self._emit(event)

        else:
            logger.warning("Dropping CDP message with neither id nor method")

    def _emit(self, event: CDPEvent) -> None:
        handlers = list(self._subscribers.get(event.method, ())) + list(self._wildcard)
        for handler in handlers:
            try:
                result = handler(event)
            except Exception as e:
                logger.error(
                    f"Event handler failed for {event.method}: {e}",
                    extra={"method": event.method, "error_type": type(e).__name__},
                    exc_info=True,
                )
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._handler_tasks.add(task)
                task.add_done_callback(self._handler_done)

    def _handler_done(self, task: asyncio.Task) -> None:
        self._handler_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                f"Async event handler failed: {exc}",
                extra={"error_type": type(exc).__name__},
            )

    # =========================================================================
    # Subscriptions
    # =========================================================================

    def on(self, method: str, handler: EventHandler) -> None:
        """Call ``handler(event)`` for every event named ``method``."""
        self._subscribers.setdefault(method, []).append(handler)

    def off(self, method: str, handler: EventHandler) -> None:
        handlers = self._subscribers.get(method)
        if not handlers:
            return
        if handler in handlers:
            handlers.remove(handler)
        if not handlers:
            del self._subscribers[method]

    def subscribe(self, handler: EventHandler) -> None:
        """Call ``handler(event)`` for every inbound event."""
        self._wildcard.append(handler)

    def unsubscribe(self, handler: EventHandler) -> None:
        if handler in self._wildcard:
            self._wildcard.remove(handler)

    async def drain_handlers(self) -> None:
        """Wait for event handler tasks scheduled so far to finish."""
        current = asyncio.current_task()
        tasks = [t for t in self._handler_tasks if t is not current]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
