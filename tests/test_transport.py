"""
Tests for the CDP transport: request/response correlation, timeouts,
closure, reattachment and event dispatch.

Run with: pytest tests/test_transport.py -v
"""
import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from cdpwright.cdp.transport import TransportSession
from cdpwright.core.errors import CDPClosedError, CDPConnectionError, CDPProtocolError, CDPTimeoutError
from cdpwright.core.models import CDPEvent
from tests.fakes import FakeWebSocket, event, ok, settle

WS_URL = "ws://localhost:9222/devtools/page/TEST"


@pytest.fixture
def fake_ws():
    """A websocket that never answers on its own."""
    return FakeWebSocket()


# =============================================================================
# Request / Response Correlation
# =============================================================================

class TestCorrelation:
    """Tests for matching responses to outstanding commands."""

    @pytest.mark.asyncio
    async def test_out_of_order_responses_reach_their_callers(self, session, fake_ws):
        """Each caller gets the result carrying its own id."""
        tasks = [asyncio.create_task(session.send("Runtime.evaluate", {"n": n})) for n in range(3)]
        await settle()

        ids = [m["id"] for m in fake_ws.sent]
        for msg_id in reversed(ids):
            fake_ws.push({"id": msg_id, "result": {"echo": msg_id}})

        results = await asyncio.gather(*tasks)
        assert [r["echo"] for r in results] == ids
        assert session.pending == {}

    @pytest.mark.asyncio
    async def test_ids_strictly_increase(self, session, fake_ws):
        """Ids are never reused, even after responses arrive."""
        fake_ws.responder = lambda message: ok()
        for _ in range(4):
            await session.send("Page.enable")
        ids = [m["id"] for m in fake_ws.sent]
        assert ids == sorted(set(ids))
        assert len(ids) == 4
        assert session.next_id == ids[-1] + 1

    @pytest.mark.asyncio
    async def test_wire_format(self, session, fake_ws):
        """Commands carry method, params and optional sessionId."""
        fake_ws.responder = lambda message: ok()
        await session.send("Page.navigate", {"url": "https://example.com"})
        await session.send("Page.enable", session_id="SESSION-1")

        first, second = fake_ws.sent
        assert first["method"] == "Page.navigate"
        assert first["params"] == {"url": "https://example.com"}
        assert "sessionId" not in first
        assert second["params"] == {}
        assert second["sessionId"] == "SESSION-1"

    @pytest.mark.asyncio
    async def test_unmatched_response_is_dropped(self, session, fake_ws):
        """A response for an unknown id is ignored and does not break the loop."""
        fake_ws.push({"id": 999, "result": {"stray": True}})
        await settle()

        fake_ws.responder = lambda message: ok({"value": 1})
        assert await session.send("Runtime.evaluate") == {"value": 1}

    @pytest.mark.asyncio
    async def test_malformed_frames_are_skipped(self, session, fake_ws):
        """Non-JSON frames do not kill the listen loop."""
        fake_ws.push("not json")
        fake_ws.push("[1, 2, 3]")
        await settle()

        fake_ws.responder = lambda message: ok()
        assert await session.send("Page.enable") == {}


# =============================================================================
# Errors, Timeouts and Closure
# =============================================================================

class TestFailures:
    """Tests for every way an outstanding call can fail."""

    @pytest.mark.asyncio
    async def test_protocol_error(self, session, fake_ws):
        """An error response rejects with CDPProtocolError."""
        fake_ws.responder = lambda message: {"error": {"code": -32601, "message": "'Foo.bar' wasn't found"}}

        with pytest.raises(CDPProtocolError) as exc_info:
            await session.send("Foo.bar")

        assert exc_info.value.code == -32601
        assert exc_info.value.method == "Foo.bar"

    @pytest.mark.asyncio
    async def test_non_object_result_is_protocol_error(self, session, fake_ws):
        fake_ws.responder = lambda message: {"result": [1, 2]}
        with pytest.raises(CDPProtocolError):
            await session.send("Runtime.evaluate")

    @pytest.mark.asyncio
    async def test_timeout(self, session):
        """An unanswered command fails after its own deadline."""
        with pytest.raises(CDPTimeoutError) as exc_info:
            await session.send("Page.navigate", timeout=0.05)

        assert exc_info.value.timeout == 0.05
        assert session.pending == {}

    @pytest.mark.asyncio
    async def test_late_response_after_timeout_is_ignored(self, session, fake_ws):
        with pytest.raises(CDPTimeoutError):
            await session.send("Page.navigate", timeout=0.05)

        fake_ws.push({"id": fake_ws.sent[0]["id"], "result": {}})
        await settle()
        assert session.pending == {}

    @pytest.mark.asyncio
    async def test_close_rejects_every_pending_call(self, session):
        """Closing the session rejects all N outstanding calls with CDPClosedError."""
        tasks = [asyncio.create_task(session.send("Runtime.evaluate")) for _ in range(5)]
        await settle()
        assert len(session.pending) == 5

        await session.close()

        results = await asyncio.gather(*tasks, return_exceptions=True)
        assert all(isinstance(r, CDPClosedError) for r in results)
        assert session.pending == {}

    @pytest.mark.asyncio
    async def test_send_after_close_fails_immediately(self, session, fake_ws):
        await session.close()
        with pytest.raises(CDPClosedError):
            await session.send("Page.enable")
        assert fake_ws.sent == []

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, session):
        await session.close()
        await session.close()
        assert session.closed

    @pytest.mark.asyncio
    async def test_transport_loss_rejects_pending_calls(self, session, fake_ws):
        """When the websocket drops, outstanding calls fail with CDPClosedError."""
        tasks = [asyncio.create_task(session.send("Runtime.evaluate")) for _ in range(3)]
        await settle()

        fake_ws.drop()

        results = await asyncio.gather(*tasks, return_exceptions=True)
        assert all(isinstance(r, CDPClosedError) for r in results)
        assert not session.is_open

    @pytest.mark.asyncio
    async def test_cancelled_caller_discards_its_entry(self, session):
        task = asyncio.create_task(session.send("Runtime.evaluate"))
        await settle()
        assert len(session.pending) == 1

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert session.pending == {}


# =============================================================================
# Reattachment
# =============================================================================

class TestReattach:
    """Tests for the single reattachment attempt on a dead channel."""

    @pytest.mark.asyncio
    async def test_send_without_channel_and_no_hook_fails(self):
        session = TransportSession()
        with pytest.raises(CDPClosedError):
            await session.send("Page.enable")

    @pytest.mark.asyncio
    async def test_concurrent_senders_share_one_reattach(self):
        """Several callers on a dropped channel trigger a single reattachment."""
        fresh = FakeWebSocket(responder=lambda message: ok({"ok": True}))
        session = TransportSession(command_timeout=2.0)

        async def reopen():
            await session.open(WS_URL)

        hook = AsyncMock(side_effect=reopen)
        session.reattach = hook

        with patch("cdpwright.cdp.transport.connect", AsyncMock(return_value=fresh)):
            results = await asyncio.gather(*(session.send("Page.enable") for _ in range(3)))

        assert hook.await_count == 1
        assert results == [{"ok": True}] * 3
        assert [m["id"] for m in fresh.sent] == [1, 2, 3]
        await session.close()

    @pytest.mark.asyncio
    async def test_failed_reattach_surfaces_closed_error(self):
        hook = AsyncMock(side_effect=ConnectionRefusedError("no browser"))
        session = TransportSession(reattach=hook)

        with pytest.raises(CDPClosedError) as exc_info:
            await session.send("Page.enable")

        assert hook.await_count == 1
        assert isinstance(exc_info.value.__cause__, ConnectionRefusedError)

    @pytest.mark.asyncio
    async def test_failed_reattach_message_keeps_inner_reason_only(self):
        hook = AsyncMock(side_effect=CDPConnectionError("No page target found", method="attach"))
        session = TransportSession(reattach=hook)

        with pytest.raises(CDPClosedError) as exc_info:
            await session.send("Target.closeTarget")

        message = str(exc_info.value)
        assert "No page target found" in message
        assert message.count("method=") == 1
        assert exc_info.value.__cause__.method == "attach"

    @pytest.mark.asyncio
    async def test_close_during_reattach_rejects_with_closed_error(self):
        """A sender waiting on reattachment fails with CDPClosedError when the session closes."""
        started = asyncio.Event()

        async def slow_reattach():
            started.set()
            await asyncio.sleep(10)

        session = TransportSession(reattach=slow_reattach)
        task = asyncio.create_task(session.send("Page.enable"))
        await started.wait()

        await session.close()

        with pytest.raises(CDPClosedError):
            await task
        assert not task.cancelled()

    @pytest.mark.asyncio
    async def test_caller_cancellation_still_propagates(self):
        started = asyncio.Event()

        async def slow_reattach():
            started.set()
            await asyncio.sleep(10)

        session = TransportSession(reattach=slow_reattach)
        task = asyncio.create_task(session.send("Page.enable"))
        await started.wait()

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        await session.close()

    @pytest.mark.asyncio
    async def test_reattach_after_transport_loss(self, session, fake_ws):
        """Ids keep increasing across reattachments."""
        fake_ws.responder = lambda message: ok()
        await session.send("Page.enable")
        fake_ws.drop()
        await settle()
        assert not session.is_open

        fresh = FakeWebSocket(responder=lambda message: ok())

        async def reopen():
            await session.open(WS_URL)

        session.reattach = reopen
        with patch("cdpwright.cdp.transport.connect", AsyncMock(return_value=fresh)):
            await session.send("Page.enable")

        assert fresh.sent[0]["id"] > fake_ws.sent[0]["id"]


# =============================================================================
# Event Dispatch
# =============================================================================

class TestEvents:
    """Tests for protocol event fan-out."""

    @pytest.mark.asyncio
    async def test_method_subscriber_receives_event(self, session, fake_ws):
        received = []
        session.on("Page.loadEventFired", received.append)

        fake_ws.push(event("Page.loadEventFired", {"timestamp": 1.5}, session_id="S1"))
        fake_ws.push(event("Page.frameNavigated", {}))
        await settle()

        assert received == [CDPEvent("Page.loadEventFired", {"timestamp": 1.5}, "S1")]

    @pytest.mark.asyncio
    async def test_wildcard_subscriber_receives_everything(self, session, fake_ws):
        received = []
        session.subscribe(received.append)

        fake_ws.push(event("Network.requestWillBeSent"))
        fake_ws.push(event("Page.loadEventFired"))
        await settle()

        assert [e.method for e in received] == ["Network.requestWillBeSent", "Page.loadEventFired"]

        session.unsubscribe(received.append)
        fake_ws.push(event("Page.loadEventFired"))
        await settle()
        assert len(received) == 2

    @pytest.mark.asyncio
    async def test_async_handler_runs_as_task(self, session, fake_ws):
        seen = asyncio.Event()

        async def handler(evt):
            await asyncio.sleep(0)
            seen.set()

        session.on("Runtime.consoleAPICalled", handler)
        fake_ws.push(event("Runtime.consoleAPICalled"))
        await settle()
        await session.drain_handlers()

        assert seen.is_set()

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_stop_others(self, session, fake_ws):
        received = []

        def broken(evt):
            raise RuntimeError("boom")

        session.on("Page.loadEventFired", broken)
        session.on("Page.loadEventFired", received.append)
        fake_ws.push(event("Page.loadEventFired"))
        await settle()

        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_off_removes_handler(self, session, fake_ws):
        received = []
        session.on("Page.loadEventFired", received.append)
        session.off("Page.loadEventFired", received.append)

        fake_ws.push(event("Page.loadEventFired"))
        await settle()
        assert received == []
