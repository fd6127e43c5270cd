"""Tests for the SSE event channel."""

import json

import pytest

from flynn.models.llm import LLMUsage, ToolUseBlock
from flynn.services.stream_emitter import StreamEvent, StreamEventEmitter


async def collect(emitter: StreamEventEmitter) -> list:
    return [event async for event in emitter.events()]


class TestOrdering:
    """Delivery order and event payloads."""

    @pytest.mark.asyncio
    async def test_events_delivered_in_send_order(self):
        """Test that the consumer sees exactly the sent sequence."""
        emitter = StreamEventEmitter()
        call = ToolUseBlock(id="tu_1", name="get_child", input={"childId": "c1"})

        await emitter.send_text("Let me check.")
        await emitter.send_tool_call(call)
        await emitter.send_tool_result("tu_1", {"name": "Emma"}, False)
        await emitter.send_text("Emma is great.")
        await emitter.send_done(LLMUsage(input_tokens=7, output_tokens=3), "end_turn")

        events = await collect(emitter)

        assert [e.type for e in events] == ["text", "tool_call", "tool_result", "text", "done"]
        assert events[1].data == {"id": "tu_1", "name": "get_child", "input": {"childId": "c1"}}
        assert events[2].data == {"id": "tu_1", "name": "get_child", "result": {"name": "Emma"}, "isError": False}
        assert events[4].data == {"usage": {"input": 7, "output": 3}, "stopReason": "end_turn"}

    @pytest.mark.asyncio
    async def test_tool_result_without_known_call(self):
        """Test that a result for an unseen call id is labelled 'unknown'."""
        emitter = StreamEventEmitter()
        await emitter.send_tool_result("tu_x", "oops", True)
        await emitter.send_error("stop", "UNKNOWN_ERROR")

        events = await collect(emitter)

        assert events[0].data["name"] == "unknown"
        assert events[0].data["isError"] is True

    def test_sse_rendering(self):
        """Test the dict shape handed to EventSourceResponse."""
        rendered = StreamEvent("text", {"content": "hi"}).to_sse()

        assert rendered["event"] == "text"
        assert json.loads(rendered["data"]) == {"type": "text", "content": "hi"}


class TestTerminalEvents:
    """Exactly one terminal event."""

    @pytest.mark.asyncio
    async def test_second_terminal_event_dropped(self):
        """Test that done followed by error yields only the done event."""
        emitter = StreamEventEmitter()
        await emitter.send_done(LLMUsage(), "end_turn")
        await emitter.send_error("late", "API_ERROR", True)

        events = await collect(emitter)

        assert [e.type for e in events] == ["done"]

    @pytest.mark.asyncio
    async def test_events_after_terminal_dropped(self):
        """Test that nothing is delivered after the terminal event."""
        emitter = StreamEventEmitter()
        await emitter.send_error("boom", "RATE_LIMIT", True)
        await emitter.send_text("ignored")

        events = await collect(emitter)

        assert len(events) == 1
        assert events[0].data == {"message": "boom", "code": "RATE_LIMIT", "retryable": True}


class TestClose:
    """Closing and client disconnects."""

    @pytest.mark.asyncio
    async def test_sends_after_close_are_dropped(self):
        """Test that a closed channel silently ignores sends and ends the consumer."""
        emitter = StreamEventEmitter()
        await emitter.send_text("before")
        emitter.close()
        await emitter.send_text("after")
        await emitter.send_done(LLMUsage(), "end_turn")

        events = await collect(emitter)

        assert [e.data["content"] for e in events] == ["before"]
        assert emitter.closed is True
        assert emitter.terminal_sent is False

    @pytest.mark.asyncio
    async def test_stream_disconnect_sets_cancel_event(self):
        """Test that abandoning the SSE stream before the terminal event cancels the loop."""
        emitter = StreamEventEmitter()
        await emitter.send_text("one")
        await emitter.send_text("two")

        stream = emitter.stream()
        first = await stream.__anext__()
        await stream.aclose()

        assert json.loads(first["data"])["content"] == "one"
        assert emitter.cancel_event.is_set()
        assert emitter.closed

    @pytest.mark.asyncio
    async def test_completed_stream_does_not_cancel(self):
        """Test that a stream that reached its terminal event leaves the cancel event clear."""
        emitter = StreamEventEmitter()
        await emitter.send_text("hi")
        await emitter.send_done(LLMUsage(), "end_turn")

        rendered = [item async for item in emitter.stream()]

        assert [item["event"] for item in rendered] == ["text", "done"]
        assert not emitter.cancel_event.is_set()
