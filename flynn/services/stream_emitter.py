"""Ordered, single-writer event channel from the conversation loop to the client."""

import asyncio
import json
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

from flynn.models.llm import LLMUsage, ToolUseBlock
from flynn.utils.logging import get_logger

logger = get_logger(__name__)

TERMINAL_EVENTS = frozenset({"done", "error"})


@dataclass
class StreamEvent:
    type: str
    data: dict[str, Any]

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_EVENTS

    def to_sse(self) -> dict[str, str]:
        """Render as the dict shape EventSourceResponse expects."""
        return {"event": self.type, "data": json.dumps({"type": self.type, **self.data}, default=str)}


class StreamEventEmitter:
    """Queue-backed event channel for one request.

    Events come out of ``events()`` in exactly the order they were sent.
    At most one terminal event (``done`` or ``error``) is delivered. Once the
    channel is closed, further sends are dropped.
    """

    def __init__(self, cancel_event: asyncio.Event | None = None):
        self.cancel_event = cancel_event or asyncio.Event()
        self._queue: asyncio.Queue[StreamEvent | None] = asyncio.Queue()
        self._tool_names: dict[str, str] = {}
        self._terminal_sent = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def terminal_sent(self) -> bool:
        return self._terminal_sent

    def _send(self, event: StreamEvent) -> None:
        if self._closed:
            logger.debug(f"Dropping {event.type} event: channel closed")
            return
        if self._terminal_sent:
            if event.is_terminal:
                logger.warning(f"Dropping second terminal event {event.type}")
            else:
                logger.warning(f"Dropping {event.type} event sent after the terminal event")
            return
        if event.is_terminal:
            self._terminal_sent = True
        self._queue.put_nowait(event)

    async def send_text(self, content: str) -> None:
        self._send(StreamEvent("text", {"content": content}))

    async def send_tool_call(self, call: ToolUseBlock) -> None:
        self._tool_names[call.id] = call.name
        self._send(StreamEvent("tool_call", {"id": call.id, "name": call.name, "input": call.input}))

    async def send_tool_result(self, tool_call_id: str, result: Any, is_error: bool) -> None:
        name = self._tool_names.get(tool_call_id, "unknown")
        self._send(
            StreamEvent("tool_result", {"id": tool_call_id, "name": name, "result": result, "isError": is_error})
        )

    async def send_done(self, usage: LLMUsage, stop_reason: str | None) -> None:
        self._send(
            StreamEvent(
                "done",
                {"usage": {"input": usage.input_tokens, "output": usage.output_tokens}, "stopReason": stop_reason},
            )
        )

    async def send_error(self, message: str, code: str, retryable: bool = False) -> None:
        self._send(StreamEvent("error", {"message": message, "code": code, "retryable": retryable}))

    def close(self) -> None:
        """Stop accepting events and wake up the consumer."""
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(None)

    async def events(self) -> AsyncIterator[StreamEvent]:
        """Yield events until the terminal event or until the channel is closed."""
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event
            if event.is_terminal:
                return

    async def stream(self) -> AsyncIterator[dict[str, str]]:
        """SSE rendering of ``events()``. Closing early (client gone) cancels the loop."""
        try:
            async for event in self.events():
                yield event.to_sse()
        finally:
            if not self._terminal_sent:
                logger.info("Client disconnected before the stream finished; cancelling loop")
                self.cancel_event.set()
            self.close()
