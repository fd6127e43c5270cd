"""Bounded multi-turn generation / tool-execution loop."""

import asyncio
import json
from collections.abc import Awaitable, Callable
from contextlib import aclosing
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from flynn.clients.anthropic import to_model_error
from flynn.models.llm import (
    ContentBlock,
    LLMMessage,
    LLMToolDefinition,
    LLMUsage,
    MessageComplete,
    ModelProvider,
    TextBlock,
    TextDelta,
    ToolCallDelta,
    ToolResultBlock,
    ToolUseBlock,
)
from flynn.services.errors import ConversationLoopError, MaxTurnsExceededError, ModelTimeoutError
from flynn.tools.registry import ExecuteTool
from flynn.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_TURNS = 10
DEFAULT_MODEL_TIMEOUT_SECONDS = 120.0


class LoopState(StrEnum):
    GENERATING = "generating"
    AWAITING_TOOLS = "awaiting_tools"
    DONE = "done"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class TurnRecord:
    """What one model call produced."""

    text: str
    tool_calls: list[ToolUseBlock]
    usage: LLMUsage
    stop_reason: str | None

    @property
    def wants_tools(self) -> bool:
        return self.stop_reason == "tool_use" and bool(self.tool_calls)


@dataclass
class LoopCallbacks:
    on_text: Callable[[str], Awaitable[None]] | None = None
    on_tool_call: Callable[[ToolUseBlock], Awaitable[None]] | None = None
    on_tool_result: Callable[[ToolUseBlock, Any, bool], Awaitable[None]] | None = None
    on_turn_end: Callable[[TurnRecord], Awaitable[None]] | None = None


@dataclass
class LoopResult:
    state: LoopState
    text: str = ""
    usage: LLMUsage = field(default_factory=LLMUsage)
    turns: int = 0
    stop_reason: str | None = None
    error: Exception | None = None
    messages: list[LLMMessage] = field(default_factory=list)
    partial_text: str = ""

    @property
    def error_code(self) -> str:
        return getattr(self.error, "code", "UNKNOWN_ERROR")

    @property
    def retryable(self) -> bool:
        return bool(getattr(self.error, "retryable", False))


def format_tool_output(result: Any) -> str:
    """Tool results reach the model as text; structured data is JSON-encoded."""
    if isinstance(result, str):
        return result
    return json.dumps(result, default=str)


class ConversationLoopDriver:
    """Explicit state machine: GENERATING -> AWAITING_TOOLS -> GENERATING ... -> DONE | FAILED | CANCELLED.

    Each GENERATING step is one model call; the turn counter bounds the
    number of calls. Tool calls within a turn run sequentially, in the order
    the model proposed them.
    """

    def __init__(
        self,
        model: ModelProvider,
        max_turns: int = DEFAULT_MAX_TURNS,
        model_timeout_seconds: float = DEFAULT_MODEL_TIMEOUT_SECONDS,
    ):
        self.model = model
        self.max_turns = max_turns
        self.model_timeout_seconds = model_timeout_seconds

    async def run(
        self,
        messages: list[LLMMessage],
        system_prompt: str,
        tools: list[LLMToolDefinition],
        execute_tool: ExecuteTool,
        callbacks: LoopCallbacks | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> LoopResult:
        callbacks = callbacks or LoopCallbacks()
        history = list(messages)
        result = LoopResult(state=LoopState.GENERATING, messages=history)
        pending_calls: list[ToolUseBlock] = []

        def cancelled() -> bool:
            return cancel_event is not None and cancel_event.is_set()

        while True:
            match result.state:
                case LoopState.GENERATING:
                    if cancelled():
                        logger.info(f"Loop cancelled before model turn {result.turns + 1}")
                        result.state = LoopState.CANCELLED
                        continue

                    try:
                        if result.turns >= self.max_turns:
                            raise MaxTurnsExceededError(self.max_turns)
                        result.turns += 1
                        logger.debug(f"Model turn {result.turns}/{self.max_turns}")
                        turn = await self._generate(history, system_prompt, tools, callbacks, result)
                    except ConversationLoopError as e:
                        logger.warning(f"Conversation loop stopped: {e}")
                        result.error = e
                        result.state = LoopState.FAILED
                        continue
                    except Exception as e:
                        error = to_model_error(e)
                        logger.error(f"Model turn {result.turns} failed ({error.code}): {error}", exc_info=True)
                        result.error = error
                        result.state = LoopState.FAILED
                        continue

                    result.partial_text = ""
                    result.usage.accumulate(turn.usage)
                    result.stop_reason = turn.stop_reason

                    blocks: list[ContentBlock] = []
                    if turn.text:
                        blocks.append(TextBlock(text=turn.text))
                    blocks.extend(turn.tool_calls)
                    if blocks:
                        history.append(LLMMessage(role="assistant", content=blocks))

                    if callbacks.on_turn_end:
                        await callbacks.on_turn_end(turn)

                    if turn.wants_tools:
                        pending_calls = list(turn.tool_calls)
                        result.state = LoopState.AWAITING_TOOLS
                    else:
                        result.state = LoopState.DONE

                case LoopState.AWAITING_TOOLS:
                    tool_results: list[ContentBlock] = []
                    for call in pending_calls:
                        if cancelled():
                            logger.info(f"Loop cancelled; not starting tool {call.name} ({call.id})")
                            result.state = LoopState.CANCELLED
                            break

                        if callbacks.on_tool_call:
                            await callbacks.on_tool_call(call)
                        output, is_error = await execute_tool(call.name, call.input)
                        logger.info(f"Tool {call.name} ({call.id}) finished, is_error={is_error}")
                        if callbacks.on_tool_result:
                            await callbacks.on_tool_result(call, output, is_error)

                        tool_results.append(
                            ToolResultBlock(tool_use_id=call.id, content=format_tool_output(output), is_error=is_error)
                        )

                    if tool_results:
                        history.append(LLMMessage(role="user", content=tool_results))
                    pending_calls = []
                    if result.state is not LoopState.CANCELLED:
                        result.state = LoopState.GENERATING

                case LoopState.DONE | LoopState.FAILED | LoopState.CANCELLED:
                    logger.info(
                        f"Loop finished: state={result.state}, turns={result.turns}, "
                        f"input_tokens={result.usage.input_tokens}, output_tokens={result.usage.output_tokens}"
                    )
                    return result

    async def _generate(
        self,
        history: list[LLMMessage],
        system_prompt: str,
        tools: list[LLMToolDefinition],
        callbacks: LoopCallbacks,
        result: LoopResult,
    ) -> TurnRecord:
        """Run one model call, forwarding text as it arrives."""
        text_parts: list[str] = []
        tool_calls: list[ToolUseBlock] = []
        complete: MessageComplete | None = None

        try:
            async with asyncio.timeout(self.model_timeout_seconds):
                stream = self.model.stream_message(history, system_prompt, tools or None)
                async with aclosing(stream):
                    async for delta in stream:
                        match delta:
                            case TextDelta(text=text):
                                text_parts.append(text)
                                result.text += text
                                result.partial_text += text
                                if callbacks.on_text:
                                    await callbacks.on_text(text)
                            case ToolCallDelta(tool_use=tool_use):
                                tool_calls.append(tool_use)
                            case MessageComplete():
                                complete = delta
        except TimeoutError as e:
            raise ModelTimeoutError(self.model_timeout_seconds) from e

        if complete is None:
            complete = MessageComplete(stop_reason=None, usage=LLMUsage())
            logger.warning("Model stream ended without a completion marker")

        return TurnRecord(
            text="".join(text_parts),
            tool_calls=tool_calls,
            usage=complete.usage,
            stop_reason=complete.stop_reason,
        )
