"""Rebuild model turns from the flat, persisted message log."""

import json

from flynn.models.conversation import ConversationMessage
from flynn.models.llm import ContentBlock, LLMMessage, TextBlock, ToolResultBlock, ToolUseBlock
from flynn.utils.logging import get_logger

logger = get_logger(__name__)


def reconcile_messages(messages: list[ConversationMessage]) -> list[LLMMessage]:
    """Group stored rows into alternating user/assistant turns.

    Assistant text and tool calls accumulate into one assistant turn until a
    user-side row (a user message or a tool result) closes it. Consecutive
    tool results accumulate into one user turn. A tool call that follows a
    tool result closes that user turn first, since each tool exchange is
    written as a call row directly followed by its result row. Plain user
    messages always become their own string-content turn.
    """
    result: list[LLMMessage] = []
    assistant_blocks: list[ContentBlock] = []
    tool_results: list[ContentBlock] = []

    def flush_assistant() -> None:
        if assistant_blocks:
            result.append(LLMMessage(role="assistant", content=list(assistant_blocks)))
            assistant_blocks.clear()

    def flush_tool_results() -> None:
        if tool_results:
            result.append(LLMMessage(role="user", content=list(tool_results)))
            tool_results.clear()

    for message in messages:
        match message.role:
            case "user":
                flush_assistant()
                flush_tool_results()
                result.append(LLMMessage(role="user", content=message.content))

            case "assistant":
                flush_tool_results()
                assistant_blocks.append(TextBlock(text=message.content))

            case "tool_call":
                flush_tool_results()
                try:
                    payload = json.loads(message.content)
                    assistant_blocks.append(
                        ToolUseBlock(
                            id=payload["id"],
                            name=message.tool_name or "unknown",
                            input=payload.get("input") or {},
                        )
                    )
                except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
                    logger.warning(f"Dropping malformed tool_call row {message.id}: {e}")

            case "tool_result":
                flush_assistant()
                tool_results.append(
                    ToolResultBlock(
                        tool_use_id=message.tool_call_id or "",
                        content=message.content,
                        is_error=message.is_error,
                    )
                )

    flush_assistant()
    flush_tool_results()
    return result
