"""Durable, append-only recording of everything a conversation turn produces."""

import json
import re
from typing import Any

from flynn.models.conversation import ConversationMessage
from flynn.models.llm import LLMUsage, ToolUseBlock
from flynn.storage.conversation_repo import ConversationRepository
from flynn.utils.logging import get_logger

logger = get_logger(__name__)

TITLE_MAX_LENGTH = 50
TITLE_MIN_WORD_BREAK = 20


def generate_title(message: str) -> str:
    """Conversation title from its opening message.

    Whitespace is collapsed. Long messages are cut at 50 characters, backing
    up to the last word boundary when one exists past the 20th character.
    """
    cleaned = re.sub(r"\s+", " ", message).strip()
    if len(cleaned) <= TITLE_MAX_LENGTH:
        return cleaned

    truncated = cleaned[:TITLE_MAX_LENGTH]
    last_space = truncated.rfind(" ")
    if last_space > TITLE_MIN_WORD_BREAK:
        truncated = truncated[:last_space]
    return truncated + "..."


def serialize_tool_result(result: Any) -> str:
    if isinstance(result, str):
        return result
    return json.dumps(result, default=str)


class PersistenceWriter:
    """Writes one exchange's rows for a single conversation.

    Every write is guarded on its own: a failed write is logged and
    swallowed so the live stream keeps going and nothing is re-executed.
    """

    def __init__(self, repo: ConversationRepository, conversation_id: str, is_new_conversation: bool = False):
        self.repo = repo
        self.conversation_id = conversation_id
        self.is_new_conversation = is_new_conversation
        self.failed_writes = 0

    async def record_user_message(self, content: str) -> ConversationMessage | None:
        try:
            return await self.repo.append_message(self.conversation_id, "user", content)
        except Exception as e:
            self._write_failed("user message", e)
            return None

    async def record_assistant_text(self, text: str, usage: LLMUsage | None = None) -> ConversationMessage | None:
        if not text:
            return None
        try:
            return await self.repo.append_message(
                self.conversation_id,
                "assistant",
                text,
                input_tokens=usage.input_tokens if usage else None,
                output_tokens=usage.output_tokens if usage else None,
            )
        except Exception as e:
            self._write_failed("assistant text", e)
            return None

    async def record_tool_exchange(self, call: ToolUseBlock, result: Any, is_error: bool) -> None:
        """Record a tool call and its outcome. Called after the tool has run."""
        try:
            await self.repo.append_tool_exchange(
                self.conversation_id,
                tool_name=call.name,
                tool_call_id=call.id,
                call_content=json.dumps({"id": call.id, "input": call.input}, default=str),
                result_content=serialize_tool_result(result),
                is_error=is_error,
            )
        except Exception as e:
            self._write_failed(f"tool exchange {call.name} ({call.id}, is_error={is_error})", e)

    async def finalize(self, title_source: str | None = None, current_title: str | None = None) -> None:
        """Refresh updated_at; give a brand-new untitled conversation a title."""
        title = None
        if self.is_new_conversation and not current_title and title_source:
            title = generate_title(title_source) or None
        try:
            await self.repo.touch_conversation(self.conversation_id, title=title)
        except Exception as e:
            self._write_failed("conversation update", e)

    def _write_failed(self, what: str, error: Exception) -> None:
        self.failed_writes += 1
        logger.error(f"Failed to persist {what} for conversation {self.conversation_id}: {error}", exc_info=True)
