"""Chat service: conversations plus the "send a message" exchange."""

import asyncio
from typing import Any

from flynn.models.conversation import Conversation, ConversationMessage
from flynn.models.llm import LLMMessage, LLMUsage, ModelProvider, ToolUseBlock
from flynn.services.conversation_loop import (
    DEFAULT_MAX_TURNS,
    DEFAULT_MODEL_TIMEOUT_SECONDS,
    ConversationLoopDriver,
    LoopCallbacks,
    LoopState,
    TurnRecord,
)
from flynn.services.errors import CaregiverNotFoundError, ConversationNotFoundError
from flynn.services.persistence import PersistenceWriter
from flynn.services.prompts import build_full_context_prompt
from flynn.services.reconciler import reconcile_messages
from flynn.services.stream_emitter import StreamEventEmitter
from flynn.storage.conversation_repo import ConversationRepository
from flynn.storage.family_repo import FamilyRepository
from flynn.tools.base import ToolContext
from flynn.tools.errors import ChildNotFoundError, UnauthorizedError
from flynn.tools.registry import ToolExecutor
from flynn.utils.logging import get_logger

logger = get_logger(__name__)

NOT_CONFIGURED_MESSAGE = (
    "I'm sorry, the AI service is not configured right now, so I can't answer. "
    "Please ask your administrator to set ANTHROPIC_API_KEY."
)


class ChatService:
    """Owns conversation CRUD and adapts each sent message into one loop run."""

    def __init__(
        self,
        conversation_repo: ConversationRepository,
        family_repo: FamilyRepository,
        tool_executor: ToolExecutor,
        model: ModelProvider | None = None,
        max_turns: int = DEFAULT_MAX_TURNS,
        model_timeout_seconds: float = DEFAULT_MODEL_TIMEOUT_SECONDS,
    ):
        self.conversation_repo = conversation_repo
        self.family_repo = family_repo
        self.tool_executor = tool_executor
        self.model = model
        self.max_turns = max_turns
        self.model_timeout_seconds = model_timeout_seconds
        self._tasks: set[asyncio.Task] = set()

    # Conversations

    async def create_conversation(
        self, caregiver_id: str, child_id: str | None = None, title: str | None = None
    ) -> Conversation:
        caregiver = await self.family_repo.get_caregiver(caregiver_id)
        if caregiver is None:
            raise CaregiverNotFoundError(caregiver_id)

        if child_id:
            child = await self.family_repo.get_child(child_id)
            if child is None:
                raise ChildNotFoundError(child_id)
            if child.family_id != caregiver.family_id:
                raise UnauthorizedError()

        conversation = await self.conversation_repo.create_conversation(caregiver_id, child_id, title)
        logger.info(f"Created conversation {conversation.id} for caregiver {caregiver_id}")
        return conversation

    async def get_conversation(self, conversation_id: str) -> Conversation:
        conversation = await self.conversation_repo.get_conversation(conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(conversation_id)
        return conversation

    async def list_conversations(
        self, caregiver_id: str, child_id: str | None = None, limit: int = 20, offset: int = 0
    ) -> list[Conversation]:
        return await self.conversation_repo.list_conversations(caregiver_id, child_id, limit, offset)

    async def delete_conversation(self, conversation_id: str) -> None:
        if not await self.conversation_repo.delete_conversation(conversation_id):
            raise ConversationNotFoundError(conversation_id)
        logger.info(f"Deleted conversation {conversation_id}")

    async def list_messages(
        self, conversation_id: str, limit: int | None = None, offset: int = 0
    ) -> list[ConversationMessage]:
        await self.get_conversation(conversation_id)
        return await self.conversation_repo.list_messages(conversation_id, limit, offset)

    # Messaging

    async def start_exchange(self, conversation_id: str, content: str) -> StreamEventEmitter:
        """Validate the conversation, then run the exchange in a tracked background task.

        The task is independent of the HTTP response, so a client disconnect
        only sets the emitter's cancel event and never interrupts a running tool.
        """
        conversation = await self.get_conversation(conversation_id)
        emitter = StreamEventEmitter()
        task = asyncio.create_task(self.send_message(conversation, content, emitter))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return emitter

    async def wait_for_pending(self) -> None:
        """Let in-flight exchanges finish (used on shutdown)."""
        if self._tasks:
            logger.info(f"Waiting for {len(self._tasks)} in-flight exchanges")
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def send_message(self, conversation: Conversation, content: str, emitter: StreamEventEmitter) -> None:
        """Run one user message through the loop, streaming to ``emitter`` and persisting every unit."""
        writer: PersistenceWriter | None = None
        try:
            history = await self.conversation_repo.list_messages(conversation.id)
            writer = PersistenceWriter(self.conversation_repo, conversation.id, is_new_conversation=not history)
            await writer.record_user_message(content)

            if self.model is None:
                logger.warning("No model provider configured; sending fallback reply")
                await emitter.send_text(NOT_CONFIGURED_MESSAGE)
                await writer.record_assistant_text(NOT_CONFIGURED_MESSAGE)
                await emitter.send_done(LLMUsage(), "end_turn")
                return

            await self._run_loop(conversation, content, history, writer, emitter)

        except Exception as e:
            logger.error(f"Exchange failed for conversation {conversation.id}: {e}", exc_info=True)
            await emitter.send_error("An unexpected error occurred", "INTERNAL_ERROR", retryable=True)
        finally:
            if writer is not None:
                await writer.finalize(title_source=content, current_title=conversation.title)
            emitter.close()

    async def _run_loop(
        self,
        conversation: Conversation,
        content: str,
        history: list[ConversationMessage],
        writer: PersistenceWriter,
        emitter: StreamEventEmitter,
    ) -> None:
        caregiver = await self.family_repo.get_caregiver(conversation.caregiver_id)
        child = await self.family_repo.get_child(conversation.child_id) if conversation.child_id else None

        messages = reconcile_messages(history)
        messages.append(LLMMessage(role="user", content=content))
        system_prompt = build_full_context_prompt(
            caregiver=caregiver, child=child, available_tools=self.tool_executor.get_tool_names()
        )

        context = ToolContext(
            user_id=conversation.caregiver_id,
            conversation_id=conversation.id,
            child_id=conversation.child_id,
            family_id=caregiver.family_id if caregiver else None,
        )

        final_turn: list[TurnRecord] = []

        async def on_turn_end(turn: TurnRecord) -> None:
            if turn.wants_tools:
                await writer.record_assistant_text(turn.text)
            else:
                final_turn.append(turn)

        async def on_tool_result(call: ToolUseBlock, result: Any, is_error: bool) -> None:
            await writer.record_tool_exchange(call, result, is_error)
            await emitter.send_tool_result(call.id, result, is_error)

        callbacks = LoopCallbacks(
            on_text=emitter.send_text,
            on_tool_call=emitter.send_tool_call,
            on_tool_result=on_tool_result,
            on_turn_end=on_turn_end,
        )

        driver = ConversationLoopDriver(
            self.model, max_turns=self.max_turns, model_timeout_seconds=self.model_timeout_seconds
        )
        result = await driver.run(
            messages,
            system_prompt,
            self.tool_executor.get_tool_definitions(),
            self.tool_executor.create_executor(context),
            callbacks=callbacks,
            cancel_event=emitter.cancel_event,
        )

        match result.state:
            case LoopState.DONE:
                logger.info(
                    f"Exchange for conversation {conversation.id} done in {result.turns} turns: "
                    f"{result.usage.input_tokens} in / {result.usage.output_tokens} out tokens, "
                    f"cache hit rate {result.usage.cache_hit_rate:.1f}%"
                )
                if final_turn:
                    await writer.record_assistant_text(final_turn[-1].text, result.usage)
                await emitter.send_done(result.usage, result.stop_reason)
            case LoopState.FAILED:
                await writer.record_assistant_text(result.partial_text)
                message = getattr(result.error, "message", None) or str(result.error)
                await emitter.send_error(message, result.error_code, result.retryable)
            case LoopState.CANCELLED:
                logger.info(f"Exchange for conversation {conversation.id} cancelled after {result.turns} turns")
