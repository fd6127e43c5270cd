"""Tests for storage and the persistence writer."""

import asyncio
import json

import aiosqlite
import pytest

from flynn.models.llm import LLMUsage, ToolUseBlock
from flynn.services.persistence import PersistenceWriter, generate_title


class TestGenerateTitle:
    """Title derivation from the opening message."""

    def test_short_message_unchanged(self):
        """Test that messages up to 50 characters are used as-is."""
        assert generate_title("How is Emma doing?") == "How is Emma doing?"

    def test_whitespace_collapsed(self):
        """Test that runs of whitespace collapse to single spaces and ends are trimmed."""
        assert generate_title("  How   is\n\nEmma\tdoing?  ") == "How is Emma doing?"

    def test_exactly_fifty_characters(self):
        """Test the boundary length."""
        message = "a" * 50
        assert generate_title(message) == message

    def test_long_message_cut_at_word_boundary(self):
        """Test that long messages cut back to the last space past index 20."""
        message = "Can you tell me how Emma has been doing with her two word phrases lately?"
        title = generate_title(message)

        assert title == "Can you tell me how Emma has been doing with her..."
        assert len(title) <= 53

    def test_long_message_without_late_space(self):
        """Test that a hard cut at 50 is used when no space lies beyond index 20."""
        message = "Hello " + "x" * 60
        assert generate_title(message) == ("Hello " + "x" * 44) + "..."


class TestConversationRepository:
    """Ordering and atomic tool exchanges."""

    @pytest.mark.asyncio
    async def test_messages_keep_insertion_order(self, seeded, conversation_repo):
        """Test that rows come back in write order."""
        conversation = await conversation_repo.create_conversation("cg1", "c1")
        for index in range(5):
            await conversation_repo.append_message(conversation.id, "user", f"m{index}")

        messages = await conversation_repo.list_messages(conversation.id)

        assert [m.content for m in messages] == ["m0", "m1", "m2", "m3", "m4"]
        assert await conversation_repo.count_messages(conversation.id) == 5

    @pytest.mark.asyncio
    async def test_pagination(self, seeded, conversation_repo):
        """Test limit/offset paging."""
        conversation = await conversation_repo.create_conversation("cg1")
        for index in range(5):
            await conversation_repo.append_message(conversation.id, "user", f"m{index}")

        page = await conversation_repo.list_messages(conversation.id, limit=2, offset=2)

        assert [m.content for m in page] == ["m2", "m3"]

    @pytest.mark.asyncio
    async def test_delete_cascades(self, seeded, conversation_repo):
        """Test that deleting a conversation removes its messages."""
        conversation = await conversation_repo.create_conversation("cg1")
        await conversation_repo.append_message(conversation.id, "user", "hi")

        assert await conversation_repo.delete_conversation(conversation.id) is True
        assert await conversation_repo.delete_conversation(conversation.id) is False
        assert await conversation_repo.count_messages(conversation.id) == 0

    @pytest.mark.asyncio
    async def test_list_conversations_newest_update_first(self, seeded, conversation_repo):
        """Test that touching a conversation moves it to the front."""
        first = await conversation_repo.create_conversation("cg1")
        second = await conversation_repo.create_conversation("cg1")
        await conversation_repo.touch_conversation(first.id, title="Updated")

        listed = await conversation_repo.list_conversations("cg1")

        assert [c.id for c in listed] == [first.id, second.id]
        assert listed[0].title == "Updated"


class TestDatabaseTransactions:
    """Writes sharing the single connection."""

    @pytest.mark.asyncio
    async def test_rollback_keeps_other_writers_rows(self, db, seeded, conversation_repo):
        """Test that a writer waiting on an open transaction is not discarded by its rollback."""
        conversation = await conversation_repo.create_conversation("cg1")
        opened = asyncio.Event()

        async def doomed_write():
            async with db.transaction() as conn:
                await conn.execute(
                    """INSERT INTO conversation_messages (id, conversation_id, role, content, created_at)
                       VALUES ('doomed', ?, 'user', 'lost', '2026-01-01T00:00:00+00:00')""",
                    (conversation.id,),
                )
                opened.set()
                await asyncio.sleep(0.01)
                raise RuntimeError("boom")

        async def other_write():
            await opened.wait()
            return await conversation_repo.append_message(conversation.id, "user", "kept")

        failed, stored = await asyncio.gather(doomed_write(), other_write(), return_exceptions=True)

        assert isinstance(failed, RuntimeError)
        rows = await conversation_repo.list_messages(conversation.id)
        assert [r.id for r in rows] == [stored.id]
        assert rows[0].content == "kept"
        assert not db.lock.locked()

    @pytest.mark.asyncio
    async def test_failed_tool_exchange_alongside_other_conversation(self, seeded, conversation_repo):
        """Test that a rejected exchange for one conversation leaves a concurrent append intact."""
        conversation = await conversation_repo.create_conversation("cg1")

        failed, stored = await asyncio.gather(
            conversation_repo.append_tool_exchange("no-such-conversation", "get_child", "tu_1", "{}", "{}"),
            conversation_repo.append_message(conversation.id, "user", "still here"),
            return_exceptions=True,
        )

        assert isinstance(failed, aiosqlite.IntegrityError)
        assert [r.content for r in await conversation_repo.list_messages(conversation.id)] == ["still here"]
        assert await conversation_repo.count_messages("no-such-conversation") == 0


class TestPersistenceWriter:
    """Guarded writes."""

    @pytest.mark.asyncio
    async def test_tool_exchange_rows(self, seeded, conversation_repo):
        """Test the stored tool_call and tool_result payloads."""
        conversation = await conversation_repo.create_conversation("cg1")
        writer = PersistenceWriter(conversation_repo, conversation.id)
        call = ToolUseBlock(id="tu_1", name="get_child", input={"childId": "c1"})

        await writer.record_tool_exchange(call, {"name": "Emma"}, False)
        await writer.record_tool_exchange(
            ToolUseBlock(id="tu_2", name="get_child", input={"childId": "c2"}), "unauthorized: no", True
        )

        rows = await conversation_repo.list_messages(conversation.id)
        assert [r.role for r in rows] == ["tool_call", "tool_result", "tool_call", "tool_result"]
        assert json.loads(rows[0].content) == {"id": "tu_1", "input": {"childId": "c1"}}
        assert rows[0].tool_name == "get_child"
        assert rows[0].tool_call_id == "tu_1"
        assert json.loads(rows[1].content) == {"name": "Emma"}
        assert rows[1].tool_call_id == "tu_1"
        assert rows[3].content == "unauthorized: no"
        assert [r.is_error for r in rows] == [False, False, False, True]

    @pytest.mark.asyncio
    async def test_assistant_text_with_usage(self, seeded, conversation_repo):
        """Test that usage is stored on assistant rows and empty text is skipped."""
        conversation = await conversation_repo.create_conversation("cg1")
        writer = PersistenceWriter(conversation_repo, conversation.id)

        assert await writer.record_assistant_text("") is None
        row = await writer.record_assistant_text("Hi", LLMUsage(input_tokens=12, output_tokens=4))

        assert row.input_tokens == 12
        assert row.output_tokens == 4
        assert await conversation_repo.count_messages(conversation.id) == 1

    @pytest.mark.asyncio
    async def test_finalize_sets_title_for_new_conversation(self, seeded, conversation_repo):
        """Test that the first exchange titles an untitled conversation."""
        conversation = await conversation_repo.create_conversation("cg1")
        writer = PersistenceWriter(conversation_repo, conversation.id, is_new_conversation=True)

        await writer.finalize(title_source="What should   we work on next?")

        stored = await conversation_repo.get_conversation(conversation.id)
        assert stored.title == "What should we work on next?"
        assert stored.updated_at >= conversation.updated_at

    @pytest.mark.asyncio
    async def test_finalize_keeps_existing_title(self, seeded, conversation_repo):
        """Test that later exchanges and explicit titles are left alone."""
        conversation = await conversation_repo.create_conversation("cg1", title="Speech goals")
        writer = PersistenceWriter(conversation_repo, conversation.id, is_new_conversation=True)

        await writer.finalize(title_source="Something else", current_title=conversation.title)

        stored = await conversation_repo.get_conversation(conversation.id)
        assert stored.title == "Speech goals"

    @pytest.mark.asyncio
    async def test_write_failures_are_swallowed(self, seeded, conversation_repo):
        """Test that a failing store never raises out of the writer."""

        class BrokenRepo:
            async def append_message(self, *args, **kwargs):
                raise RuntimeError("disk full")

            async def append_tool_exchange(self, *args, **kwargs):
                raise RuntimeError("disk full")

            async def touch_conversation(self, *args, **kwargs):
                raise RuntimeError("disk full")

        writer = PersistenceWriter(BrokenRepo(), "conv-x", is_new_conversation=True)

        assert await writer.record_user_message("hi") is None
        assert await writer.record_assistant_text("hello") is None
        await writer.record_tool_exchange(ToolUseBlock(id="t", name="n", input={}), "r", False)
        await writer.finalize(title_source="hi")

        assert writer.failed_writes == 4
