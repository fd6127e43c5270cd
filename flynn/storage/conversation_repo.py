"""Conversation repository: conversations and their append-only message log."""

from datetime import UTC, datetime

from cuid2 import cuid_wrapper

from flynn.models.conversation import Conversation, ConversationMessage, MessageRole
from flynn.storage.database import Database

cuid = cuid_wrapper()


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


class ConversationRepository:
    """CRUD over conversations plus append/read of conversation messages."""

    def __init__(self, db: Database):
        self._db = db

    async def create_conversation(
        self, caregiver_id: str, child_id: str | None = None, title: str | None = None
    ) -> Conversation:
        """Create a conversation and return it."""
        now = utc_now()
        conversation = Conversation(
            id=cuid(),
            caregiver_id=caregiver_id,
            child_id=child_id,
            title=title,
            created_at=now,
            updated_at=now,
        )
        async with self._db.transaction() as conn:
            await conn.execute(
                """INSERT INTO conversations (id, caregiver_id, child_id, title, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    conversation.id,
                    conversation.caregiver_id,
                    conversation.child_id,
                    conversation.title,
                    now.isoformat(),
                    now.isoformat(),
                ),
            )
        return conversation

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        cursor = await self._db.conn.execute("SELECT * FROM conversations WHERE id = ?", (conversation_id,))
        row = await cursor.fetchone()
        return self._row_to_conversation(row) if row else None

    async def list_conversations(
        self, caregiver_id: str, child_id: str | None = None, limit: int = 20, offset: int = 0
    ) -> list[Conversation]:
        """List a caregiver's conversations, most recently updated first."""
        if child_id:
            cursor = await self._db.conn.execute(
                """SELECT * FROM conversations
                   WHERE caregiver_id = ? AND child_id = ?
                   ORDER BY updated_at DESC
                   LIMIT ? OFFSET ?""",
                (caregiver_id, child_id, limit, offset),
            )
        else:
            cursor = await self._db.conn.execute(
                """SELECT * FROM conversations
                   WHERE caregiver_id = ?
                   ORDER BY updated_at DESC
                   LIMIT ? OFFSET ?""",
                (caregiver_id, limit, offset),
            )
        rows = await cursor.fetchall()
        return [self._row_to_conversation(row) for row in rows]

    async def delete_conversation(self, conversation_id: str) -> bool:
        """Delete a conversation and its messages. Returns False if not found."""
        async with self._db.transaction() as conn:
            cursor = await conn.execute("DELETE FROM conversations WHERE id = ?", (conversation_id,))
        return cursor.rowcount > 0

    async def touch_conversation(self, conversation_id: str, title: str | None = None) -> None:
        """Refresh updated_at, optionally setting the title."""
        now = utc_now().isoformat()
        async with self._db.transaction() as conn:
            if title is not None:
                await conn.execute(
                    "UPDATE conversations SET title = ?, updated_at = ? WHERE id = ?",
                    (title, now, conversation_id),
                )
            else:
                await conn.execute(
                    "UPDATE conversations SET updated_at = ? WHERE id = ?",
                    (now, conversation_id),
                )

    async def append_message(
        self,
        conversation_id: str,
        role: MessageRole,
        content: str,
        tool_name: str | None = None,
        tool_call_id: str | None = None,
        input_tokens: int | None = None,
        output_tokens: int | None = None,
    ) -> ConversationMessage:
        """Append one immutable message row."""
        message = ConversationMessage(
            id=cuid(),
            conversation_id=conversation_id,
            role=role,
            content=content,
            tool_name=tool_name,
            tool_call_id=tool_call_id,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            created_at=utc_now(),
        )
        async with self._db.transaction() as conn:
            await conn.execute(
                """INSERT INTO conversation_messages
                   (id, conversation_id, role, content, tool_name, tool_call_id,
                    input_tokens, output_tokens, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    message.id,
                    message.conversation_id,
                    message.role,
                    message.content,
                    message.tool_name,
                    message.tool_call_id,
                    message.input_tokens,
                    message.output_tokens,
                    message.created_at.isoformat(),
                ),
            )
        return message

    async def append_tool_exchange(
        self,
        conversation_id: str,
        tool_name: str,
        tool_call_id: str,
        call_content: str,
        result_content: str,
        is_error: bool = False,
    ) -> tuple[ConversationMessage, ConversationMessage]:
        """Append a tool_call row and its tool_result row in a single commit.

        ``is_error`` is stored on the tool_result row only.
        """
        rows = [
            ConversationMessage(
                id=cuid(),
                conversation_id=conversation_id,
                role=role,
                content=content,
                tool_name=tool_name,
                tool_call_id=tool_call_id,
                is_error=failed,
                created_at=utc_now(),
            )
            for role, content, failed in (
                ("tool_call", call_content, False),
                ("tool_result", result_content, is_error),
            )
        ]
        async with self._db.transaction() as conn:
            await conn.executemany(
                """INSERT INTO conversation_messages
                   (id, conversation_id, role, content, tool_name, tool_call_id, is_error, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                [
                    (
                        m.id,
                        m.conversation_id,
                        m.role,
                        m.content,
                        m.tool_name,
                        m.tool_call_id,
                        int(m.is_error),
                        m.created_at.isoformat(),
                    )
                    for m in rows
                ],
            )
        return rows[0], rows[1]

    async def list_messages(
        self, conversation_id: str, limit: int | None = None, offset: int = 0
    ) -> list[ConversationMessage]:
        """Messages in write order. Ties on created_at fall back to insertion order."""
        query = """SELECT * FROM conversation_messages
                   WHERE conversation_id = ?
                   ORDER BY created_at ASC, rowid ASC"""
        params: tuple = (conversation_id,)
        if limit is not None:
            query += " LIMIT ? OFFSET ?"
            params = (conversation_id, limit, offset)
        cursor = await self._db.conn.execute(query, params)
        rows = await cursor.fetchall()
        return [self._row_to_message(row) for row in rows]

    async def count_messages(self, conversation_id: str) -> int:
        cursor = await self._db.conn.execute(
            "SELECT COUNT(*) FROM conversation_messages WHERE conversation_id = ?", (conversation_id,)
        )
        row = await cursor.fetchone()
        return row[0]

    @staticmethod
    def _row_to_conversation(row) -> Conversation:
        return Conversation(
            id=row["id"],
            caregiver_id=row["caregiver_id"],
            child_id=row["child_id"],
            title=row["title"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    @staticmethod
    def _row_to_message(row) -> ConversationMessage:
        return ConversationMessage(
            id=row["id"],
            conversation_id=row["conversation_id"],
            role=row["role"],
            content=row["content"],
            tool_name=row["tool_name"],
            tool_call_id=row["tool_call_id"],
            input_tokens=row["input_tokens"],
            output_tokens=row["output_tokens"],
            is_error=bool(row["is_error"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        )
