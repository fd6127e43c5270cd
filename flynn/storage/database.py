"""SQLite database connection manager with schema migration."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import aiosqlite

from flynn.utils.logging import get_logger

logger = get_logger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS families (
    id              TEXT PRIMARY KEY,
    name            TEXT NOT NULL,
    created_at      TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS children (
    id              TEXT PRIMARY KEY,
    family_id       TEXT NOT NULL REFERENCES families(id) ON DELETE CASCADE,
    name            TEXT NOT NULL,
    birth_date      TEXT,
    created_at      TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS caregivers (
    id              TEXT PRIMARY KEY,
    family_id       TEXT NOT NULL REFERENCES families(id) ON DELETE CASCADE,
    name            TEXT NOT NULL,
    email           TEXT NOT NULL UNIQUE,
    role            TEXT NOT NULL,
    created_at      TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS therapists (
    id              TEXT PRIMARY KEY,
    name            TEXT NOT NULL,
    email           TEXT NOT NULL UNIQUE,
    created_at      TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS therapist_clients (
    therapist_id    TEXT NOT NULL REFERENCES therapists(id) ON DELETE CASCADE,
    child_id        TEXT NOT NULL REFERENCES children(id) ON DELETE CASCADE,
    granted_at      TEXT NOT NULL,
    PRIMARY KEY (therapist_id, child_id)
);

CREATE TABLE IF NOT EXISTS goals (
    id              TEXT PRIMARY KEY,
    child_id        TEXT NOT NULL REFERENCES children(id) ON DELETE CASCADE,
    therapy_type    TEXT NOT NULL,
    title           TEXT NOT NULL,
    description     TEXT,
    target_date     TEXT,
    criteria        TEXT,
    status          TEXT NOT NULL DEFAULT 'active'
                    CHECK(status IN ('active','completed','paused')),
    progress        INTEGER NOT NULL DEFAULT 0,
    created_at      TEXT NOT NULL,
    updated_at      TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_goals_child ON goals(child_id, status);

CREATE TABLE IF NOT EXISTS notes (
    id              TEXT PRIMARY KEY,
    child_id        TEXT NOT NULL REFERENCES children(id) ON DELETE CASCADE,
    author_id       TEXT NOT NULL,
    note_type       TEXT NOT NULL
                    CHECK(note_type IN ('observation','milestone','concern','general')),
    content         TEXT NOT NULL,
    created_at      TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS therapy_sessions (
    id               TEXT PRIMARY KEY,
    child_id         TEXT NOT NULL REFERENCES children(id) ON DELETE CASCADE,
    therapist_id     TEXT REFERENCES therapists(id) ON DELETE SET NULL,
    therapy_type     TEXT NOT NULL CHECK(therapy_type IN ('ABA','OT','SLP','other')),
    session_date     TEXT NOT NULL,
    duration_minutes INTEGER,
    notes            TEXT,
    goals_worked_on  TEXT NOT NULL DEFAULT '[]',
    created_at       TEXT NOT NULL,
    updated_at       TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_sessions_child ON therapy_sessions(child_id, session_date);

CREATE TABLE IF NOT EXISTS conversations (
    id              TEXT PRIMARY KEY,
    caregiver_id    TEXT NOT NULL REFERENCES caregivers(id) ON DELETE CASCADE,
    child_id        TEXT REFERENCES children(id) ON DELETE SET NULL,
    title           TEXT,
    created_at      TEXT NOT NULL,
    updated_at      TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_conversations_caregiver
    ON conversations(caregiver_id, updated_at);

CREATE TABLE IF NOT EXISTS conversation_messages (
    id              TEXT PRIMARY KEY,
    conversation_id TEXT NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
    role            TEXT NOT NULL CHECK(role IN ('user','assistant','tool_call','tool_result')),
    content         TEXT NOT NULL,
    tool_name       TEXT,
    tool_call_id    TEXT,
    input_tokens    INTEGER,
    output_tokens   INTEGER,
    is_error        INTEGER NOT NULL DEFAULT 0,
    created_at      TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_messages_conversation
    ON conversation_messages(conversation_id, created_at);
"""


class Database:
    """Async SQLite database manager.

    All repositories share one connection, and sqlite3 keeps a single implicit
    transaction per connection. Writes go through ``transaction()``, which
    holds ``lock`` from the first statement to the commit or rollback.
    """

    def __init__(self, db_path: str):
        self._db_path = db_path
        self._conn: aiosqlite.Connection | None = None
        self.lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Open connection and run migrations."""
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(self._db_path)
        self._conn.row_factory = aiosqlite.Row
        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.execute("PRAGMA foreign_keys=ON")
        await self._conn.executescript(SCHEMA_SQL)
        await self._conn.commit()
        logger.info(f"Database initialized at {self._db_path}")

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        return self._conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Serialized write: commit on success, roll back and re-raise on error."""
        async with self.lock:
            conn = self.conn
            try:
                yield conn
            except BaseException:
                await conn.rollback()
                raise
            await conn.commit()

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None
            logger.info("Database closed")
