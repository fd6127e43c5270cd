"""Shared fixtures: a temporary database, seeded family data and a scripted model."""

from collections.abc import AsyncIterator

import pytest
import pytest_asyncio

from flynn.models.llm import (
    LLMMessage,
    LLMToolDefinition,
    LLMUsage,
    MessageComplete,
    StreamDelta,
    TextDelta,
    ToolCallDelta,
    ToolUseBlock,
)
from flynn.services.authorization import StoreAuthorizationService
from flynn.storage.conversation_repo import ConversationRepository
from flynn.storage.database import Database
from flynn.storage.family_repo import FamilyRepository
from flynn.tools.base import ToolContext
from flynn.tools.registry import ToolExecutor, register_default_tools


def usage(input_tokens: int, output_tokens: int) -> LLMUsage:
    return LLMUsage(input_tokens=input_tokens, output_tokens=output_tokens, total_tokens=input_tokens + output_tokens)


def text_turn(*chunks: str, input_tokens: int = 10, output_tokens: int = 5) -> list[StreamDelta]:
    """A model turn that answers with text and ends."""
    return [
        *(TextDelta(text=c) for c in chunks),
        MessageComplete(stop_reason="end_turn", usage=usage(input_tokens, output_tokens)),
    ]


def tool_turn(
    *calls: tuple[str, str, dict], text: str = "", input_tokens: int = 20, output_tokens: int = 8
) -> list[StreamDelta]:
    """A model turn that asks for tools. ``calls`` are (id, name, input) tuples."""
    deltas: list[StreamDelta] = [TextDelta(text=text)] if text else []
    deltas.extend(ToolCallDelta(tool_use=ToolUseBlock(id=i, name=n, input=inp)) for i, n, inp in calls)
    deltas.append(MessageComplete(stop_reason="tool_use", usage=usage(input_tokens, output_tokens)))
    return deltas


class ScriptedModelProvider:
    """Model provider that replays pre-scripted turns.

    A turn is a list of deltas; an Exception inside the list is raised at
    that point of the stream.
    """

    def __init__(self, turns: list[list]):
        self.turns = list(turns)
        self.calls: list[dict] = []

    async def stream_message(
        self,
        messages: list[LLMMessage],
        system_prompt: str,
        tools: list[LLMToolDefinition] | None = None,
    ) -> AsyncIterator[StreamDelta]:
        self.calls.append({"messages": list(messages), "system_prompt": system_prompt, "tools": tools})
        if not self.turns:
            raise AssertionError("Model called more times than scripted")
        for item in self.turns.pop(0):
            if isinstance(item, Exception):
                raise item
            yield item


@pytest.fixture
def scripted_model():
    """Factory for ScriptedModelProvider."""
    return ScriptedModelProvider


@pytest_asyncio.fixture
async def db(tmp_path):
    """Fresh SQLite database per test."""
    database = Database(str(tmp_path / "flynn-test.db"))
    await database.initialize()
    yield database
    await database.close()


@pytest_asyncio.fixture
async def family_repo(db):
    return FamilyRepository(db)


@pytest_asyncio.fixture
async def conversation_repo(db):
    return ConversationRepository(db)


@pytest_asyncio.fixture
async def seeded(family_repo):
    """Two families.

    f1: caregiver cg1, child c1.
    f2: caregiver cg2, child c2; therapist t1 is assigned to c2.
    """
    await family_repo.create_family("Rivera", family_id="f1")
    await family_repo.create_family("Chen", family_id="f2")
    await family_repo.create_caregiver("f1", "Ana Rivera", "ana@example.com", caregiver_id="cg1")
    await family_repo.create_caregiver("f2", "Wei Chen", "wei@example.com", caregiver_id="cg2")
    await family_repo.create_child("f1", "Emma", birth_date="2021-03-14", child_id="c1")
    await family_repo.create_child("f2", "Leo", birth_date="2022-07-01", child_id="c2")
    await family_repo.create_therapist("Dr. Patel", "patel@example.com", therapist_id="t1")
    await family_repo.assign_therapist("t1", "c2")
    return family_repo


@pytest.fixture
def authorization(family_repo):
    return StoreAuthorizationService(family_repo)


@pytest.fixture
def tool_executor(family_repo, authorization):
    executor = ToolExecutor(tool_timeout_seconds=5.0)
    register_default_tools(executor, family_repo, authorization)
    return executor


@pytest.fixture
def caregiver_context():
    return ToolContext(user_id="cg1", conversation_id="conv-1")
