"""Tests for data models."""

import json
from datetime import UTC, datetime

import pytest
from pydantic import ValidationError

from flynn.models.conversation import (
    Conversation,
    ConversationMessage,
    CreateConversationRequest,
    HealthResponse,
    SendMessageRequest,
)
from flynn.models.llm import LLMMessage, LLMUsage, TextBlock, ToolResultBlock, ToolUseBlock
from flynn.tools.children import ChildInput
from flynn.tools.goals import CreateGoalInput, ListGoalsInput
from flynn.tools.notes import AddNoteInput


class TestConversationModels:
    """Tests for conversation request/response models."""

    def test_create_conversation_request_from_json(self):
        """Test camelCase request parsing."""
        data = json.loads('{"caregiverId": "cg1", "childId": "c1", "title": "Speech"}')

        request = CreateConversationRequest.model_validate(data)

        assert request.caregiver_id == "cg1"
        assert request.child_id == "c1"
        assert request.title == "Speech"

    def test_create_conversation_request_by_field_name(self):
        """Test that snake_case field names are accepted too."""
        request = CreateConversationRequest(caregiver_id="cg1")
        assert request.child_id is None

    def test_create_conversation_request_requires_caregiver(self):
        """Test that caregiverId is required and non-empty."""
        with pytest.raises(ValidationError):
            CreateConversationRequest.model_validate({})
        with pytest.raises(ValidationError):
            CreateConversationRequest.model_validate({"caregiverId": ""})

    def test_send_message_request_bounds(self):
        """Test message content length limits."""
        assert SendMessageRequest(content="Hi").content == "Hi"

        with pytest.raises(ValidationError):
            SendMessageRequest(content="")
        with pytest.raises(ValidationError):
            SendMessageRequest(content="x" * 10001)

    def test_conversation_serializes_with_aliases(self):
        """Test that API output uses camelCase keys."""
        now = datetime.now(UTC)
        conversation = Conversation(id="conv1", caregiver_id="cg1", created_at=now, updated_at=now)

        dumped = conversation.model_dump(by_alias=True)

        assert dumped["caregiverId"] == "cg1"
        assert dumped["childId"] is None
        assert dumped["createdAt"] == now

    def test_conversation_message_invalid_role(self):
        """Test that only the four stored roles are accepted."""
        now = datetime.now(UTC)
        with pytest.raises(ValidationError):
            ConversationMessage(id="m1", conversation_id="conv1", role="system", content="x", created_at=now)

    def test_health_response_valid(self):
        """Test valid health response."""
        now = datetime.now(UTC)
        response = HealthResponse(status="healthy", timestamp=now, version="1.0.0")
        assert response.status == "healthy"
        assert response.timestamp == now


class TestLLMModels:
    """Tests for LLM-related models."""

    def test_llm_message_content_blocks(self):
        """Test LLM message with content blocks."""
        message = LLMMessage(
            role="assistant",
            content=[TextBlock(text="Checking"), ToolUseBlock(id="tu_1", name="get_child", input={"childId": "c1"})],
        )

        assert message.content[0].text == "Checking"
        assert message.content[1].name == "get_child"

    def test_tool_result_block_defaults(self):
        """Test tool result block defaults."""
        block = ToolResultBlock(tool_use_id="tu_1", content="Success")
        assert block.type == "tool_result"
        assert block.is_error is False

    def test_content_blocks_from_anthropic_json(self):
        """Test parsing Anthropic content blocks with extra fields."""
        anthropic_content = [
            {"citations": None, "text": "Let me look up Emma's goals.", "type": "text"},
            {
                "id": "toolu_01A09q90qw90lq917835lq9",
                "input": {"childId": "c1", "status": "active"},
                "name": "list_goals",
                "type": "tool_use",
            },
        ]

        text_block = TextBlock.model_validate(anthropic_content[0])
        tool_block = ToolUseBlock.model_validate(anthropic_content[1])

        assert "Emma" in text_block.text
        assert tool_block.name == "list_goals"
        assert tool_block.input["status"] == "active"

    def test_usage_accumulate(self):
        """Test that usage sums across calls."""
        total = LLMUsage()
        total.accumulate(LLMUsage(input_tokens=100, output_tokens=20, total_tokens=120))
        total.accumulate(LLMUsage(input_tokens=150, output_tokens=30, total_tokens=180, cache_read_input_tokens=50))

        assert (total.input_tokens, total.output_tokens, total.total_tokens) == (250, 50, 300)
        assert total.cache_hit_rate == pytest.approx(50 / 300 * 100)

    def test_cache_hit_rate_empty(self):
        """Test the zero-input case."""
        assert LLMUsage().cache_hit_rate == 0.0


class TestToolInputModels:
    """Tests for tool input validation models."""

    def test_child_input_alias(self):
        """Test that childId is accepted and required."""
        assert ChildInput.model_validate({"childId": "c1"}).child_id == "c1"

        with pytest.raises(ValidationError):
            ChildInput.model_validate({})
        with pytest.raises(ValidationError):
            ChildInput.model_validate({"childId": ""})

    def test_list_goals_status(self):
        """Test the optional status filter."""
        assert ListGoalsInput.model_validate({"childId": "c1"}).status is None
        assert ListGoalsInput.model_validate({"childId": "c1", "status": "paused"}).status == "paused"

        with pytest.raises(ValidationError):
            ListGoalsInput.model_validate({"childId": "c1", "status": "archived"})

    def test_create_goal_input_valid(self):
        """Test a complete create_goal payload."""
        goal = CreateGoalInput.model_validate(
            {
                "childId": "c1",
                "therapyType": "communication",
                "title": "  Request help with AAC  ",
                "targetDate": "2026-06-30",
                "criteria": "4 of 5 opportunities",
            }
        )

        assert goal.therapy_type == "communication"
        assert goal.title == "Request help with AAC"
        assert goal.target_date == "2026-06-30"

    def test_create_goal_input_validation(self):
        """Test that bad titles, dates and therapy types are rejected."""
        base = {"childId": "c1", "therapyType": "SLP", "title": "Goal"}

        with pytest.raises(ValidationError):
            CreateGoalInput.model_validate({**base, "title": "   "})
        with pytest.raises(ValidationError):
            CreateGoalInput.model_validate({**base, "title": "x" * 201})
        with pytest.raises(ValidationError):
            CreateGoalInput.model_validate({**base, "targetDate": "30/06/2026"})
        with pytest.raises(ValidationError):
            CreateGoalInput.model_validate({**base, "therapyType": "PT"})

    def test_add_note_input(self):
        """Test note defaults and type validation."""
        note = AddNoteInput.model_validate({"childId": "c1", "content": "Used 3 new signs"})
        assert note.note_type == "general"

        with pytest.raises(ValidationError):
            AddNoteInput.model_validate({"childId": "c1", "content": "x", "noteType": "rant"})
        with pytest.raises(ValidationError):
            AddNoteInput.model_validate({"childId": "c1", "content": ""})

    def test_tool_schema_uses_camel_case(self):
        """Test that the JSON schema shown to the model uses the aliases."""
        schema = CreateGoalInput.model_json_schema(by_alias=True)

        assert "childId" in schema["properties"]
        assert "therapyType" in schema["properties"]
        assert set(schema["required"]) == {"childId", "therapyType", "title"}
