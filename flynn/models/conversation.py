"""Conversation, message and API data models."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

MessageRole = Literal["user", "assistant", "tool_call", "tool_result"]


class Conversation(BaseModel):
    """A persisted conversation owned by a caregiver."""

    id: str
    caregiver_id: str = Field(alias="caregiverId")
    child_id: str | None = Field(default=None, alias="childId")
    title: str | None = None
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")

    class Config:
        populate_by_name = True


class ConversationMessage(BaseModel):
    """A persisted message row. Immutable once written."""

    id: str
    conversation_id: str = Field(alias="conversationId")
    role: MessageRole
    content: str
    tool_name: str | None = Field(default=None, alias="toolName")
    tool_call_id: str | None = Field(default=None, alias="toolCallId")
    input_tokens: int | None = Field(default=None, alias="inputTokens")
    output_tokens: int | None = Field(default=None, alias="outputTokens")
    is_error: bool = Field(default=False, alias="isError")
    created_at: datetime = Field(alias="createdAt")

    class Config:
        populate_by_name = True


class CreateConversationRequest(BaseModel):
    """Request model for creating a conversation."""

    caregiver_id: str = Field(alias="caregiverId", min_length=1)
    child_id: str | None = Field(default=None, alias="childId")
    title: str | None = Field(default=None, max_length=255)

    class Config:
        populate_by_name = True


class SendMessageRequest(BaseModel):
    """Request model for sending a message to a conversation."""

    content: str = Field(..., min_length=1, max_length=10000)


class ConversationWithMessages(Conversation):
    """Conversation detail including its ordered messages."""

    messages: list[ConversationMessage] = Field(default_factory=list)


class ConversationResponse(BaseModel):
    """Single-conversation response envelope."""

    data: Conversation


class ConversationDetailResponse(BaseModel):
    """Conversation-with-messages response envelope."""

    data: ConversationWithMessages


class ConversationListResponse(BaseModel):
    """Conversation list response envelope."""

    data: list[Conversation]


class MessageListResponse(BaseModel):
    """Message list response envelope."""

    data: list[ConversationMessage]


class DeleteResponse(BaseModel):
    """Response model for deletions."""

    message: str


class HealthResponse(BaseModel):
    """Response model for health check endpoint."""

    status: str
    timestamp: datetime
    version: str
