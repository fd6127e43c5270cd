"""API endpoints for the Flynn chat service."""

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sse_starlette.sse import EventSourceResponse

from flynn import __version__
from flynn.models.conversation import (
    ConversationDetailResponse,
    ConversationListResponse,
    ConversationResponse,
    ConversationWithMessages,
    CreateConversationRequest,
    DeleteResponse,
    HealthResponse,
    MessageListResponse,
    SendMessageRequest,
)
from flynn.services.chat import ChatService
from flynn.services.errors import CaregiverNotFoundError, ConversationNotFoundError
from flynn.tools.errors import ChildNotFoundError, UnauthorizedError
from flynn.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()


def get_chat_service(request: Request) -> ChatService:
    return request.app.state.chat_service


@router.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(UTC),
        version=__version__,
    )


@router.post("/conversations", response_model=ConversationResponse, status_code=201, tags=["Conversations"])
async def create_conversation(
    body: CreateConversationRequest, chat_service: ChatService = Depends(get_chat_service)
) -> ConversationResponse:
    """Create a conversation for a caregiver, optionally about one of their children."""
    try:
        conversation = await chat_service.create_conversation(body.caregiver_id, body.child_id, body.title)
    except (CaregiverNotFoundError, ChildNotFoundError) as e:
        logger.warning(f"Cannot create conversation: {e}")
        raise HTTPException(status_code=404, detail=getattr(e, "message", str(e))) from e
    except UnauthorizedError as e:
        logger.warning(f"Caregiver {body.caregiver_id} denied access to child {body.child_id}")
        raise HTTPException(status_code=403, detail=e.message) from e
    return ConversationResponse(data=conversation)


@router.get("/conversations", response_model=ConversationListResponse, tags=["Conversations"])
async def list_conversations(
    caregiver_id: str = Query(..., alias="caregiverId", min_length=1),
    child_id: str | None = Query(default=None, alias="childId"),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    chat_service: ChatService = Depends(get_chat_service),
) -> ConversationListResponse:
    """List a caregiver's conversations, most recently updated first."""
    conversations = await chat_service.list_conversations(caregiver_id, child_id, limit, offset)
    return ConversationListResponse(data=conversations)


@router.get("/conversations/{conversation_id}", response_model=ConversationDetailResponse, tags=["Conversations"])
async def get_conversation(
    conversation_id: str, chat_service: ChatService = Depends(get_chat_service)
) -> ConversationDetailResponse:
    """Get a conversation with all of its messages."""
    try:
        conversation = await chat_service.get_conversation(conversation_id)
        messages = await chat_service.list_messages(conversation_id)
    except ConversationNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    return ConversationDetailResponse(
        data=ConversationWithMessages(**conversation.model_dump(), messages=messages)
    )


@router.delete("/conversations/{conversation_id}", response_model=DeleteResponse, tags=["Conversations"])
async def delete_conversation(
    conversation_id: str, chat_service: ChatService = Depends(get_chat_service)
) -> DeleteResponse:
    """Delete a conversation and its messages."""
    try:
        await chat_service.delete_conversation(conversation_id)
    except ConversationNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    return DeleteResponse(message="Conversation deleted")


@router.get(
    "/conversations/{conversation_id}/messages", response_model=MessageListResponse, tags=["Conversations"]
)
async def list_messages(
    conversation_id: str,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    chat_service: ChatService = Depends(get_chat_service),
) -> MessageListResponse:
    """Page through a conversation's messages in write order."""
    try:
        messages = await chat_service.list_messages(conversation_id, limit, offset)
    except ConversationNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    return MessageListResponse(data=messages)


@router.post("/conversations/{conversation_id}/messages", tags=["Chat"])
async def send_message(
    conversation_id: str, body: SendMessageRequest, chat_service: ChatService = Depends(get_chat_service)
) -> EventSourceResponse:
    """Send a message and stream the assistant's reply as Server-Sent Events.

    Events: ``text``, ``tool_call``, ``tool_result``, then exactly one of
    ``done`` or ``error``.
    """
    try:
        emitter = await chat_service.start_exchange(conversation_id, body.content)
    except ConversationNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e

    logger.info(f"Streaming reply for conversation {conversation_id}: {body.content[:50]}...")
    return EventSourceResponse(emitter.stream(), media_type="text/event-stream")
