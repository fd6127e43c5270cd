"""Quick note tool."""

from typing import Literal

from pydantic import BaseModel, Field

from flynn.services.authorization import AuthorizationService
from flynn.storage.family_repo import FamilyRepository
from flynn.tools.base import ToolContext, ToolDefinition, ToolResult


class AddNoteInput(BaseModel):
    """Input schema for add_note."""

    child_id: str = Field(..., alias="childId", min_length=1, description="The child's id")
    note_type: Literal["observation", "milestone", "concern", "general"] = Field(
        default="general",
        alias="noteType",
        description="Kind of note",
    )
    content: str = Field(..., min_length=1, max_length=5000, description="The note text")

    class Config:
        populate_by_name = True


def create_add_note_tool(family_repo: FamilyRepository, authorization: AuthorizationService) -> ToolDefinition:
    async def add_note(params: AddNoteInput, context: ToolContext) -> ToolResult:
        await authorization.verify_access(params.child_id, context)
        note = await family_repo.add_note(
            child_id=params.child_id,
            author_id=context.user_id,
            note_type=params.note_type,
            content=params.content,
        )
        return ToolResult.ok({"id": note.id, "noteType": note.note_type, "createdAt": note.created_at.isoformat()})

    return ToolDefinition(
        name="add_note",
        description="Record a quick note about a child (observation, milestone, concern or general).",
        input_schema_class=AddNoteInput,
        handler=add_note,
    )
