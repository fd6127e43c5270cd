"""Therapy goal tools."""

from typing import Literal

from pydantic import BaseModel, Field, field_validator

from flynn.models.family import Goal
from flynn.services.authorization import AuthorizationService, verify_record_access
from flynn.storage.family_repo import FamilyRepository
from flynn.tools.base import ToolContext, ToolDefinition, ToolResult, create_read_only_tool
from flynn.tools.errors import GoalNotFoundError

TherapyType = Literal["ABA", "OT", "SLP", "communication", "other"]
GoalStatus = Literal["active", "completed", "paused"]


class ListGoalsInput(BaseModel):
    """Input schema for list_goals."""

    child_id: str = Field(..., alias="childId", min_length=1, description="The child's id")
    status: GoalStatus | None = Field(default=None, description="Only return goals with this status")

    class Config:
        populate_by_name = True


class CreateGoalInput(BaseModel):
    """Input schema for create_goal."""

    child_id: str = Field(..., alias="childId", min_length=1, description="The child's id")
    therapy_type: TherapyType = Field(
        ...,
        alias="therapyType",
        description="Therapy discipline the goal belongs to",
    )
    title: str = Field(..., min_length=1, max_length=200, description="Short goal title")
    description: str | None = Field(default=None, max_length=2000)
    target_date: str | None = Field(
        default=None,
        alias="targetDate",
        pattern=r"^\d{4}-\d{2}-\d{2}$",
        description="Target date in YYYY-MM-DD format",
        examples=["2026-06-30"],
    )
    criteria: str | None = Field(default=None, max_length=1000, description="How success is measured")

    class Config:
        populate_by_name = True

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        if v.isspace():
            raise ValueError("Title cannot be whitespace only")
        return v.strip()


def goal_to_dict(goal: Goal) -> dict:
    return {
        "id": goal.id,
        "childId": goal.child_id,
        "therapyType": goal.therapy_type,
        "title": goal.title,
        "description": goal.description,
        "targetDate": goal.target_date,
        "criteria": goal.criteria,
        "status": goal.status,
        "progress": goal.progress,
    }


def create_list_goals_tool(family_repo: FamilyRepository, authorization: AuthorizationService) -> ToolDefinition:
    async def list_goals(params: ListGoalsInput, context: ToolContext) -> list[dict]:
        await authorization.verify_access(params.child_id, context)
        goals = await family_repo.list_goals(params.child_id, status=params.status)
        return [goal_to_dict(g) for g in goals]

    return create_read_only_tool(
        name="list_goals",
        description="List a child's therapy goals, optionally filtered by status (active, completed, paused).",
        input_schema_class=ListGoalsInput,
        getter=list_goals,
    )


def create_create_goal_tool(family_repo: FamilyRepository, authorization: AuthorizationService) -> ToolDefinition:
    async def create_goal(params: CreateGoalInput, context: ToolContext) -> ToolResult:
        await authorization.verify_access(params.child_id, context)
        goal = await family_repo.create_goal(
            child_id=params.child_id,
            therapy_type=params.therapy_type,
            title=params.title,
            description=params.description,
            target_date=params.target_date,
            criteria=params.criteria,
        )
        return ToolResult.ok(goal_to_dict(goal))

    return ToolDefinition(
        name="create_goal",
        description=(
            "Create a new therapy goal for a child. Only call this after the user has "
            "confirmed the goal's title and therapy type."
        ),
        input_schema_class=CreateGoalInput,
        handler=create_goal,
    )


class UpdateGoalInput(BaseModel):
    """Input schema for update_goal."""

    goal_id: str = Field(..., alias="goalId", min_length=1, description="The goal's id")
    status: GoalStatus | None = Field(default=None, description="New status")
    progress: int | None = Field(default=None, ge=0, le=100, description="Progress percentage (0-100)")
    notes: str | None = Field(default=None, max_length=2000, description="Notes to record with the update")

    class Config:
        populate_by_name = True


def create_update_goal_tool(family_repo: FamilyRepository, authorization: AuthorizationService) -> ToolDefinition:
    async def update_goal(params: UpdateGoalInput, context: ToolContext) -> ToolResult:
        goal = await family_repo.get_goal(params.goal_id)
        if goal is None:
            raise GoalNotFoundError(params.goal_id)
        await verify_record_access(authorization, goal.child_id, context, GoalNotFoundError(params.goal_id))

        if params.status is None and params.progress is None and params.notes is None:
            return ToolResult.fail("At least one field (status, progress, or notes) must be provided to update")
        if params.status == "completed" and params.progress not in (None, 100):
            return ToolResult.fail("When marking a goal as completed, progress should be 100%")

        if params.status is not None or params.progress is not None:
            goal = await family_repo.update_goal(goal.id, status=params.status, progress=params.progress)
        if params.notes:
            await family_repo.add_note(goal.child_id, context.user_id, "general", f"[{goal.title}] {params.notes}")

        changes = []
        if params.status is not None:
            changes.append(f"status → {params.status}")
        if params.progress is not None:
            changes.append(f"progress → {params.progress}%")
        if params.notes:
            changes.append("notes added")

        suggest_completion = params.progress == 100 and params.status is None
        message = f'Updated goal "{goal.title}": {", ".join(changes)}'
        if suggest_completion:
            message += ". Consider marking this goal as 'completed' since progress is at 100%."

        return ToolResult.ok({"goal": goal_to_dict(goal), "message": message, "suggestCompletion": suggest_completion})

    return ToolDefinition(
        name="update_goal",
        description=(
            "Update a goal's status (active/completed/paused), progress percentage (0-100), or add notes. "
            "Confirm the change with the user before calling this."
        ),
        input_schema_class=UpdateGoalInput,
        handler=update_goal,
    )
