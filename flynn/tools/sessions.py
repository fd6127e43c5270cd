"""Therapy session tools."""

from datetime import date, timedelta
from typing import Literal

from pydantic import BaseModel, Field

from flynn.models.family import TherapySession
from flynn.services.authorization import AuthorizationService, verify_record_access
from flynn.storage.family_repo import FamilyRepository
from flynn.tools.base import ToolContext, ToolDefinition, ToolResult, create_read_only_tool
from flynn.tools.errors import SessionNotFoundError

SessionType = Literal["ABA", "OT", "SLP", "other"]

DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"
NOTES_PREVIEW_LENGTH = 200
MAX_SESSION_AGE_DAYS = 365


class ListSessionsInput(BaseModel):
    """Input schema for list_sessions."""

    child_id: str | None = Field(
        default=None, alias="childId", min_length=1, description="Only this child's sessions"
    )
    type: SessionType | None = Field(default=None, description="Only sessions of this therapy type")
    start_date: str | None = Field(default=None, alias="startDate", pattern=DATE_PATTERN)
    end_date: str | None = Field(default=None, alias="endDate", pattern=DATE_PATTERN)
    limit: int = Field(default=20, ge=1, le=100)

    class Config:
        populate_by_name = True


class SessionIdInput(BaseModel):
    """Input schema for get_session."""

    session_id: str = Field(..., alias="sessionId", min_length=1, description="The session's id")

    class Config:
        populate_by_name = True


class GoalWorkedOn(BaseModel):
    goal_id: str = Field(..., alias="goalId", min_length=1)
    progress: int | None = Field(default=None, ge=0, le=100)
    notes: str | None = Field(default=None, max_length=1000)

    class Config:
        populate_by_name = True


class CreateSessionInput(BaseModel):
    """Input schema for create_session."""

    child_id: str = Field(..., alias="childId", min_length=1, description="The child's id")
    type: SessionType = Field(..., description="Therapy type of the session")
    date: str = Field(
        ..., pattern=DATE_PATTERN, description="Session date in YYYY-MM-DD format", examples=["2026-03-02"]
    )
    duration_minutes: int | None = Field(default=None, alias="durationMinutes", ge=1, le=480)
    notes: str | None = Field(default=None, max_length=10000)
    goals_worked_on: list[GoalWorkedOn] | None = Field(default=None, alias="goalsWorkedOn", max_length=20)
    therapist_id: str | None = Field(
        default=None, alias="therapistId", min_length=1, description="Therapist who ran the session"
    )

    class Config:
        populate_by_name = True


class UpdateSessionInput(BaseModel):
    """Input schema for update_session."""

    session_id: str = Field(..., alias="sessionId", min_length=1, description="The session's id")
    notes: str | None = Field(default=None, max_length=10000)
    duration_minutes: int | None = Field(default=None, alias="durationMinutes", ge=1, le=480)
    goals_worked_on: list[GoalWorkedOn] | None = Field(default=None, alias="goalsWorkedOn", max_length=20)

    class Config:
        populate_by_name = True


def session_to_dict(session: TherapySession) -> dict:
    return {
        "id": session.id,
        "childId": session.child_id,
        "therapistId": session.therapist_id,
        "type": session.therapy_type,
        "date": session.session_date,
        "durationMinutes": session.duration_minutes,
        "notes": session.notes,
        "goalsWorkedOn": session.goals_worked_on,
        "createdAt": session.created_at.isoformat(),
        "updatedAt": session.updated_at.isoformat(),
    }


def session_summary(session: TherapySession, child_names: dict[str, str]) -> dict:
    notes = session.notes
    if notes and len(notes) > NOTES_PREVIEW_LENGTH:
        notes = notes[:NOTES_PREVIEW_LENGTH] + "..."
    return {
        "id": session.id,
        "childId": session.child_id,
        "childName": child_names.get(session.child_id),
        "type": session.therapy_type,
        "date": session.session_date,
        "durationMinutes": session.duration_minutes,
        "notesPreview": notes,
        "goalsWorkedOnCount": len(session.goals_worked_on),
    }


async def _missing_goal_ids(family_repo: FamilyRepository, child_id: str, goals: list[GoalWorkedOn]) -> list[str]:
    goal_ids = [g.goal_id for g in goals]
    found = await family_repo.find_child_goal_ids(child_id, goal_ids)
    return [goal_id for goal_id in goal_ids if goal_id not in found]


def _goals_payload(goals: list[GoalWorkedOn]) -> list[dict]:
    return [g.model_dump(by_alias=True, exclude_none=True) for g in goals]


def create_list_sessions_tool(family_repo: FamilyRepository, authorization: AuthorizationService) -> ToolDefinition:
    async def list_sessions(params: ListSessionsInput, context: ToolContext) -> dict:
        if params.child_id:
            await authorization.verify_access(params.child_id, context)
            child_ids = [params.child_id]
        else:
            child_ids = await authorization.accessible_child_ids(context)

        # One extra row tells us whether more sessions match
        sessions = await family_repo.list_sessions(
            child_ids,
            therapy_type=params.type,
            start_date=params.start_date,
            end_date=params.end_date,
            limit=params.limit + 1,
        )
        has_more = len(sessions) > params.limit
        sessions = sessions[: params.limit]

        child_names = {c.id: c.name for c in await family_repo.get_children(sorted({s.child_id for s in sessions}))}
        return {
            "sessions": [session_summary(s, child_names) for s in sessions],
            "count": len(sessions),
            "hasMore": has_more,
        }

    return create_read_only_tool(
        name="list_sessions",
        description=(
            "List logged therapy sessions, newest first. Filter by child, therapy type (ABA, OT, SLP, other) "
            "or a YYYY-MM-DD date range. Without childId, sessions of every accessible child are listed."
        ),
        input_schema_class=ListSessionsInput,
        getter=list_sessions,
    )


def create_get_session_tool(family_repo: FamilyRepository, authorization: AuthorizationService) -> ToolDefinition:
    async def get_session(params: SessionIdInput, context: ToolContext) -> dict:
        session = await family_repo.get_session(params.session_id)
        if session is None:
            raise SessionNotFoundError(params.session_id)
        await verify_record_access(authorization, session.child_id, context, SessionNotFoundError(params.session_id))

        detail = session_to_dict(session)
        goals = {g.id: g for g in await family_repo.list_goals(session.child_id)}
        for entry in detail["goalsWorkedOn"]:
            goal = goals.get(entry.get("goalId"))
            if goal is not None:
                entry["title"] = goal.title
                entry["status"] = goal.status
                entry["currentProgress"] = goal.progress
        if session.therapist_id:
            therapists = await family_repo.list_therapists_for_child(session.child_id)
            detail["therapistName"] = next(
                (t.name for t in therapists if t.therapist_id == session.therapist_id), None
            )
        return detail

    return create_read_only_tool(
        name="get_session",
        description="Get the full details of one therapy session, including notes and the goals worked on.",
        input_schema_class=SessionIdInput,
        getter=get_session,
    )


def create_create_session_tool(family_repo: FamilyRepository, authorization: AuthorizationService) -> ToolDefinition:
    async def create_session(params: CreateSessionInput, context: ToolContext) -> ToolResult:
        await authorization.verify_access(params.child_id, context)

        session_date = date.fromisoformat(params.date)
        today = date.today()
        if session_date > today:
            return ToolResult.fail(
                "Cannot create a session with a future date. Sessions should be logged after they occur."
            )
        if session_date < today - timedelta(days=MAX_SESSION_AGE_DAYS):
            return ToolResult.fail("Cannot create a session more than 1 year in the past.")

        if params.goals_worked_on:
            missing = await _missing_goal_ids(family_repo, params.child_id, params.goals_worked_on)
            if missing:
                return ToolResult.fail(f"Goals not found or don't belong to this child: {', '.join(missing)}")

        if params.therapist_id and not await family_repo.is_therapist_assigned(params.therapist_id, params.child_id):
            return ToolResult.fail(f"Therapist {params.therapist_id} is not assigned to this child")

        session = await family_repo.create_session(
            child_id=params.child_id,
            therapy_type=params.type,
            session_date=params.date,
            duration_minutes=params.duration_minutes,
            notes=params.notes,
            goals_worked_on=_goals_payload(params.goals_worked_on or []),
            therapist_id=params.therapist_id,
        )
        return ToolResult.ok(
            {
                "session": session_to_dict(session),
                "message": f"Successfully logged {params.type} session for {params.date}",
            }
        )

    return ToolDefinition(
        name="create_session",
        description=(
            "Log a therapy session that already happened: date, type (ABA, OT, SLP, other), duration, "
            "notes and the goals worked on. Confirm the details with the user before calling this."
        ),
        input_schema_class=CreateSessionInput,
        handler=create_session,
    )


def create_update_session_tool(family_repo: FamilyRepository, authorization: AuthorizationService) -> ToolDefinition:
    async def update_session(params: UpdateSessionInput, context: ToolContext) -> ToolResult:
        session = await family_repo.get_session(params.session_id)
        if session is None:
            raise SessionNotFoundError(params.session_id)
        await verify_record_access(authorization, session.child_id, context, SessionNotFoundError(params.session_id))

        if params.notes is None and params.duration_minutes is None and params.goals_worked_on is None:
            return ToolResult.fail(
                "At least one field (notes, durationMinutes, or goalsWorkedOn) must be provided to update"
            )
        if params.goals_worked_on:
            missing = await _missing_goal_ids(family_repo, session.child_id, params.goals_worked_on)
            if missing:
                return ToolResult.fail(f"Goals not found or don't belong to this child: {', '.join(missing)}")

        session = await family_repo.update_session(
            session.id,
            notes=params.notes,
            duration_minutes=params.duration_minutes,
            goals_worked_on=_goals_payload(params.goals_worked_on) if params.goals_worked_on is not None else None,
        )

        changes = []
        if params.notes is not None:
            changes.append("notes")
        if params.duration_minutes is not None:
            changes.append("duration")
        if params.goals_worked_on is not None:
            changes.append("goals worked on")
        return ToolResult.ok(
            {"session": session_to_dict(session), "message": f"Successfully updated session: {', '.join(changes)}"}
        )

    return ToolDefinition(
        name="update_session",
        description=(
            "Update a logged therapy session's notes, duration or goals worked on. "
            "Confirm the change with the user before calling this."
        ),
        input_schema_class=UpdateSessionInput,
        handler=update_session,
    )
