"""Progress summary tool: goals, sessions and milestones over a period."""

from datetime import date, timedelta
from typing import Literal

from pydantic import BaseModel, Field

from flynn.services.authorization import AuthorizationService
from flynn.storage.family_repo import FamilyRepository
from flynn.tools.base import ToolContext, ToolDefinition, create_read_only_tool
from flynn.tools.errors import ChildNotFoundError

Period = Literal["week", "month", "quarter", "year"]

PERIOD_DAYS: dict[str, int] = {"week": 7, "month": 30, "quarter": 90, "year": 365}


class ProgressSummaryInput(BaseModel):
    """Input schema for get_progress_summary."""

    child_id: str = Field(..., alias="childId", min_length=1, description="The child's id")
    period: Period = Field(default="month", description="How far back to look")

    class Config:
        populate_by_name = True


def period_range(period: str, today: date | None = None) -> tuple[date, date]:
    """Inclusive (start, end) dates of a period ending today."""
    end = today or date.today()
    return end - timedelta(days=PERIOD_DAYS[period]), end


def create_get_progress_summary_tool(
    family_repo: FamilyRepository, authorization: AuthorizationService
) -> ToolDefinition:
    async def get_progress_summary(params: ProgressSummaryInput, context: ToolContext) -> dict:
        await authorization.verify_access(params.child_id, context)
        child = await family_repo.get_child(params.child_id)
        if child is None:
            raise ChildNotFoundError(params.child_id)

        start, end = period_range(params.period)
        start_iso, end_iso = start.isoformat(), end.isoformat()

        goals = await family_repo.list_goals(child.id)
        active = [g for g in goals if g.status == "active"]
        completed_in_period = [
            g for g in goals if g.status == "completed" and g.updated_at.date().isoformat() >= start_iso
        ]
        average_progress = round(sum(g.progress for g in active) / len(active)) if active else 0

        stats = await family_repo.session_stats(child.id, start_iso, end_iso)
        total_sessions = sum(s.count for s in stats)
        total_minutes = sum(s.total_minutes for s in stats)
        weeks = PERIOD_DAYS[params.period] / 7

        milestones = [
            {"type": "goal", "title": f"Completed goal: {g.title}", "achievedAt": g.updated_at.isoformat()}
            for g in completed_in_period
        ]
        milestones += [
            {"type": "note", "title": n.content, "achievedAt": n.created_at.isoformat()}
            for n in await family_repo.list_notes(child.id, note_type="milestone", since=start_iso)
        ]
        milestones.sort(key=lambda m: m["achievedAt"])

        return {
            "childId": child.id,
            "childName": child.name,
            "period": params.period,
            "dateRange": {"startDate": start_iso, "endDate": end_iso},
            "goalsProgress": {
                "totalGoals": len(goals),
                "activeGoals": len(active),
                "completedGoals": sum(1 for g in goals if g.status == "completed"),
                "pausedGoals": sum(1 for g in goals if g.status == "paused"),
                "averageProgress": average_progress,
                "activeGoalDetails": [{"id": g.id, "title": g.title, "progress": g.progress} for g in active],
            },
            "sessionMetrics": {
                "totalSessions": total_sessions,
                "totalMinutes": total_minutes,
                "sessionsByType": [
                    {"type": s.therapy_type, "count": s.count, "totalMinutes": s.total_minutes} for s in stats
                ],
                "averageSessionsPerWeek": round(total_sessions / weeks, 1),
            },
            "milestones": milestones,
            "overallSummary": overall_summary(
                child.name, params.period, total_sessions, total_minutes, len(active), average_progress,
                len(completed_in_period),
            ),
        }

    return create_read_only_tool(
        name="get_progress_summary",
        description=(
            "Summarize a child's progress over a week, month, quarter or year: goal status and average "
            "progress, therapy session counts and minutes by type, and milestones reached. "
            "Use this for progress reports and spotting trends."
        ),
        input_schema_class=ProgressSummaryInput,
        getter=get_progress_summary,
    )


def overall_summary(
    child_name: str,
    period: str,
    total_sessions: int,
    total_minutes: int,
    active_goals: int,
    average_progress: int,
    goals_completed: int,
) -> str:
    """One or two plain sentences a caregiver can read at a glance."""
    parts = []
    if total_sessions:
        noun = "session" if total_sessions == 1 else "sessions"
        parts.append(f"This {period}, {child_name} had {total_sessions} therapy {noun} ({total_minutes} minutes).")
    else:
        parts.append(f"No therapy sessions were logged for {child_name} this {period}.")
    if active_goals:
        parts.append(f"Progress on {active_goals} active goals averages {average_progress}%.")
    if goals_completed:
        parts.append(f"{goals_completed} goal{'s' if goals_completed != 1 else ''} completed.")
    return " ".join(parts)
