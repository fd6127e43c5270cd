"""Family-domain business models read by tools and authorization."""

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class Child:
    """Child business model."""

    id: str
    family_id: str
    name: str
    birth_date: str | None
    created_at: datetime


@dataclass
class Caregiver:
    """Caregiver (parent, guardian, ...) business model."""

    id: str
    family_id: str
    name: str
    email: str
    role: str


@dataclass
class TherapistAssignment:
    """A therapist assigned to a child."""

    therapist_id: str
    name: str
    email: str
    granted_at: datetime


@dataclass
class Goal:
    """Therapy goal for a child."""

    id: str
    child_id: str
    therapy_type: str  # ABA, OT, SLP, communication, other
    title: str
    description: str | None
    target_date: str | None
    criteria: str | None
    status: str  # active, completed, paused
    progress: int
    created_at: datetime
    updated_at: datetime


@dataclass
class Note:
    """Quick note about a child."""

    id: str
    child_id: str
    author_id: str
    note_type: str  # observation, milestone, concern, general
    content: str
    created_at: datetime


@dataclass
class TherapySession:
    """A logged therapy session.

    ``goals_worked_on`` holds ``{"goalId", "progress"?, "notes"?}`` entries
    for goals of the same child.
    """

    id: str
    child_id: str
    therapist_id: str | None
    therapy_type: str  # ABA, OT, SLP, other
    session_date: str  # YYYY-MM-DD
    duration_minutes: int | None
    notes: str | None
    created_at: datetime
    updated_at: datetime
    goals_worked_on: list[dict] = field(default_factory=list)


@dataclass
class SessionTypeStats:
    """Session count and minutes for one therapy type."""

    therapy_type: str
    count: int
    total_minutes: int
