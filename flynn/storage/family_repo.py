"""Family repository: children, caregivers, therapist assignments, goals, notes and sessions."""

import json
from datetime import datetime

from flynn.models.family import (
    Caregiver,
    Child,
    Goal,
    Note,
    SessionTypeStats,
    TherapistAssignment,
    TherapySession,
)
from flynn.storage.conversation_repo import cuid, utc_now
from flynn.storage.database import Database


class FamilyRepository:
    """Read/write access to the per-family data used by tools."""

    def __init__(self, db: Database):
        self._db = db

    # Families, children, caregivers and therapists

    async def create_family(self, name: str, family_id: str | None = None) -> str:
        family_id = family_id or cuid()
        async with self._db.transaction() as conn:
            await conn.execute(
                "INSERT INTO families (id, name, created_at) VALUES (?, ?, ?)",
                (family_id, name, utc_now().isoformat()),
            )
        return family_id

    async def create_child(
        self, family_id: str, name: str, birth_date: str | None = None, child_id: str | None = None
    ) -> Child:
        child = Child(
            id=child_id or cuid(),
            family_id=family_id,
            name=name,
            birth_date=birth_date,
            created_at=utc_now(),
        )
        async with self._db.transaction() as conn:
            await conn.execute(
                "INSERT INTO children (id, family_id, name, birth_date, created_at) VALUES (?, ?, ?, ?, ?)",
                (child.id, child.family_id, child.name, child.birth_date, child.created_at.isoformat()),
            )
        return child

    async def create_caregiver(
        self, family_id: str, name: str, email: str, role: str = "parent", caregiver_id: str | None = None
    ) -> Caregiver:
        caregiver = Caregiver(
            id=caregiver_id or cuid(), family_id=family_id, name=name, email=email, role=role
        )
        async with self._db.transaction() as conn:
            await conn.execute(
                "INSERT INTO caregivers (id, family_id, name, email, role, created_at) VALUES (?, ?, ?, ?, ?, ?)",
                (caregiver.id, family_id, name, email, role, utc_now().isoformat()),
            )
        return caregiver

    async def create_therapist(self, name: str, email: str, therapist_id: str | None = None) -> str:
        therapist_id = therapist_id or cuid()
        async with self._db.transaction() as conn:
            await conn.execute(
                "INSERT INTO therapists (id, name, email, created_at) VALUES (?, ?, ?, ?)",
                (therapist_id, name, email, utc_now().isoformat()),
            )
        return therapist_id

    async def assign_therapist(self, therapist_id: str, child_id: str) -> None:
        async with self._db.transaction() as conn:
            await conn.execute(
                "INSERT OR IGNORE INTO therapist_clients (therapist_id, child_id, granted_at) VALUES (?, ?, ?)",
                (therapist_id, child_id, utc_now().isoformat()),
            )

    async def get_child(self, child_id: str) -> Child | None:
        cursor = await self._db.conn.execute("SELECT * FROM children WHERE id = ?", (child_id,))
        row = await cursor.fetchone()
        return self._row_to_child(row) if row else None

    async def get_children(self, child_ids: list[str]) -> list[Child]:
        """Fetch children by id, ordered by name."""
        if not child_ids:
            return []
        placeholders = ",".join("?" for _ in child_ids)
        cursor = await self._db.conn.execute(
            f"SELECT * FROM children WHERE id IN ({placeholders}) ORDER BY name ASC",
            tuple(child_ids),
        )
        rows = await cursor.fetchall()
        return [self._row_to_child(row) for row in rows]

    async def get_caregiver(self, caregiver_id: str) -> Caregiver | None:
        cursor = await self._db.conn.execute("SELECT * FROM caregivers WHERE id = ?", (caregiver_id,))
        row = await cursor.fetchone()
        if not row:
            return None
        return Caregiver(
            id=row["id"], family_id=row["family_id"], name=row["name"], email=row["email"], role=row["role"]
        )

    async def is_caregiver_in_family(self, user_id: str, family_id: str) -> bool:
        cursor = await self._db.conn.execute(
            "SELECT 1 FROM caregivers WHERE id = ? AND family_id = ?", (user_id, family_id)
        )
        return await cursor.fetchone() is not None

    async def is_therapist_assigned(self, user_id: str, child_id: str) -> bool:
        cursor = await self._db.conn.execute(
            "SELECT 1 FROM therapist_clients WHERE therapist_id = ? AND child_id = ?", (user_id, child_id)
        )
        return await cursor.fetchone() is not None

    async def list_accessible_child_ids(self, user_id: str, family_id: str | None = None) -> list[str]:
        """Children in the user's family, children assigned to the user as therapist,
        and children of an explicitly pre-verified family."""
        cursor = await self._db.conn.execute(
            """SELECT c.id FROM children c
               JOIN caregivers cg ON cg.family_id = c.family_id
               WHERE cg.id = ?
               UNION
               SELECT tc.child_id FROM therapist_clients tc
               WHERE tc.therapist_id = ?
               UNION
               SELECT c.id FROM children c
               WHERE c.family_id = ?""",
            (user_id, user_id, family_id or ""),
        )
        rows = await cursor.fetchall()
        return [row[0] for row in rows]

    async def list_therapists_for_child(self, child_id: str) -> list[TherapistAssignment]:
        cursor = await self._db.conn.execute(
            """SELECT t.id, t.name, t.email, tc.granted_at FROM therapist_clients tc
               JOIN therapists t ON t.id = tc.therapist_id
               WHERE tc.child_id = ?
               ORDER BY tc.granted_at ASC""",
            (child_id,),
        )
        rows = await cursor.fetchall()
        return [
            TherapistAssignment(
                therapist_id=row["id"],
                name=row["name"],
                email=row["email"],
                granted_at=datetime.fromisoformat(row["granted_at"]),
            )
            for row in rows
        ]

    # Goals

    async def list_goals(self, child_id: str, status: str | None = None) -> list[Goal]:
        if status:
            cursor = await self._db.conn.execute(
                "SELECT * FROM goals WHERE child_id = ? AND status = ? ORDER BY created_at ASC",
                (child_id, status),
            )
        else:
            cursor = await self._db.conn.execute(
                "SELECT * FROM goals WHERE child_id = ? ORDER BY created_at ASC", (child_id,)
            )
        rows = await cursor.fetchall()
        return [self._row_to_goal(row) for row in rows]

    async def create_goal(
        self,
        child_id: str,
        therapy_type: str,
        title: str,
        description: str | None = None,
        target_date: str | None = None,
        criteria: str | None = None,
    ) -> Goal:
        now = utc_now()
        goal = Goal(
            id=cuid(),
            child_id=child_id,
            therapy_type=therapy_type,
            title=title,
            description=description,
            target_date=target_date,
            criteria=criteria,
            status="active",
            progress=0,
            created_at=now,
            updated_at=now,
        )
        async with self._db.transaction() as conn:
            await conn.execute(
                """INSERT INTO goals
                   (id, child_id, therapy_type, title, description, target_date, criteria,
                    status, progress, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    goal.id,
                    goal.child_id,
                    goal.therapy_type,
                    goal.title,
                    goal.description,
                    goal.target_date,
                    goal.criteria,
                    goal.status,
                    goal.progress,
                    now.isoformat(),
                    now.isoformat(),
                ),
            )
        return goal

    async def get_goal(self, goal_id: str) -> Goal | None:
        cursor = await self._db.conn.execute("SELECT * FROM goals WHERE id = ?", (goal_id,))
        row = await cursor.fetchone()
        return self._row_to_goal(row) if row else None

    async def find_child_goal_ids(self, child_id: str, goal_ids: list[str]) -> set[str]:
        """The subset of ``goal_ids`` that exist and belong to the child."""
        if not goal_ids:
            return set()
        placeholders = ",".join("?" for _ in goal_ids)
        cursor = await self._db.conn.execute(
            f"SELECT id FROM goals WHERE child_id = ? AND id IN ({placeholders})",
            (child_id, *goal_ids),
        )
        rows = await cursor.fetchall()
        return {row[0] for row in rows}

    async def update_goal(self, goal_id: str, status: str | None = None, progress: int | None = None) -> Goal | None:
        """Apply a status and/or progress change. Completing a goal sets progress to 100."""
        async with self._db.transaction() as conn:
            goal = await self.get_goal(goal_id)
            if goal is None:
                return None

            if status is not None:
                goal.status = status
                if status == "completed":
                    goal.progress = 100
            if progress is not None:
                goal.progress = progress
            goal.updated_at = utc_now()

            await conn.execute(
                "UPDATE goals SET status = ?, progress = ?, updated_at = ? WHERE id = ?",
                (goal.status, goal.progress, goal.updated_at.isoformat(), goal_id),
            )
        return goal

    async def count_active_goals(self, child_id: str) -> int:
        cursor = await self._db.conn.execute(
            "SELECT COUNT(*) FROM goals WHERE child_id = ? AND status = 'active'", (child_id,)
        )
        row = await cursor.fetchone()
        return row[0]

    # Notes

    async def add_note(self, child_id: str, author_id: str, note_type: str, content: str) -> Note:
        note = Note(
            id=cuid(),
            child_id=child_id,
            author_id=author_id,
            note_type=note_type,
            content=content,
            created_at=utc_now(),
        )
        async with self._db.transaction() as conn:
            await conn.execute(
                """INSERT INTO notes (id, child_id, author_id, note_type, content, created_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (note.id, child_id, author_id, note_type, content, note.created_at.isoformat()),
            )
        return note

    async def list_notes(self, child_id: str, note_type: str | None = None, since: str | None = None) -> list[Note]:
        """Notes in write order. ``since`` is an ISO timestamp or date prefix."""
        query = "SELECT * FROM notes WHERE child_id = ?"
        params: list = [child_id]
        if note_type:
            query += " AND note_type = ?"
            params.append(note_type)
        if since:
            query += " AND created_at >= ?"
            params.append(since)
        cursor = await self._db.conn.execute(query + " ORDER BY created_at ASC, rowid ASC", tuple(params))
        rows = await cursor.fetchall()
        return [
            Note(
                id=row["id"],
                child_id=row["child_id"],
                author_id=row["author_id"],
                note_type=row["note_type"],
                content=row["content"],
                created_at=datetime.fromisoformat(row["created_at"]),
            )
            for row in rows
        ]

    # Therapy sessions

    async def create_session(
        self,
        child_id: str,
        therapy_type: str,
        session_date: str,
        duration_minutes: int | None = None,
        notes: str | None = None,
        goals_worked_on: list[dict] | None = None,
        therapist_id: str | None = None,
    ) -> TherapySession:
        now = utc_now()
        session = TherapySession(
            id=cuid(),
            child_id=child_id,
            therapist_id=therapist_id,
            therapy_type=therapy_type,
            session_date=session_date,
            duration_minutes=duration_minutes,
            notes=notes,
            goals_worked_on=goals_worked_on or [],
            created_at=now,
            updated_at=now,
        )
        async with self._db.transaction() as conn:
            await conn.execute(
                """INSERT INTO therapy_sessions
                   (id, child_id, therapist_id, therapy_type, session_date, duration_minutes,
                    notes, goals_worked_on, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    session.id,
                    session.child_id,
                    session.therapist_id,
                    session.therapy_type,
                    session.session_date,
                    session.duration_minutes,
                    session.notes,
                    json.dumps(session.goals_worked_on),
                    now.isoformat(),
                    now.isoformat(),
                ),
            )
        return session

    async def get_session(self, session_id: str) -> TherapySession | None:
        cursor = await self._db.conn.execute("SELECT * FROM therapy_sessions WHERE id = ?", (session_id,))
        row = await cursor.fetchone()
        return self._row_to_session(row) if row else None

    async def list_sessions(
        self,
        child_ids: list[str],
        therapy_type: str | None = None,
        start_date: str | None = None,
        end_date: str | None = None,
        limit: int = 20,
    ) -> list[TherapySession]:
        """Sessions of the given children, newest session date first."""
        if not child_ids:
            return []
        placeholders = ",".join("?" for _ in child_ids)
        query = f"SELECT * FROM therapy_sessions WHERE child_id IN ({placeholders})"
        params: list = list(child_ids)
        if therapy_type:
            query += " AND therapy_type = ?"
            params.append(therapy_type)
        if start_date:
            query += " AND session_date >= ?"
            params.append(start_date)
        if end_date:
            query += " AND session_date <= ?"
            params.append(end_date)
        query += " ORDER BY session_date DESC, created_at DESC LIMIT ?"
        params.append(limit)

        cursor = await self._db.conn.execute(query, tuple(params))
        rows = await cursor.fetchall()
        return [self._row_to_session(row) for row in rows]

    async def update_session(
        self,
        session_id: str,
        notes: str | None = None,
        duration_minutes: int | None = None,
        goals_worked_on: list[dict] | None = None,
    ) -> TherapySession | None:
        """Replace whichever of notes, duration and goals worked on are given."""
        async with self._db.transaction() as conn:
            session = await self.get_session(session_id)
            if session is None:
                return None

            if notes is not None:
                session.notes = notes
            if duration_minutes is not None:
                session.duration_minutes = duration_minutes
            if goals_worked_on is not None:
                session.goals_worked_on = goals_worked_on
            session.updated_at = utc_now()

            await conn.execute(
                """UPDATE therapy_sessions
                   SET notes = ?, duration_minutes = ?, goals_worked_on = ?, updated_at = ?
                   WHERE id = ?""",
                (
                    session.notes,
                    session.duration_minutes,
                    json.dumps(session.goals_worked_on),
                    session.updated_at.isoformat(),
                    session_id,
                ),
            )
        return session

    async def session_stats(self, child_id: str, start_date: str, end_date: str) -> list[SessionTypeStats]:
        """Per-type session counts and minutes between two dates, inclusive."""
        cursor = await self._db.conn.execute(
            """SELECT therapy_type, COUNT(*) AS count, COALESCE(SUM(duration_minutes), 0) AS total_minutes
               FROM therapy_sessions
               WHERE child_id = ? AND session_date >= ? AND session_date <= ?
               GROUP BY therapy_type
               ORDER BY count DESC, therapy_type ASC""",
            (child_id, start_date, end_date),
        )
        rows = await cursor.fetchall()
        return [
            SessionTypeStats(therapy_type=row["therapy_type"], count=row["count"], total_minutes=row["total_minutes"])
            for row in rows
        ]

    @staticmethod
    def _row_to_child(row) -> Child:
        return Child(
            id=row["id"],
            family_id=row["family_id"],
            name=row["name"],
            birth_date=row["birth_date"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    @staticmethod
    def _row_to_goal(row) -> Goal:
        return Goal(
            id=row["id"],
            child_id=row["child_id"],
            therapy_type=row["therapy_type"],
            title=row["title"],
            description=row["description"],
            target_date=row["target_date"],
            criteria=row["criteria"],
            status=row["status"],
            progress=row["progress"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    @staticmethod
    def _row_to_session(row) -> TherapySession:
        return TherapySession(
            id=row["id"],
            child_id=row["child_id"],
            therapist_id=row["therapist_id"],
            therapy_type=row["therapy_type"],
            session_date=row["session_date"],
            duration_minutes=row["duration_minutes"],
            notes=row["notes"],
            goals_worked_on=json.loads(row["goals_worked_on"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )
