#!/usr/bin/env python3
"""Seed a demo family into the Flynn database so the chat CLI has someone to talk about."""

import asyncio
import sys
from datetime import date

from flynn.config import load_settings
from flynn.storage.database import Database
from flynn.storage.family_repo import FamilyRepository
from flynn.utils.logging import get_logger, setup_logging

DEMO_FAMILY_ID = "demo-family"
DEMO_CAREGIVER_ID = "demo-caregiver"

logger = get_logger(__name__)


async def seed(database_path: str) -> None:
    db = Database(database_path)
    await db.initialize()
    try:
        repo = FamilyRepository(db)
        if await repo.get_caregiver(DEMO_CAREGIVER_ID):
            logger.info("Demo family already present")
            return

        await repo.create_family("Rivera Family", family_id=DEMO_FAMILY_ID)
        await repo.create_caregiver(
            DEMO_FAMILY_ID, "Ana Rivera", "ana@example.com", role="parent", caregiver_id=DEMO_CAREGIVER_ID
        )
        emma = await repo.create_child(DEMO_FAMILY_ID, "Emma", birth_date="2021-03-14")
        await repo.create_child(DEMO_FAMILY_ID, "Leo", birth_date="2023-09-02")

        therapist_id = await repo.create_therapist("Dr. Sam Patel", "sam@example.com")
        await repo.assign_therapist(therapist_id, emma.id)
        await repo.create_goal(
            emma.id,
            therapy_type="SLP",
            title="Request preferred items with two-symbol phrases",
            criteria="8 of 10 opportunities across 3 sessions",
        )
        await repo.create_session(
            emma.id, "SLP", date.today().isoformat(), duration_minutes=45, therapist_id=therapist_id
        )
        logger.info(f"Seeded demo family; caregiver id is {DEMO_CAREGIVER_ID}")
    finally:
        await db.close()


def main():
    setup_logging()
    database_path = sys.argv[1] if len(sys.argv) > 1 else load_settings().database_path
    asyncio.run(seed(database_path))


if __name__ == "__main__":
    main()
