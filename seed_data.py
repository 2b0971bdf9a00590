#!/usr/bin/env python3
"""
Seed Data Script for Sarana Care

Creates a small campus scenario with:
- 1 Staff admin (Budi, facilities office) and 2 students (Sari, Dimas)
- 5 Categories (Electrical, Plumbing, Furniture, Cleanliness, Network)
- Complaints at every point of the lifecycle:
  - C1: pending (no progress entries)
  - C2: in_progress (one entry)
  - C3: done (two entries)
  - C4, C5, C6: pending, so the notification window (5) is full

Transitions go through ComplaintService so the progress log and
current_status stay consistent.

Run with: python seed_data.py
"""

import asyncio

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sarana_care.core.config import get_settings
from sarana_care.core.database import build_engine
from sarana_care.core.security import create_access_token
from sarana_care.models import Base, Category, ComplaintStatus, User, UserRole
from sarana_care.services.complaints import (
    STAFF_ACTION_NOTES,
    ComplaintService,
    FileComplaintInput,
)

settings = get_settings()


async def seed_database():
    """Main seeding function."""
    engine = build_engine(settings)
    async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with async_session() as session:
        print("🌱 Starting database seed...")

        result = await session.execute(text("SELECT COUNT(*) FROM users"))
        count = result.scalar()
        if count and count > 0:
            print("⚠️  Database already has data. Clearing existing data...")
            await clear_database(session)

        # =================================================================
        # CREATE USERS
        # =================================================================
        print("\n👥 Creating users...")

        budi = User(
            auth_user_id="seed-admin-budi",
            email="budi@sarana.ac.id",
            name="Budi Santoso",
            role=UserRole.ADMIN,
        )
        sari = User(
            auth_user_id="seed-student-sari",
            email="sari@student.sarana.ac.id",
            name="Sari Wulandari",
            role=UserRole.STUDENT,
        )
        dimas = User(
            auth_user_id="seed-student-dimas",
            email="dimas@student.sarana.ac.id",
            name="Dimas Pratama",
            role=UserRole.STUDENT,
        )
        session.add_all([budi, sari, dimas])
        await session.flush()

        print(f"   ✓ Budi Santoso (Facilities staff, admin)")
        print(f"   ✓ Sari Wulandari (Student)")
        print(f"   ✓ Dimas Pratama (Student)")

        # =================================================================
        # CREATE CATEGORIES
        # =================================================================
        print("\n🏷️  Creating categories...")

        categories = {
            name: Category(name=name)
            for name in ["Electrical", "Plumbing", "Furniture", "Cleanliness", "Network"]
        }
        session.add_all(categories.values())
        await session.flush()
        for name in categories:
            print(f"   ✓ {name}")

        # =================================================================
        # FILE COMPLAINTS
        # =================================================================
        print("\n📝 Filing complaints...")

        service = ComplaintService(session)
        reports = [
            (sari, "Flickering lights", "Building A, Room 204", "Electrical",
             "Ceiling lights flicker constantly during lectures."),
            (dimas, "Leaking sink", "Building C, 1st floor restroom", "Plumbing",
             "Water pools under the sink by the entrance."),
            (sari, "Broken chair", "Library, 2nd floor", "Furniture",
             "Chair leg snapped near the reading tables."),
            (dimas, "Wi-Fi drops", "Student lounge", "Network",
             "Connection drops every few minutes in the afternoon."),
            (sari, "Overflowing bins", "Cafeteria", "Cleanliness",
             "Bins are not emptied after lunch."),
            (dimas, "Projector not working", "Building B, Room 101", "Electrical",
             "Projector shows no signal on any input."),
        ]

        complaints = []
        for owner, title, location, category, description in reports:
            complaint = await service.file_complaint(
                FileComplaintInput(
                    title=title,
                    location=location,
                    category_id=categories[category].id,
                    description=description,
                ),
                owner_id=owner.id,
            )
            complaints.append(complaint)
            print(f"   ✓ {title} ({owner.name})")

        # =================================================================
        # ADVANCE STATUSES
        # =================================================================
        print("\n🔧 Advancing statuses...")

        leaking_sink, broken_chair = complaints[1], complaints[2]

        await service.transition_status(
            leaking_sink.id,
            ComplaintStatus.IN_PROGRESS,
            note=STAFF_ACTION_NOTES[ComplaintStatus.IN_PROGRESS],
            actor_id=budi.id,
        )
        print(f"   ✓ {leaking_sink.title}: pending -> in_progress")

        for target in (ComplaintStatus.IN_PROGRESS, ComplaintStatus.DONE):
            await service.transition_status(
                broken_chair.id,
                target,
                note=STAFF_ACTION_NOTES[target],
                actor_id=budi.id,
            )
        print(f"   ✓ {broken_chair.title}: pending -> in_progress -> done")

        await session.commit()

        print("\n" + "=" * 60)
        print("✅ DATABASE SEEDED SUCCESSFULLY!")
        print("=" * 60)
        print(f"""
📊 Summary:
   • 3 Users: Budi (admin), Sari, Dimas (students)
   • 5 Categories
   • 6 Complaints: 4 pending, 1 in progress, 1 done

🔑 Tokens (valid {settings.access_token_expire_minutes} minutes):
   Budi:  {create_access_token(budi.auth_user_id)}
   Sari:  {create_access_token(sari.auth_user_id)}

🧪 What you can test:
   1. GET /api/v1/me/notifications as Budi: five newest complaints
   2. Clear one, advance that complaint, and watch a fresh notification appear
   3. python -m sarana_care.client --token <Sari's token>
""")

    await engine.dispose()


async def clear_database(session: AsyncSession):
    """Clear all data from the database (in correct order for FK constraints)."""
    tables = [
        "notification_ledger",
        "complaint_progress",
        "complaints",
        "categories",
        "users",
    ]

    for table in tables:
        await session.execute(text(f"DELETE FROM {table}"))

    await session.commit()
    print("   ✓ Cleared existing data")


if __name__ == "__main__":
    asyncio.run(seed_database())
