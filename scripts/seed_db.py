"""
Seed the database with a demo user and sub-agency.

Prints a user bearer token that can be used against /api/v1/api-keys.
"""

import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import select

from agencyhub.core.database import Base, db_manager
from agencyhub.core.security import create_access_token
from agencyhub.models import SubAgency, User


async def seed_data() -> None:
    """Create tables and initial demo data."""
    print("Seeding database...")

    db_manager.init()

    async with db_manager.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async for db in db_manager.get_session():
        result = await db.execute(select(User).where(User.email == "owner@agency.test"))
        user = result.scalar_one_or_none()

        if user is None:
            user = User(email="owner@agency.test", full_name="Agency Owner")
            db.add(user)
            await db.flush()

            sub_agency = SubAgency(name="North Region", owner_id=user.id)
            db.add(sub_agency)
            await db.flush()

            print(f"Created user: {user.email} ({user.id})")
            print(f"Created sub-agency: {sub_agency.name} ({sub_agency.id})")
        else:
            print("Demo user already exists, skipping inserts.")

        token = create_access_token(subject=user.id)

    await db_manager.close()
    print(f"User bearer token: {token}")
    print("Seeding complete!")


if __name__ == "__main__":
    asyncio.run(seed_data())
