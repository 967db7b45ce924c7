"""
Database seeding script for initial users.

Creates an ADMIN and a demo USER account for development.
Run this script after database is set up but before first use.
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import select
from fintrack.app.db.session import AsyncSessionLocal, engine, Base
from fintrack.app.models.user import User
from fintrack.app.models.activity_log import UserActivityLog  # noqa: F401
from fintrack.app.models.enums import UserRole, PasswordChangedBy
from fintrack.app.core.clock import utcnow
from fintrack.app.core.security import get_password_hash


async def seed_users():
    """
    Seed initial users.

    Creates:
    - 1 ADMIN user
    - 1 USER account
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as db:
        print("🌱 Starting user seeding...")

        # Check if ADMIN already exists
        result = await db.execute(
            select(User).where(User.username == "admin")
        )
        existing_admin = result.scalar_one_or_none()

        if existing_admin:
            print("ℹ️  ADMIN user already exists, skipping seeding")
            return

        now = utcnow()

        admin_user = User(
            email="admin@fintrack.local",
            username="admin",
            full_name="System Administrator",
            position="Administrator",
            hashed_password=get_password_hash("admin12345"),
            password_changed_at=now,
            password_changed_by=PasswordChangedBy.SYSTEM,
            role=UserRole.ADMIN,
        )
        db.add(admin_user)
        print("✅ Created ADMIN user (username: admin, password: admin12345)")

        demo_user = User(
            email="demo@fintrack.local",
            username="demo",
            full_name="Demo User",
            hashed_password=get_password_hash("demo12345"),
            password_changed_at=now,
            password_changed_by=PasswordChangedBy.SYSTEM,
            role=UserRole.USER,
        )
        db.add(demo_user)
        print("✅ Created USER account (username: demo, password: demo12345)")

        await db.commit()

        print("\n🎉 User seeding completed successfully!")
        print("\nNote: further USER accounts register via POST /v1/auth/register")


if __name__ == "__main__":
    asyncio.run(seed_users())
