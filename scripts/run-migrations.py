#!/usr/bin/env python3
"""
Script to run database migrations and grant the admin role
"""
import os
import sys
import asyncio
from alembic.config import Config
from alembic import command

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from eventsnaps.config import get_config
from eventsnaps.database import DatabaseManager
from eventsnaps.models import UserProfile, UserRole

ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


def alembic_config() -> Config:
    alembic_cfg = Config(os.path.join(ROOT, "alembic.ini"))
    alembic_cfg.set_main_option("script_location", os.path.join(ROOT, "migrations"))
    alembic_cfg.set_main_option("sqlalchemy.url", get_config().database_url)
    return alembic_cfg


def run_migrations(revision: str = "head") -> bool:
    """Upgrade the schema"""
    print(f"Upgrading database to {revision}...")
    try:
        command.upgrade(alembic_config(), revision)
        print("✓ Database migrations completed successfully")
        return True
    except Exception as e:
        print(f"✗ Migration failed: {e}")
        return False


def rollback(revision: str) -> bool:
    print(f"Downgrading database to {revision}...")
    try:
        command.downgrade(alembic_config(), revision)
        print("✓ Downgrade completed successfully")
        return True
    except Exception as e:
        print(f"✗ Downgrade failed: {e}")
        return False


async def grant_admin(user_id: str) -> bool:
    """Mark a user's profile as admin, creating the profile if needed"""
    db_manager = DatabaseManager()
    await db_manager.initialize(get_config().database_url)
    try:
        async with db_manager.get_session() as session:
            profile = await session.get(UserProfile, user_id)
            if profile is None:
                session.add(UserProfile(id=user_id, role=UserRole.ADMIN))
            else:
                profile.role = UserRole.ADMIN
        print(f"✓ {user_id} is now an admin")
        return True
    except Exception as e:
        print(f"✗ Could not grant admin role: {e}")
        return False
    finally:
        await db_manager.close()


def main():
    """Main function"""
    if len(sys.argv) < 2:
        print("Usage:")
        print("  python scripts/run-migrations.py migrate [revision]")
        print("  python scripts/run-migrations.py downgrade <revision>")
        print("  python scripts/run-migrations.py grant-admin <user_id>")
        sys.exit(1)

    command_arg = sys.argv[1]

    if command_arg == "migrate":
        success = run_migrations(sys.argv[2] if len(sys.argv) > 2 else "head")
    elif command_arg in ("downgrade", "grant-admin"):
        if len(sys.argv) < 3:
            print(f"Error: {command_arg} needs an argument")
            sys.exit(1)
        if command_arg == "downgrade":
            success = rollback(sys.argv[2])
        else:
            success = asyncio.run(grant_admin(sys.argv[2]))
    else:
        print(f"Unknown command: {command_arg}")
        sys.exit(1)

    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
