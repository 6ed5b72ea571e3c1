"""
create_tables.py
----------------
One-shot script to create all database tables.
Use this for quick setup. For production migrations, use Alembic instead.

Usage:
    python create_tables.py
    python create_tables.py --platform-admin admin@example.com
"""

import argparse
import asyncio
import getpass

from sqlalchemy import select

from maintenancehub.core.config import settings
from maintenancehub.core.logging import configure_logging, get_logger
from maintenancehub.core.security import hash_password
from maintenancehub.db.session import build_engine, build_session_factory
from maintenancehub.models import Base, PlatformRole, User  # Imports all models so metadata is populated

logger = get_logger(__name__)


async def create_all_tables(platform_admin_email: str | None = None) -> None:
    engine = build_engine(settings.DATABASE_URL)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("All tables created")

    if platform_admin_email:
        await _ensure_platform_admin(engine, platform_admin_email.lower())
    await engine.dispose()


async def _ensure_platform_admin(engine, email: str) -> None:
    """Create (or promote) the platform admin account. It belongs to no company."""
    session_factory = build_session_factory(engine)
    async with session_factory() as db:
        async with db.begin():
            user = (
                await db.execute(select(User).where(User.email == email))
            ).scalar_one_or_none()
            if user is None:
                password = getpass.getpass(f"Password for {email}: ")
                user = User(email=email, hashed_password=hash_password(password))
                db.add(user)
            user.platform_role = PlatformRole.platform_admin.value
    logger.info("Platform admin ready", email=email)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create MaintenanceHub tables")
    parser.add_argument("--platform-admin", metavar="EMAIL", default=None)
    args = parser.parse_args()

    configure_logging()
    asyncio.run(create_all_tables(args.platform_admin))
