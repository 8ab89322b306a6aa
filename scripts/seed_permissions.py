"""
Seed script to populate permissions, roles and the first super admin.

Run this script after configuring DATABASE_URL to create:
- The permission catalogue
- The three system roles and their permission grants
- An enabled super admin (BOOTSTRAP_ADMIN_USERNAME / BOOTSTRAP_ADMIN_EMAIL)

A bearer token for the admin is printed so the API can be used right away.

Usage:
    python -m scripts.seed_permissions
"""
import asyncio
from sqlalchemy import select

from app.core import config
from app.core.database.engine import AsyncSessionLocal, init_db
from app.features.permissions.gate import ROLE_DESCRIPTIONS
from app.features.permissions.models import RoleCode
from app.features.permissions.seed import sync_catalogue
from app.features.users.auth import create_access_token
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)


async def ensure_admin(db) -> User:
    """Create the bootstrap super admin unless it already exists."""
    result = await db.execute(select(User).where(User.username == config.BOOTSTRAP_ADMIN_USERNAME))
    admin = result.scalar_one_or_none()

    if admin is not None:
        log.debug(f"Admin '{admin.username}' already exists, skipping")
        if not admin.is_active or admin.role != RoleCode.SUPER_ADMIN:
            log.warning(f"Restoring super admin role on '{admin.username}'")
            admin.is_active = True
            admin.role = RoleCode.SUPER_ADMIN
            await db.commit()
        return admin

    admin = User(
        username=config.BOOTSTRAP_ADMIN_USERNAME,
        email=config.BOOTSTRAP_ADMIN_EMAIL,
        real_name="Administrator",
        role=RoleCode.SUPER_ADMIN,
        is_active=True,
    )
    db.add(admin)
    await db.commit()
    await db.refresh(admin)
    log.info(f"Created super admin '{admin.username}'")
    return admin


async def main():
    """Main function to seed permissions, roles and the admin."""
    log.info("Starting permission seeding...")

    # Initialize database tables first
    log.info("Initializing database tables...")
    await init_db()

    async with AsyncSessionLocal() as db:
        try:
            await sync_catalogue(db)
            admin = await ensure_admin(db)
        except Exception as e:
            log.error(f"Error seeding permissions: {e}", exc_info=True)
            await db.rollback()
            raise

    log.info("Permission seeding completed successfully!")
    log.info("")
    log.info("Roles:")
    for code, (name, description) in ROLE_DESCRIPTIONS.items():
        log.info(f"  - {code.value}: {description}")
    log.info("")
    print(f"Bearer token for {admin.username}:")
    print(create_access_token(admin))


if __name__ == "__main__":
    asyncio.run(main())
