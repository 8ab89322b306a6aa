"""
Sync the Role/Permission tables with the static role table.

Idempotent: existing rows are updated in place, missing ones created.
"""
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.permissions.gate import PERMISSIONS, ROLE_DESCRIPTIONS, ROLE_PERMISSIONS
from app.features.permissions.models import Permission, Role
from app.utils import get_logger


log = get_logger(__name__)


async def seed_permissions(db: AsyncSession) -> dict[str, Permission]:
    """
    Create or update permission rows.

    Returns:
        Dictionary mapping permission code to Permission object
    """
    result = await db.execute(select(Permission))
    permissions_map = {perm.code: perm for perm in result.scalars().all()}

    created = 0
    for code, name, description in PERMISSIONS:
        module, action = code.split(":", 1)
        permission = permissions_map.get(code)
        if permission is None:
            permission = Permission(code=code, name=name, module=module, action=action, description=description)
            db.add(permission)
            permissions_map[code] = permission
            created += 1
        else:
            permission.name = name
            permission.description = description

    await db.flush()
    log.info("Permission catalogue synced (%d created, %d total)", created, len(PERMISSIONS))
    return permissions_map


async def seed_roles(db: AsyncSession, permissions_map: dict[str, Permission]) -> list[Role]:
    """Create or update the role rows and their permission grants."""
    result = await db.execute(select(Role))
    roles = {role.code: role for role in result.scalars().all()}

    for code, (name, description) in ROLE_DESCRIPTIONS.items():
        role = roles.get(code)
        if role is None:
            role = Role(code=code, name=name, description=description)
            db.add(role)
            roles[code] = role
        role.name = name
        role.description = description
        role.permissions = [permissions_map[perm] for perm in sorted(ROLE_PERMISSIONS[code])]
        log.debug("Role '%s' granted %d permissions", code.value, len(role.permissions))

    await db.flush()
    return list(roles.values())


async def sync_catalogue(db: AsyncSession) -> None:
    permissions_map = await seed_permissions(db)
    await seed_roles(db, permissions_map)
    await db.commit()
