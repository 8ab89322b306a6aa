"""
Permission dependencies for route protection.

Every protected route declares the capability it needs; the check runs
against the static role table before any row is loaded, so a user
lacking e.g. `vuln:view` is rejected no matter what the scope resolver
would have returned.
"""
from typing import Annotated, List
from fastapi import Depends

from app.core.errors import Unauthorized
from app.features.permissions.gate import allows, check
from app.features.users.dependencies import get_current_user
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)


def require_permission(permission: str):
    """
    FastAPI dependency to require a permission code.

    Usage:
        @router.post("/vulnerabilities")
        async def submit_vulnerability(
            user: User = Depends(require_permission("vuln:create"))
        ):
            # User's role grants vuln:create
            pass

    Args:
        permission: Permission code, e.g. "vuln:assign"

    Returns:
        Dependency function that returns the current user if they have permission

    Raises:
        Unauthorized: if the user's role doesn't grant the code
    """
    async def permission_dependency(
        current_user: Annotated[User, Depends(get_current_user)]
    ) -> User:
        try:
            check(current_user, permission)
        except Unauthorized:
            log.debug("User %s (%s) denied %s", current_user.id, current_user.role.value, permission)
            raise
        return current_user

    return permission_dependency


def require_any_permission(permissions: List[str]):
    """
    FastAPI dependency to require ANY of the specified permission codes.

    Usage:
        @router.get("/reminders")
        async def list_reminders(
            user: User = Depends(require_any_permission(["system:log", "system:config"]))
        ):
            pass
    """
    async def permission_dependency(
        current_user: Annotated[User, Depends(get_current_user)]
    ) -> User:
        if current_user.is_active:
            for permission in permissions:
                if allows(current_user.role, permission):
                    return current_user
        raise Unauthorized(
            " | ".join(permissions),
            f"Permission denied: requires one of {', '.join(permissions)}",
        )

    return permission_dependency
