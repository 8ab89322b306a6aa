"""
PermissionGate: static role -> permission code table.

Capability checks are independent of row-level scope and always run
before the AccessScope resolver.
"""
from app.core.errors import Unauthorized
from app.features.permissions.models import RoleCode


# (code, name, description)
PERMISSIONS: list[tuple[str, str, str]] = [
    ("dashboard:view", "View dashboard", "View the dashboard home page"),

    ("project:view", "View projects", "View project list and details"),
    ("project:create", "Create projects", "Create new projects"),
    ("project:edit", "Edit projects", "Edit project information and members"),
    ("project:delete", "Delete projects", "Delete projects"),

    ("user:view", "View users", "View user list and details"),
    ("user:create", "Create users", "Create new users"),
    ("user:edit", "Edit users", "Edit user information and status"),
    ("user:delete", "Delete users", "Delete users"),
    ("user:reset_password", "Reset passwords", "Reset user passwords"),

    ("vuln:view", "View vulnerabilities", "View vulnerability list and details"),
    ("vuln:create", "Submit vulnerabilities", "Submit new vulnerabilities"),
    ("vuln:edit", "Edit vulnerabilities", "Edit vulnerability details"),
    ("vuln:assign", "Assign vulnerabilities", "Assign vulnerabilities to a fixer"),
    ("vuln:retest", "Retest vulnerabilities", "Retest and audit fixed vulnerabilities"),
    ("vuln:fix", "Fix vulnerabilities", "Mark vulnerabilities as fixed"),
    ("vuln:ignore", "Ignore vulnerabilities", "Ignore vulnerabilities"),
    ("vuln:change_status", "Change vulnerability status", "Override vulnerability status"),

    ("asset:view", "View assets", "View asset list and details"),
    ("asset:create", "Create assets", "Create new assets"),
    ("asset:edit", "Edit assets", "Edit asset information"),
    ("asset:delete", "Delete assets", "Delete assets"),

    ("system:config", "System configuration", "Manage system configuration and jobs"),
    ("system:log", "View logs", "View audit and operation logs"),
    ("system:stats", "Statistics", "View system statistics"),
]

ALL_CODES: frozenset[str] = frozenset(code for code, _, _ in PERMISSIONS)

ROLE_PERMISSIONS: dict[RoleCode, frozenset[str]] = {
    RoleCode.SUPER_ADMIN: ALL_CODES,
    RoleCode.SECURITY_ENGINEER: frozenset({
        "dashboard:view",
        "project:view",
        "user:view",
        "vuln:view", "vuln:create", "vuln:edit", "vuln:assign", "vuln:retest",
        "vuln:ignore", "vuln:change_status",
        "asset:view", "asset:create", "asset:edit", "asset:delete",
    }),
    RoleCode.DEV_ENGINEER: frozenset({
        "dashboard:view",
        "project:view",
        "vuln:view", "vuln:edit", "vuln:fix", "vuln:change_status",
    }),
}

ROLE_DESCRIPTIONS: dict[RoleCode, tuple[str, str]] = {
    RoleCode.SUPER_ADMIN: ("Super administrator", "Full access to every module"),
    RoleCode.SECURITY_ENGINEER: ("Security engineer", "Submits, assigns and audits vulnerabilities"),
    RoleCode.DEV_ENGINEER: ("Development engineer", "Fixes vulnerabilities assigned to them"),
}


def as_role(role: RoleCode | str | None) -> RoleCode | None:
    """Coerce a role value; unknown roles map to None."""
    if isinstance(role, RoleCode) or role is None:
        return role
    try:
        return RoleCode(role)
    except ValueError:
        return None


def allows(role: RoleCode | str | None, permission: str) -> bool:
    """Return True if the role grants the permission code."""
    role = as_role(role)
    if role is None:
        return False
    if role is RoleCode.SUPER_ADMIN:
        return True
    return permission in ROLE_PERMISSIONS.get(role, frozenset())


def permissions_for(role: RoleCode | str | None) -> list[str]:
    role = as_role(role)
    if role is None:
        return []
    return sorted(ROLE_PERMISSIONS.get(role, frozenset()))


def check(actor, permission: str) -> None:
    """
    Raise Unauthorized unless the actor may use the permission code.

    Disabled users are rejected whatever their role.
    """
    if not getattr(actor, "is_active", False) or not allows(actor.role, permission):
        raise Unauthorized(permission)
