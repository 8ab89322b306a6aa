"""
AccessScope resolver.

Turns (actor, entity kind, optional project filter) into a SQL predicate
restricting which rows the actor may see or mutate. Projects, assets and
vulnerabilities all go through this one resolver:

- super_admin: no restriction.
- project filter given: rows of that project, provided the actor owns
  the project or is a member of it; otherwise nothing.
- security_engineer: rows they created, or rows of projects they own or
  are a member of.
- dev_engineer: rows of projects they own or are a member of.
- any other role: nothing.

List operations apply the predicate and so return an empty collection
when nothing matches; single-record reads raise NotFound, so existence
is not confirmed to outsiders.
"""
from dataclasses import dataclass
import enum
from typing import Any, Optional
from sqlalchemy import ColumnElement, Select, exists, false, or_, select, true, and_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from app.core.errors import NotFound
from app.features.assets.models import Asset
from app.features.permissions.gate import as_role
from app.features.permissions.models import RoleCode
from app.features.projects.models import Project, ProjectMember
from app.features.users.models import User
from app.features.vulnerabilities.models import Vulnerability


class EntityKind(str, enum.Enum):
    PROJECT = "project"
    ASSET = "asset"
    VULNERABILITY = "vulnerability"


@dataclass(frozen=True)
class _Columns:
    model: Any
    project: Any
    created_by: Any


_COLUMNS: dict[EntityKind, _Columns] = {
    EntityKind.PROJECT: _Columns(Project, Project.id, Project.created_by),
    EntityKind.ASSET: _Columns(Asset, Asset.project_id, Asset.created_by),
    EntityKind.VULNERABILITY: _Columns(Vulnerability, Vulnerability.project_id, Vulnerability.reporter_id),
}


# Aliases keep the subqueries from correlating with an outer query over
# the same tables.
_ScopeProject = aliased(Project, name="scope_project")
_ScopeMember = aliased(ProjectMember, name="scope_member")


def owned_project_ids(user_id: str) -> Select:
    return select(_ScopeProject.id).where(_ScopeProject.owner_id == user_id)


def member_project_ids(user_id: str) -> Select:
    return select(_ScopeMember.project_id).where(_ScopeMember.user_id == user_id)


def participates_in(user_id: str, project_id: str) -> ColumnElement[bool]:
    """Predicate: user owns the project or is one of its members."""
    return or_(
        exists().where(and_(_ScopeProject.id == project_id, _ScopeProject.owner_id == user_id)),
        exists().where(and_(_ScopeMember.project_id == project_id, _ScopeMember.user_id == user_id)),
    )


class AccessScope:
    """Row-level visibility rules shared by every entity kind."""

    def predicate(
        self,
        actor: User,
        kind: EntityKind,
        project_id: Optional[str] = None,
    ) -> ColumnElement[bool]:
        columns = _COLUMNS[kind]
        role = as_role(actor.role)

        if role is RoleCode.SUPER_ADMIN:
            if project_id is not None:
                return columns.project == project_id
            return true()

        if project_id is not None:
            if role not in (RoleCode.SECURITY_ENGINEER, RoleCode.DEV_ENGINEER):
                return false()
            return and_(columns.project == project_id, participates_in(actor.id, project_id))

        if role is RoleCode.SECURITY_ENGINEER:
            return or_(
                columns.created_by == actor.id,
                columns.project.in_(owned_project_ids(actor.id)),
                columns.project.in_(member_project_ids(actor.id)),
            )
        if role is RoleCode.DEV_ENGINEER:
            return or_(
                columns.project.in_(owned_project_ids(actor.id)),
                columns.project.in_(member_project_ids(actor.id)),
            )
        return false()

    def select_visible(
        self,
        actor: User,
        kind: EntityKind,
        project_id: Optional[str] = None,
    ) -> Select:
        """SELECT of the entity model already restricted to the actor's scope."""
        model = _COLUMNS[kind].model
        return select(model).where(self.predicate(actor, kind, project_id))

    async def get_visible(
        self,
        db: AsyncSession,
        actor: User,
        kind: EntityKind,
        entity_id: str,
        for_update: bool = False,
    ) -> Any:
        """
        Load one record the actor may see.

        Raises:
            NotFound: if the record does not exist or is out of scope
        """
        model = _COLUMNS[kind].model
        stmt = self.select_visible(actor, kind).where(model.id == entity_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await db.execute(stmt)
        entity = result.scalar_one_or_none()
        if entity is None:
            raise NotFound(kind.value, entity_id)
        return entity

    async def is_participant(self, db: AsyncSession, user_id: str, project_id: str) -> bool:
        """True if the user owns or is a member of the project."""
        result = await db.execute(select(participates_in(user_id, project_id)))
        return bool(result.scalar())


access_scope = AccessScope()
