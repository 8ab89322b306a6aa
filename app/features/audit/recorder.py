"""
Audit recording helpers.

The recorder adds rows to the caller's session without committing, so
the audit entry commits or rolls back together with the change it
describes.
"""
from datetime import date, datetime
import enum
from typing import Any, Dict, Iterable, Optional
from sqlalchemy.ext.asyncio import AsyncSession

from app.features.audit.models import AuditLog
from app.utils import get_logger


log = get_logger(__name__)


def _jsonable(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def snapshot(obj: Any, fields: Iterable[str]) -> Dict[str, Any]:
    """Capture the given attributes of a model as a JSON-friendly dict."""
    return {field: _jsonable(getattr(obj, field)) for field in fields}


class AuditRecorder:
    """Writes AuditLog rows into the current unit of work."""

    def record(
        self,
        db: AsyncSession,
        actor_id: Optional[str],
        entity_kind: str,
        entity_id: Optional[str],
        action: str,
        before: Optional[Dict[str, Any]] = None,
        after: Optional[Dict[str, Any]] = None,
        project_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> AuditLog:
        """
        Add an audit log entry to the session.

        Args:
            db: Database session (the caller commits)
            actor_id: User performing the action, None for system jobs
            entity_kind: Type of resource (e.g. "vulnerability", "project")
            entity_id: ID of the resource
            action: Action performed (e.g. "create", "assign", "change_status")
            before: Snapshot before the change
            after: Snapshot after the change

        Returns:
            The pending AuditLog object
        """
        entry = AuditLog(
            user_id=actor_id,
            action=action,
            resource_type=entity_kind,
            resource_id=entity_id,
            project_id=project_id,
            before=before,
            after=after,
            details=details,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        db.add(entry)

        log.info(
            "Audit: user=%s action=%s resource=%s:%s", actor_id, action, entity_kind, entity_id
        )
        return entry
