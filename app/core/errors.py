"""
Domain error taxonomy.

Services raise these; app.main translates them into HTTP responses.
"""
from typing import Any


class VulnTrackError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"detail": self.message, "error": type(self).__name__}


class Unauthorized(VulnTrackError):
    """The actor's role lacks the required permission code."""

    status_code = 403

    def __init__(self, permission: str, message: str | None = None):
        super().__init__(message or f"Permission denied: {permission}")
        self.permission = permission


class NotFound(VulnTrackError):
    """The record does not exist or is outside the actor's scope."""

    status_code = 404

    def __init__(self, kind: str, entity_id: str | None = None):
        super().__init__(f"{kind.capitalize()} not found")
        self.kind = kind
        self.entity_id = entity_id


class InvalidTransition(VulnTrackError):
    """A lifecycle event is not legal for the current state or actor."""

    status_code = 409

    def __init__(self, state: str | None, event: str, role: str | None, reason: str = ""):
        message = f"Invalid transition: event '{event}' from state '{state or 'none'}' by role '{role}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.state = state
        self.event = event
        self.role = role
        self.reason = reason

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(state=self.state, event=self.event, role=self.role)
        return data


class ProjectExpired(VulnTrackError):
    status_code = 422

    def __init__(self, project_id: str):
        super().__init__("Project has expired and no longer accepts submissions")
        self.project_id = project_id


class ProjectInactive(VulnTrackError):
    status_code = 422

    def __init__(self, project_id: str, project_status: str):
        super().__init__(f"Project is {project_status} and does not accept submissions")
        self.project_id = project_id
        self.project_status = project_status


class InvalidRequest(VulnTrackError):
    status_code = 400


class StorageError(VulnTrackError):
    """Opaque wrapper for storage-layer failures; the transaction is rolled back."""

    status_code = 500

    def __init__(self, message: str = "Storage error"):
        super().__init__(message)


class ReminderDispatchFailed(VulnTrackError):
    """A deadline reminder could not be delivered. Logged, never retried the same day."""

    status_code = 502

    def __init__(self, vuln_id: str, days_left: int, cause: BaseException | None = None):
        super().__init__(f"Deadline reminder for vulnerability {vuln_id} ({days_left} days left) failed: {cause}")
        self.vuln_id = vuln_id
        self.days_left = days_left
        self.cause = cause
