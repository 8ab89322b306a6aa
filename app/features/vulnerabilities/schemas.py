"""
Pydantic schemas for vulnerabilities and lifecycle events.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field

from app.features.vulnerabilities.models import Severity, VulnStatus


class VulnerabilityBase(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    severity: Severity
    description: Optional[str] = None
    vuln_type: Optional[str] = Field(None, max_length=100)
    cve_id: Optional[str] = Field(None, max_length=50)
    vuln_url: Optional[str] = Field(None, max_length=500)
    fix_suggestion: Optional[str] = None


class VulnerabilityCreate(VulnerabilityBase):
    project_id: str
    asset_id: str


class VulnerabilityUpdate(BaseModel):
    """Descriptive fields only; status changes go through the lifecycle routes."""
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    severity: Optional[Severity] = None
    description: Optional[str] = None
    vuln_type: Optional[str] = Field(None, max_length=100)
    cve_id: Optional[str] = Field(None, max_length=50)
    vuln_url: Optional[str] = Field(None, max_length=500)
    fix_suggestion: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


class AssignRequest(BaseModel):
    assignee_id: str
    fix_deadline: Optional[datetime] = None
    comment: Optional[str] = Field(None, max_length=1000)


class CommentRequest(BaseModel):
    comment: Optional[str] = Field(None, max_length=1000)


class AuditRequest(BaseModel):
    passed: bool
    comment: Optional[str] = Field(None, max_length=1000)


class IgnoreRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=1000)


class StatusChangeRequest(BaseModel):
    status: VulnStatus
    comment: Optional[str] = Field(None, max_length=1000)


class VulnerabilityResponse(VulnerabilityBase):
    id: str
    status: VulnStatus
    project_id: str
    asset_id: str
    reporter_id: str
    assignee_id: Optional[str] = None
    fixed_by_id: Optional[str] = None
    submitted_at: datetime
    fix_deadline: Optional[datetime] = None
    fixed_at: Optional[datetime] = None
    retest_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    ignore_reason: Optional[str] = None
    version: int
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class VulnerabilityDetail(VulnerabilityResponse):
    """Single-record view with display names resolved."""
    project_name: Optional[str] = None
    asset_name: Optional[str] = None
    reporter_name: Optional[str] = None
    assignee_name: Optional[str] = None
    fixed_by_name: Optional[str] = None

    @classmethod
    def from_vuln(cls, vuln) -> "VulnerabilityDetail":
        detail = cls.model_validate(vuln)
        detail.project_name = vuln.project.name if vuln.project else None
        detail.asset_name = vuln.asset.name if vuln.asset else None
        detail.reporter_name = vuln.reporter.display_name if vuln.reporter else None
        detail.assignee_name = vuln.assignee.display_name if vuln.assignee else None
        detail.fixed_by_name = vuln.fixed_by.display_name if vuln.fixed_by else None
        return detail


class VulnerabilityListResponse(BaseModel):
    items: List[VulnerabilityResponse]
    total: int
    page: int
    page_size: int
    pages: int


class TimelineEntry(BaseModel):
    id: str
    user_id: Optional[str]
    action: str
    before: Optional[Dict[str, Any]] = None
    after: Optional[Dict[str, Any]] = None
    details: Optional[Dict[str, Any]] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
