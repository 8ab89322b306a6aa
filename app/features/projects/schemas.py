"""
Pydantic schemas for projects and their members.
"""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.features.permissions.models import RoleCode
from app.features.projects.models import ProjectStatus


class ProjectBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    type: Optional[str] = Field(None, max_length=50, description="web_project, api_interface, mobile_app, software_app")
    priority: Optional[str] = Field(None, max_length=20, description="high, medium, low")
    description: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    @model_validator(mode="after")
    def end_after_start(self):
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class ProjectCreate(ProjectBase):
    """Schema for creating a project. The owner defaults to the creator."""
    owner_id: Optional[str] = None
    status: ProjectStatus = ProjectStatus.ACTIVE


class ProjectUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    type: Optional[str] = Field(None, max_length=50)
    priority: Optional[str] = Field(None, max_length=20)
    description: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    status: Optional[ProjectStatus] = None
    owner_id: Optional[str] = None


class ProjectMemberCreate(BaseModel):
    user_id: str
    role: RoleCode


class ProjectMemberResponse(BaseModel):
    id: str
    project_id: str
    user_id: str
    role: RoleCode
    joined_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ProjectResponse(ProjectBase):
    id: str
    owner_id: str
    created_by: str
    status: ProjectStatus
    created_at: datetime
    updated_at: datetime

    is_expired: bool = False
    can_submit_vulns: bool = False
    member_count: int = 0

    @classmethod
    def from_project(cls, project, now: Optional[datetime] = None) -> "ProjectResponse":
        # is_expired is a method on the model, so the computed fields are filled in here
        computed = {"is_expired", "can_submit_vulns", "member_count"}
        data = {name: getattr(project, name) for name in cls.model_fields if name not in computed}
        return cls(
            **data,
            is_expired=project.is_expired(now),
            can_submit_vulns=project.can_submit(now),
            member_count=len(project.members),
        )


class ProjectListResponse(BaseModel):
    items: List[ProjectResponse]
    total: int
    page: int
    page_size: int
    pages: int
