"""
Pydantic schemas for the permission catalogue.
"""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field, ConfigDict

from app.features.permissions.models import RoleCode


class PermissionResponse(BaseModel):
    """Schema for permission response."""
    id: str
    code: str
    name: str
    module: str
    action: str
    description: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RoleResponse(BaseModel):
    """Schema for role response."""
    id: str
    code: RoleCode
    name: str
    description: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class RoleWithPermissions(RoleResponse):
    """Role response including its permission codes."""
    permissions: List[PermissionResponse] = []


class PermissionCheckRequest(BaseModel):
    """Schema for checking if the current user has a permission."""
    permission: str = Field(..., min_length=3, max_length=100, description="Permission code, e.g. 'vuln:assign'")


class PermissionCheckResponse(BaseModel):
    """Schema for permission check response."""
    permission: str
    has_permission: bool
    reason: Optional[str] = None


class UserPermissionsResponse(BaseModel):
    """Permission codes granted to a user through their role."""
    user_id: str
    role: RoleCode
    permissions: List[str] = []
