"""
Pydantic schemas for user-related requests and responses.
"""
from datetime import datetime
from pydantic import BaseModel, EmailStr, Field

from app.features.permissions.models import RoleCode


class UserBase(BaseModel):
    """Base user schema with common fields."""
    username: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    real_name: str = Field("", max_length=255)


class UserCreate(UserBase):
    """Schema for creating a new user."""
    role: RoleCode
    phone: str | None = Field(None, max_length=50)
    department: str | None = Field(None, max_length=100)


class UserUpdate(BaseModel):
    """Schema for updating user information."""
    real_name: str | None = Field(None, max_length=255)
    email: EmailStr | None = None
    phone: str | None = Field(None, max_length=50)
    department: str | None = Field(None, max_length=100)
    role: RoleCode | None = None


class UserResponse(UserBase):
    """Schema for user responses."""
    id: str
    role: RoleCode
    phone: str | None = None
    department: str | None = None
    is_active: bool
    last_login_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class UserPublic(BaseModel):
    """Public user information (limited fields)."""
    id: str
    username: str
    real_name: str
    role: RoleCode

    model_config = {"from_attributes": True}


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
