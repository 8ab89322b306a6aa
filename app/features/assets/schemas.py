"""
Pydantic schemas for assets.
"""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, IPvAnyAddress


class AssetBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    type: str = Field("server", max_length=50)
    domain: Optional[str] = Field(None, max_length=255)
    ip: Optional[IPvAnyAddress] = None
    port: Optional[str] = Field(None, max_length=100)
    os: Optional[str] = Field(None, max_length=100)
    owner: Optional[str] = Field(None, max_length=100)
    environment: Optional[str] = Field(None, max_length=50)
    department: Optional[str] = Field(None, max_length=100)
    importance: Optional[str] = Field(None, max_length=20)
    tags: Optional[str] = Field(None, max_length=500)
    status: str = Field("active", max_length=20)
    description: Optional[str] = None


class AssetCreate(AssetBase):
    project_id: Optional[str] = None


class AssetUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    type: Optional[str] = Field(None, max_length=50)
    domain: Optional[str] = Field(None, max_length=255)
    ip: Optional[IPvAnyAddress] = None
    port: Optional[str] = Field(None, max_length=100)
    os: Optional[str] = Field(None, max_length=100)
    owner: Optional[str] = Field(None, max_length=100)
    environment: Optional[str] = Field(None, max_length=50)
    department: Optional[str] = Field(None, max_length=100)
    importance: Optional[str] = Field(None, max_length=20)
    tags: Optional[str] = Field(None, max_length=500)
    status: Optional[str] = Field(None, max_length=20)
    description: Optional[str] = None
    project_id: Optional[str] = None


class AssetResponse(AssetBase):
    id: str
    ip: Optional[str] = None
    project_id: Optional[str] = None
    created_by: str
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AssetListResponse(BaseModel):
    items: List[AssetResponse]
    total: int
    page: int
    page_size: int
    pages: int
