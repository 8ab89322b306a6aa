"""
Pydantic schemas for system configuration and statistics.
"""
from datetime import datetime
from typing import Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.features.system.models import ConfigType, parse_config_value


class SystemConfigCreate(BaseModel):
    key: str = Field(..., min_length=1, max_length=100, pattern=r"^[A-Za-z0-9_.-]+$")
    value: str = ""
    type: ConfigType = ConfigType.STRING
    group: str = Field("general", min_length=1, max_length=50)
    description: Optional[str] = Field(None, max_length=255)
    is_public: bool = False

    @model_validator(mode="after")
    def value_matches_type(self):
        parse_config_value(self.type, self.value)
        return self


class SystemConfigUpdate(BaseModel):
    value: Optional[str] = None
    type: Optional[ConfigType] = None
    group: Optional[str] = Field(None, min_length=1, max_length=50)
    description: Optional[str] = Field(None, max_length=255)
    is_public: Optional[bool] = None


class SystemConfigResponse(BaseModel):
    id: str
    key: str
    value: str
    type: ConfigType
    group: str
    description: Optional[str] = None
    is_public: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ActiveCount(BaseModel):
    total: int
    active: int


class BreakdownCount(BaseModel):
    total: int
    by_status: Dict[str, int]


class VulnerabilityStats(BaseModel):
    total: int
    open: int
    by_status: Dict[str, int]
    by_severity: Dict[str, int]


class SystemStatsResponse(BaseModel):
    users: ActiveCount
    projects: BreakdownCount
    assets: ActiveCount
    vulnerabilities: VulnerabilityStats
    reminders: BreakdownCount
    recent_activities: int
    generated_at: datetime


class SystemConfigListResponse(BaseModel):
    items: List[SystemConfigResponse]
    total: int
