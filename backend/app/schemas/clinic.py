from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ClinicCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    code: str = Field(min_length=1, max_length=32)
    description: Optional[str] = None
    is_active: bool = True


class ClinicUpdate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    is_active: bool = True


class ClinicOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    facility_id: int
    name: str
    code: str
    description: Optional[str] = None
    is_active: bool
    created_at: datetime
    updated_at: datetime


class ClinicDetailOut(ClinicOut):
    total_appointments: int = 0
    active_appointments: int = 0
