from datetime import date, datetime, time
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from app.models.appointment import AppointmentStatus


class AppointmentCreate(BaseModel):
    patient_id: int
    clinic_id: int
    appointment_date: date
    appointment_time: time
    appointment_type: str = Field(default="", max_length=100)
    notes: Optional[str] = None


class AppointmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    facility_id: int
    patient_id: int
    clinic_id: int
    appointment_date: date
    appointment_time: time
    appointment_type: str
    status: AppointmentStatus
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime
