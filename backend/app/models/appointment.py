from __future__ import annotations

import enum
from datetime import date, datetime, time

from sqlalchemy import Date, Enum, ForeignKey, Index, String, Text, Time, text
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import AuditMixin, Base, SoftDeleteMixin


class AppointmentStatus(str, enum.Enum):
    scheduled = "scheduled"
    invoiced = "invoiced"
    paid = "paid"
    awaiting_vitals = "awaiting_vitals"
    in_progress = "in_progress"
    completed = "completed"
    cancelled = "cancelled"
    no_show = "no_show"


ACTIVE_APPOINTMENT_STATUSES = (
    AppointmentStatus.scheduled,
    AppointmentStatus.awaiting_vitals,
    AppointmentStatus.in_progress,
)


class Appointment(Base, AuditMixin, SoftDeleteMixin):
    __tablename__ = "appointments"
    __table_args__ = (
        Index(
            "uq_appointments_clinic_slot",
            "clinic_id",
            "appointment_date",
            "appointment_time",
            unique=True,
            postgresql_where=text("deleted_at IS NULL"),
            sqlite_where=text("deleted_at IS NULL"),
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    facility_id: Mapped[int] = mapped_column(ForeignKey("facilities.id"), nullable=False, index=True)
    patient_id: Mapped[int] = mapped_column(ForeignKey("patients.id"), nullable=False, index=True)
    clinic_id: Mapped[int] = mapped_column(ForeignKey("clinics.id"), nullable=False, index=True)
    appointment_date: Mapped[date] = mapped_column(Date, nullable=False)
    appointment_time: Mapped[time] = mapped_column(Time, nullable=False)
    appointment_type: Mapped[str] = mapped_column(String(120), nullable=False, default="")
    status: Mapped[AppointmentStatus] = mapped_column(
        Enum(AppointmentStatus, name="appointment_status"),
        default=AppointmentStatus.scheduled,
        nullable=False,
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    @property
    def appointment_datetime(self) -> datetime:
        return datetime.combine(self.appointment_date, self.appointment_time)
