from __future__ import annotations

import logging
from datetime import date, datetime, time
from zoneinfo import ZoneInfo

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.settings import settings
from app.models.appointment import Appointment, AppointmentStatus
from app.models.patient import Patient
from app.models.user import User
from app.services.audit import log_event
from app.services.errors import (
    DomainValidationError,
    InvalidStateError,
    NotFoundError,
    SlotUnavailableError,
)
from app.services.paging import LIKE_ESCAPE, Page, PageParams, paginate, search_pattern
from app.services.tenants import require_active_clinic, require_active_facility, require_facility

logger = logging.getLogger("frontdesk.appointments")

ALLOWED_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.scheduled: frozenset(
        {AppointmentStatus.invoiced, AppointmentStatus.cancelled, AppointmentStatus.no_show}
    ),
    AppointmentStatus.invoiced: frozenset({AppointmentStatus.paid, AppointmentStatus.cancelled}),
    AppointmentStatus.paid: frozenset({AppointmentStatus.awaiting_vitals}),
    AppointmentStatus.awaiting_vitals: frozenset(
        {AppointmentStatus.in_progress, AppointmentStatus.no_show}
    ),
    AppointmentStatus.in_progress: frozenset({AppointmentStatus.completed}),
    AppointmentStatus.completed: frozenset(),
    AppointmentStatus.cancelled: frozenset(),
    AppointmentStatus.no_show: frozenset(),
}


def local_now() -> datetime:
    """Naive wall-clock time at the clinic, comparable with appointment date+time."""
    return datetime.now(ZoneInfo(settings.clinic_timezone)).replace(tzinfo=None)


def can_transition(current: AppointmentStatus, target: AppointmentStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def transition(appointment: Appointment, target: AppointmentStatus, *, actor: User | None = None) -> None:
    if not can_transition(appointment.status, target):
        raise InvalidStateError(
            f"Appointment cannot move from {appointment.status.value} to {target.value}"
        )
    appointment.status = target
    appointment.updated_by_user_id = actor.id if actor else None


def slot_taken(db: Session, clinic_id: int, appointment_date: date, appointment_time: time) -> bool:
    found = db.scalar(
        select(Appointment.id).where(
            Appointment.clinic_id == clinic_id,
            Appointment.appointment_date == appointment_date,
            Appointment.appointment_time == appointment_time,
            Appointment.deleted_at.is_(None),
        )
    )
    return found is not None


def create_appointment(
    db: Session,
    facility_id: int,
    patient_id: int,
    clinic_id: int,
    appointment_date: date,
    appointment_time: time,
    appointment_type: str = "",
    notes: str | None = None,
    *,
    actor: User | None = None,
    now: datetime | None = None,
) -> Appointment:
    logger.info("Creating appointment for patient %s at facility %s", patient_id, facility_id)
    require_active_facility(db, facility_id)
    patient = db.scalar(
        select(Patient).where(
            Patient.id == patient_id,
            Patient.facility_id == facility_id,
            Patient.deleted_at.is_(None),
        )
    )
    if patient is None:
        raise NotFoundError("Patient not found or doesn't belong to this facility")
    require_active_clinic(db, clinic_id, facility_id)

    appointment_time = appointment_time.replace(second=0, microsecond=0, tzinfo=None)
    if datetime.combine(appointment_date, appointment_time) <= (now or local_now()):
        raise DomainValidationError("Appointment date and time must be in the future")

    if slot_taken(db, clinic_id, appointment_date, appointment_time):
        logger.warning(
            "Slot %s %s already booked at clinic %s", appointment_date, appointment_time, clinic_id
        )
        raise SlotUnavailableError("An appointment already exists at this time slot")

    appointment = Appointment(
        facility_id=facility_id,
        patient_id=patient.id,
        clinic_id=clinic_id,
        appointment_date=appointment_date,
        appointment_time=appointment_time,
        appointment_type=appointment_type or "",
        notes=notes,
        status=AppointmentStatus.scheduled,
        created_by_user_id=actor.id if actor else None,
        updated_by_user_id=actor.id if actor else None,
    )
    try:
        db.add(appointment)
        db.flush()
        log_event(
            db,
            actor=actor,
            action="appointment.created",
            entity_type="appointment",
            entity_id=str(appointment.id),
            facility_id=facility_id,
            after_obj=appointment,
        )
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        logger.warning("Slot collision on insert at clinic %s: %s", clinic_id, exc.orig)
        raise SlotUnavailableError("An appointment already exists at this time slot") from exc
    except Exception:
        db.rollback()
        logger.exception("Error creating appointment for patient %s", patient_id)
        raise

    db.refresh(appointment)
    logger.info("Created appointment %s for patient %s", appointment.id, patient_id)
    return appointment


def get_appointment(
    db: Session, appointment_id: int, facility_id: int, *, for_update: bool = False
) -> Appointment:
    stmt = select(Appointment).where(
        Appointment.id == appointment_id,
        Appointment.facility_id == facility_id,
        Appointment.deleted_at.is_(None),
    )
    if for_update:
        stmt = stmt.with_for_update()
    appointment = db.scalar(stmt)
    if appointment is None:
        raise NotFoundError("Appointment not found or doesn't belong to this facility")
    return appointment


def advance_appointment_to_awaiting_vitals(
    db: Session, appointment_id: int, facility_id: int, *, actor: User | None = None
) -> Appointment:
    logger.info("Moving appointment %s to awaiting_vitals", appointment_id)
    require_facility(db, facility_id)
    appointment = get_appointment(db, appointment_id, facility_id, for_update=True)
    if appointment.status != AppointmentStatus.paid:
        db.rollback()
        raise InvalidStateError(
            "Appointment must be in paid status before transitioning to awaiting_vitals"
        )
    try:
        transition(appointment, AppointmentStatus.awaiting_vitals, actor=actor)
        log_event(
            db,
            actor=actor,
            action="appointment.awaiting_vitals",
            entity_type="appointment",
            entity_id=str(appointment.id),
            facility_id=facility_id,
            after_data={"status": appointment.status.value},
        )
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("Error updating appointment %s status", appointment_id)
        raise
    db.refresh(appointment)
    return appointment


def list_appointments(
    db: Session,
    facility_id: int,
    *,
    params: PageParams,
    start_date: date | None = None,
    end_date: date | None = None,
    clinic_id: int | None = None,
    search: str | None = None,
    descending: bool = False,
) -> Page[Appointment]:
    require_facility(db, facility_id)
    today = local_now().date()
    stmt = select(Appointment).where(
        Appointment.facility_id == facility_id,
        Appointment.deleted_at.is_(None),
        Appointment.appointment_date >= (start_date or today),
        Appointment.appointment_date <= (end_date or today),
    )
    if clinic_id is not None:
        stmt = stmt.where(Appointment.clinic_id == clinic_id)
    pattern = search_pattern(search)
    if pattern:
        stmt = stmt.join(Patient, Patient.id == Appointment.patient_id).where(
            or_(
                Patient.first_name.ilike(pattern, escape=LIKE_ESCAPE),
                Patient.last_name.ilike(pattern, escape=LIKE_ESCAPE),
                Patient.patient_code.ilike(pattern, escape=LIKE_ESCAPE),
                Patient.phone.ilike(pattern, escape=LIKE_ESCAPE),
            )
        )
    if descending:
        stmt = stmt.order_by(
            Appointment.appointment_date.desc(), Appointment.appointment_time.desc(), Appointment.id.desc()
        )
    else:
        stmt = stmt.order_by(
            Appointment.appointment_date.asc(), Appointment.appointment_time.asc(), Appointment.id.asc()
        )
    return paginate(db, stmt, params)
