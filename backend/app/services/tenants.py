from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from app.models.appointment import ACTIVE_APPOINTMENT_STATUSES, Appointment
from app.models.clinic import Clinic
from app.models.facility import Facility
from app.models.patient import Patient
from app.models.user import User
from app.services.audit import log_event, snapshot_model
from app.services.errors import InvalidStateError, NotFoundError
from app.services.paging import LIKE_ESCAPE, Page, PageParams, paginate, search_pattern

logger = logging.getLogger("frontdesk.clinics")


def get_facility(db: Session, facility_id: int) -> Facility | None:
    return db.scalar(
        select(Facility).where(Facility.id == facility_id, Facility.deleted_at.is_(None))
    )


def facility_exists(db: Session, facility_id: int) -> bool:
    return get_facility(db, facility_id) is not None


def facility_is_active(db: Session, facility_id: int) -> bool:
    facility = get_facility(db, facility_id)
    return bool(facility and facility.is_active)


def require_facility(db: Session, facility_id: int) -> Facility:
    facility = get_facility(db, facility_id)
    if facility is None:
        raise NotFoundError("Facility not found")
    return facility


def require_active_facility(db: Session, facility_id: int) -> Facility:
    facility = require_facility(db, facility_id)
    if not facility.is_active:
        raise InvalidStateError("Facility is not available or inactive")
    return facility


def get_clinic(db: Session, clinic_id: int, facility_id: int) -> Clinic | None:
    return db.scalar(
        select(Clinic).where(
            Clinic.id == clinic_id,
            Clinic.facility_id == facility_id,
            Clinic.deleted_at.is_(None),
        )
    )


def get_clinic_by_code(db: Session, code: str, facility_id: int) -> Clinic | None:
    return db.scalar(
        select(Clinic).where(
            Clinic.code == code.strip().upper(),
            Clinic.facility_id == facility_id,
            Clinic.deleted_at.is_(None),
        )
    )


def get_clinic_by_name(db: Session, name: str, facility_id: int) -> Clinic | None:
    return db.scalar(
        select(Clinic).where(
            func.lower(Clinic.name) == name.strip().lower(),
            Clinic.facility_id == facility_id,
            Clinic.deleted_at.is_(None),
        )
    )


def require_clinic(db: Session, clinic_id: int, facility_id: int) -> Clinic:
    clinic = get_clinic(db, clinic_id, facility_id)
    if clinic is None:
        raise NotFoundError("Clinic not found or does not belong to this facility")
    return clinic


def require_active_clinic(db: Session, clinic_id: int, facility_id: int) -> Clinic:
    clinic = require_clinic(db, clinic_id, facility_id)
    if not clinic.is_active:
        raise InvalidStateError("Clinic is inactive")
    return clinic


def clinic_is_active(db: Session, clinic_id: int, facility_id: int) -> bool:
    clinic = get_clinic(db, clinic_id, facility_id)
    return bool(clinic and clinic.is_active)


def patient_belongs_to_facility(db: Session, patient_id: int, facility_id: int) -> bool:
    found = db.scalar(
        select(Patient.id).where(
            Patient.id == patient_id,
            Patient.facility_id == facility_id,
            Patient.deleted_at.is_(None),
        )
    )
    return found is not None


@dataclass
class ClinicStats:
    total_appointments: int
    active_appointments: int


def clinic_stats(db: Session, clinic_id: int) -> ClinicStats:
    base = select(func.count(Appointment.id)).where(
        Appointment.clinic_id == clinic_id, Appointment.deleted_at.is_(None)
    )
    total = db.scalar(base) or 0
    active = db.scalar(base.where(Appointment.status.in_(ACTIVE_APPOINTMENT_STATUSES))) or 0
    return ClinicStats(total_appointments=int(total), active_appointments=int(active))


def _ensure_unique_clinic(
    db: Session, facility_id: int, *, code: str | None, name: str, exclude_id: int | None = None
) -> None:
    if code is not None:
        stmt = select(Clinic.id).where(Clinic.facility_id == facility_id, Clinic.code == code)
        if exclude_id is not None:
            stmt = stmt.where(Clinic.id != exclude_id)
        if db.scalar(stmt) is not None:
            raise InvalidStateError(f"A clinic with code '{code}' already exists in this facility")
    stmt = select(Clinic.id).where(
        Clinic.facility_id == facility_id, func.lower(Clinic.name) == name.strip().lower()
    )
    if exclude_id is not None:
        stmt = stmt.where(Clinic.id != exclude_id)
    if db.scalar(stmt) is not None:
        raise InvalidStateError(f"A clinic with name '{name}' already exists in this facility")


def create_clinic(
    db: Session,
    *,
    facility_id: int,
    name: str,
    code: str,
    description: str | None = None,
    is_active: bool = True,
    actor: User | None = None,
) -> Clinic:
    require_facility(db, facility_id)
    code = code.strip().upper()
    name = name.strip()
    _ensure_unique_clinic(db, facility_id, code=code, name=name)

    clinic = Clinic(
        facility_id=facility_id,
        name=name,
        code=code,
        description=description,
        is_active=is_active,
        created_by_user_id=actor.id if actor else None,
        updated_by_user_id=actor.id if actor else None,
    )
    db.add(clinic)
    db.flush()
    log_event(
        db,
        actor=actor,
        action="clinic.created",
        entity_type="clinic",
        entity_id=str(clinic.id),
        facility_id=facility_id,
        after_obj=clinic,
    )
    db.commit()
    db.refresh(clinic)
    logger.info("Clinic %s created with id %s in facility %s", clinic.code, clinic.id, facility_id)
    return clinic


def update_clinic(
    db: Session,
    *,
    clinic_id: int,
    facility_id: int,
    name: str,
    description: str | None,
    is_active: bool,
    actor: User | None = None,
) -> Clinic:
    clinic = require_clinic(db, clinic_id, facility_id)
    _ensure_unique_clinic(db, facility_id, code=None, name=name, exclude_id=clinic.id)
    if clinic.is_active and not is_active:
        _ensure_no_active_appointments(db, clinic)

    before_data = snapshot_model(clinic)
    clinic.name = name.strip()
    clinic.description = description
    clinic.is_active = is_active
    clinic.updated_by_user_id = actor.id if actor else None
    log_event(
        db,
        actor=actor,
        action="clinic.updated",
        entity_type="clinic",
        entity_id=str(clinic.id),
        facility_id=facility_id,
        before_data=before_data,
        after_obj=clinic,
    )
    db.commit()
    db.refresh(clinic)
    logger.info("Clinic %s updated", clinic.id)
    return clinic


def _ensure_no_active_appointments(db: Session, clinic: Clinic) -> None:
    if clinic_stats(db, clinic.id).active_appointments:
        raise InvalidStateError(
            "Cannot deactivate clinic with active appointments. "
            "Complete or cancel all active appointments first."
        )


def _set_clinic_active(
    db: Session, *, clinic_id: int, facility_id: int, active: bool, actor: User | None
) -> Clinic:
    clinic = require_clinic(db, clinic_id, facility_id)
    if clinic.is_active == active:
        state = "active" if active else "deactivated"
        raise InvalidStateError(f"Clinic is already {state}")
    if not active:
        _ensure_no_active_appointments(db, clinic)

    clinic.is_active = active
    clinic.updated_by_user_id = actor.id if actor else None
    log_event(
        db,
        actor=actor,
        action="clinic.activated" if active else "clinic.deactivated",
        entity_type="clinic",
        entity_id=str(clinic.id),
        facility_id=facility_id,
        after_data={"is_active": active},
    )
    db.commit()
    db.refresh(clinic)
    logger.info("Clinic %s is_active set to %s", clinic.id, active)
    return clinic


def activate_clinic(db: Session, *, clinic_id: int, facility_id: int, actor: User | None = None) -> Clinic:
    return _set_clinic_active(db, clinic_id=clinic_id, facility_id=facility_id, active=True, actor=actor)


def deactivate_clinic(
    db: Session, *, clinic_id: int, facility_id: int, actor: User | None = None
) -> Clinic:
    return _set_clinic_active(db, clinic_id=clinic_id, facility_id=facility_id, active=False, actor=actor)


def list_clinics(
    db: Session,
    facility_id: int,
    *,
    params: PageParams,
    search: str | None = None,
    is_active: bool | None = None,
    descending: bool = False,
) -> Page[Clinic]:
    require_facility(db, facility_id)
    stmt = select(Clinic).where(Clinic.facility_id == facility_id, Clinic.deleted_at.is_(None))
    if is_active is not None:
        stmt = stmt.where(Clinic.is_active == is_active)
    pattern = search_pattern(search)
    if pattern:
        stmt = stmt.where(
            or_(
                func.lower(Clinic.name).like(pattern, escape=LIKE_ESCAPE),
                func.lower(Clinic.code).like(pattern, escape=LIKE_ESCAPE),
                func.lower(func.coalesce(Clinic.description, "")).like(
                    pattern, escape=LIKE_ESCAPE
                ),
            )
        )
    order = Clinic.name.desc() if descending else Clinic.name.asc()
    return paginate(db, stmt.order_by(order, Clinic.id.asc()), params)
