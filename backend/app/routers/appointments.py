from datetime import date

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.deps import get_current_facility_id, require_staff
from app.models.user import User
from app.schemas.appointment import AppointmentCreate, AppointmentOut
from app.schemas.paging import PageOut
from app.services import appointments as appointment_service
from app.services.paging import PageParams

router = APIRouter(prefix="/appointments", tags=["appointments"])


@router.get("", response_model=PageOut[AppointmentOut])
def list_appointments(
    db: Session = Depends(get_db),
    _user: User = Depends(require_staff),
    facility_id: int = Depends(get_current_facility_id),
    page_number: int = Query(default=1, ge=1),
    page_size: int | None = Query(default=None, ge=1),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    clinic_id: int | None = Query(default=None),
    q: str | None = Query(default=None),
    descending: bool = Query(default=False),
):
    page = appointment_service.list_appointments(
        db,
        facility_id,
        params=PageParams.build(page_number, page_size),
        start_date=start_date,
        end_date=end_date,
        clinic_id=clinic_id,
        search=q,
        descending=descending,
    )
    return PageOut[AppointmentOut].build(
        page, [AppointmentOut.model_validate(a) for a in page.items]
    )


@router.post("", response_model=AppointmentOut, status_code=status.HTTP_201_CREATED)
def create_appointment(
    payload: AppointmentCreate,
    db: Session = Depends(get_db),
    user: User = Depends(require_staff),
    facility_id: int = Depends(get_current_facility_id),
):
    return appointment_service.create_appointment(
        db,
        facility_id,
        payload.patient_id,
        payload.clinic_id,
        payload.appointment_date,
        payload.appointment_time,
        payload.appointment_type,
        payload.notes,
        actor=user,
    )


@router.get("/{appointment_id}", response_model=AppointmentOut)
def get_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    _user: User = Depends(require_staff),
    facility_id: int = Depends(get_current_facility_id),
):
    return appointment_service.get_appointment(db, appointment_id, facility_id)


@router.post("/{appointment_id}/awaiting-vitals", response_model=AppointmentOut)
def advance_to_awaiting_vitals(
    appointment_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(require_staff),
    facility_id: int = Depends(get_current_facility_id),
):
    return appointment_service.advance_appointment_to_awaiting_vitals(
        db, appointment_id, facility_id, actor=user
    )
