from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.deps import get_current_facility_id, require_admin, require_staff
from app.models.clinic import Clinic
from app.models.user import User
from app.schemas.clinic import ClinicCreate, ClinicDetailOut, ClinicOut, ClinicUpdate
from app.schemas.paging import PageOut
from app.services import tenants
from app.services.paging import PageParams

router = APIRouter(prefix="/clinics", tags=["clinics"])


def _detail(db: Session, clinic: Clinic) -> ClinicDetailOut:
    stats = tenants.clinic_stats(db, clinic.id)
    return ClinicDetailOut.model_validate(clinic).model_copy(
        update={
            "total_appointments": stats.total_appointments,
            "active_appointments": stats.active_appointments,
        }
    )


@router.get("", response_model=PageOut[ClinicOut])
def list_clinics(
    db: Session = Depends(get_db),
    _user: User = Depends(require_staff),
    facility_id: int = Depends(get_current_facility_id),
    page_number: int = Query(default=1, ge=1),
    page_size: int | None = Query(default=None, ge=1),
    q: str | None = Query(default=None),
    is_active: bool | None = Query(default=None),
    descending: bool = Query(default=False),
):
    page = tenants.list_clinics(
        db,
        facility_id,
        params=PageParams.build(page_number, page_size),
        search=q,
        is_active=is_active,
        descending=descending,
    )
    return PageOut[ClinicOut].build(page, [ClinicOut.model_validate(c) for c in page.items])


@router.post("", response_model=ClinicOut, status_code=status.HTTP_201_CREATED)
def create_clinic(
    payload: ClinicCreate,
    db: Session = Depends(get_db),
    user: User = Depends(require_admin),
    facility_id: int = Depends(get_current_facility_id),
):
    return tenants.create_clinic(
        db,
        facility_id=facility_id,
        name=payload.name,
        code=payload.code,
        description=payload.description,
        is_active=payload.is_active,
        actor=user,
    )


@router.get("/by-code/{code}", response_model=ClinicOut)
def get_clinic_by_code(
    code: str,
    db: Session = Depends(get_db),
    _user: User = Depends(require_staff),
    facility_id: int = Depends(get_current_facility_id),
):
    clinic = tenants.get_clinic_by_code(db, code, facility_id)
    if clinic is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Clinic not found")
    return clinic


@router.get("/by-name/{name}", response_model=ClinicOut)
def get_clinic_by_name(
    name: str,
    db: Session = Depends(get_db),
    _user: User = Depends(require_staff),
    facility_id: int = Depends(get_current_facility_id),
):
    clinic = tenants.get_clinic_by_name(db, name, facility_id)
    if clinic is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Clinic not found")
    return clinic


@router.get("/{clinic_id}", response_model=ClinicDetailOut)
def get_clinic(
    clinic_id: int,
    db: Session = Depends(get_db),
    _user: User = Depends(require_staff),
    facility_id: int = Depends(get_current_facility_id),
):
    return _detail(db, tenants.require_clinic(db, clinic_id, facility_id))


@router.patch("/{clinic_id}", response_model=ClinicOut)
def update_clinic(
    clinic_id: int,
    payload: ClinicUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(require_admin),
    facility_id: int = Depends(get_current_facility_id),
):
    return tenants.update_clinic(
        db,
        clinic_id=clinic_id,
        facility_id=facility_id,
        name=payload.name,
        description=payload.description,
        is_active=payload.is_active,
        actor=user,
    )


@router.post("/{clinic_id}/activate", response_model=ClinicOut)
def activate_clinic(
    clinic_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(require_admin),
    facility_id: int = Depends(get_current_facility_id),
):
    return tenants.activate_clinic(db, clinic_id=clinic_id, facility_id=facility_id, actor=user)


@router.post("/{clinic_id}/deactivate", response_model=ClinicOut)
def deactivate_clinic(
    clinic_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(require_admin),
    facility_id: int = Depends(get_current_facility_id),
):
    return tenants.deactivate_clinic(db, clinic_id=clinic_id, facility_id=facility_id, actor=user)
