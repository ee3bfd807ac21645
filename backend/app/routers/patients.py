from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.deps import get_current_facility_id, require_staff
from app.models.patient import Patient
from app.models.user import User
from app.models.wallet import PatientWallet
from app.schemas.paging import PageOut
from app.schemas.patient import PatientCreate, PatientOut, WalletTransactionOut
from app.services import patients as patient_service
from app.services.appointments import local_now
from app.services.paging import PageParams

router = APIRouter(prefix="/patients", tags=["patients"])


def _patient_out(patient: Patient, wallet: PatientWallet | None) -> PatientOut:
    update = {"age": patient.age_on(local_now().date())}
    if wallet is not None:
        update.update(
            wallet_balance=wallet.balance,
            wallet_currency=wallet.currency,
            wallet_balance_formatted=f"{wallet.currency} {wallet.balance:,.2f}",
        )
    return PatientOut.model_validate(patient).model_copy(update=update)


def _with_wallet(db: Session, patient: Patient) -> PatientOut:
    return _patient_out(patient, patient_service.get_wallet_by_patient_id(db, patient.id))


@router.get("", response_model=PageOut[PatientOut])
def list_patients(
    db: Session = Depends(get_db),
    _user: User = Depends(require_staff),
    facility_id: int = Depends(get_current_facility_id),
    page_number: int = Query(default=1, ge=1),
    page_size: int | None = Query(default=None, ge=1),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    q: str | None = Query(default=None),
    gender: str | None = Query(default=None),
    descending: bool = Query(default=False),
):
    page = patient_service.list_patients(
        db,
        facility_id,
        params=PageParams.build(page_number, page_size),
        start_date=start_date,
        end_date=end_date,
        search=q,
        gender=gender,
        descending=descending,
    )
    wallets = patient_service.wallets_for_patients(db, [p.id for p in page.items])
    items = [_patient_out(p, wallets.get(p.id)) for p in page.items]
    return PageOut[PatientOut].build(page, items)


@router.post("", response_model=PatientOut, status_code=status.HTTP_201_CREATED)
def create_patient(
    payload: PatientCreate,
    db: Session = Depends(get_db),
    user: User = Depends(require_staff),
    facility_id: int = Depends(get_current_facility_id),
):
    patient, wallet = patient_service.create_patient(
        db,
        facility_id=facility_id,
        first_name=payload.first_name,
        last_name=payload.last_name,
        phone=payload.phone,
        email=str(payload.email),
        date_of_birth=payload.date_of_birth,
        gender=payload.gender,
        address=payload.address,
        initial_wallet_balance=payload.initial_wallet_balance,
        actor=user,
    )
    return _patient_out(patient, wallet)


@router.get("/by-code/{patient_code}", response_model=PatientOut)
def get_patient_by_code(
    patient_code: str,
    db: Session = Depends(get_db),
    _user: User = Depends(require_staff),
    facility_id: int = Depends(get_current_facility_id),
):
    patient = patient_service.get_patient_by_code(db, patient_code, facility_id)
    if patient is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Patient not found")
    return _with_wallet(db, patient)


@router.get("/by-email/{email}", response_model=PatientOut)
def get_patient_by_email(
    email: str,
    db: Session = Depends(get_db),
    _user: User = Depends(require_staff),
    facility_id: int = Depends(get_current_facility_id),
):
    patient = patient_service.get_patient_by_email(db, email, facility_id)
    if patient is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Patient not found")
    return _with_wallet(db, patient)


@router.get("/{patient_id}", response_model=PatientOut)
def get_patient(
    patient_id: int,
    db: Session = Depends(get_db),
    _user: User = Depends(require_staff),
    facility_id: int = Depends(get_current_facility_id),
):
    return _with_wallet(db, patient_service.get_patient(db, patient_id, facility_id))


@router.get("/{patient_id}/wallet/transactions", response_model=list[WalletTransactionOut])
def list_wallet_transactions(
    patient_id: int,
    db: Session = Depends(get_db),
    _user: User = Depends(require_staff),
    facility_id: int = Depends(get_current_facility_id),
):
    return patient_service.list_wallet_transactions(db, patient_id, facility_id)
