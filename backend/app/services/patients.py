from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from app.core.settings import settings
from app.models.patient import Patient
from app.models.user import User
from app.models.wallet import PatientWallet, WalletTransaction
from app.services.audit import log_event
from app.services.billing_math import money
from app.services.errors import DomainValidationError, InvalidStateError, NotFoundError
from app.services.paging import LIKE_ESCAPE, Page, PageParams, paginate, search_pattern
from app.services.tenants import require_facility

logger = logging.getLogger("frontdesk.patients")

PATIENT_CODE_PREFIX = "PAT"


def format_patient_code(number: int) -> str:
    return f"{PATIENT_CODE_PREFIX}{number:06d}"


def generate_patient_code(db: Session, facility_id: int) -> str:
    """Start from the facility's next ordinal and walk forward past codes taken system-wide."""
    count = db.scalar(
        select(func.count(Patient.id))
        .where(Patient.facility_id == facility_id)
        .execution_options(include_deleted=True)
    ) or 0
    number = int(count) + 1
    while True:
        code = format_patient_code(number)
        taken = db.scalar(
            select(Patient.id).where(Patient.patient_code == code).execution_options(include_deleted=True)
        )
        if taken is None:
            return code
        number += 1


def create_patient(
    db: Session,
    *,
    facility_id: int,
    first_name: str,
    last_name: str,
    phone: str,
    email: str,
    date_of_birth: date,
    gender: str,
    address: str,
    initial_wallet_balance: Decimal = Decimal("0"),
    actor: User | None = None,
) -> tuple[Patient, PatientWallet]:
    require_facility(db, facility_id)
    if initial_wallet_balance < 0:
        raise DomainValidationError("Initial wallet balance cannot be negative")
    email = email.strip().lower()
    if get_patient_by_email(db, email, facility_id) is not None:
        raise InvalidStateError(f"A patient with email {email} already exists in this facility")

    try:
        patient = Patient(
            facility_id=facility_id,
            patient_code=generate_patient_code(db, facility_id),
            first_name=first_name.strip(),
            last_name=last_name.strip(),
            phone=phone.strip(),
            email=email,
            date_of_birth=date_of_birth,
            gender=gender,
            address=address,
            created_by_user_id=actor.id if actor else None,
            updated_by_user_id=actor.id if actor else None,
        )
        db.add(patient)
        db.flush()

        wallet = PatientWallet(
            patient_id=patient.id,
            balance=money(initial_wallet_balance),
            currency=settings.default_currency,
            last_transaction_at=datetime.now(timezone.utc),
        )
        db.add(wallet)
        db.flush()
        log_event(
            db,
            actor=actor,
            action="patient.created",
            entity_type="patient",
            entity_id=str(patient.id),
            facility_id=facility_id,
            after_obj=patient,
        )
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("Error creating patient in facility %s", facility_id)
        raise
    db.refresh(patient)
    db.refresh(wallet)
    logger.info(
        "Patient %s created with wallet balance %s %s",
        patient.patient_code,
        wallet.currency,
        wallet.balance,
    )
    return patient, wallet


def get_patient(db: Session, patient_id: int, facility_id: int) -> Patient:
    require_facility(db, facility_id)
    patient = db.scalar(
        select(Patient).where(
            Patient.id == patient_id,
            Patient.facility_id == facility_id,
            Patient.deleted_at.is_(None),
        )
    )
    if patient is None:
        logger.warning("Patient %s not found in facility %s", patient_id, facility_id)
        raise NotFoundError("Patient not found or does not belong to this facility")
    return patient


def get_patient_by_code(db: Session, patient_code: str, facility_id: int) -> Patient | None:
    return db.scalar(
        select(Patient).where(
            Patient.patient_code == patient_code.strip().upper(),
            Patient.facility_id == facility_id,
            Patient.deleted_at.is_(None),
        )
    )


def get_patient_by_email(db: Session, email: str, facility_id: int) -> Patient | None:
    return db.scalar(
        select(Patient).where(
            func.lower(Patient.email) == email.strip().lower(),
            Patient.facility_id == facility_id,
            Patient.deleted_at.is_(None),
        )
    )


def get_wallet_by_patient_id(db: Session, patient_id: int, *, for_update: bool = False) -> PatientWallet | None:
    stmt = select(PatientWallet).where(PatientWallet.patient_id == patient_id)
    if for_update:
        stmt = stmt.with_for_update()
    return db.scalar(stmt)


def wallets_for_patients(db: Session, patient_ids: list[int]) -> dict[int, PatientWallet]:
    if not patient_ids:
        return {}
    wallets = db.scalars(select(PatientWallet).where(PatientWallet.patient_id.in_(patient_ids)))
    return {wallet.patient_id: wallet for wallet in wallets}


def list_wallet_transactions(db: Session, patient_id: int, facility_id: int) -> list[WalletTransaction]:
    patient = get_patient(db, patient_id, facility_id)
    wallet = get_wallet_by_patient_id(db, patient.id)
    if wallet is None:
        raise NotFoundError("Patient wallet not found")
    return list(
        db.scalars(
            select(WalletTransaction)
            .where(WalletTransaction.wallet_id == wallet.id)
            .order_by(WalletTransaction.created_at.desc(), WalletTransaction.id.desc())
        )
    )


def list_patients(
    db: Session,
    facility_id: int,
    *,
    params: PageParams,
    start_date: date | None = None,
    end_date: date | None = None,
    search: str | None = None,
    gender: str | None = None,
    descending: bool = False,
) -> Page[Patient]:
    """Patients registered between ``start_date`` and ``end_date`` (inclusive, both default to today)."""
    require_facility(db, facility_id)
    today = datetime.now(timezone.utc).date()
    start = datetime.combine(start_date or today, time.min, tzinfo=timezone.utc)
    end = datetime.combine((end_date or today) + timedelta(days=1), time.min, tzinfo=timezone.utc)

    stmt = select(Patient).where(
        Patient.facility_id == facility_id,
        Patient.deleted_at.is_(None),
        Patient.created_at >= start,
        Patient.created_at < end,
    )
    if gender and gender.strip():
        stmt = stmt.where(func.lower(Patient.gender) == gender.strip().lower())
    pattern = search_pattern(search)
    if pattern:
        stmt = stmt.where(
            or_(
                func.lower(Patient.first_name).like(pattern, escape=LIKE_ESCAPE),
                func.lower(Patient.last_name).like(pattern, escape=LIKE_ESCAPE),
                func.lower(Patient.patient_code).like(pattern, escape=LIKE_ESCAPE),
                func.lower(Patient.phone).like(pattern, escape=LIKE_ESCAPE),
            )
        )
    if descending:
        stmt = stmt.order_by(Patient.first_name.desc(), Patient.last_name.desc(), Patient.id.desc())
    else:
        stmt = stmt.order_by(Patient.first_name.asc(), Patient.last_name.asc(), Patient.id.asc())
    return paginate(db, stmt, params)
