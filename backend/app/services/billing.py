from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.appointment import Appointment, AppointmentStatus
from app.models.invoice import Invoice, InvoiceItem, InvoiceStatus
from app.models.user import User
from app.models.wallet import PatientWallet, WalletTransaction, WalletTransactionType
from app.services.appointments import can_transition, get_appointment, transition
from app.services.audit import log_event, snapshot_model
from app.services.billing_math import LineInput, compute_invoice_totals
from app.services.errors import (
    DomainError,
    DomainValidationError,
    InsufficientFundsError,
    InvalidStateError,
    NotFoundError,
)
from app.services.patients import get_wallet_by_patient_id
from app.services.tenants import require_active_facility, require_facility

logger = logging.getLogger("frontdesk.billing")

INVOICE_PREFIX = "INV"
INVOICE_SEQUENCE_DIGITS = 4
INVOICE_NUMBER_ATTEMPTS = 5


class InvoiceNumberTaken(Exception):
    """Raised internally when another transaction committed the same invoice number first."""


def invoice_number_prefix(now: datetime) -> str:
    return f"{INVOICE_PREFIX}{now:%Y%m%d}"


def generate_invoice_number(db: Session, now: datetime | None = None) -> str:
    prefix = invoice_number_prefix(now or datetime.now(timezone.utc))
    # Longer suffixes sort first so ...10000 ranks above ...9999.
    last_number = db.scalar(
        select(Invoice.invoice_number)
        .where(Invoice.invoice_number.like(f"{prefix}%"))
        .order_by(func.length(Invoice.invoice_number).desc(), Invoice.invoice_number.desc())
        .limit(1)
    )
    sequence = 1
    if last_number:
        sequence = int(last_number[len(prefix):]) + 1
    return f"{prefix}{sequence:0{INVOICE_SEQUENCE_DIGITS}d}"


def _violates_invoice_number(exc: IntegrityError) -> bool:
    return "invoice_number" in str(exc.orig)


def get_invoice(db: Session, invoice_id: int, facility_id: int, *, for_update: bool = False) -> Invoice:
    stmt = select(Invoice).where(Invoice.id == invoice_id, Invoice.facility_id == facility_id)
    if for_update:
        stmt = stmt.with_for_update()
    invoice = db.scalar(stmt)
    if invoice is None:
        logger.warning("Invoice %s not found in facility %s", invoice_id, facility_id)
        raise NotFoundError("Invoice not found or doesn't belong to this facility")
    return invoice


def get_invoice_by_appointment(db: Session, appointment_id: int, facility_id: int) -> Invoice | None:
    return db.scalar(
        select(Invoice).where(
            Invoice.appointment_id == appointment_id, Invoice.facility_id == facility_id
        )
    )


def create_invoice(
    db: Session,
    facility_id: int,
    appointment_id: int,
    discount_percentage: Decimal,
    items: Iterable[LineInput],
    *,
    actor: User | None = None,
    now: datetime | None = None,
) -> Invoice:
    """Bill a scheduled appointment.

    The invoice, its items and the appointment's move to ``invoiced`` are
    committed together; any failure leaves all three untouched. When a
    concurrent request commits the same invoice number first, the whole
    transaction is retried with a fresh number.
    """
    logger.info("Creating invoice for appointment %s at facility %s", appointment_id, facility_id)
    items = list(items)
    for attempt in range(1, INVOICE_NUMBER_ATTEMPTS + 1):
        try:
            return _create_invoice_once(
                db, facility_id, appointment_id, discount_percentage, items, actor=actor, now=now
            )
        except InvoiceNumberTaken:
            logger.warning(
                "Invoice number collision for appointment %s (attempt %s of %s)",
                appointment_id,
                attempt,
                INVOICE_NUMBER_ATTEMPTS,
            )
    logger.error("Could not allocate an invoice number for appointment %s", appointment_id)
    raise InvalidStateError("Could not allocate an invoice number, please retry")


def _create_invoice_once(
    db: Session,
    facility_id: int,
    appointment_id: int,
    discount_percentage: Decimal,
    items: list[LineInput],
    *,
    actor: User | None,
    now: datetime | None,
) -> Invoice:
    try:
        require_active_facility(db, facility_id)
        appointment = get_appointment(db, appointment_id, facility_id, for_update=True)
        if get_invoice_by_appointment(db, appointment.id, facility_id) is not None:
            raise InvalidStateError("An invoice already exists for this appointment")
        if appointment.status != AppointmentStatus.scheduled:
            raise InvalidStateError("Can only create invoice for scheduled appointments")
        if not items:
            raise DomainValidationError("Invoice must have at least one item")
        try:
            totals = compute_invoice_totals(items, discount_percentage)
        except ValueError as exc:
            raise DomainValidationError(str(exc)) from exc
    except DomainError:
        db.rollback()
        raise

    try:
        invoice = Invoice(
            facility_id=facility_id,
            patient_id=appointment.patient_id,
            appointment_id=appointment.id,
            invoice_number=generate_invoice_number(db, now),
            subtotal=totals.subtotal,
            discount_percentage=totals.discount_percentage,
            discount_amount=totals.discount_amount,
            total_amount=totals.total_amount,
            status=InvoiceStatus.unpaid,
            created_by_user_id=actor.id if actor else None,
            updated_by_user_id=actor.id if actor else None,
        )
        invoice.items = [
            InvoiceItem(
                service_name=line.service_name,
                description=line.description,
                quantity=line.quantity,
                unit_price=line.unit_price,
                total_price=line.total_price,
            )
            for line in totals.lines
        ]
        db.add(invoice)
        transition(appointment, AppointmentStatus.invoiced, actor=actor)
        db.flush()
        log_event(
            db,
            actor=actor,
            action="invoice.created",
            entity_type="invoice",
            entity_id=str(invoice.id),
            facility_id=facility_id,
            after_obj=invoice,
        )
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        logger.warning("Invoice insert rejected for appointment %s: %s", appointment_id, exc.orig)
        if _violates_invoice_number(exc):
            raise InvoiceNumberTaken() from exc
        raise InvalidStateError("An invoice already exists for this appointment") from exc
    except Exception:
        db.rollback()
        logger.exception("Error creating invoice for appointment %s", appointment_id)
        raise

    db.refresh(invoice)
    logger.info(
        "Created invoice %s for appointment %s (total %s)",
        invoice.invoice_number,
        appointment_id,
        invoice.total_amount,
    )
    return invoice


def pay_invoice(
    db: Session,
    facility_id: int,
    invoice_id: int,
    *,
    actor: User | None = None,
    now: datetime | None = None,
) -> Invoice:
    """Settle an unpaid invoice from the patient's wallet.

    Wallet debit, ledger entry, invoice status and appointment status are one
    transaction. The status flip and the debit are conditional UPDATEs
    (``status = 'unpaid'`` and ``balance >= total``), so a concurrent payment
    of the same invoice matches no row and is rejected even on backends that
    ignore ``SELECT ... FOR UPDATE``.
    """
    logger.info("Processing payment for invoice %s at facility %s", invoice_id, facility_id)
    require_facility(db, facility_id)
    invoice = get_invoice(db, invoice_id, facility_id, for_update=True)
    if invoice.status != InvoiceStatus.unpaid:
        db.rollback()
        raise InvalidStateError("Invoice is not in unpaid status")

    wallet = get_wallet_by_patient_id(db, invoice.patient_id, for_update=True)
    if wallet is None:
        db.rollback()
        raise NotFoundError("Patient wallet not found")
    if wallet.balance < invoice.total_amount:
        available, required = wallet.balance, invoice.total_amount
        db.rollback()
        logger.warning(
            "Insufficient wallet balance for invoice %s: available %s, required %s",
            invoice.invoice_number,
            available,
            required,
        )
        raise InsufficientFundsError(available=available, required=required)

    appointment = db.scalar(
        select(Appointment).where(Appointment.id == invoice.appointment_id).with_for_update()
    )
    if appointment is not None and not can_transition(appointment.status, AppointmentStatus.paid):
        status = appointment.status.value
        db.rollback()
        raise InvalidStateError(f"Appointment in {status} status cannot be marked paid")

    paid_at = now or datetime.now(timezone.utc)
    total = invoice.total_amount
    try:
        before_data = snapshot_model(invoice)
        flipped = db.execute(
            update(Invoice)
            .where(Invoice.id == invoice.id, Invoice.status == InvoiceStatus.unpaid)
            .values(
                status=InvoiceStatus.paid,
                paid_at=paid_at,
                updated_by_user_id=actor.id if actor else None,
            )
            .execution_options(synchronize_session=False)
        )
        if flipped.rowcount != 1:
            raise InvalidStateError("Invoice is not in unpaid status")

        debited = db.execute(
            update(PatientWallet)
            .where(PatientWallet.id == wallet.id, PatientWallet.balance >= total)
            .values(balance=PatientWallet.balance - total, last_transaction_at=paid_at)
            .execution_options(synchronize_session=False)
        )
        if debited.rowcount != 1:
            available = db.scalar(select(PatientWallet.balance).where(PatientWallet.id == wallet.id))
            raise InsufficientFundsError(available=available, required=total)

        db.refresh(invoice)
        db.refresh(wallet)
        balance_after = wallet.balance
        db.add(
            WalletTransaction(
                wallet_id=wallet.id,
                amount=total,
                transaction_type=WalletTransactionType.payment,
                description=f"Payment for invoice {invoice.invoice_number}",
                reference=invoice.invoice_number,
                balance_before=balance_after + total,
                balance_after=balance_after,
                invoice_id=invoice.id,
            )
        )

        if appointment is not None:
            transition(appointment, AppointmentStatus.paid, actor=actor)

        db.flush()
        log_event(
            db,
            actor=actor,
            action="invoice.paid",
            entity_type="invoice",
            entity_id=str(invoice.id),
            facility_id=facility_id,
            before_data=before_data,
            after_obj=invoice,
        )
        db.commit()
    except DomainError:
        db.rollback()
        logger.warning("Payment for invoice %s rejected after a concurrent update", invoice_id)
        raise
    except Exception:
        db.rollback()
        logger.exception("Error processing payment for invoice %s", invoice_id)
        raise

    db.refresh(invoice)
    db.refresh(wallet)
    logger.info(
        "Paid invoice %s. Amount: %s, new balance: %s",
        invoice.invoice_number,
        invoice.total_amount,
        wallet.balance,
    )
    return invoice
