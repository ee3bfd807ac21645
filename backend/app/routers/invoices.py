from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from app.core.settings import settings
from app.db.session import get_db
from app.deps import get_current_facility_id, require_staff
from app.models.user import User
from app.schemas.invoice import InvoiceCreate, InvoiceOut
from app.services import billing
from app.services.billing_math import LineInput
from app.services.invoice_pdf import build_invoice_pdf
from app.services.patients import get_patient, get_wallet_by_patient_id
from app.services.tenants import require_facility

router = APIRouter(prefix="/invoices", tags=["invoices"])


@router.post("", response_model=InvoiceOut, status_code=status.HTTP_201_CREATED)
def create_invoice(
    payload: InvoiceCreate,
    db: Session = Depends(get_db),
    user: User = Depends(require_staff),
    facility_id: int = Depends(get_current_facility_id),
):
    items = [
        LineInput(
            service_name=item.service_name,
            description=item.description,
            quantity=item.quantity,
            unit_price=item.unit_price,
        )
        for item in payload.items
    ]
    return billing.create_invoice(
        db, facility_id, payload.appointment_id, payload.discount_percentage, items, actor=user
    )


@router.get("/{invoice_id}", response_model=InvoiceOut)
def get_invoice(
    invoice_id: int,
    db: Session = Depends(get_db),
    _user: User = Depends(require_staff),
    facility_id: int = Depends(get_current_facility_id),
):
    return billing.get_invoice(db, invoice_id, facility_id)


@router.post("/{invoice_id}/pay", response_model=InvoiceOut)
def pay_invoice(
    invoice_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(require_staff),
    facility_id: int = Depends(get_current_facility_id),
):
    return billing.pay_invoice(db, facility_id, invoice_id, actor=user)


@router.get("/{invoice_id}/pdf")
def download_invoice_pdf(
    invoice_id: int,
    db: Session = Depends(get_db),
    _user: User = Depends(require_staff),
    facility_id: int = Depends(get_current_facility_id),
):
    invoice = billing.get_invoice(db, invoice_id, facility_id)
    facility = require_facility(db, facility_id)
    patient = get_patient(db, invoice.patient_id, facility_id)
    wallet = get_wallet_by_patient_id(db, patient.id)
    currency = wallet.currency if wallet else settings.default_currency
    pdf_bytes = build_invoice_pdf(invoice, facility=facility, patient=patient, currency=currency)
    filename = f"{invoice.invoice_number}.pdf"
    return Response(
        content=pdf_bytes,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
