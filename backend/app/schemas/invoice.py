from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from app.models.invoice import InvoiceStatus


class InvoiceItemCreate(BaseModel):
    service_name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    quantity: int = Field(ge=1)
    unit_price: Decimal = Field(ge=0, max_digits=18, decimal_places=2)


class InvoiceCreate(BaseModel):
    appointment_id: int
    discount_percentage: Decimal = Field(default=Decimal("0"), ge=0, le=100, decimal_places=2)
    items: list[InvoiceItemCreate] = Field(min_length=1)


class InvoiceItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    service_name: str
    description: Optional[str] = None
    quantity: int
    unit_price: Decimal
    total_price: Decimal


class InvoiceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    facility_id: int
    patient_id: int
    appointment_id: int
    invoice_number: str
    subtotal: Decimal
    discount_percentage: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    status: InvoiceStatus
    paid_at: Optional[datetime] = None
    items: list[InvoiceItemOut]
    created_at: datetime
