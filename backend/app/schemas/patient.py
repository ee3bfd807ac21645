from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from app.models.wallet import WalletTransactionType


class PatientCreate(BaseModel):
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    phone: str = Field(min_length=1, max_length=20)
    email: EmailStr
    date_of_birth: date
    gender: str = Field(min_length=1, max_length=10)
    address: str = Field(min_length=1, max_length=500)
    initial_wallet_balance: Decimal = Field(default=Decimal("0"), ge=0, max_digits=18, decimal_places=2)


class PatientOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    facility_id: int
    patient_code: str
    first_name: str
    last_name: str
    full_name: str
    phone: str
    email: str
    date_of_birth: date
    gender: str
    address: str
    age: Optional[int] = None
    wallet_balance: Optional[Decimal] = None
    wallet_currency: Optional[str] = None
    wallet_balance_formatted: Optional[str] = None
    created_at: datetime


class WalletTransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    amount: Decimal
    transaction_type: WalletTransactionType
    description: str
    reference: str
    balance_before: Decimal
    balance_after: Decimal
    invoice_id: Optional[int] = None
    created_at: datetime
