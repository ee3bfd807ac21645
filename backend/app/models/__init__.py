from app.models.base import Base
from app.models.user import Role, User
from app.models.audit_log import AuditLog
from app.models.facility import Facility
from app.models.clinic import Clinic
from app.models.patient import Patient
from app.models.wallet import PatientWallet, WalletTransaction, WalletTransactionType
from app.models.appointment import ACTIVE_APPOINTMENT_STATUSES, Appointment, AppointmentStatus
from app.models.invoice import Invoice, InvoiceItem, InvoiceStatus

__all__ = [
    "Base",
    "Role",
    "User",
    "AuditLog",
    "Facility",
    "Clinic",
    "Patient",
    "PatientWallet",
    "WalletTransaction",
    "WalletTransactionType",
    "Appointment",
    "AppointmentStatus",
    "ACTIVE_APPOINTMENT_STATUSES",
    "Invoice",
    "InvoiceItem",
    "InvoiceStatus",
]
