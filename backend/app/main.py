import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from app.core.settings import settings, validate_settings
from app.db.session import SessionLocal, engine
from app.models import Base
from app.routers.appointments import router as appointments_router
from app.routers.audit import router as audit_router
from app.routers.auth import router as auth_router
from app.routers.clinics import router as clinics_router
from app.routers.invoices import router as invoices_router
from app.routers.patients import router as patients_router
from app.services.errors import (
    DomainError,
    DomainValidationError,
    InsufficientFundsError,
    InvalidStateError,
    NotFoundError,
)
from app.services.users import ensure_default_facility, seed_initial_admin

app = FastAPI(title="Clinic Front Desk API", version="0.1.0")
logger = logging.getLogger("frontdesk.startup")


def _status_for(exc: DomainError) -> int:
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, InvalidStateError):
        return 409
    if isinstance(exc, DomainValidationError):
        return 422
    return 400


@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    payload: dict = {"detail": exc.message}
    if isinstance(exc, InsufficientFundsError):
        payload["available"] = str(exc.available)
        payload["required"] = str(exc.required)
    return JSONResponse(status_code=_status_for(exc), content=payload)


@app.exception_handler(OperationalError)
async def storage_error_handler(request: Request, exc: OperationalError):
    logger.error("Storage unavailable: %s", exc.orig)
    return JSONResponse(status_code=503, content={"detail": "Storage unavailable"})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    request_id = request.headers.get("x-request-id")
    logger.exception("Unhandled server error", extra={"request_id": request_id})
    payload = {"detail": "Internal server error"}
    if request_id:
        payload["request_id"] = request_id
    return JSONResponse(status_code=500, content=payload)


@app.on_event("startup")
def startup():
    validate_settings(settings)
    Base.metadata.create_all(bind=engine)

    admin_email = str(settings.admin_email)
    admin_password = settings.admin_password.strip()
    db: Session = SessionLocal()
    try:
        facility = ensure_default_facility(
            db, name=settings.default_facility_name, code=settings.default_facility_code
        )
        logger.info("Default facility %s ready (id %s).", facility.code, facility.id)
        created = seed_initial_admin(
            db, email=admin_email, password=admin_password, facility_id=facility.id
        )
        if created:
            logger.info("Initial admin created for %s.", admin_email)
        else:
            logger.info("Initial admin not created (users already exist).")
    finally:
        db.close()


@app.get("/health")
def health():
    return {"status": "ok"}


app.include_router(auth_router)
app.include_router(clinics_router)
app.include_router(patients_router)
app.include_router(appointments_router)
app.include_router(invoices_router)
app.include_router(audit_router)
