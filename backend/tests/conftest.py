import os
import tempfile
from datetime import date, timedelta
from decimal import Decimal

_DB_DIR = tempfile.mkdtemp(prefix="frontdesk-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'frontdesk.db')}"
os.environ.setdefault("SECRET_KEY", "test-secret-key-that-is-long-enough-for-hs256")
os.environ.setdefault("APP_ENV", "test")

import pytest
from fastapi.testclient import TestClient

from app.db.session import SessionLocal, engine
from app.main import app
from app.models import Base, Facility, Role
from app.services.appointments import local_now
from app.services.patients import create_patient
from app.services.tenants import create_clinic
from app.services.users import create_user

ADMIN_PASSWORD = "AdminPass123!"
FRONT_DESK_PASSWORD = "DeskPass123!"


@pytest.fixture(autouse=True)
def _fresh_schema():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db_session():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def tomorrow() -> date:
    return (local_now() + timedelta(days=1)).date()


class Tenant:
    def __init__(self, facility, clinic, patient, wallet):
        self.facility = facility
        self.clinic = clinic
        self.patient = patient
        self.wallet = wallet

    @property
    def facility_id(self) -> int:
        return self.facility.id


def make_facility(db, code: str = "LAG", name: str = "Lagos Island Facility") -> Facility:
    facility = Facility(name=name, code=code, address="12 Marina Road, Lagos", is_active=True)
    db.add(facility)
    db.commit()
    db.refresh(facility)
    return facility


def make_patient(db, facility_id: int, *, email: str = "ada@example.com", balance: str = "500.00"):
    return create_patient(
        db,
        facility_id=facility_id,
        first_name="Ada",
        last_name="Obi",
        phone="08030000000",
        email=email,
        date_of_birth=date(1990, 5, 17),
        gender="female",
        address="4 Broad Street, Lagos",
        initial_wallet_balance=Decimal(balance),
    )


@pytest.fixture
def tenant(db_session) -> Tenant:
    facility = make_facility(db_session)
    clinic = create_clinic(db_session, facility_id=facility.id, name="General Outpatient", code="gopd")
    patient, wallet = make_patient(db_session, facility.id)
    return Tenant(facility, clinic, patient, wallet)


@pytest.fixture
def api_client():
    with TestClient(app) as client:
        yield client


def _login(client: TestClient, email: str, password: str) -> dict:
    response = client.post("/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    token = response.json().get("access_token")
    assert token, "Missing access_token in login response"
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers(api_client, db_session, tenant):
    create_user(
        db_session,
        email="desk@example.com",
        password=FRONT_DESK_PASSWORD,
        facility_id=tenant.facility_id,
        full_name="Front Desk",
        role=Role.front_desk,
    )
    return _login(api_client, "desk@example.com", FRONT_DESK_PASSWORD)


@pytest.fixture
def admin_headers(api_client, db_session, tenant):
    create_user(
        db_session,
        email="clinic.admin@example.com",
        password=ADMIN_PASSWORD,
        facility_id=tenant.facility_id,
        full_name="Clinic Admin",
        role=Role.admin,
    )
    return _login(api_client, "clinic.admin@example.com", ADMIN_PASSWORD)
