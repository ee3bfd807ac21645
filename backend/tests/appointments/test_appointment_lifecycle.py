import threading
from datetime import datetime, time, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from app.db.session import SessionLocal
from app.models.appointment import Appointment, AppointmentStatus
from app.services.appointments import (
    advance_appointment_to_awaiting_vitals,
    can_transition,
    create_appointment,
    get_appointment,
    list_appointments,
    local_now,
)
from app.services.billing import create_invoice, pay_invoice
from app.services.billing_math import LineInput
from app.services.errors import (
    DomainValidationError,
    InvalidStateError,
    NotFoundError,
    SlotUnavailableError,
)
from app.services.paging import PageParams
from app.services.tenants import deactivate_clinic

ITEMS = [LineInput(service_name="Consultation", quantity=1, unit_price=Decimal("100.00"))]


def _book(db, tenant, day, at=time(9, 0)):
    return create_appointment(db, tenant.facility_id, tenant.patient.id, tenant.clinic.id, day, at)


def test_new_appointment_is_scheduled(db_session, tenant, tomorrow):
    appointment = _book(db_session, tenant, tomorrow)
    assert appointment.status == AppointmentStatus.scheduled
    assert appointment.facility_id == tenant.facility_id
    assert appointment.appointment_datetime == datetime.combine(tomorrow, time(9, 0))


def test_seconds_are_dropped_from_slot(db_session, tenant, tomorrow):
    appointment = _book(db_session, tenant, tomorrow, at=time(9, 0, 42))
    assert appointment.appointment_time == time(9, 0)
    with pytest.raises(SlotUnavailableError):
        _book(db_session, tenant, tomorrow, at=time(9, 0, 5))


def test_past_slot_rejected(db_session, tenant):
    yesterday = (local_now() - timedelta(days=1)).date()
    with pytest.raises(DomainValidationError):
        _book(db_session, tenant, yesterday)


def test_injected_clock_decides_what_is_past(db_session, tenant, tomorrow):
    later = datetime.combine(tomorrow, time(10, 0))
    with pytest.raises(DomainValidationError):
        create_appointment(
            db_session,
            tenant.facility_id,
            tenant.patient.id,
            tenant.clinic.id,
            tomorrow,
            time(9, 0),
            now=later,
        )


def test_double_booking_rejected(db_session, tenant, tomorrow):
    _book(db_session, tenant, tomorrow)
    with pytest.raises(SlotUnavailableError):
        _book(db_session, tenant, tomorrow)
    assert db_session.scalar(select(func.count(Appointment.id))) == 1
    assert _book(db_session, tenant, tomorrow, at=time(9, 30)).id


def test_soft_deleted_appointment_frees_its_slot(db_session, tenant, tomorrow):
    appointment = _book(db_session, tenant, tomorrow)
    appointment.deleted_at = datetime.now(timezone.utc)
    db_session.commit()

    with pytest.raises(NotFoundError):
        get_appointment(db_session, appointment.id, tenant.facility_id)
    rebooked = _book(db_session, tenant, tomorrow)
    assert rebooked.id != appointment.id


def test_concurrent_booking_has_single_winner(tenant, tomorrow):
    facility_id, patient_id, clinic_id = tenant.facility_id, tenant.patient.id, tenant.clinic.id
    barrier = threading.Barrier(2)
    results: list[str] = []
    lock = threading.Lock()

    def _attempt():
        session = SessionLocal()
        try:
            barrier.wait()
            create_appointment(session, facility_id, patient_id, clinic_id, tomorrow, time(11, 0))
            outcome = "booked"
        except SlotUnavailableError:
            outcome = "rejected"
        finally:
            session.close()
        with lock:
            results.append(outcome)

    threads = [threading.Thread(target=_attempt) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(results) == ["booked", "rejected"]
    with SessionLocal() as session:
        count = session.scalar(
            select(func.count(Appointment.id)).where(Appointment.appointment_time == time(11, 0))
        )
    assert count == 1


def test_inactive_clinic_cannot_be_booked(db_session, tenant, tomorrow):
    deactivate_clinic(db_session, clinic_id=tenant.clinic.id, facility_id=tenant.facility_id)
    with pytest.raises(InvalidStateError):
        _book(db_session, tenant, tomorrow)


def test_unknown_patient_rejected(db_session, tenant, tomorrow):
    with pytest.raises(NotFoundError):
        create_appointment(db_session, tenant.facility_id, 9999, tenant.clinic.id, tomorrow, time(9, 0))


def test_awaiting_vitals_requires_paid(db_session, tenant, tomorrow):
    appointment = _book(db_session, tenant, tomorrow)
    with pytest.raises(InvalidStateError):
        advance_appointment_to_awaiting_vitals(db_session, appointment.id, tenant.facility_id)

    invoice = create_invoice(db_session, tenant.facility_id, appointment.id, Decimal("0"), ITEMS)
    with pytest.raises(InvalidStateError):
        advance_appointment_to_awaiting_vitals(db_session, appointment.id, tenant.facility_id)
    db_session.refresh(appointment)
    assert appointment.status == AppointmentStatus.invoiced

    pay_invoice(db_session, tenant.facility_id, invoice.id)
    advanced = advance_appointment_to_awaiting_vitals(db_session, appointment.id, tenant.facility_id)
    assert advanced.status == AppointmentStatus.awaiting_vitals

    with pytest.raises(InvalidStateError):
        advance_appointment_to_awaiting_vitals(db_session, appointment.id, tenant.facility_id)


@pytest.mark.parametrize(
    "current,target,allowed",
    [
        (AppointmentStatus.scheduled, AppointmentStatus.invoiced, True),
        (AppointmentStatus.scheduled, AppointmentStatus.paid, False),
        (AppointmentStatus.invoiced, AppointmentStatus.paid, True),
        (AppointmentStatus.paid, AppointmentStatus.awaiting_vitals, True),
        (AppointmentStatus.invoiced, AppointmentStatus.awaiting_vitals, False),
        (AppointmentStatus.completed, AppointmentStatus.scheduled, False),
        (AppointmentStatus.cancelled, AppointmentStatus.invoiced, False),
    ],
)
def test_transition_table(current, target, allowed):
    assert can_transition(current, target) is allowed


def test_listing_filters_by_day_and_search(db_session, tenant, tomorrow):
    _book(db_session, tenant, tomorrow)
    _book(db_session, tenant, tomorrow, at=time(8, 0))
    _book(db_session, tenant, tomorrow + timedelta(days=1))

    page = list_appointments(
        db_session,
        tenant.facility_id,
        params=PageParams.build(1, 10),
        start_date=tomorrow,
        end_date=tomorrow,
    )
    assert page.total_count == 2
    assert [a.appointment_time for a in page.items] == [time(8, 0), time(9, 0)]

    page = list_appointments(
        db_session,
        tenant.facility_id,
        params=PageParams.build(1, 10),
        start_date=tomorrow,
        end_date=tomorrow + timedelta(days=1),
        search="obi",
    )
    assert page.total_count == 3

    page = list_appointments(
        db_session,
        tenant.facility_id,
        params=PageParams.build(1, 10),
        start_date=tomorrow,
        end_date=tomorrow,
        search="nobody",
    )
    assert page.total_count == 0
