from datetime import time

import pytest

from app.services.appointments import create_appointment
from app.services.errors import InvalidStateError, NotFoundError
from app.services.paging import PageParams
from app.services.tenants import (
    activate_clinic,
    clinic_is_active,
    clinic_stats,
    create_clinic,
    deactivate_clinic,
    facility_exists,
    facility_is_active,
    get_clinic_by_code,
    get_clinic_by_name,
    list_clinics,
    patient_belongs_to_facility,
    require_active_facility,
    require_clinic,
    update_clinic,
)

from conftest import make_facility


def test_code_is_stored_uppercase(tenant):
    assert tenant.clinic.code == "GOPD"


def test_lookup_by_code_and_name(db_session, tenant):
    assert get_clinic_by_code(db_session, "gopd", tenant.facility_id).id == tenant.clinic.id
    assert get_clinic_by_name(db_session, "general outpatient", tenant.facility_id).id == tenant.clinic.id
    other = make_facility(db_session, code="ABJ", name="Abuja Facility")
    assert get_clinic_by_code(db_session, "GOPD", other.id) is None
    with pytest.raises(NotFoundError):
        require_clinic(db_session, tenant.clinic.id, other.id)


def test_duplicate_code_or_name_rejected(db_session, tenant):
    with pytest.raises(InvalidStateError):
        create_clinic(db_session, facility_id=tenant.facility_id, name="Dental", code="GOPD")
    with pytest.raises(InvalidStateError):
        create_clinic(db_session, facility_id=tenant.facility_id, name="GENERAL OUTPATIENT", code="GEN2")
    other = make_facility(db_session, code="ABJ", name="Abuja Facility")
    assert create_clinic(db_session, facility_id=other.id, name="General Outpatient", code="GOPD").id


def test_deactivation_blocked_by_active_appointments(db_session, tenant, tomorrow):
    create_appointment(
        db_session, tenant.facility_id, tenant.patient.id, tenant.clinic.id, tomorrow, time(9, 0)
    )
    assert clinic_stats(db_session, tenant.clinic.id).active_appointments == 1

    with pytest.raises(InvalidStateError):
        deactivate_clinic(db_session, clinic_id=tenant.clinic.id, facility_id=tenant.facility_id)
    with pytest.raises(InvalidStateError):
        update_clinic(
            db_session,
            clinic_id=tenant.clinic.id,
            facility_id=tenant.facility_id,
            name="General Outpatient",
            description=None,
            is_active=False,
        )
    assert require_clinic(db_session, tenant.clinic.id, tenant.facility_id).is_active


def test_activation_round_trip(db_session, tenant):
    clinic = deactivate_clinic(db_session, clinic_id=tenant.clinic.id, facility_id=tenant.facility_id)
    assert clinic.is_active is False
    with pytest.raises(InvalidStateError):
        deactivate_clinic(db_session, clinic_id=tenant.clinic.id, facility_id=tenant.facility_id)
    clinic = activate_clinic(db_session, clinic_id=tenant.clinic.id, facility_id=tenant.facility_id)
    assert clinic.is_active is True
    with pytest.raises(InvalidStateError):
        activate_clinic(db_session, clinic_id=tenant.clinic.id, facility_id=tenant.facility_id)


def test_listing_filters(db_session, tenant):
    create_clinic(db_session, facility_id=tenant.facility_id, name="Antenatal", code="anc", is_active=False)
    create_clinic(db_session, facility_id=tenant.facility_id, name="Paediatrics", code="paed")

    page = list_clinics(db_session, tenant.facility_id, params=PageParams.build(1, 10))
    assert [c.name for c in page.items] == ["Antenatal", "General Outpatient", "Paediatrics"]

    page = list_clinics(db_session, tenant.facility_id, params=PageParams.build(1, 10), is_active=True)
    assert page.total_count == 2

    page = list_clinics(db_session, tenant.facility_id, params=PageParams.build(1, 10), search="PAED")
    assert [c.code for c in page.items] == ["PAED"]

    page = list_clinics(db_session, tenant.facility_id, params=PageParams.build(1, 10), search="%")
    assert page.total_count == 0

    page = list_clinics(
        db_session, tenant.facility_id, params=PageParams.build(1, 10), descending=True
    )
    assert page.items[0].name == "Paediatrics"


def test_tenant_membership_checks(db_session, tenant):
    other = make_facility(db_session, code="ABJ", name="Abuja Facility")
    assert facility_exists(db_session, tenant.facility_id)
    assert not facility_exists(db_session, 9999)
    assert patient_belongs_to_facility(db_session, tenant.patient.id, tenant.facility_id)
    assert not patient_belongs_to_facility(db_session, tenant.patient.id, other.id)
    assert clinic_is_active(db_session, tenant.clinic.id, tenant.facility_id)
    assert not clinic_is_active(db_session, tenant.clinic.id, other.id)

    other.is_active = False
    db_session.commit()
    assert not facility_is_active(db_session, other.id)
    with pytest.raises(InvalidStateError):
        require_active_facility(db_session, other.id)
