from datetime import time
from decimal import Decimal

from conftest import make_patient


def _book(api_client, headers, tenant, day, patient_id=None, at="09:00"):
    response = api_client.post(
        "/appointments",
        json={
            "patient_id": patient_id or tenant.patient.id,
            "clinic_id": tenant.clinic.id,
            "appointment_date": day.isoformat(),
            "appointment_time": at,
            "appointment_type": "consultation",
        },
        headers=headers,
    )
    return response


def _invoice(api_client, headers, appointment_id, unit_price="100.00", quantity=2, discount="10"):
    return api_client.post(
        "/invoices",
        json={
            "appointment_id": appointment_id,
            "discount_percentage": discount,
            "items": [{"service_name": "Consultation", "quantity": quantity, "unit_price": unit_price}],
        },
        headers=headers,
    )


def test_health(api_client):
    response = api_client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_requests_need_a_token(api_client, tenant):
    assert api_client.get("/patients").status_code == 401
    bad = {"Authorization": "Bearer not-a-token"}
    assert api_client.get("/patients", headers=bad).status_code == 401


def test_login_and_me(api_client, auth_headers, tenant):
    response = api_client.get("/auth/me", headers=auth_headers)
    assert response.status_code == 200, response.text
    body = response.json()
    assert body["email"] == "desk@example.com"
    assert body["role"] == "front_desk"
    assert body["facility_id"] == tenant.facility_id


def test_wrong_password_rejected(api_client, auth_headers):
    response = api_client.post("/auth/login", json={"email": "desk@example.com", "password": "nope"})
    assert response.status_code == 401


def test_front_desk_flow(api_client, auth_headers, tenant, tomorrow):
    booked = _book(api_client, auth_headers, tenant, tomorrow)
    assert booked.status_code == 201, booked.text
    appointment = booked.json()
    assert appointment["status"] == "scheduled"

    invoiced = _invoice(api_client, auth_headers, appointment["id"])
    assert invoiced.status_code == 201, invoiced.text
    invoice = invoiced.json()
    assert Decimal(invoice["subtotal"]) == Decimal("200.00")
    assert Decimal(invoice["discount_amount"]) == Decimal("20.00")
    assert Decimal(invoice["total_amount"]) == Decimal("180.00")
    assert invoice["status"] == "unpaid"
    assert invoice["items"][0]["service_name"] == "Consultation"

    paid = api_client.post(f"/invoices/{invoice['id']}/pay", headers=auth_headers)
    assert paid.status_code == 200, paid.text
    assert paid.json()["status"] == "paid"

    patient = api_client.get(f"/patients/{tenant.patient.id}", headers=auth_headers).json()
    assert Decimal(patient["wallet_balance"]) == Decimal("320.00")
    assert patient["wallet_balance_formatted"] == "NGN 320.00"

    ledger = api_client.get(f"/patients/{tenant.patient.id}/wallet/transactions", headers=auth_headers)
    assert ledger.status_code == 200
    assert [Decimal(entry["amount"]) for entry in ledger.json()] == [Decimal("180.00")]

    vitals = api_client.post(f"/appointments/{appointment['id']}/awaiting-vitals", headers=auth_headers)
    assert vitals.status_code == 200, vitals.text
    assert vitals.json()["status"] == "awaiting_vitals"


def test_domain_errors_map_to_status_codes(api_client, auth_headers, tenant, tomorrow, db_session):
    appointment = _book(api_client, auth_headers, tenant, tomorrow).json()

    clash = _book(api_client, auth_headers, tenant, tomorrow)
    assert clash.status_code == 409
    assert "time slot" in clash.json()["detail"]

    early = api_client.post(f"/appointments/{appointment['id']}/awaiting-vitals", headers=auth_headers)
    assert early.status_code == 409

    assert api_client.get("/appointments/424242", headers=auth_headers).status_code == 404

    empty = api_client.post(
        "/invoices",
        json={"appointment_id": appointment["id"], "discount_percentage": "0", "items": []},
        headers=auth_headers,
    )
    assert empty.status_code == 422


def test_insufficient_funds_response(api_client, auth_headers, tenant, tomorrow, db_session):
    patient, _ = make_patient(db_session, tenant.facility_id, email="short@example.com", balance="100.00")
    appointment = _book(api_client, auth_headers, tenant, tomorrow, patient_id=patient.id).json()
    invoice = _invoice(api_client, auth_headers, appointment["id"], unit_price="150.00", quantity=1, discount="0").json()

    response = api_client.post(f"/invoices/{invoice['id']}/pay", headers=auth_headers)
    assert response.status_code == 409
    body = response.json()
    assert body["available"] == "100.00"
    assert body["required"] == "150.00"
    assert "Insufficient wallet balance" in body["detail"]

    again = api_client.get(f"/invoices/{invoice['id']}", headers=auth_headers).json()
    assert again["status"] == "unpaid"


def test_duplicate_invoice_conflict(api_client, auth_headers, tenant, tomorrow):
    appointment = _book(api_client, auth_headers, tenant, tomorrow).json()
    assert _invoice(api_client, auth_headers, appointment["id"]).status_code == 201
    second = _invoice(api_client, auth_headers, appointment["id"])
    assert second.status_code == 409
    current = api_client.get(f"/appointments/{appointment['id']}", headers=auth_headers).json()
    assert current["status"] == "invoiced"


def test_invoice_pdf_download(api_client, auth_headers, tenant, tomorrow):
    appointment = _book(api_client, auth_headers, tenant, tomorrow).json()
    invoice = _invoice(api_client, auth_headers, appointment["id"]).json()
    response = api_client.get(f"/invoices/{invoice['id']}/pdf", headers=auth_headers)
    assert response.status_code == 200
    assert response.headers["content-type"] == "application/pdf"
    assert response.content.startswith(b"%PDF")
    assert invoice["invoice_number"] in response.headers["content-disposition"]


def test_patient_registration_and_lookup(api_client, auth_headers, tenant):
    created = api_client.post(
        "/patients",
        json={
            "first_name": "Chinedu",
            "last_name": "Okafor",
            "phone": "08051234567",
            "email": "chinedu@example.com",
            "date_of_birth": "1988-02-29",
            "gender": "male",
            "address": "15 Allen Avenue, Ikeja",
            "initial_wallet_balance": "2500.00",
        },
        headers=auth_headers,
    )
    assert created.status_code == 201, created.text
    body = created.json()
    assert body["patient_code"] == "PAT000002"
    assert body["wallet_currency"] == "NGN"
    assert body["wallet_balance_formatted"] == "NGN 2,500.00"

    by_code = api_client.get("/patients/by-code/pat000002", headers=auth_headers)
    assert by_code.status_code == 200
    assert by_code.json()["email"] == "chinedu@example.com"
    assert api_client.get("/patients/by-email/nobody@example.com", headers=auth_headers).status_code == 404

    listing = api_client.get("/patients", params={"q": "okafor"}, headers=auth_headers)
    assert listing.status_code == 200
    assert listing.json()["total_count"] == 1


def test_clinic_management_is_admin_only(api_client, auth_headers, admin_headers, tenant):
    payload = {"name": "Physiotherapy", "code": "physio"}
    assert api_client.post("/clinics", json=payload, headers=auth_headers).status_code == 403

    created = api_client.post("/clinics", json=payload, headers=admin_headers)
    assert created.status_code == 201, created.text
    clinic = created.json()
    assert clinic["code"] == "PHYSIO"

    deactivated = api_client.post(f"/clinics/{clinic['id']}/deactivate", headers=admin_headers)
    assert deactivated.status_code == 200
    assert deactivated.json()["is_active"] is False

    by_name = api_client.get("/clinics/by-name/physiotherapy", headers=auth_headers)
    assert by_name.status_code == 200
    assert by_name.json()["id"] == clinic["id"]

    listing = api_client.get("/clinics", params={"is_active": "true"}, headers=auth_headers).json()
    assert [c["code"] for c in listing["items"]] == ["GOPD"]


def test_appointment_listing_defaults_and_paging(api_client, auth_headers, tenant, tomorrow):
    for hour in (9, 10, 11):
        assert _book(api_client, auth_headers, tenant, tomorrow, at=time(hour, 0).isoformat()).status_code == 201
    response = api_client.get(
        "/appointments",
        params={
            "start_date": tomorrow.isoformat(),
            "end_date": tomorrow.isoformat(),
            "page_size": 2,
            "page_number": 2,
        },
        headers=auth_headers,
    )
    assert response.status_code == 200
    body = response.json()
    assert body["total_count"] == 3
    assert body["total_pages"] == 2
    assert [a["appointment_time"] for a in body["items"]] == ["11:00:00"]


def test_audit_trail_is_admin_only_and_newest_first(api_client, auth_headers, admin_headers, tenant, tomorrow):
    appointment = _book(api_client, auth_headers, tenant, tomorrow).json()
    invoice = _invoice(api_client, auth_headers, appointment["id"]).json()
    assert api_client.post(f"/invoices/{invoice['id']}/pay", headers=auth_headers).status_code == 200

    assert api_client.get(f"/audit/invoice/{invoice['id']}", headers=auth_headers).status_code == 403

    trail = api_client.get(f"/audit/invoice/{invoice['id']}", headers=admin_headers)
    assert trail.status_code == 200, trail.text
    entries = trail.json()["items"]
    assert [entry["action"] for entry in entries] == ["invoice.paid", "invoice.created"]
    assert entries[0]["actor_email"] == "desk@example.com"
    assert entries[0]["before_json"]["status"] == "unpaid"
    assert entries[0]["after_json"]["status"] == "paid"

    unknown = api_client.get("/audit/spaceship/1", headers=admin_headers)
    assert unknown.status_code == 422
