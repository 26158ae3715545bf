"""Tests for patient reconciliation and portal endpoints."""

from datetime import datetime, timedelta

import pytest
from httpx import AsyncClient

from app.core.exceptions import StoreConstraintException
from app.schemas.patients import PatientStatus
from app.services.appointment_service import AppointmentService
from app.services.patient_service import PatientService, patient_facts


def test_patient_facts_extracts_demographics():
    """Appointment fields map onto the patient tree."""
    facts = patient_facts(
        {
            "patientName": " Doe, John ",
            "patientEmail": "John@Example.COM",
            "patientHomePhone": "555-0000",
            "patientDOB": "05/17/1980",
            "patientZIPCode": 62704,
            "genderIdentityName": "Male",
            "genderIdentitySNOMEDCode": "446151000124109",
        }
    )

    assert facts["name"] == "Doe, John"
    assert facts["email"] == "john@example.com"
    assert facts["phone"] == "555-0000"
    assert facts["cellPhone"] is None
    assert facts["dob"] == datetime(1980, 5, 17)
    assert facts["address"]["zipCode"] == "62704"
    assert facts["genderIdentity"] == {"name": "Male", "snomedCode": "446151000124109"}


@pytest.mark.asyncio
async def test_reconcile_creates_patient(db_session):
    """The first appointment for an account creates the patient."""
    patient = await PatientService(db_session).reconcile_from_appointment(
        {
            "patientAcctNo": "A-9",
            "patientFirstName": "Ann",
            "patientCity": "Shelbyville",
            "patientDeceased": "Yes",
            "dontSendStatements": "true",
        },
        encounter_id="E-9",
    )

    assert patient.acct_no == "A-9"
    assert patient.first_name == "Ann"
    assert patient.address.city == "Shelbyville"
    assert patient.address.line1 is None
    assert patient.status == PatientStatus.DECEASED
    assert patient.dont_send_statements is True
    assert patient.appointments == ["E-9"]
    assert patient.gender_identity is None


@pytest.mark.asyncio
async def test_reconcile_links_encounter_once(db_session, test_patient, sample_record):
    """Reconciling the same appointment twice does not duplicate the link."""
    patient = await PatientService(db_session).reconcile_from_appointment(
        sample_record, encounter_id="ENC-1001"
    )

    assert patient.appointments == ["ENC-1001"]
    assert patient.updated_at == test_patient.updated_at


@pytest.mark.asyncio
async def test_reconcile_requires_account_number(db_session):
    """Records without an account number cannot be reconciled."""
    with pytest.raises(ValueError):
        await PatientService(db_session).reconcile_from_appointment({"patientName": "Nobody"})


@pytest.mark.asyncio
async def test_reconcile_conflict_without_retry(db_session, test_patient, monkeypatch):
    """A create that loses a race and may not retry surfaces the constraint."""
    service = PatientService(db_session)

    async def no_existing_row(acct_no):
        return None

    monkeypatch.setattr(service, "get_row", no_existing_row)

    with pytest.raises(StoreConstraintException):
        await service.reconcile_from_appointment(
            {"patientAcctNo": test_patient.acct_no},
            retry_on_conflict=False,
        )


@pytest.mark.asyncio
async def test_reconcile_conflict_retried_as_update(db_session, test_patient, monkeypatch):
    """A create that loses a race is retried once and fills in the existing patient."""
    service = PatientService(db_session)
    real_get_row = service.get_row
    lookups = []

    async def missing_on_first_lookup(acct_no):
        lookups.append(acct_no)
        return None if len(lookups) == 1 else await real_get_row(acct_no)

    monkeypatch.setattr(service, "get_row", missing_on_first_lookup)

    patient = await service.reconcile_from_appointment(
        {"patientAcctNo": test_patient.acct_no, "patientState": "IL"},
        encounter_id="ENC-2",
    )

    assert lookups == [test_patient.acct_no, test_patient.acct_no]
    assert patient.appointments == ["ENC-1001", "ENC-2"]
    assert patient.address.state == "IL"
    assert patient.address.city == "Springfield"

    stored = await PatientService(db_session).get_by_acct_no(test_patient.acct_no)
    assert stored.appointments == ["ENC-1001", "ENC-2"]


@pytest.mark.asyncio
async def test_get_own_patient_record(client: AsyncClient, test_patient, auth_headers):
    """Patients can read their own record."""
    response = await client.get(f"/api/v1/patients/{test_patient.acct_no}", headers=auth_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["acctNo"] == test_patient.acct_no
    assert data["firstName"] == "John"
    assert data["cellPhone"] == "(555) 123-4567"
    assert data["address"]["city"] == "Springfield"
    assert data["status"] == "active"


@pytest.mark.asyncio
async def test_other_patient_record_forbidden(client: AsyncClient, auth_headers):
    """Patients cannot read someone else's record."""
    response = await client.get("/api/v1/patients/SOMEONE-ELSE", headers=auth_headers)

    assert response.status_code == 403
    assert response.json()["message"] == "Not authorized to access this patient's data"


@pytest.mark.asyncio
async def test_patient_appointments(
    client: AsyncClient, db_session, sample_record, test_patient, auth_headers
):
    """Appointment history can be narrowed to past or upcoming visits."""
    await AppointmentService(db_session).create_appointment(
        {
            **sample_record,
            "encounterId": "ENC-PAST",
            "appointmentDate": sample_record["appointmentDate"] - timedelta(days=10),
        }
    )
    url = f"/api/v1/patients/{test_patient.acct_no}/appointments"

    response = await client.get(url, headers=auth_headers)
    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 2
    assert [item["encounterId"] for item in data["items"]] == ["ENC-1001", "ENC-PAST"]

    response = await client.get(url, params={"past": "true"}, headers=auth_headers)
    assert [item["encounterId"] for item in response.json()["items"]] == ["ENC-PAST"]

    response = await client.get(url, params={"upcoming": "true"}, headers=auth_headers)
    assert [item["encounterId"] for item in response.json()["items"]] == ["ENC-1001"]


@pytest.mark.asyncio
async def test_update_patient(client: AsyncClient, test_patient, auth_headers):
    """Contact details change and the address is merged."""
    response = await client.put(
        f"/api/v1/patients/{test_patient.acct_no}",
        json={
            "email": "New.Address@Example.com",
            "workPhone": "555-2222",
            "address": {"line1": "1 Main St", "zipCode": "62704"},
        },
        headers=auth_headers,
    )

    assert response.status_code == 200
    data = response.json()
    assert data["email"] == "new.address@example.com"
    assert data["workPhone"] == "555-2222"
    assert data["address"]["line1"] == "1 Main St"
    assert data["address"]["zipCode"] == "62704"
    assert data["address"]["city"] == "Springfield"


@pytest.mark.asyncio
async def test_update_patient_rejects_other_fields(client: AsyncClient, test_patient, auth_headers):
    """Only contact fields can be changed from the portal."""
    response = await client.put(
        f"/api/v1/patients/{test_patient.acct_no}",
        json={"status": "deceased"},
        headers=auth_headers,
    )

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_dashboard(client: AsyncClient, db_session, sample_record, test_patient, auth_headers):
    """The dashboard lists upcoming visits and the most recent past one."""
    await AppointmentService(db_session).create_appointment(
        {
            **sample_record,
            "encounterId": "ENC-PAST",
            "appointmentDate": sample_record["appointmentDate"] - timedelta(days=10),
        }
    )

    response = await client.get(
        f"/api/v1/patients/{test_patient.acct_no}/dashboard",
        headers=auth_headers,
    )

    assert response.status_code == 200
    data = response.json()
    assert data["patient"]["acctNo"] == test_patient.acct_no
    assert data["patient"]["name"] == "Doe, John"
    assert [item["encounterId"] for item in data["upcomingAppointments"]] == ["ENC-1001"]
    assert data["recentAppointment"]["encounterId"] == "ENC-PAST"
    assert data["appointmentCounts"] == {"upcoming": 1, "total": 2}
