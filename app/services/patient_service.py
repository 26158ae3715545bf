"""Patient service: identity reconciliation and portal access."""

from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import Any

import structlog
from sqlalchemy import insert, select, update
from sqlalchemy.engine import Row
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFoundException, StoreConstraintException
from app.core.merge import Tree, apply_updates, merge_if_empty
from app.core.normalizer import cell_text, coerce_boolean, parse_date
from app.database import integrity_error_fields
from app.models.patients import patients
from app.schemas.patients import (
    AppointmentCounts,
    DashboardPatient,
    PatientAppointmentFilters,
    PatientAppointmentListResponse,
    PatientDashboardResponse,
    PatientResponse,
    PatientStatus,
    PatientUpdate,
)
from app.services.appointment_service import AppointmentService

logger = structlog.get_logger()

# Demographic tree key -> patients column
DEMOGRAPHIC_COLUMNS: dict[str, str] = {
    "name": "name",
    "firstName": "first_name",
    "lastName": "last_name",
    "middleInitial": "middle_initial",
    "dob": "dob",
    "email": "email",
    "phone": "phone",
    "cellPhone": "cell_phone",
    "homePhone": "home_phone",
    "workPhone": "work_phone",
    "address": "address",
    "gender": "gender",
    "birthSex": "birth_sex",
    "genderIdentity": "gender_identity",
    "sexualOrientation": "sexual_orientation",
    "race": "race",
    "ethnicity": "ethnicity",
    "language": "language",
}


def patient_facts(document: Mapping[str, Any]) -> Tree:
    """
    Extract the patient demographic tree carried by an appointment record.

    Args:
        document: Appointment fields under their canonical names

    Returns:
        Demographic tree keyed like ``DEMOGRAPHIC_COLUMNS``; unknown values are None
    """
    cell_phone = cell_text(document.get("patientCellPhone"))
    home_phone = cell_text(document.get("patientHomePhone"))
    email = cell_text(document.get("patientEmail"))

    dob = document.get("patientDOB")
    if dob is not None and not isinstance(dob, datetime):
        dob = parse_date(dob)

    return {
        "name": cell_text(document.get("patientName")),
        "firstName": cell_text(document.get("patientFirstName")),
        "lastName": cell_text(document.get("patientLastName")),
        "middleInitial": cell_text(document.get("patientMiddleInitial")),
        "dob": dob,
        "email": email.lower() if email else None,
        "phone": cell_phone or home_phone,
        "cellPhone": cell_phone,
        "homePhone": home_phone,
        "workPhone": cell_text(document.get("patientWorkPhone")),
        "address": {
            "line1": cell_text(document.get("patientAddressLine1")),
            "line2": cell_text(document.get("patientAddressLine2")),
            "city": cell_text(document.get("patientCity")),
            "state": cell_text(document.get("patientState")),
            "zipCode": cell_text(document.get("patientZIPCode")),
        },
        "gender": cell_text(document.get("patientGender")),
        "birthSex": cell_text(document.get("birthSex")),
        "genderIdentity": {
            "name": cell_text(document.get("genderIdentityName")),
            "snomedCode": cell_text(document.get("genderIdentitySNOMEDCode")),
        },
        "sexualOrientation": {
            "name": cell_text(document.get("sexualOrientationName")),
            "snomedCode": cell_text(document.get("sexualOrientationSNOMEDCode")),
        },
        "race": cell_text(document.get("patientRace")),
        "ethnicity": cell_text(document.get("patientEthnicity")),
        "language": cell_text(document.get("patientLanguage")),
    }


def _compact(tree: Mapping[str, Any]) -> Tree:
    """Drop None leaves, and sub-objects left with nothing in them."""
    compacted: Tree = {}
    for key, value in tree.items():
        if isinstance(value, Mapping):
            value = _compact(value) or None
        if value is not None:
            compacted[key] = value
    return compacted


def demographic_tree(row: Row) -> Tree:
    """Read a patient row's demographic columns as a tree."""
    data = dict(row._mapping)
    return {key: data[column] for key, column in DEMOGRAPHIC_COLUMNS.items()}


def demographic_columns(tree: Mapping[str, Any]) -> dict[str, Any]:
    """Map tree keys back onto patients columns."""
    return {DEMOGRAPHIC_COLUMNS[key]: value for key, value in tree.items() if key in DEMOGRAPHIC_COLUMNS}


def to_response(row: Row) -> PatientResponse:
    """Build the portal representation from a table row."""
    return PatientResponse.model_validate(dict(row._mapping))


class PatientService:
    """Service for reconciling and reading patients."""

    def __init__(self, db: AsyncSession):
        """Initialize service with database session."""
        self.db = db

    async def get_row(self, acct_no: str) -> Row | None:
        """Exact account number lookup."""
        result = await self.db.execute(select(patients).where(patients.c.acct_no == acct_no))
        return result.fetchone()

    async def get_by_acct_no(self, acct_no: str) -> PatientResponse:
        """
        Get a patient by account number.

        Raises:
            NotFoundException: If patient not found
        """
        row = await self.get_row(acct_no)
        if not row:
            raise NotFoundException("Patient not found")
        return to_response(row)

    async def reconcile_from_appointment(
        self,
        facts: Mapping[str, Any],
        encounter_id: str | None = None,
        *,
        retry_on_conflict: bool = True,
    ) -> PatientResponse:
        """
        Create or fill in the patient an appointment belongs to.

        Existing demographic values are never overwritten; only empty fields are
        filled. The encounter ID is added to the patient's appointments once.

        Args:
            facts: Appointment record under canonical field names
            encounter_id: Encounter ID to link to the patient
            retry_on_conflict: Retry a concurrent-create conflict as an update

        Returns:
            Reconciled patient

        Raises:
            StoreConstraintException: If the store rejects the write
        """
        acct_no = cell_text(facts.get("patientAcctNo"))
        if not acct_no:
            raise ValueError("patientAcctNo is required to reconcile a patient")

        proposed = patient_facts(facts)
        row = await self.get_row(acct_no)

        if row:
            return await self._fill_patient(row, proposed, encounter_id)

        now = datetime.now(UTC)
        values = {
            **demographic_columns(_compact(proposed)),
            "acct_no": acct_no,
            "status": (
                PatientStatus.DECEASED.value
                if coerce_boolean(facts.get("patientDeceased"))
                else PatientStatus.ACTIVE.value
            ),
            "dont_send_statements": coerce_boolean(facts.get("dontSendStatements")),
            "appointments": [encounter_id] if encounter_id else [],
            "created_at": now,
            "updated_at": now,
        }

        try:
            result = await self.db.execute(insert(patients).values(**values).returning(patients))
            created = result.fetchone()
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            if not retry_on_conflict:
                raise StoreConstraintException(integrity_error_fields(e)) from e
            logger.info("patient_create_conflict_retry", acct_no=acct_no)
            return await self.reconcile_from_appointment(facts, encounter_id, retry_on_conflict=False)

        logger.info("patient_created", acct_no=acct_no, encounter_id=encounter_id)
        return to_response(created)

    async def _fill_patient(
        self,
        row: Row,
        proposed: Tree,
        encounter_id: str | None,
    ) -> PatientResponse:
        """Merge-if-empty ``proposed`` into an existing patient."""
        current = demographic_tree(row)
        updates = merge_if_empty(current, proposed)
        merged = apply_updates(current, updates)
        values = demographic_columns({key: merged[key] for key in updates})

        linked = list(row.appointments or [])
        if encounter_id and encounter_id not in linked:
            values["appointments"] = [*linked, encounter_id]

        if not values:
            return to_response(row)

        values["updated_at"] = datetime.now(UTC)
        stmt = update(patients).where(patients.c.id == row.id).values(**values).returning(patients)
        result = await self.db.execute(stmt)
        updated = result.fetchone()
        await self.db.commit()

        logger.info(
            "patient_reconciled",
            acct_no=row.acct_no,
            encounter_id=encounter_id,
            filled=sorted(updates),
        )
        return to_response(updated)

    async def detach_appointments(self, acct_no: str, encounter_ids: Iterable[str]) -> None:
        """Remove encounter IDs from a patient's appointment list."""
        row = await self.get_row(acct_no)
        if not row:
            return

        removed = set(encounter_ids)
        remaining = [encounter for encounter in row.appointments or [] if encounter not in removed]
        if len(remaining) == len(row.appointments or []):
            return

        await self.db.execute(
            update(patients)
            .where(patients.c.id == row.id)
            .values(appointments=remaining, updated_at=datetime.now(UTC))
        )
        await self.db.commit()

    async def update_profile(self, acct_no: str, data: PatientUpdate) -> PatientResponse:
        """
        Update the contact details a patient edits in the portal.

        Only supplied fields change; a supplied address is merged into the
        stored one.

        Raises:
            NotFoundException: If patient not found
        """
        row = await self.get_row(acct_no)
        if not row:
            raise NotFoundException("Patient not found")

        changes = data.model_dump(exclude_none=True)
        address = changes.pop("address", None)
        if "email" in changes:
            changes["email"] = changes["email"].strip().lower()

        values: dict[str, Any] = dict(changes)
        if address:
            stored = row.address or {}
            values["address"] = apply_updates(
                stored, data.address.model_dump(by_alias=True, exclude_none=True)
            )

        if not values:
            return to_response(row)

        values["updated_at"] = datetime.now(UTC)
        result = await self.db.execute(
            update(patients).where(patients.c.id == row.id).values(**values).returning(patients)
        )
        updated = result.fetchone()
        await self.db.commit()

        logger.info("patient_profile_updated", acct_no=acct_no, fields=sorted(values))
        return to_response(updated)

    async def list_appointments(
        self,
        acct_no: str,
        filters: PatientAppointmentFilters,
    ) -> PatientAppointmentListResponse:
        """List a patient's appointments."""
        await self.get_by_acct_no(acct_no)
        return await AppointmentService(self.db).list_patient_appointments(acct_no, filters)

    async def dashboard(self, acct_no: str) -> PatientDashboardResponse:
        """
        Assemble the portal dashboard for a patient.

        Returns:
            Patient summary, the next 30 days of appointments (at most 5), the
            most recent past appointment and appointment counters
        """
        patient = await self.get_by_acct_no(acct_no)
        appointment_service = AppointmentService(self.db)

        upcoming = await appointment_service.upcoming_for_patient(acct_no)
        recent = await appointment_service.most_recent_past_for_patient(acct_no)
        total = await appointment_service.count_for_patient(acct_no)

        return PatientDashboardResponse(
            patient=DashboardPatient(
                acct_no=patient.acct_no,
                name=patient.name or patient.full_name or None,
                email=patient.email,
                phone=patient.phone,
                dob=patient.dob,
            ),
            upcoming_appointments=upcoming,
            recent_appointment=recent,
            appointment_counts=AppointmentCounts(upcoming=len(upcoming), total=total),
        )
