"""Ingestion of uploaded appointment spreadsheets."""

import asyncio
from collections import defaultdict
from pathlib import Path
from typing import Any

import structlog
from pydantic_core import to_jsonable_python
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import AppException, NotFoundException, TabularParseError
from app.core.normalizer import cell_text, parse_tabular_file
from app.models.appointments import appointments
from app.schemas.ingestion import FileDeleteResponse, IngestionReport, NormalizedBatch
from app.services.appointment_service import AppointmentService
from app.services.file_storage import FileStorage
from app.services.patient_service import PatientService

logger = structlog.get_logger()

REQUIRED_FIELDS = ("encounterId", "patientAcctNo")


def _row_failure(exc: Exception) -> str:
    if isinstance(exc, AppException):
        return exc.message
    return str(exc)


class IngestionService:
    """Drives normalized batches into the appointment and patient stores."""

    def __init__(self, db: AsyncSession, storage: FileStorage | None = None):
        """Initialize service with database session and upload storage."""
        self.db = db
        self.storage = storage or FileStorage()
        self.appointments = AppointmentService(db)
        self.patients = PatientService(db)

    async def ingest_batch(self, batch: NormalizedBatch) -> IngestionReport:
        """
        Persist every valid row of a batch, collecting per-row failures.

        Rows are processed in order. A failing row is recorded in the report and
        never stops the rows after it.

        Args:
            batch: Normalized records from one upload

        Returns:
            Report with totals and the ordered list of row errors
        """
        errors: list[dict[str, Any]] = []
        inserted = 0

        for row_number, record in enumerate(batch.records, start=1):
            if any(cell_text(record.get(field)) is None for field in REQUIRED_FIELDS):
                errors.append(
                    {
                        "message": "Missing required fields",
                        "row": row_number,
                        "data": to_jsonable_python(record),
                    }
                )
                continue

            encounter_id = cell_text(record["encounterId"])
            if await self.appointments.exists(encounter_id):
                errors.append(
                    {
                        "message": "Appointment with this Encounter ID already exists",
                        "row": row_number,
                        "encounterId": encounter_id,
                    }
                )
                continue

            try:
                appointment = await self.appointments.create_appointment(record)
            except Exception as e:
                await self.db.rollback()
                logger.warning(
                    "ingestion_row_failed",
                    file_id=batch.file_id,
                    row=row_number,
                    error=_row_failure(e),
                )
                errors.append(self._creation_error(row_number, record, e))
                continue

            inserted += 1

            try:
                await self.patients.reconcile_from_appointment(
                    record, encounter_id=appointment.encounter_id
                )
            except Exception as e:
                await self.db.rollback()
                logger.warning(
                    "patient_reconcile_failed",
                    file_id=batch.file_id,
                    row=row_number,
                    encounter_id=appointment.encounter_id,
                    error=_row_failure(e),
                )
                errors.append(
                    {
                        "message": f"Error inserting appointment: {_row_failure(e)}",
                        "row": row_number,
                        "data": to_jsonable_python(record),
                    }
                )

        logger.info(
            "appointments_uploaded",
            file_id=batch.file_id,
            file_name=batch.file_name,
            total=len(batch.records),
            inserted=inserted,
            failed=len(errors),
        )

        return IngestionReport(
            file_id=batch.file_id,
            file_name=batch.file_name,
            total=len(batch.records),
            inserted=inserted,
            errors=errors or None,
        )

    def _creation_error(self, row_number: int, record: dict[str, Any], exc: Exception) -> dict[str, Any]:
        """Describe a row whose appointment could not be created."""
        fields = getattr(exc, "fields", None)
        if fields and "encounter_id" in fields:
            return {
                "message": "Appointment with this Encounter ID already exists",
                "row": row_number,
                "encounterId": cell_text(record.get("encounterId")),
            }
        return {
            "message": f"Error inserting appointment: {_row_failure(exc)}",
            "row": row_number,
            "data": to_jsonable_python(record),
        }

    async def ingest_upload(self, path: Path, file_name: str) -> IngestionReport:
        """
        Parse a stored upload and ingest it.

        Args:
            path: Location of the stored upload
            file_name: Original file name

        Returns:
            Ingestion report

        Raises:
            TabularParseError: If the file cannot be parsed; the upload is deleted
        """
        try:
            batch = await asyncio.to_thread(parse_tabular_file, path, file_name)
        except TabularParseError:
            self.storage.discard(path)
            raise

        return await self.ingest_batch(batch)

    async def delete_by_file(self, file_id: str) -> FileDeleteResponse:
        """
        Remove every appointment of one upload.

        Encounter IDs are also removed from the owning patients' appointment lists.

        Raises:
            NotFoundException: If the upload has no appointments
        """
        result = await self.db.execute(
            select(appointments.c.encounter_id, appointments.c.patient_acct_no).where(
                appointments.c.file_id == file_id
            )
        )
        rows = result.fetchall()
        if not rows:
            raise NotFoundException("No appointments found for this file ID")

        await self.db.execute(delete(appointments).where(appointments.c.file_id == file_id))
        await self.db.commit()

        by_patient: dict[str, list[str]] = defaultdict(list)
        for row in rows:
            by_patient[row.patient_acct_no].append(row.encounter_id)

        for acct_no, encounter_ids in by_patient.items():
            try:
                await self.patients.detach_appointments(acct_no, encounter_ids)
            except Exception as e:
                await self.db.rollback()
                logger.warning("patient_detach_failed", acct_no=acct_no, error=str(e))

        logger.info("appointments_deleted", file_id=file_id, deleted=len(rows))
        return FileDeleteResponse(file_id=file_id, deleted=len(rows))
