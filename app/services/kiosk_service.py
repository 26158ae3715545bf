"""Kiosk check-in service."""

from datetime import UTC, datetime
from typing import Any

import structlog
from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import BadRequestException, NotFoundException
from app.core.merge import Tree
from app.models.appointments import appointments
from app.schemas.appointments import UploadedImage
from app.schemas.kiosk import (
    CheckInResponse,
    ImageUploadResponse,
    InsuranceInfo,
    KioskSubmission,
    KioskSubmitResponse,
)
from app.services.appointment_service import (
    CHECKED_IN_AT_PATH,
    AppointmentService,
    day_bounds,
    ensure_current_day,
)
from app.services.file_storage import FileStorage
from app.services.patient_service import PatientService

logger = structlog.get_logger()

# personalInfo field -> appointment field
PERSONAL_INFO_FIELDS: dict[str, str] = {
    "full_name": "patientName",
    "email": "patientEmail",
    "phone": "patientCellPhone",
    "address": "patientAddressLine1",
    "city": "patientCity",
    "state": "patientState",
    "zipcode": "patientZIPCode",
}


def _insurance_fields(prefix: str, insurance: InsuranceInfo) -> Tree:
    """Nested insurance group plus the flat name/subscriber fields."""
    fields: Tree = {
        f"{prefix}Insurance": insurance.model_dump(mode="json", by_alias=True, exclude_none=True)
    }
    if insurance.name:
        fields[f"{prefix}InsuranceName"] = insurance.name
    if insurance.member_id:
        fields[f"{prefix}InsuranceSubscriberNo"] = insurance.member_id
    return fields


def submission_fields(submission: KioskSubmission, facility_name: str | None) -> Tree:
    """
    Map a kiosk submission onto canonical appointment fields.

    Args:
        submission: Validated kiosk payload
        facility_name: Default check-in location

    Returns:
        Proposed appointment tree
    """
    # Unsent flags are None and never take part in the merge
    proposed: Tree = {
        "kioskCheckIn": {
            "checkedInAt": datetime.now(UTC).isoformat(),
            "location": submission.location or facility_name,
            "hasHIPAASignature": submission.has_hipaa_signature,
            "hasPracticePoliciesSignature": submission.has_practice_policies_signature,
            "hasUploadedPictures": submission.has_uploaded_pictures,
        }
    }

    if submission.personal_info:
        for attribute, field in PERSONAL_INFO_FIELDS.items():
            value = getattr(submission.personal_info, attribute)
            if value:
                proposed[field] = value.strip().lower() if attribute == "email" else value

    if submission.primary_insurance:
        proposed.update(_insurance_fields("primary", submission.primary_insurance))

    if submission.secondary_insurance:
        proposed.update(_insurance_fields("secondary", submission.secondary_insurance))

    if submission.medical_info:
        proposed["medicalInfo"] = submission.medical_info.model_dump(
            mode="json", by_alias=True, exclude_none=True
        )

    return proposed


class KioskService:
    """Service behind the self check-in kiosk."""

    def __init__(self, db: AsyncSession, storage: FileStorage | None = None):
        """Initialize service with database session and image storage."""
        self.db = db
        self.storage = storage or FileStorage()
        self.appointments = AppointmentService(db)
        self.patients = PatientService(db)

    async def check_appointment(self, encounter_id: str) -> CheckInResponse:
        """
        Find today's appointment for an encounter ID.

        Raises:
            NotFoundException: If there is no appointment today with this ID
        """
        start, end = day_bounds(datetime.now())
        result = await self.db.execute(
            select(appointments).where(
                and_(
                    appointments.c.encounter_id == encounter_id,
                    appointments.c.appointment_date >= start,
                    appointments.c.appointment_date < end,
                )
            )
        )
        row = result.fetchone()
        if not row:
            raise NotFoundException("No appointment found for today with this Encounter ID")

        document = row.document
        check_in = document.get("kioskCheckIn") or {}
        return CheckInResponse(
            encounter_id=row.encounter_id,
            patient_name=document.get("patientName") or document.get("fullName"),
            appointment_time=document.get("appointmentStartTime"),
            provider=document.get("appointmentProviderName"),
            facility=document.get("appointmentFacilityName"),
            visit_type=document.get("visitType"),
            has_checked_in=bool(check_in.get("checkedInAt")),
        )

    async def submit(self, encounter_id: str, submission: KioskSubmission) -> KioskSubmitResponse:
        """
        Record a completed kiosk check-in.

        Submitted details only fill fields the appointment does not have yet; the
        check-in time is always stamped. The patient is reconciled afterwards.

        Raises:
            NotFoundException: If appointment not found
            BadRequestException: If the appointment is not today (production only)
        """
        row = await self.appointments.get_row(encounter_id)
        ensure_current_day(row.appointment_date, "Can only check in for current day appointments")

        proposed = submission_fields(submission, row.document.get("appointmentFacilityName"))
        result = await self.appointments.merge_into(row, proposed, {CHECKED_IN_AT_PATH})
        appointment = result.appointment

        try:
            await self.patients.reconcile_from_appointment(
                appointment.model_dump(by_alias=True), encounter_id=encounter_id
            )
        except Exception as e:
            await self.db.rollback()
            logger.warning("kiosk_patient_reconcile_failed", encounter_id=encounter_id, error=str(e))

        checked_in_at = (appointment.model_extra or {}).get("kioskCheckIn", {}).get("checkedInAt")
        logger.info("kiosk_check_in_completed", encounter_id=encounter_id)

        return KioskSubmitResponse(
            encounter_id=encounter_id,
            checked_in=True,
            checked_in_at=checked_in_at,
            updated_fields=result.updated_fields,
            appointment=appointment,
        )

    async def upload_images(
        self,
        encounter_id: str,
        images: list[tuple[str, bytes, str]],
    ) -> ImageUploadResponse:
        """
        Store check-in images and attach them to the appointment.

        Args:
            encounter_id: Appointment encounter ID
            images: (image type, content, original file name) per uploaded file

        Returns:
            References of the stored images

        Raises:
            BadRequestException: If no images were supplied
            NotFoundException: If appointment not found
        """
        if not images:
            raise BadRequestException("No files uploaded")

        row = await self.appointments.get_row(encounter_id)

        uploaded = [
            UploadedImage(
                type=image_type,
                url=self.storage.save_patient_image(row.patient_acct_no, image_type, content, file_name),
            )
            for image_type, content, file_name in images
        ]

        document: dict[str, Any] = dict(row.document)
        check_in = dict(document.get("kioskCheckIn") or {})
        check_in["hasUploadedPictures"] = True
        check_in["uploadedPictureURLs"] = [
            *(check_in.get("uploadedPictureURLs") or []),
            *(image.model_dump() for image in uploaded),
        ]
        document["kioskCheckIn"] = check_in
        await self.appointments.save_document(row, document)

        logger.info("kiosk_images_uploaded", encounter_id=encounter_id, count=len(uploaded))
        return ImageUploadResponse(encounter_id=encounter_id, uploaded_images=uploaded)
