"""Kiosk check-in schemas."""

from datetime import datetime

from pydantic import ConfigDict, EmailStr, Field

from app.schemas.appointments import AppointmentResponse, UploadedImage
from app.schemas.common import CamelModel


class CheckInRequest(CamelModel):
    """Lookup of today's appointment by encounter ID."""

    encounter_id: str = Field(..., min_length=1)


class CheckInResponse(CamelModel):
    """Summary shown on the kiosk before check-in."""

    encounter_id: str
    patient_name: str | None = None
    appointment_time: str | None = None
    provider: str | None = None
    facility: str | None = None
    visit_type: str | None = None
    has_checked_in: bool


class PersonalInfo(CamelModel):
    """Contact details confirmed by the patient."""

    model_config = ConfigDict(extra="forbid")

    full_name: str | None = None
    email: EmailStr | None = None
    phone: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    zipcode: str | None = None


class InsuranceInfo(CamelModel):
    """Insurance card details."""

    model_config = ConfigDict(extra="forbid")

    name: str | None = None
    member_id: str | None = None
    group_name: str | None = None
    group_number: str | None = None
    phone_number: str | None = None
    copay: float | None = None
    specialist_copay: float | None = None
    active_date: datetime | None = None


class FamilyHistory(CamelModel):
    """Family history answers."""

    diabetes: str | None = None


class SocialHistory(CamelModel):
    """Social history answers."""

    smoke: str | None = None


class MedicalInfo(CamelModel):
    """Medical questionnaire answers."""

    model_config = ConfigDict(extra="forbid")

    allergies: list[str] | None = None
    medications: list[str] | None = None
    medical_history: list[str] | None = None
    surgical_history: list[str] | None = None
    family_history: FamilyHistory | None = None
    social_history: SocialHistory | None = None
    shoe_size: str | None = None


class KioskSubmission(CamelModel):
    """Everything a kiosk sends when the patient completes check-in."""

    model_config = ConfigDict(extra="forbid")

    location: str | None = None
    has_hipaa_signature: bool | None = Field(default=None, alias="hasHIPAASignature")
    has_practice_policies_signature: bool | None = None
    has_uploaded_pictures: bool | None = None
    personal_info: PersonalInfo | None = None
    primary_insurance: InsuranceInfo | None = None
    secondary_insurance: InsuranceInfo | None = None
    medical_info: MedicalInfo | None = None


class KioskSubmitResponse(CamelModel):
    """Result of a kiosk submission."""

    encounter_id: str
    checked_in: bool
    checked_in_at: datetime
    updated_fields: dict
    appointment: AppointmentResponse


class ImageUploadResponse(CamelModel):
    """Images appended to the check-in record."""

    encounter_id: str
    uploaded_images: list[UploadedImage]
