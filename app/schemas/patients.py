"""Patient schemas for request/response validation."""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import ConfigDict, EmailStr, Field

from app.schemas.appointments import AppointmentResponse
from app.schemas.common import CamelModel, PaginatedMeta


class PatientStatus(str, Enum):
    """Patient status enumeration."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    DECEASED = "deceased"


class Address(CamelModel):
    """Postal address."""

    line1: str | None = None
    line2: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None


class CodedName(CamelModel):
    """Display name with its SNOMED code."""

    name: str | None = None
    snomed_code: str | None = None


class PatientResponse(CamelModel):
    """Schema for patient response."""

    id: UUID
    acct_no: str
    name: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    middle_initial: str | None = None
    dob: datetime | None = None
    email: str | None = None
    phone: str | None = None
    cell_phone: str | None = None
    home_phone: str | None = None
    work_phone: str | None = None
    address: Address | None = None
    gender: str | None = None
    birth_sex: str | None = None
    gender_identity: CodedName | None = None
    sexual_orientation: CodedName | None = None
    race: str | None = None
    ethnicity: str | None = None
    language: str | None = None
    status: PatientStatus = PatientStatus.ACTIVE
    dont_send_statements: bool = False
    appointments: list[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    @property
    def full_name(self) -> str:
        """First name, middle initial and last name joined."""
        middle = f"{self.middle_initial}." if self.middle_initial else ""
        return " ".join(part for part in (self.first_name, middle, self.last_name) if part)


class PatientUpdate(CamelModel):
    """Contact fields a patient may change from the portal."""

    model_config = ConfigDict(extra="forbid")

    email: EmailStr | None = None
    phone: str | None = Field(None, max_length=30)
    cell_phone: str | None = Field(None, max_length=30)
    home_phone: str | None = Field(None, max_length=30)
    work_phone: str | None = Field(None, max_length=30)
    address: Address | None = None


class PatientAppointmentFilters(CamelModel):
    """Filters for a patient's appointment history."""

    past: bool = False
    upcoming: bool = False
    start_date: datetime | None = None
    end_date: datetime | None = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)


class PatientAppointmentListResponse(PaginatedMeta):
    """Paginated list of one patient's appointments."""

    items: list[AppointmentResponse]


class DashboardPatient(CamelModel):
    """Patient summary shown on the dashboard."""

    acct_no: str
    name: str | None = None
    email: str | None = None
    phone: str | None = None
    dob: datetime | None = None


class AppointmentCounts(CamelModel):
    """Appointment counters for the dashboard."""

    upcoming: int
    total: int


class PatientDashboardResponse(CamelModel):
    """Portal dashboard data."""

    patient: DashboardPatient
    upcoming_appointments: list[AppointmentResponse]
    recent_appointment: AppointmentResponse | None = None
    appointment_counts: AppointmentCounts
