"""Appointment schemas for request/response validation."""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import ConfigDict, Field, field_validator

from app.core.durations import parse_event_time
from app.core.normalizer import cell_text
from app.schemas.common import CamelModel, PaginatedMeta


class AppointmentSource(str, Enum):
    """Where an appointment record originated."""

    TABULAR_IMPORT = "tabular-import"
    KIOSK = "kiosk"
    API = "api"


class TimeEventLabel(str, Enum):
    """Checkpoint event labels."""

    PATIENT_START = "patient_start"
    PATIENT_END = "patient_end"
    DOCTOR_START = "doctor_start"
    DOCTOR_END = "doctor_end"
    STAFF_START = "staff_start"
    STAFF_END = "staff_end"


class TimeEvent(CamelModel):
    """One checkpoint in a visit."""

    label: TimeEventLabel
    time: datetime

    @field_validator("time", mode="before")
    @classmethod
    def parse_time(cls, v: Any) -> datetime:
        """Accept any parseable timestamp and normalize to UTC."""
        return parse_event_time(v)


class VisitTimes(CamelModel):
    """Checkpoint log with its derived durations (minutes)."""

    raw_events: list[TimeEvent] = Field(default_factory=list)
    patient_duration: int = 0
    doctor_duration: int = 0
    staff_duration: int = 0


class TimeEventsRequest(CamelModel):
    """Body of the event-recording endpoint; validated by the duration module."""

    events: Any = None


class TimeEventsResponse(CamelModel):
    """Recomputed visit times after appending events."""

    encounter_id: str
    visit_times: VisitTimes


class UploadedImage(CamelModel):
    """Reference to one image attached at check-in."""

    type: str
    url: str


class AppointmentCreate(CamelModel):
    """Validated construction of an appointment before it reaches the store."""

    model_config = ConfigDict(extra="allow")

    encounter_id: str = Field(..., min_length=1)
    patient_acct_no: str = Field(..., min_length=1)
    appointment_date: datetime
    source: AppointmentSource = AppointmentSource.API
    file_id: str | None = None
    file_name: str | None = None
    upload_date: datetime | None = None

    @field_validator("encounter_id", "patient_acct_no", mode="before")
    @classmethod
    def stringify_identifier(cls, v: Any) -> Any:
        """Spreadsheet identifiers may arrive as numbers."""
        if isinstance(v, bool):
            return v
        if isinstance(v, int | float | str):
            return cell_text(v)
        return v

    @field_validator("appointment_date", mode="before")
    @classmethod
    def require_structured_date(cls, v: Any) -> Any:
        """Reject date strings the normalizer could not interpret."""
        if not isinstance(v, datetime):
            raise ValueError(f"appointmentDate is not a recognizable date: {v!r}")
        return v


class AppointmentResponse(CamelModel):
    """
    Canonical appointment representation.

    Declared fields are the indexed identity columns; every other field of the
    stored record is passed through under its canonical name.
    """

    model_config = ConfigDict(extra="allow")

    id: UUID
    encounter_id: str
    patient_acct_no: str
    appointment_date: datetime
    source: str
    file_id: str | None = None
    file_name: str | None = None
    upload_date: datetime | None = None
    visit_times: VisitTimes = Field(default_factory=VisitTimes)
    created_at: datetime
    updated_at: datetime


class AppointmentUpdateResponse(CamelModel):
    """Result of a merge-if-empty update."""

    appointment: AppointmentResponse
    updated_fields: dict[str, Any]


class AppointmentListResponse(PaginatedMeta):
    """Paginated list of appointments."""

    items: list[AppointmentResponse]


class AppointmentFilters(CamelModel):
    """Schema for appointment filtering."""

    date: datetime | None = None
    provider: str | None = None
    facility: str | None = None
    status: str | None = None
    search: str | None = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=50, ge=1, le=100)
