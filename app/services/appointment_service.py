"""Appointment service for business logic."""

from collections.abc import Collection, Mapping
from datetime import UTC, datetime, time, timedelta
from typing import Any

import structlog
from pydantic import ValidationError
from pydantic_core import to_jsonable_python
from sqlalchemy import and_, func, insert, or_, select, update
from sqlalchemy.engine import Row
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.durations import calculate_durations, parse_event_time, validate_time_events
from app.core.exceptions import (
    BadRequestException,
    ConflictException,
    NotFoundException,
    StoreConstraintException,
    ValidationException,
)
from app.core.merge import apply_updates, merge_if_empty
from app.database import integrity_error_fields
from app.models.appointments import appointments
from app.schemas.appointments import (
    AppointmentCreate,
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentResponse,
    AppointmentUpdateResponse,
    TimeEventsResponse,
    VisitTimes,
)
from app.schemas.patients import PatientAppointmentFilters, PatientAppointmentListResponse

logger = structlog.get_logger()

CHECKED_IN_AT_PATH = "kioskCheckIn.checkedInAt"

# Guarded writes of the event log before giving up with a conflict
TIME_EVENT_ATTEMPTS = 3

# Fields a partial update may never touch
PROTECTED_UPDATE_FIELDS = frozenset({"visitTimes"})

# Filter column -> canonical document field
FILTER_COLUMNS: dict[str, str] = {
    "appointment_start_time": "appointmentStartTime",
    "provider_name": "appointmentProviderName",
    "facility_name": "appointmentFacilityName",
    "visit_status": "visitStatus",
    "patient_name": "patientName",
    "patient_first_name": "patientFirstName",
    "patient_last_name": "patientLastName",
}


def day_bounds(day: datetime) -> tuple[datetime, datetime]:
    """Return the naive [start, end) range of the calendar day containing ``day``."""
    start = datetime.combine(day.date(), time.min)
    return start, start + timedelta(days=1)


def ensure_current_day(appointment_date: datetime, message: str) -> None:
    """
    Enforce the same-day rule for check-in and updates.

    Raises:
        BadRequestException: In production, when the appointment is not today
    """
    if settings.is_production and appointment_date.date() != datetime.now().date():
        raise BadRequestException(message)


def filter_columns(document: Mapping[str, Any]) -> dict[str, str | None]:
    """Project a document onto the searchable scalar columns."""
    values: dict[str, str | None] = {}
    for column, field in FILTER_COLUMNS.items():
        value = document.get(field)
        values[column] = None if value is None else str(value)
    return values


def to_response(row: Row) -> AppointmentResponse:
    """Build the canonical representation from a table row."""
    data = dict(row._mapping)
    payload = {
        **data["document"],
        "id": data["id"],
        "encounterId": data["encounter_id"],
        "patientAcctNo": data["patient_acct_no"],
        "appointmentDate": data["appointment_date"],
        "source": data["source"],
        "fileId": data["file_id"],
        "fileName": data["file_name"],
        "uploadDate": data["upload_date"],
        "createdAt": data["created_at"],
        "updatedAt": data["updated_at"],
    }
    return AppointmentResponse.model_validate(payload)


class AppointmentService:
    """Service for managing appointments."""

    def __init__(self, db: AsyncSession):
        """Initialize service with database session."""
        self.db = db

    async def get_row(self, encounter_id: str) -> Row:
        """
        Load an appointment row by encounter ID.

        Raises:
            NotFoundException: If no appointment has this encounter ID
        """
        result = await self.db.execute(
            select(appointments).where(appointments.c.encounter_id == encounter_id)
        )
        row = result.fetchone()
        if not row:
            raise NotFoundException("Appointment not found")
        return row

    async def get_appointment(self, encounter_id: str) -> AppointmentResponse:
        """Get an appointment by encounter ID."""
        return to_response(await self.get_row(encounter_id))

    async def exists(self, encounter_id: str) -> bool:
        """Check whether an encounter ID is already stored."""
        result = await self.db.execute(
            select(appointments.c.id).where(appointments.c.encounter_id == encounter_id)
        )
        return result.first() is not None

    async def create_appointment(self, record: Mapping[str, Any]) -> AppointmentResponse:
        """
        Validate and insert one appointment record.

        Args:
            record: Canonical field names to typed values

        Returns:
            Created appointment

        Raises:
            ValidationException: If required fields are missing or untyped
            StoreConstraintException: If the encounter ID is already stored
        """
        try:
            data = AppointmentCreate.model_validate(dict(record))
        except ValidationError as e:
            raise ValidationException(
                "Invalid appointment record",
                errors=[
                    {"field": ".".join(str(part) for part in error["loc"]), "message": error["msg"]}
                    for error in e.errors()
                ],
            ) from e

        document = data.model_dump(mode="json", by_alias=True, exclude_none=True)
        document.setdefault("visitTimes", VisitTimes().model_dump(mode="json", by_alias=True))

        now = datetime.now(UTC)
        values = {
            "encounter_id": data.encounter_id,
            "patient_acct_no": data.patient_acct_no,
            "source": data.source.value,
            "file_id": data.file_id,
            "file_name": data.file_name,
            "upload_date": data.upload_date,
            "appointment_date": data.appointment_date,
            "document": document,
            "created_at": now,
            "updated_at": now,
            **filter_columns(document),
        }

        try:
            result = await self.db.execute(insert(appointments).values(**values).returning(appointments))
            row = result.fetchone()
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise StoreConstraintException(integrity_error_fields(e)) from e

        return to_response(row)

    async def _write_document(
        self,
        row: Row,
        document: dict[str, Any],
        if_unchanged: bool,
    ) -> Row | None:
        stmt = update(appointments).where(appointments.c.id == row.id)
        if if_unchanged:
            # Optimistic concurrency: nothing matches once another writer has saved
            stmt = stmt.where(appointments.c.updated_at == row.updated_at)
        stmt = stmt.values(
            document=document,
            updated_at=datetime.now(UTC),
            **filter_columns(document),
        ).returning(appointments)

        result = await self.db.execute(stmt)
        updated = result.fetchone()
        await self.db.commit()
        return updated

    async def save_document(self, row: Row, document: dict[str, Any]) -> AppointmentResponse:
        """Persist a replacement document for an existing appointment."""
        return to_response(await self._write_document(row, document, if_unchanged=False))

    async def merge_into(
        self,
        row: Row,
        proposed: Mapping[str, Any],
        always_overwrite: Collection[str] = (),
    ) -> AppointmentUpdateResponse:
        """
        Fill empty fields of an appointment from ``proposed``.

        Args:
            row: Current appointment row
            proposed: Nested proposed values
            always_overwrite: Leaf paths written even when already set

        Returns:
            Updated appointment and the fields that changed
        """
        current = row.document
        updates = merge_if_empty(current, to_jsonable_python(proposed), always_overwrite)

        if not updates:
            return AppointmentUpdateResponse(appointment=to_response(row), updated_fields={})

        appointment = await self.save_document(row, apply_updates(current, updates))
        logger.info(
            "appointment_merged",
            encounter_id=row.encounter_id,
            fields=sorted(updates),
        )
        return AppointmentUpdateResponse(appointment=appointment, updated_fields=updates)

    async def update_appointment(
        self,
        encounter_id: str,
        payload: Mapping[str, Any],
    ) -> AppointmentUpdateResponse:
        """
        Apply a partial update, only filling fields that are currently empty.

        A ``kioskCheckIn`` section stamps the check-in time unconditionally.

        Raises:
            NotFoundException: If appointment not found
            BadRequestException: If the payload touches derived fields, or the
                appointment is not today (production only)
        """
        protected = PROTECTED_UPDATE_FIELDS.intersection(payload)
        if protected:
            raise BadRequestException(
                "Derived fields cannot be updated",
                errors=[{"field": field, "message": "field is derived"} for field in sorted(protected)],
            )

        row = await self.get_row(encounter_id)
        ensure_current_day(row.appointment_date, "Can only update appointments for current day")

        proposed = dict(payload)
        always_overwrite: set[str] = set()
        if isinstance(proposed.get("kioskCheckIn"), Mapping):
            proposed = apply_updates(
                proposed, {"kioskCheckIn": {"checkedInAt": datetime.now(UTC)}}
            )
            always_overwrite.add(CHECKED_IN_AT_PATH)

        return await self.merge_into(row, proposed, always_overwrite)

    async def record_time_events(
        self,
        encounter_id: str,
        events: Any,
    ) -> TimeEventsResponse:
        """
        Append checkpoint events and recompute visit durations.

        Args:
            encounter_id: Appointment encounter ID
            events: Submitted events; rejected as a whole if any is invalid

        Returns:
            Full event log with recomputed durations

        Raises:
            BadRequestException: If any event is invalid (nothing is appended)
            NotFoundException: If appointment not found
            ConflictException: If concurrent writers win every attempt
        """
        errors = validate_time_events(events)
        if errors:
            raise BadRequestException("Invalid time events", errors=errors)

        appended = [
            {"label": event["label"], "time": parse_event_time(event["time"]).isoformat()}
            for event in events
        ]

        for attempt in range(1, TIME_EVENT_ATTEMPTS + 1):
            row = await self.get_row(encounter_id)
            document = dict(row.document)
            visit_times = dict(document.get("visitTimes") or {})
            raw_events = [*(visit_times.get("rawEvents") or []), *appended]
            document["visitTimes"] = {"rawEvents": raw_events, **calculate_durations(raw_events)}

            saved = await self._write_document(row, document, if_unchanged=True)
            if saved is not None:
                break
            logger.info("time_events_retry", encounter_id=encounter_id, attempt=attempt)
        else:
            logger.warning("time_events_conflict", encounter_id=encounter_id)
            raise ConflictException("Appointment was modified concurrently, retry the request")

        appointment = to_response(saved)
        logger.info(
            "time_events_recorded",
            encounter_id=encounter_id,
            appended=len(appended),
            total=len(raw_events),
        )
        return TimeEventsResponse(encounter_id=encounter_id, visit_times=appointment.visit_times)

    async def list_appointments(self, filters: AppointmentFilters) -> AppointmentListResponse:
        """
        List appointments with filtering and pagination.

        Args:
            filters: Filter and pagination parameters

        Returns:
            Paginated list of appointments, earliest first
        """
        conditions = []

        if filters.date:
            start, end = day_bounds(filters.date)
            conditions.append(appointments.c.appointment_date >= start)
            conditions.append(appointments.c.appointment_date < end)

        if filters.provider:
            conditions.append(appointments.c.provider_name.ilike(f"%{filters.provider}%"))

        if filters.facility:
            conditions.append(appointments.c.facility_name.ilike(f"%{filters.facility}%"))

        if filters.status:
            conditions.append(appointments.c.visit_status.ilike(f"%{filters.status}%"))

        if filters.search:
            pattern = f"%{filters.search}%"
            conditions.append(
                or_(
                    appointments.c.patient_name.ilike(pattern),
                    appointments.c.patient_first_name.ilike(pattern),
                    appointments.c.patient_last_name.ilike(pattern),
                    appointments.c.patient_acct_no.ilike(pattern),
                    appointments.c.encounter_id.ilike(pattern),
                )
            )

        where = and_(*conditions) if conditions else True
        total = await self._count(where)

        stmt = (
            select(appointments)
            .where(where)
            .order_by(appointments.c.appointment_date.asc(), appointments.c.appointment_start_time.asc())
            .limit(filters.limit)
            .offset((filters.page - 1) * filters.limit)
        )
        result = await self.db.execute(stmt)

        return AppointmentListResponse(
            total=total,
            page=filters.page,
            page_size=filters.limit,
            items=[to_response(row) for row in result.fetchall()],
        )

    async def list_patient_appointments(
        self,
        acct_no: str,
        filters: PatientAppointmentFilters,
    ) -> PatientAppointmentListResponse:
        """List one patient's appointments, most recent first."""
        today, _ = day_bounds(datetime.now())
        conditions = [appointments.c.patient_acct_no == acct_no]

        if filters.past:
            conditions.append(appointments.c.appointment_date < today)
        elif filters.upcoming:
            conditions.append(appointments.c.appointment_date >= today)
        elif filters.start_date and filters.end_date:
            conditions.append(appointments.c.appointment_date >= filters.start_date)
            conditions.append(appointments.c.appointment_date <= filters.end_date)

        where = and_(*conditions)
        total = await self._count(where)

        stmt = (
            select(appointments)
            .where(where)
            .order_by(appointments.c.appointment_date.desc())
            .limit(filters.limit)
            .offset((filters.page - 1) * filters.limit)
        )
        result = await self.db.execute(stmt)

        return PatientAppointmentListResponse(
            total=total,
            page=filters.page,
            page_size=filters.limit,
            items=[to_response(row) for row in result.fetchall()],
        )

    async def upcoming_for_patient(self, acct_no: str, days: int = 30, limit: int = 5) -> list[AppointmentResponse]:
        """Appointments from today through the next ``days`` days, earliest first."""
        today, _ = day_bounds(datetime.now())
        stmt = (
            select(appointments)
            .where(
                and_(
                    appointments.c.patient_acct_no == acct_no,
                    appointments.c.appointment_date >= today,
                    appointments.c.appointment_date <= today + timedelta(days=days),
                )
            )
            .order_by(appointments.c.appointment_date.asc())
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return [to_response(row) for row in result.fetchall()]

    async def most_recent_past_for_patient(self, acct_no: str) -> AppointmentResponse | None:
        """The latest appointment before today, if any."""
        today, _ = day_bounds(datetime.now())
        stmt = (
            select(appointments)
            .where(
                and_(
                    appointments.c.patient_acct_no == acct_no,
                    appointments.c.appointment_date < today,
                )
            )
            .order_by(appointments.c.appointment_date.desc())
            .limit(1)
        )
        result = await self.db.execute(stmt)
        row = result.fetchone()
        return to_response(row) if row else None

    async def count_for_patient(self, acct_no: str) -> int:
        """Total appointments stored for a patient."""
        return await self._count(appointments.c.patient_acct_no == acct_no)

    async def _count(self, where: Any) -> int:
        result = await self.db.execute(select(func.count()).select_from(appointments).where(where))
        return result.scalar() or 0
