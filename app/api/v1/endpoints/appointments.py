"""Appointment endpoints."""

from datetime import date, datetime, time
from typing import Any

import structlog
from fastapi import APIRouter, Body, File, Query, UploadFile, status

from app.config import settings
from app.core.exceptions import BadRequestException, PayloadTooLargeException
from app.dependencies import DatabaseSession, Storage
from app.schemas.appointments import (
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentResponse,
    AppointmentUpdateResponse,
    TimeEventsRequest,
    TimeEventsResponse,
)
from app.schemas.ingestion import FileDeleteResponse, IngestionReport
from app.services.appointment_service import AppointmentService
from app.services.file_storage import is_spreadsheet
from app.services.ingestion_service import IngestionService

router = APIRouter()
logger = structlog.get_logger()


@router.post(
    "/upload",
    response_model=IngestionReport,
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
    summary="Upload appointment spreadsheet",
)
async def upload_appointments(
    db: DatabaseSession,
    storage: Storage,
    file: UploadFile = File(...),
) -> IngestionReport:
    """
    Import appointments from an Excel or CSV file.

    Each data row becomes one appointment; rows that fail are listed in
    ``errors`` and do not stop the rest of the file.

    Args:
        db: Database session
        storage: Upload storage
        file: Spreadsheet with a header row

    Returns:
        Ingestion report

    Raises:
        BadRequestException: If the file is not a spreadsheet or cannot be parsed
        PayloadTooLargeException: If the file exceeds ``MAX_UPLOAD_SIZE_MB``
    """
    file_name = file.filename or "upload"
    if not is_spreadsheet(file_name, file.content_type):
        raise BadRequestException("Only Excel and CSV files are allowed")

    content = await file.read()
    if len(content) > settings.max_upload_size_bytes:
        raise PayloadTooLargeException(
            f"File exceeds the {settings.max_upload_size_mb} MB upload limit"
        )
    if not content:
        raise BadRequestException("No file uploaded")

    path = storage.save_upload(content, file_name)
    logger.info("appointment_file_received", file_name=file_name, size=len(content))

    service = IngestionService(db, storage)
    return await service.ingest_upload(path, file_name)


@router.get(
    "/",
    response_model=AppointmentListResponse,
    status_code=status.HTTP_200_OK,
    summary="List appointments",
)
async def list_appointments(
    db: DatabaseSession,
    day: date | None = Query(None, alias="date"),
    provider: str | None = Query(None),
    facility: str | None = Query(None),
    status_filter: str | None = Query(None, alias="status"),
    search: str | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
) -> AppointmentListResponse:
    """
    List appointments with filtering.

    Args:
        db: Database session
        day: Only appointments on this calendar day
        provider: Provider name contains
        facility: Facility name contains
        status_filter: Visit status contains
        search: Patient name, account number or encounter ID contains
        page: Page number
        limit: Items per page

    Returns:
        Paginated list of appointments
    """
    filters = AppointmentFilters(
        date=datetime.combine(day, time.min) if day else None,
        provider=provider,
        facility=facility,
        status=status_filter,
        search=search,
        page=page,
        limit=limit,
    )

    service = AppointmentService(db)
    return await service.list_appointments(filters)


@router.delete(
    "/file/{file_id}",
    response_model=FileDeleteResponse,
    status_code=status.HTTP_200_OK,
    summary="Delete an uploaded file's appointments",
)
async def delete_file_appointments(
    file_id: str,
    db: DatabaseSession,
) -> FileDeleteResponse:
    """
    Delete every appointment imported from one file.

    Raises:
        NotFoundException: If no appointments carry this file ID
    """
    service = IngestionService(db)
    return await service.delete_by_file(file_id)


@router.get(
    "/{encounter_id}",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    summary="Get appointment by encounter ID",
)
async def get_appointment(
    encounter_id: str,
    db: DatabaseSession,
) -> AppointmentResponse:
    """
    Get an appointment by its encounter ID.

    Raises:
        NotFoundException: If appointment not found
    """
    service = AppointmentService(db)
    return await service.get_appointment(encounter_id)


@router.patch(
    "/{encounter_id}",
    response_model=AppointmentUpdateResponse,
    status_code=status.HTTP_200_OK,
    summary="Fill in appointment fields",
)
async def update_appointment(
    encounter_id: str,
    db: DatabaseSession,
    payload: dict[str, Any] = Body(...),
) -> AppointmentUpdateResponse:
    """
    Partially update an appointment.

    Only fields that are currently empty are written. Supplying ``kioskCheckIn``
    always stamps a fresh ``checkedInAt``.

    Args:
        encounter_id: Appointment encounter ID
        db: Database session
        payload: Nested appointment fields

    Returns:
        Updated appointment and the fields that were written
    """
    service = AppointmentService(db)
    return await service.update_appointment(encounter_id, payload)


@router.post(
    "/{encounter_id}/times",
    response_model=TimeEventsResponse,
    status_code=status.HTTP_200_OK,
    summary="Record visit checkpoint events",
)
async def record_time_events(
    encounter_id: str,
    data: TimeEventsRequest,
    db: DatabaseSession,
) -> TimeEventsResponse:
    """
    Append checkpoint events and recompute visit durations.

    Raises:
        BadRequestException: If any event is invalid
        NotFoundException: If appointment not found
        ConflictException: If concurrent writes keep winning
    """
    service = AppointmentService(db)
    return await service.record_time_events(encounter_id, data.events)
