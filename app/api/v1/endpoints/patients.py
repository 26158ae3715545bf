"""Patient portal endpoints."""

from datetime import datetime

from fastapi import APIRouter, Query, status

from app.core.exceptions import ForbiddenException
from app.dependencies import CurrentPatient, DatabaseSession
from app.schemas.patients import (
    PatientAppointmentFilters,
    PatientAppointmentListResponse,
    PatientDashboardResponse,
    PatientResponse,
    PatientUpdate,
)
from app.services.patient_service import PatientService

router = APIRouter()


def _ensure_own_record(acct_no: str, current_patient: PatientResponse) -> None:
    """Patients may only access their own record."""
    if current_patient.acct_no != acct_no:
        raise ForbiddenException("Not authorized to access this patient's data")


@router.get(
    "/{acct_no}",
    response_model=PatientResponse,
    status_code=status.HTTP_200_OK,
    summary="Get patient",
)
async def get_patient(
    acct_no: str,
    current_patient: CurrentPatient,
    db: DatabaseSession,
) -> PatientResponse:
    """
    Get a patient by account number.

    Raises:
        ForbiddenException: If the account is not the caller's
        NotFoundException: If patient not found
    """
    _ensure_own_record(acct_no, current_patient)
    service = PatientService(db)
    return await service.get_by_acct_no(acct_no)


@router.get(
    "/{acct_no}/appointments",
    response_model=PatientAppointmentListResponse,
    status_code=status.HTTP_200_OK,
    summary="List patient appointments",
)
async def list_patient_appointments(
    acct_no: str,
    current_patient: CurrentPatient,
    db: DatabaseSession,
    past: bool = Query(False),
    upcoming: bool = Query(False),
    start_date: datetime | None = Query(None, alias="startDate"),
    end_date: datetime | None = Query(None, alias="endDate"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
) -> PatientAppointmentListResponse:
    """
    List a patient's appointments, most recent first.

    Args:
        acct_no: Patient account number
        current_patient: Authenticated patient
        db: Database session
        past: Only appointments before today
        upcoming: Only appointments from today on
        start_date: Range start (used with ``end_date``)
        end_date: Range end
        page: Page number
        limit: Items per page

    Returns:
        Paginated appointments
    """
    _ensure_own_record(acct_no, current_patient)

    filters = PatientAppointmentFilters(
        past=past,
        upcoming=upcoming,
        start_date=start_date,
        end_date=end_date,
        page=page,
        limit=limit,
    )

    service = PatientService(db)
    return await service.list_appointments(acct_no, filters)


@router.put(
    "/{acct_no}",
    response_model=PatientResponse,
    status_code=status.HTTP_200_OK,
    summary="Update patient contact details",
)
async def update_patient(
    acct_no: str,
    data: PatientUpdate,
    current_patient: CurrentPatient,
    db: DatabaseSession,
) -> PatientResponse:
    """
    Update contact details and address.

    Raises:
        ForbiddenException: If the account is not the caller's
    """
    _ensure_own_record(acct_no, current_patient)
    service = PatientService(db)
    return await service.update_profile(acct_no, data)


@router.get(
    "/{acct_no}/dashboard",
    response_model=PatientDashboardResponse,
    status_code=status.HTTP_200_OK,
    summary="Patient dashboard",
)
async def get_dashboard(
    acct_no: str,
    current_patient: CurrentPatient,
    db: DatabaseSession,
) -> PatientDashboardResponse:
    """Upcoming and recent appointments for the portal home page."""
    _ensure_own_record(acct_no, current_patient)
    service = PatientService(db)
    return await service.dashboard(acct_no)
