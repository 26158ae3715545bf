"""Authentication endpoints for the patient portal."""

from fastapi import APIRouter, status

from app.dependencies import CodeStore, CurrentPatient, DatabaseSession
from app.schemas.auth import OTPRequest, OTPRequestResponse, OTPVerifyRequest, Token
from app.schemas.patients import PatientResponse
from app.services.auth_service import AuthService

router = APIRouter()


@router.post(
    "/login",
    response_model=OTPRequestResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_200_OK,
    summary="Request a one-time login code",
)
async def login(
    data: OTPRequest,
    db: DatabaseSession,
    codes: CodeStore,
) -> OTPRequestResponse:
    """
    Send a one-time code to the patient.

    When ``phone`` is given it must match the number on file.

    Raises:
        NotFoundException: If patient not found
        BadRequestException: If the phone number does not match
    """
    service = AuthService(db, codes)
    return await service.request_code(data)


@router.post(
    "/verify-otp",
    response_model=Token,
    status_code=status.HTTP_200_OK,
    summary="Exchange a one-time code for a token",
)
async def verify_otp(
    data: OTPVerifyRequest,
    db: DatabaseSession,
    codes: CodeStore,
) -> Token:
    """
    Verify a one-time code and issue an access token.

    Raises:
        BadRequestException: If the code is invalid or expired
    """
    service = AuthService(db, codes)
    return await service.verify_code(data)


@router.get(
    "/profile",
    response_model=PatientResponse,
    status_code=status.HTTP_200_OK,
    summary="Get the signed-in patient",
)
async def get_profile(current_patient: CurrentPatient) -> PatientResponse:
    """Return the authenticated patient's record."""
    return current_patient


@router.post(
    "/refresh-token",
    response_model=Token,
    status_code=status.HTTP_200_OK,
    summary="Refresh access token",
)
async def refresh_token(
    current_patient: CurrentPatient,
    db: DatabaseSession,
    codes: CodeStore,
) -> Token:
    """Issue a new access token for the authenticated patient."""
    service = AuthService(db, codes)
    return service.create_token(current_patient)


@router.post(
    "/logout",
    status_code=status.HTTP_200_OK,
    summary="Log out",
)
async def logout(current_patient: CurrentPatient) -> dict[str, str]:
    """
    Log out.

    Tokens are stateless; the client discards its token.
    """
    return {"message": "Logout successful"}
