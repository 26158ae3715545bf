"""Authentication service for one-time code login and JWT issuance."""

import re
from datetime import UTC, datetime, timedelta

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import BadRequestException
from app.core.redis_client import OneTimeCodeStore
from app.core.security import codes_match, create_access_token, generate_numeric_code
from app.schemas.auth import OneTimeCode, OTPRequest, OTPRequestResponse, OTPVerifyRequest, Token
from app.schemas.patients import PatientResponse
from app.services.patient_service import PatientService

logger = structlog.get_logger()

_NON_DIGITS = re.compile(r"\D")


def phones_match(submitted: str, on_file: str | None) -> bool:
    """
    Compare phone numbers on their digits, allowing a missing country code.

    Either number may be a suffix of the other.
    """
    submitted_digits = _NON_DIGITS.sub("", submitted)
    on_file_digits = _NON_DIGITS.sub("", on_file or "")
    if not submitted_digits or not on_file_digits:
        return False
    return on_file_digits.endswith(submitted_digits) or submitted_digits.endswith(on_file_digits)


class AuthService:
    """Authentication service for the patient portal."""

    def __init__(self, db: AsyncSession, codes: OneTimeCodeStore):
        """Initialize auth service with database session and code store."""
        self.db = db
        self.codes = codes
        self.patients = PatientService(db)

    async def request_code(self, data: OTPRequest) -> OTPRequestResponse:
        """
        Issue a one-time login code for a patient.

        A new code replaces any code issued earlier for the same account.

        Raises:
            NotFoundException: If patient not found
            BadRequestException: If a supplied phone number does not match
        """
        patient = await self.patients.get_by_acct_no(data.acct_no)

        if data.phone is not None:
            on_file = patient.cell_phone or patient.phone or patient.home_phone
            if not phones_match(data.phone, on_file):
                raise BadRequestException("Phone number does not match our records")

        code = OneTimeCode(
            code=generate_numeric_code(settings.otp_length),
            expires_at=datetime.now(UTC) + timedelta(minutes=settings.otp_expire_minutes),
        )
        self.codes.issue(patient.acct_no, code, ttl=settings.otp_expire_minutes * 60)

        method = "sms" if patient.cell_phone else "email"
        self.send_code(patient, code, method)

        if settings.is_development:
            return OTPRequestResponse(
                acct_no=patient.acct_no,
                method=method,
                otp=code.code,
                expires_at=code.expires_at,
            )
        return OTPRequestResponse(acct_no=patient.acct_no, method=method)

    def send_code(self, patient: PatientResponse, code: OneTimeCode, method: str) -> None:
        """Deliver a code to the patient. Delivery transport is not wired up; the issue is logged."""
        logger.info(
            "otp_issued",
            acct_no=patient.acct_no,
            method=method,
            expires_at=code.expires_at.isoformat(),
        )

    async def verify_code(self, data: OTPVerifyRequest) -> Token:
        """
        Exchange a valid one-time code for an access token.

        Raises:
            NotFoundException: If patient not found
            BadRequestException: If the code is wrong, missing or expired
        """
        patient = await self.patients.get_by_acct_no(data.acct_no)
        stored = self.codes.get(patient.acct_no)

        if (
            stored is None
            or not codes_match(data.otp, stored.code)
            or self.codes.is_expired(stored, datetime.now(UTC))
        ):
            logger.info("otp_rejected", acct_no=patient.acct_no)
            raise BadRequestException("Invalid or expired OTP")

        self.codes.consume(patient.acct_no)
        logger.info("otp_verified", acct_no=patient.acct_no)
        return self.create_token(patient)

    def create_token(self, patient: PatientResponse) -> Token:
        """
        Create an access token for a patient.

        Args:
            patient: Authenticated patient

        Returns:
            Bearer token with the patient's account number as subject
        """
        expires_delta = timedelta(minutes=settings.access_token_expire_minutes)
        access_token = create_access_token(patient.acct_no, expires_delta=expires_delta)

        return Token(
            acct_no=patient.acct_no,
            name=patient.name or patient.full_name or None,
            access_token=access_token,
            token_type="bearer",
            expires_in=int(expires_delta.total_seconds()),
        )
