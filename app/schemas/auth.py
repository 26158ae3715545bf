"""Authentication schemas for the patient portal."""

from datetime import datetime

from pydantic import Field

from app.schemas.common import CamelModel


class OTPRequest(CamelModel):
    """Request a one-time code."""

    acct_no: str = Field(..., min_length=1)
    phone: str | None = None


class OTPRequestResponse(CamelModel):
    """Code issuance result; the code itself is only echoed in development."""

    acct_no: str
    sent: bool = True
    method: str
    otp: str | None = None
    expires_at: datetime | None = None


class OTPVerifyRequest(CamelModel):
    """Exchange a one-time code for a token."""

    acct_no: str = Field(..., min_length=1)
    otp: str = Field(..., min_length=1)


class Token(CamelModel):
    """Access token issued to a patient."""

    acct_no: str
    name: str | None = None
    access_token: str
    token_type: str = "bearer"
    expires_in: int = Field(..., description="Token expiration time in seconds")


class OneTimeCode(CamelModel):
    """A short-lived login code, stored apart from the patient record."""

    code: str
    expires_at: datetime
