"""Tests for patient portal authentication."""

import json
from datetime import UTC, datetime, timedelta

import pytest
from httpx import AsyncClient

from app.config import settings
from app.core.redis_client import OneTimeCodeStore
from app.core.security import decode_access_token
from app.schemas.auth import OneTimeCode
from app.services.auth_service import phones_match


def test_phones_match_on_digits():
    """Formatting and a leading country code are ignored."""
    assert phones_match("555-123-4567", "(555) 123-4567")
    assert phones_match("+1 555 123 4567", "(555) 123-4567")
    assert phones_match("5551234567", "1-555-123-4567")
    assert not phones_match("555-000-0000", "(555) 123-4567")


def test_phones_match_requires_both_numbers():
    """An empty number never matches."""
    assert not phones_match("555-123-4567", None)
    assert not phones_match("555-123-4567", "")
    assert not phones_match("()", "(555) 123-4567")


@pytest.mark.asyncio
async def test_login_issues_code(client: AsyncClient, test_patient, redis_store):
    """Development responses echo the code that was stored."""
    response = await client.post(
        "/api/v1/auth/login",
        json={"acctNo": test_patient.acct_no, "phone": "555.123.4567"},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["acctNo"] == test_patient.acct_no
    assert data["sent"] is True
    assert data["method"] == "sms"
    assert len(data["otp"]) == settings.otp_length
    assert data["otp"].isdigit()

    stored = json.loads(redis_store[OneTimeCodeStore.key(test_patient.acct_no)])
    assert stored["code"] == data["otp"]


@pytest.mark.asyncio
async def test_login_hides_code_outside_development(
    client: AsyncClient, test_patient, monkeypatch
):
    """The code is only returned to the caller in development."""
    monkeypatch.setattr(settings, "environment", "staging")

    response = await client.post("/api/v1/auth/login", json={"acctNo": test_patient.acct_no})

    assert response.status_code == 200
    assert "otp" not in response.json()
    assert "expiresAt" not in response.json()


@pytest.mark.asyncio
async def test_login_phone_mismatch(client: AsyncClient, test_patient, redis_store):
    """A phone number that does not match the record is rejected."""
    response = await client.post(
        "/api/v1/auth/login",
        json={"acctNo": test_patient.acct_no, "phone": "555-999-0000"},
    )

    assert response.status_code == 400
    assert response.json()["message"] == "Phone number does not match our records"
    assert redis_store == {}


@pytest.mark.asyncio
async def test_login_unknown_patient(client: AsyncClient):
    """Unknown account numbers are 404."""
    response = await client.post("/api/v1/auth/login", json={"acctNo": "NOPE"})

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_verify_otp_issues_token(client: AsyncClient, test_patient, redis_store):
    """A valid code yields a token and cannot be reused."""
    login = await client.post("/api/v1/auth/login", json={"acctNo": test_patient.acct_no})
    code = login.json()["otp"]

    response = await client.post(
        "/api/v1/auth/verify-otp",
        json={"acctNo": test_patient.acct_no, "otp": code},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["acctNo"] == test_patient.acct_no
    assert data["name"] == "Doe, John"
    assert data["tokenType"] == "bearer"
    assert data["expiresIn"] == settings.access_token_expire_minutes * 60
    assert decode_access_token(data["accessToken"])["sub"] == test_patient.acct_no
    assert redis_store == {}

    again = await client.post(
        "/api/v1/auth/verify-otp",
        json={"acctNo": test_patient.acct_no, "otp": code},
    )
    assert again.status_code == 400


@pytest.mark.asyncio
async def test_verify_otp_wrong_code(client: AsyncClient, test_patient, redis_store):
    """A wrong code is rejected and the stored code is kept."""
    await client.post("/api/v1/auth/login", json={"acctNo": test_patient.acct_no})

    response = await client.post(
        "/api/v1/auth/verify-otp",
        json={"acctNo": test_patient.acct_no, "otp": "not-it"},
    )

    assert response.status_code == 400
    assert response.json()["message"] == "Invalid or expired OTP"
    assert OneTimeCodeStore.key(test_patient.acct_no) in redis_store


@pytest.mark.asyncio
async def test_verify_otp_expired_code(client: AsyncClient, test_patient, redis_store):
    """A code past its expiry is rejected even if it is still stored."""
    expired = OneTimeCode(code="123456", expires_at=datetime.now(UTC) - timedelta(seconds=1))
    redis_store[OneTimeCodeStore.key(test_patient.acct_no)] = expired.model_dump_json()

    response = await client.post(
        "/api/v1/auth/verify-otp",
        json={"acctNo": test_patient.acct_no, "otp": "123456"},
    )

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_verify_otp_without_code(client: AsyncClient, test_patient):
    """Verification without an issued code fails."""
    response = await client.post(
        "/api/v1/auth/verify-otp",
        json={"acctNo": test_patient.acct_no, "otp": "123456"},
    )

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_profile(client: AsyncClient, test_patient, auth_headers):
    """The signed-in patient's record is returned."""
    response = await client.get("/api/v1/auth/profile", headers=auth_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["acctNo"] == test_patient.acct_no
    assert data["email"] == "john.doe@example.com"
    assert data["appointments"] == ["ENC-1001"]


@pytest.mark.asyncio
async def test_profile_requires_token(client: AsyncClient):
    """Requests without a bearer token are refused."""
    response = await client.get("/api/v1/auth/profile")

    assert response.status_code in (401, 403)


@pytest.mark.asyncio
async def test_profile_rejects_bad_token(client: AsyncClient):
    """A token that does not verify is refused."""
    response = await client.get(
        "/api/v1/auth/profile",
        headers={"Authorization": "Bearer not-a-token"},
    )

    assert response.status_code == 401
    assert response.json()["message"] == "Not authorized, token failed"


@pytest.mark.asyncio
async def test_refresh_token(client: AsyncClient, test_patient, auth_headers):
    """A fresh token is issued for the same patient."""
    response = await client.post("/api/v1/auth/refresh-token", headers=auth_headers)

    assert response.status_code == 200
    assert decode_access_token(response.json()["accessToken"])["sub"] == test_patient.acct_no


@pytest.mark.asyncio
async def test_logout(client: AsyncClient, auth_headers):
    """Logout acknowledges the request."""
    response = await client.post("/api/v1/auth/logout", headers=auth_headers)

    assert response.status_code == 200
    assert response.json() == {"message": "Logout successful"}
