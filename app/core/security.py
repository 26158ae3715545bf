"""Patient access tokens and one-time login codes."""

import secrets
from datetime import UTC, datetime, timedelta
from typing import Any

from jose import JWTError, jwt

from app.config import settings

ACCESS_TOKEN_TYPE = "patient_access"


def create_access_token(acct_no: str, expires_delta: timedelta | None = None) -> str:
    """
    Create a JWT identifying a patient by account number.

    Args:
        acct_no: Patient account number, stored as the ``sub`` claim
        expires_delta: Lifetime; defaults to ``ACCESS_TOKEN_EXPIRE_MINUTES``

    Returns:
        Encoded JWT token
    """
    issued_at = datetime.now(UTC)
    lifetime = expires_delta or timedelta(minutes=settings.access_token_expire_minutes)

    claims = {
        "sub": acct_no,
        "iat": issued_at,
        "exp": issued_at + lifetime,
        "type": ACCESS_TOKEN_TYPE,
    }
    return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict[str, Any] | None:
    """
    Verify a patient access token.

    Returns:
        Decoded claims, or None when the signature, expiry or token type is wrong
    """
    try:
        claims = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None

    if claims.get("type") != ACCESS_TOKEN_TYPE:
        return None
    return claims


def generate_numeric_code(length: int) -> str:
    """Generate a random numeric code of exactly ``length`` digits."""
    low = 10 ** (length - 1)
    return str(low + secrets.randbelow(9 * low))


def codes_match(submitted: str, expected: str) -> bool:
    """Constant-time comparison of one-time codes."""
    return secrets.compare_digest(submitted.encode(), expected.encode())
