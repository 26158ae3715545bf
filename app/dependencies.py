"""FastAPI dependencies."""

from typing import Annotated

import redis
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.redis_client import OneTimeCodeStore, get_redis_client
from app.core.security import decode_access_token
from app.database import get_db
from app.schemas.patients import PatientResponse
from app.services.file_storage import FileStorage
from app.services.patient_service import PatientService

# Security
security = HTTPBearer()


async def get_current_acct_no(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
) -> str:
    """
    Extract and validate the patient account number from a JWT token.

    Args:
        credentials: Bearer token credentials

    Returns:
        Account number from token

    Raises:
        HTTPException: If token is invalid or expired
    """
    payload = decode_access_token(credentials.credentials)

    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authorized, token failed",
            headers={"WWW-Authenticate": "Bearer"},
        )

    acct_no = payload.get("sub")
    if not acct_no or not isinstance(acct_no, str):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authorized, token failed",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return acct_no


async def get_current_patient(
    acct_no: Annotated[str, Depends(get_current_acct_no)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> PatientResponse:
    """
    Load the authenticated patient.

    Raises:
        HTTPException: If the patient no longer exists
    """
    row = await PatientService(db).get_row(acct_no)

    if not row:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authorized, patient not found",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return PatientResponse.model_validate(dict(row._mapping))


def get_code_store(
    redis_client: Annotated[redis.Redis, Depends(get_redis_client)],
) -> OneTimeCodeStore:
    """One-time code store backed by the shared Redis client."""
    return OneTimeCodeStore(redis_client)


def get_file_storage() -> FileStorage:
    """Upload storage rooted at ``UPLOAD_DIR``."""
    return FileStorage()


# Type aliases for dependency injection
DatabaseSession = Annotated[AsyncSession, Depends(get_db)]
CurrentPatient = Annotated[PatientResponse, Depends(get_current_patient)]
CodeStore = Annotated[OneTimeCodeStore, Depends(get_code_store)]
RedisClient = Annotated[redis.Redis, Depends(get_redis_client)]
Storage = Annotated[FileStorage, Depends(get_file_storage)]
