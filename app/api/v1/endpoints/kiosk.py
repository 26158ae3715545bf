"""Kiosk check-in endpoints."""

from fastapi import APIRouter, File, UploadFile, status

from app.config import settings
from app.core.exceptions import BadRequestException, PayloadTooLargeException
from app.dependencies import DatabaseSession, Storage
from app.schemas.kiosk import (
    CheckInRequest,
    CheckInResponse,
    ImageUploadResponse,
    KioskSubmission,
    KioskSubmitResponse,
)
from app.services.file_storage import is_image
from app.services.kiosk_service import KioskService

router = APIRouter()

MAX_INSURANCE_IMAGES = 2


async def _read_image(image_type: str, upload: UploadFile) -> tuple[str, bytes, str]:
    """Validate one uploaded image and read its content."""
    file_name = upload.filename or image_type
    if not is_image(file_name, upload.content_type):
        raise BadRequestException("Only image files (jpeg, jpg, png, gif) are allowed")

    content = await upload.read()
    if len(content) > settings.max_image_size_bytes:
        raise PayloadTooLargeException(
            f"Image exceeds the {settings.max_image_size_mb} MB upload limit"
        )
    return image_type, content, file_name


@router.post(
    "/check-in",
    response_model=CheckInResponse,
    status_code=status.HTTP_200_OK,
    summary="Find today's appointment",
)
async def check_in(
    data: CheckInRequest,
    db: DatabaseSession,
) -> CheckInResponse:
    """
    Look up today's appointment for the encounter ID on the patient's slip.

    Raises:
        NotFoundException: If there is no appointment today with this ID
    """
    service = KioskService(db)
    return await service.check_appointment(data.encounter_id)


@router.patch(
    "/submit/{encounter_id}",
    response_model=KioskSubmitResponse,
    status_code=status.HTTP_200_OK,
    summary="Submit kiosk check-in",
)
async def submit_check_in(
    encounter_id: str,
    data: KioskSubmission,
    db: DatabaseSession,
) -> KioskSubmitResponse:
    """
    Complete check-in with the details the patient entered at the kiosk.

    Args:
        encounter_id: Appointment encounter ID
        data: Kiosk payload
        db: Database session

    Returns:
        Check-in confirmation with the updated appointment
    """
    service = KioskService(db)
    return await service.submit(encounter_id, data)


@router.post(
    "/upload-images/{encounter_id}",
    response_model=ImageUploadResponse,
    status_code=status.HTTP_200_OK,
    summary="Upload check-in images",
)
async def upload_images(
    encounter_id: str,
    db: DatabaseSession,
    storage: Storage,
    photo: UploadFile | None = File(None),
    id_card: UploadFile | None = File(None, alias="id"),
    insurance: list[UploadFile] | None = File(None),
) -> ImageUploadResponse:
    """
    Attach a photo, an ID and up to two insurance card images.

    Args:
        encounter_id: Appointment encounter ID
        db: Database session
        storage: Image storage
        photo: Patient photo
        id_card: Identity document (form field ``id``)
        insurance: Insurance card sides

    Returns:
        References of the stored images

    Raises:
        BadRequestException: If no image is sent, a file is not an image, or more
            than two insurance images are sent
        PayloadTooLargeException: If an image exceeds ``MAX_IMAGE_SIZE_MB``
    """
    if insurance and len(insurance) > MAX_INSURANCE_IMAGES:
        raise BadRequestException(f"At most {MAX_INSURANCE_IMAGES} insurance images are allowed")

    images = []
    if photo is not None:
        images.append(await _read_image("photo", photo))
    if id_card is not None:
        images.append(await _read_image("id", id_card))
    for upload in insurance or []:
        images.append(await _read_image("insurance", upload))

    service = KioskService(db, storage)
    return await service.upload_images(encounter_id, images)
