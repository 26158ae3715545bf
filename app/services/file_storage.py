"""Local storage for uploaded spreadsheets and kiosk images."""

from pathlib import Path
from uuid import uuid4

import structlog

from app.config import settings

logger = structlog.get_logger()

SPREADSHEET_MIME_TYPES = frozenset(
    {
        "application/vnd.ms-excel",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "application/msexcel",
        "application/x-msexcel",
        "application/x-ms-excel",
        "application/x-excel",
        "application/x-dos_ms_excel",
        "application/xls",
        "application/x-xls",
        "text/csv",
        "application/csv",
        "text/x-csv",
        "application/x-csv",
        "text/comma-separated-values",
        "text/x-comma-separated-values",
    }
)
SPREADSHEET_EXTENSIONS = frozenset({".xlsx", ".xls", ".csv"})

IMAGE_MIME_TYPES = frozenset({"image/jpeg", "image/jpg", "image/png", "image/gif"})
IMAGE_EXTENSIONS = frozenset({".jpeg", ".jpg", ".png", ".gif"})


def is_spreadsheet(file_name: str, content_type: str | None) -> bool:
    """Accept a known spreadsheet MIME type or a spreadsheet extension."""
    extension = Path(file_name).suffix.lower()
    return (content_type or "").lower() in SPREADSHEET_MIME_TYPES or extension in SPREADSHEET_EXTENSIONS


def is_image(file_name: str, content_type: str | None) -> bool:
    """Require both an image MIME type and an image extension."""
    extension = Path(file_name).suffix.lower()
    return (content_type or "").lower() in IMAGE_MIME_TYPES and extension in IMAGE_EXTENSIONS


class FileStorage:
    """Writes uploads beneath a root directory and hands back their locations."""

    def __init__(self, root: str | Path | None = None):
        """Initialize storage rooted at ``root`` (defaults to ``UPLOAD_DIR``)."""
        self.root = Path(root or settings.upload_dir)

    def save_upload(self, content: bytes, original_name: str) -> Path:
        """
        Store a tabular upload under a unique name, keeping its extension.

        Args:
            content: Raw file bytes
            original_name: File name reported by the client

        Returns:
            Path of the stored file
        """
        self.root.mkdir(parents=True, exist_ok=True)
        path = self.root / f"{uuid4()}{Path(original_name).suffix.lower()}"
        path.write_bytes(content)
        return path

    def save_patient_image(
        self,
        acct_no: str,
        image_type: str,
        content: bytes,
        original_name: str,
    ) -> str:
        """
        Store a kiosk image in the patient's folder.

        Returns:
            Public URL path of the stored image
        """
        directory = self.root / "patients" / acct_no
        directory.mkdir(parents=True, exist_ok=True)
        file_name = f"{image_type}_{uuid4()}{Path(original_name).suffix.lower()}"
        (directory / file_name).write_bytes(content)
        return f"/uploads/patients/{acct_no}/{file_name}"

    def discard(self, path: Path) -> None:
        """Delete a stored file, logging rather than failing if it is already gone."""
        try:
            path.unlink()
        except OSError as e:
            logger.warning("upload_discard_failed", path=str(path), error=str(e))
