"""Schemas for spreadsheet ingestion."""

from typing import Any

from pydantic import Field

from app.schemas.common import CamelModel


class NormalizedBatch(CamelModel):
    """Typed records produced from one uploaded spreadsheet."""

    file_id: str
    file_name: str
    records: list[dict[str, Any]] = Field(default_factory=list)


class IngestionReport(CamelModel):
    """Outcome of ingesting one batch."""

    file_id: str
    file_name: str
    total: int
    inserted: int
    errors: list[dict[str, Any]] | None = None


class FileDeleteResponse(CamelModel):
    """Outcome of removing every appointment of one upload."""

    file_id: str
    deleted: int
