"""Database models."""

from sqlalchemy import MetaData

from app.models.appointments import appointments
from app.models.appointments import metadata as appointments_metadata
from app.models.patients import metadata as patients_metadata
from app.models.patients import patients

# Combined metadata for schema creation
metadata = MetaData()
for source_metadata in (appointments_metadata, patients_metadata):
    for table in source_metadata.tables.values():
        table.to_metadata(metadata)

__all__ = [
    "appointments",
    "metadata",
    "patients",
]
