"""Appointments table model using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Index,
    MetaData,
    Table,
    Text,
    Uuid,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB

# Metadata for all tables
metadata = MetaData()

# JSONB on PostgreSQL, plain JSON elsewhere
DocumentType = JSON().with_variant(JSONB(), "postgresql")

# Appointments table
#
# ``document`` holds the full canonical record (spreadsheet fields, kiosk data,
# check-in and visit times). The scalar columns are copies of the fields that are
# looked up or filtered on and are rewritten from the document on every write.
appointments = Table(
    "appointments",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    # Identity
    Column("encounter_id", Text, nullable=False, unique=True),
    Column("patient_acct_no", Text, nullable=False, index=True),
    # Provenance
    Column("source", Text, nullable=False, server_default="tabular-import"),
    Column("file_id", Text, nullable=True, index=True),
    Column("file_name", Text, nullable=True),
    Column("upload_date", DateTime(timezone=True), nullable=True),
    # Scheduling
    Column("appointment_date", DateTime, nullable=False, index=True),
    Column("appointment_start_time", Text, nullable=True),
    # Filter columns
    Column("provider_name", Text, nullable=True),
    Column("facility_name", Text, nullable=True),
    Column("visit_status", Text, nullable=True),
    Column("patient_name", Text, nullable=True),
    Column("patient_first_name", Text, nullable=True),
    Column("patient_last_name", Text, nullable=True),
    # Canonical record
    Column("document", DocumentType, nullable=False),
    # Audit fields
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Index("ix_appointments_acct_date", "patient_acct_no", "appointment_date"),
)
