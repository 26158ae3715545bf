"""Patient model definition using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    MetaData,
    Table,
    Text,
    Uuid,
    false,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB

metadata = MetaData()

JSONType = JSON().with_variant(JSONB(), "postgresql")

patients = Table(
    "patients",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("acct_no", Text, nullable=False, unique=True),
    # Name
    Column("name", Text),
    Column("first_name", Text),
    Column("last_name", Text),
    Column("middle_initial", Text),
    Column("dob", DateTime),
    # Contact information
    Column("email", Text),
    Column("phone", Text),
    Column("cell_phone", Text),
    Column("home_phone", Text),
    Column("work_phone", Text),
    Column("address", JSONType),
    # Demographics
    Column("gender", Text),
    Column("birth_sex", Text),
    Column("gender_identity", JSONType),
    Column("sexual_orientation", JSONType),
    Column("race", Text),
    Column("ethnicity", Text),
    Column("language", Text),
    # Statuses
    Column("status", Text, nullable=False, server_default="active"),
    Column("dont_send_statements", Boolean, nullable=False, server_default=false()),
    # Encounter IDs of this patient's appointments
    Column("appointments", JSONType, nullable=False, default=list),
    # Metadata
    Column("created_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), nullable=False, server_default=func.now()),
    CheckConstraint(
        "status IN ('active', 'inactive', 'deceased')",
        name="patients_status_check",
    ),
)
