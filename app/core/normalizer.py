"""Spreadsheet normalization: header mapping and cell typing.

Turns the header row and data rows of an uploaded spreadsheet into appointment
records keyed by canonical (camelCase) field names. A single unreadable cell never
fails the batch; it is kept as the raw value under its canonical key.
"""

import csv
import re
from collections.abc import Iterable, Sequence
from datetime import UTC, date, datetime
from enum import Enum
from pathlib import Path
from typing import Any
from uuid import uuid4

import structlog
from dateutil import parser as dateutil_parser
from openpyxl import load_workbook

from app.core.exceptions import TabularParseError
from app.schemas.ingestion import NormalizedBatch

logger = structlog.get_logger()

TABULAR_IMPORT_SOURCE = "tabular-import"


class FieldKind(str, Enum):
    """How a canonical field's cell values are typed."""

    TEXT = "text"
    DATE = "date"
    BOOLEAN = "boolean"


# Known spreadsheet headers (lower-cased) -> (canonical name, kind)
HEADER_TABLE: dict[str, tuple[str, FieldKind]] = {
    "appointment date": ("appointmentDate", FieldKind.DATE),
    "admission date": ("admissionDate", FieldKind.DATE),
    "discharge date": ("dischargeDate", FieldKind.DATE),
    "appointment start time": ("appointmentStartTime", FieldKind.TEXT),
    "is sunoh.ai": ("isSunohAi", FieldKind.BOOLEAN),
    "is televisit": ("isTelevisit", FieldKind.BOOLEAN),
    "call start time": ("callStartTime", FieldKind.TEXT),
    "call end time": ("callEndTime", FieldKind.TEXT),
    "call duration": ("callDuration", FieldKind.TEXT),
    "encounter id": ("encounterId", FieldKind.TEXT),
    "visit type": ("visitType", FieldKind.TEXT),
    "visit sub-type": ("visitSubType", FieldKind.TEXT),
    "visit status": ("visitStatus", FieldKind.TEXT),
    "case label": ("caseLabel", FieldKind.TEXT),
    "appointment created by user": ("appointmentCreatedByUser", FieldKind.TEXT),
    "visit count": ("visitCount", FieldKind.TEXT),
    "patient count": ("patientCount", FieldKind.TEXT),
    "patient name": ("patientName", FieldKind.TEXT),
    "patient first name": ("patientFirstName", FieldKind.TEXT),
    "patient last name": ("patientLastName", FieldKind.TEXT),
    "patient middle initial": ("patientMiddleInitial", FieldKind.TEXT),
    "patient acct no": ("patientAcctNo", FieldKind.TEXT),
    "patient dob": ("patientDOB", FieldKind.DATE),
    "patient gender": ("patientGender", FieldKind.TEXT),
    "patient address line 1": ("patientAddressLine1", FieldKind.TEXT),
    "patient address line 2": ("patientAddressLine2", FieldKind.TEXT),
    "patient city": ("patientCity", FieldKind.TEXT),
    "patient state": ("patientState", FieldKind.TEXT),
    "patient zip code": ("patientZIPCode", FieldKind.TEXT),
    "patient full address": ("patientFullAddress", FieldKind.TEXT),
    "patient race": ("patientRace", FieldKind.TEXT),
    "patient ethnicity": ("patientEthnicity", FieldKind.TEXT),
    "patient language": ("patientLanguage", FieldKind.TEXT),
    "patient home phone": ("patientHomePhone", FieldKind.TEXT),
    "patient cell phone": ("patientCellPhone", FieldKind.TEXT),
    "patient work phone": ("patientWorkPhone", FieldKind.TEXT),
    "patient e-mail": ("patientEmail", FieldKind.TEXT),
    "patient status": ("patientStatus", FieldKind.TEXT),
    "don't send statements": ("dontSendStatements", FieldKind.BOOLEAN),
    "patient deceased": ("patientDeceased", FieldKind.BOOLEAN),
    "patient age group": ("patientAgeGroup", FieldKind.TEXT),
    "birth sex": ("birthSex", FieldKind.TEXT),
    "gender identity name": ("genderIdentityName", FieldKind.TEXT),
    "gender identity snomed code": ("genderIdentitySNOMEDCode", FieldKind.TEXT),
    "sexual orientation name": ("sexualOrientationName", FieldKind.TEXT),
    "sexual orientation snomed code": ("sexualOrientationSNOMEDCode", FieldKind.TEXT),
}

CANONICAL_KINDS: dict[str, FieldKind] = {name: kind for name, kind in HEADER_TABLE.values()}

# Substring policy for canonical names outside the table, checked in order
SUBSTRING_KINDS: tuple[tuple[str, FieldKind], ...] = (
    ("date", FieldKind.DATE),
    ("dob", FieldKind.DATE),
    ("is", FieldKind.BOOLEAN),
    ("dont", FieldKind.BOOLEAN),
    ("deceased", FieldKind.BOOLEAN),
)

DATE_FORMATS: tuple[str, ...] = (
    "%Y-%m-%d",  # YYYY-MM-DD
    "%m/%d/%Y",  # MM/DD/YYYY and M/D/YYYY
    "%d-%b-%Y",  # DD-MMM-YYYY
    "%b %d %Y",  # MMM DD YYYY
    "%Y/%m/%d",  # YYYY/MM/DD
    "%m-%d-%Y",  # MM-DD-YYYY
)

TRUE_STRINGS = frozenset({"yes", "true", "y", "1"})

_NON_ALPHANUMERIC = re.compile(r"[^a-zA-Z0-9 ]")


def fallback_field_name(header: str) -> str:
    """
    Derive a camelCase field name for a header missing from the table.

    Args:
        header: Raw header text

    Returns:
        Canonical-style field name
    """
    words = _NON_ALPHANUMERIC.sub("", header.lower()).split(" ")
    return "".join(
        word.lower() if index == 0 else word[:1].upper() + word[1:].lower()
        for index, word in enumerate(words)
    )


def normalize_header(header: str) -> str:
    """Map a raw header to its canonical field name."""
    key = header.strip().lower()
    if key in HEADER_TABLE:
        return HEADER_TABLE[key][0]
    return fallback_field_name(header.strip())


def field_kind(field: str) -> FieldKind:
    """Resolve the typing policy for a canonical field name."""
    if field in CANONICAL_KINDS:
        return CANONICAL_KINDS[field]

    lowered = field.lower()
    for fragment, kind in SUBSTRING_KINDS:
        if fragment in lowered:
            return kind
    return FieldKind.TEXT


def parse_date(value: Any) -> datetime | None:
    """
    Parse a spreadsheet cell into a naive datetime.

    Structured dates pass through; strings are tried against ``DATE_FORMATS`` in
    order and then handed to dateutil. Anything else is not a date.
    """
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if not isinstance(value, str) or not value.strip():
        return None

    text = value.strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue

    try:
        parsed = dateutil_parser.parse(text)
    except (ValueError, OverflowError):
        return None

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(UTC).replace(tzinfo=None)
    return parsed


def coerce_boolean(value: Any) -> bool:
    """Coerce a spreadsheet cell to a boolean."""
    if isinstance(value, str):
        return value.strip().lower() in TRUE_STRINGS
    return bool(value)


def cell_text(value: Any) -> str | None:
    """Render an identifier or text cell as a trimmed string; blanks become None."""
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    return text or None


def coerce_value(field: str, value: Any) -> Any:
    """
    Type a cell value according to its canonical field.

    Args:
        field: Canonical field name
        value: Raw cell value

    Returns:
        Typed value, or the raw value when it cannot be interpreted
    """
    kind = field_kind(field)

    if kind is FieldKind.DATE:
        parsed = parse_date(value)
        return parsed if parsed is not None else value

    if kind is FieldKind.BOOLEAN:
        return coerce_boolean(value)

    return value


def _is_empty_cell(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _map_headers(header_row: Sequence[Any]) -> list[tuple[int, str]]:
    """Resolve header cells to (column index, canonical name), last duplicate wins."""
    columns: dict[str, int] = {}
    for index, header in enumerate(header_row):
        if _is_empty_cell(header):
            continue
        raw = str(header)
        canonical = normalize_header(raw)
        if canonical in columns:
            logger.warning(
                "duplicate_canonical_header",
                header=raw.strip(),
                canonical=canonical,
                column=index,
                previous_column=columns[canonical],
            )
        columns[canonical] = index
    return sorted(((index, name) for name, index in columns.items()), key=lambda item: item[0])


def normalize_rows(
    header_row: Sequence[Any],
    data_rows: Iterable[Sequence[Any]],
    file_name: str,
) -> NormalizedBatch:
    """
    Build typed appointment records from a header row and data rows.

    Args:
        header_row: First spreadsheet row
        data_rows: Remaining rows, in order
        file_name: Original name of the uploaded file

    Returns:
        Batch with a fresh file identifier and one record per data row
    """
    file_id = str(uuid4())
    upload_date = datetime.now(UTC)
    columns = _map_headers(header_row)

    records: list[dict[str, Any]] = []
    for row in data_rows:
        record: dict[str, Any] = {}
        for index, field in columns:
            if index >= len(row) or _is_empty_cell(row[index]):
                continue
            record[field] = coerce_value(field, row[index])

        record["source"] = TABULAR_IMPORT_SOURCE
        record["fileName"] = file_name
        record["fileId"] = file_id
        record["uploadDate"] = upload_date
        records.append(record)

    return NormalizedBatch(file_id=file_id, file_name=file_name, records=records)


def read_tabular_rows(path: str | Path) -> list[tuple[Any, ...]]:
    """Read every row of a CSV or Excel workbook's active sheet."""
    path = Path(path)

    if path.suffix.lower() == ".csv":
        with path.open(newline="", encoding="utf-8-sig") as handle:
            return [tuple(row) for row in csv.reader(handle)]

    workbook = load_workbook(path, read_only=True, data_only=True)
    try:
        sheet = workbook.active
        if sheet is None:
            return []
        return [tuple(row) for row in sheet.iter_rows(values_only=True)]
    finally:
        workbook.close()


def parse_tabular_file(path: str | Path, file_name: str) -> NormalizedBatch:
    """
    Parse an uploaded spreadsheet into a normalized batch.

    Args:
        path: Location of the stored upload
        file_name: Original file name reported by the client

    Returns:
        Normalized batch

    Raises:
        TabularParseError: If the file cannot be read or has no header row
    """
    try:
        rows = read_tabular_rows(path)
    except Exception as e:
        logger.error("tabular_parse_failed", file_name=file_name, error=str(e))
        raise TabularParseError(f"Failed to parse spreadsheet: {e}") from e

    if not rows:
        logger.error("tabular_parse_failed", file_name=file_name, error="empty file")
        raise TabularParseError("Failed to parse spreadsheet: file has no header row")

    batch = normalize_rows(rows[0], rows[1:], file_name)
    logger.info("tabular_file_parsed", file_name=file_name, rows=len(batch.records))
    return batch
