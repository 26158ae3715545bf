"""Visit duration calculation from checkpoint events.

Durations are always recomputed from the full event log; nothing here relies on
the order events were stored in.
"""

import math
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import Any

from dateutil import parser as dateutil_parser

EVENT_LABELS: tuple[str, ...] = (
    "patient_start",
    "patient_end",
    "doctor_start",
    "doctor_end",
    "staff_start",
    "staff_end",
)

EMPTY_DURATIONS: dict[str, int] = {
    "patientDuration": 0,
    "doctorDuration": 0,
    "staffDuration": 0,
}


def _tie_rank(label: str) -> tuple[int, str]:
    # Ends before starts: a segment closing at the instant the next opens stays paired
    return (0 if label.endswith("_end") else 1, label)


def parse_event_time(value: Any) -> datetime:
    """
    Parse an event time into an aware UTC datetime.

    Naive values are taken to be UTC; numbers are epoch milliseconds.

    Raises:
        ValueError: If the value is not a point in time
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, int | float) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(value / 1000, UTC)
        except (OverflowError, OSError) as e:
            raise ValueError(f"not a point in time: {value!r}") from e
    elif isinstance(value, str) and value.strip():
        try:
            parsed = dateutil_parser.isoparse(value.strip())
        except ValueError:
            try:
                parsed = dateutil_parser.parse(value.strip())
            except OverflowError as e:
                raise ValueError(str(e)) from e
    else:
        raise ValueError(f"not a point in time: {value!r}")

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _round_minutes(minutes: float) -> int:
    # Half-up
    return int(math.floor(minutes + 0.5))


def _minutes_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 60


def _paired_minutes(events: list[tuple[str, datetime]], category: str) -> int:
    """Sum positional start/end pairs of one category (1st+2nd, 3rd+4th, ...), each rounded."""
    category_events = [event for event in events if event[0].startswith(f"{category}_")]
    total = 0
    for index in range(0, len(category_events) - 1, 2):
        start, end = category_events[index], category_events[index + 1]
        if start[0] == f"{category}_start" and end[0] == f"{category}_end":
            total += _round_minutes(_minutes_between(start[1], end[1]))
    return total


def calculate_durations(events: Iterable[Mapping[str, Any]] | None) -> dict[str, int]:
    """
    Compute patient, doctor and staff durations in whole minutes.

    Args:
        events: Checkpoint events as ``{"label", "time"}`` mappings, any order

    Returns:
        ``patientDuration``, ``doctorDuration`` and ``staffDuration``
    """
    if not events:
        return dict(EMPTY_DURATIONS)

    # Ties on time are broken by label so the result never depends on storage order
    ordered = sorted(
        ((event["label"], parse_event_time(event["time"])) for event in events),
        key=lambda event: (event[1], *_tie_rank(event[0])),
    )

    result = dict(EMPTY_DURATIONS)

    patient_starts = [time for label, time in ordered if label == "patient_start"]
    patient_ends = [time for label, time in ordered if label == "patient_end"]
    if patient_starts and patient_ends and patient_ends[-1] > patient_starts[0]:
        result["patientDuration"] = _round_minutes(
            _minutes_between(patient_starts[0], patient_ends[-1])
        )

    result["doctorDuration"] = _paired_minutes(ordered, "doctor")
    result["staffDuration"] = _paired_minutes(ordered, "staff")

    return result


def validate_time_events(events: Any) -> list[str]:
    """
    Validate a submitted batch of checkpoint events.

    Args:
        events: Raw ``events`` value from the request body

    Returns:
        One message per problem, empty when the batch is valid
    """
    if not isinstance(events, list):
        return ["Events must be an array"]

    errors: list[str] = []
    for index, event in enumerate(events):
        if not isinstance(event, Mapping):
            errors.append(f"Event at index {index} must be an object")
            continue

        label = event.get("label")
        if not label:
            errors.append(f"Event at index {index} is missing a label")
        elif label not in EVENT_LABELS:
            errors.append(f"Event at index {index} has invalid label: {label}")

        time = event.get("time")
        if time is None or time == "":
            errors.append(f"Event at index {index} is missing a time")
        else:
            try:
                parse_event_time(time)
            except ValueError:
                errors.append(f"Event at index {index} has invalid time: {time}")

    return errors
