"""
Appointment date/time normalization and upcoming/past classification.

Appointment records arrive with dates in either DD/MM/YYYY or YYYY-MM-DD
and times as H:mm or HH:mm. Everything here works on naive local
datetimes; no timezone is carried by the records.
"""
import logging
from datetime import datetime
from enum import Enum
from typing import Any, List, NamedTuple, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)


class DateFormat(Enum):
    SLASH = "slash"  # DD/MM/YYYY
    DASH = "dash"    # YYYY-MM-DD
    INVALID = "invalid"


class ParseError(ValueError):
    """Raised when an appointment date/time pair cannot be turned into a timestamp."""

    def __init__(self, date_value: Any, time_value: Any, reason: str):
        self.date_value = date_value
        self.time_value = time_value
        self.reason = reason
        super().__init__(f"Cannot parse appointment date={date_value!r} time={time_value!r}: {reason}")


class AppointmentPartition(NamedTuple):
    upcoming: List[Any]
    past: List[Any]


def detect_date_format(value: Optional[str]) -> DateFormat:
    if not value:
        return DateFormat.INVALID
    if "/" in value:
        return DateFormat.SLASH
    if "-" in value:
        return DateFormat.DASH
    return DateFormat.INVALID


def _split_numeric(value: str, separator: str, expected: int) -> List[int]:
    parts = [p.strip() for p in value.split(separator)]
    if len(parts) != expected or not all(p.isdigit() for p in parts):
        raise ValueError(f"expected {expected} numeric parts separated by {separator!r}")
    return [int(p) for p in parts]


def parse_appointment_datetime(date_value: Optional[str], time_value: Optional[str]) -> datetime:
    """Combine an appointment date and time into a local datetime.

    Raises ParseError for missing values, an unknown date separator,
    non-numeric components or a value the calendar rejects.
    """
    if not date_value or not time_value:
        raise ParseError(date_value, time_value, "missing date or time")
    if not isinstance(date_value, str) or not isinstance(time_value, str):
        raise ParseError(date_value, time_value, "date and time must be strings")

    date_str = date_value.strip()
    fmt = detect_date_format(date_str)
    try:
        if fmt is DateFormat.SLASH:
            day, month, year = _split_numeric(date_str, "/", 3)
        elif fmt is DateFormat.DASH:
            year, month, day = _split_numeric(date_str, "-", 3)
        else:
            raise ParseError(date_value, time_value, "unrecognized date separator")

        time_parts = [p.strip() for p in time_value.strip().split(":")]
        if len(time_parts) not in (2, 3) or not all(p.isdigit() for p in time_parts):
            raise ParseError(date_value, time_value, "time must be H:mm or HH:mm")
        hour = time_parts[0].zfill(2)
        minute = time_parts[1].zfill(2)
        second = time_parts[2].zfill(2) if len(time_parts) == 3 else "00"

        return datetime.strptime(
            f"{year:04d}-{month:02d}-{day:02d} {hour}:{minute}:{second}",
            "%Y-%m-%d %H:%M:%S"
        )
    except ParseError:
        raise
    except ValueError as exc:
        raise ParseError(date_value, time_value, str(exc)) from exc


def parse_calendar_date(value: Optional[str]) -> datetime:
    """Parse a bare date in either supported format, at midnight."""
    return parse_appointment_datetime(value, "00:00")


def canonical_schedule(date_value: Optional[str], time_value: Optional[str]) -> Tuple[str, str]:
    """Return the (YYYY-MM-DD, HH:MM) pair stored for an appointment slot."""
    ts = parse_appointment_datetime(date_value, time_value)
    return ts.strftime("%Y-%m-%d"), ts.strftime("%H:%M")


def _record_field(record: Any, name: str) -> Any:
    if isinstance(record, dict):
        return record.get(name)
    return getattr(record, name, None)


def appointment_timestamp(record: Any) -> datetime:
    return parse_appointment_datetime(_record_field(record, "date"), _record_field(record, "time"))


def _require_sequence(appointments: Sequence[Any]) -> None:
    if not isinstance(appointments, (list, tuple)):
        raise TypeError(f"appointments must be a list, got {type(appointments).__name__}")


def classify_appointments(appointments: Sequence[Any], now: Optional[datetime] = None) -> AppointmentPartition:
    """Split appointments into upcoming (>= now) and past (< now), keeping input order.

    Records that fail to parse are left out of both lists.
    """
    _require_sequence(appointments)
    reference = now or datetime.now()
    upcoming = []
    past = []
    for record in appointments:
        try:
            ts = appointment_timestamp(record)
        except ParseError as exc:
            logger.warning(f"Skipping appointment {_record_field(record, 'id')}: {exc}")
            continue
        if ts >= reference:
            upcoming.append(record)
        else:
            past.append(record)
    return AppointmentPartition(upcoming=upcoming, past=past)


def select_nearest_appointment(appointments: Sequence[Any], now: Optional[datetime] = None) -> Optional[Any]:
    """Return the appointment closest to now that has not started yet, or None."""
    _require_sequence(appointments)
    reference = now or datetime.now()
    nearest = None
    nearest_delta = None
    for record in appointments:
        try:
            delta = appointment_timestamp(record) - reference
        except ParseError as exc:
            logger.warning(f"Skipping appointment {_record_field(record, 'id')}: {exc}")
            continue
        if delta.total_seconds() < 0:
            continue
        # Strict comparison keeps the first of equal timestamps.
        if nearest_delta is None or delta < nearest_delta:
            nearest = record
            nearest_delta = delta
    return nearest
