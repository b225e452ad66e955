"""Shared parsing utilities for bank clients.

Centralises the date/time and amount parsing that all bank integrations
need: ISO 8601 strings, day-first local dates, timezone normalisation,
and string-encoded money values.
"""

from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation

# Day-first formats seen in Singapore bank feeds
_DAY_FIRST_FORMATS = ("%d/%m/%Y", "%d-%m-%Y", "%d %b %Y")


def parse_iso_datetime(value) -> datetime | None:
    """Parse an ISO 8601 string (or date/datetime object) to a UTC-aware datetime.

    Handles the formats produced by each bank:
    - Z suffix (DBS: "2024-01-15T10:30:00Z")
    - +0000 no-colon offset (UOB: "2024-01-15T10:30:00+0800")
    - Standard ISO with colon offset ("2024-06-28 18:42:46+08:00")
    - Date-only strings ("2024-06-28")
    - Day-first dates (OCBC value dates: "28/06/2024")
    - datetime/date objects passed through with UTC normalisation

    Args:
        value: A string, date, datetime, or None.

    Returns:
        A timezone-aware UTC datetime, or None if the value cannot be parsed.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, date):
        return date_to_datetime(value)

    value_str = str(value).strip()
    if not value_str:
        return None

    # Handle Z suffix: "2024-01-15T10:30:00Z" -> "2024-01-15T10:30:00+00:00"
    if value_str.endswith("Z"):
        value_str = value_str[:-1] + "+00:00"

    # Handle "+0800" no-colon tz: "...+0800" -> "...+08:00"
    if (
        len(value_str) >= 5
        and value_str[-5] in ("+", "-")
        and value_str[-4:].isdigit()
        and "T" in value_str
    ):
        value_str = value_str[:-2] + ":" + value_str[-2:]

    try:
        dt = datetime.fromisoformat(value_str)
        return ensure_utc(dt).astimezone(timezone.utc)
    except (ValueError, TypeError):
        pass

    for fmt in _DAY_FIRST_FORMATS:
        try:
            return date_to_datetime(datetime.strptime(value_str, fmt).date())
        except ValueError:
            continue
    return None


def parse_amount(value) -> Decimal | None:
    """Parse a money value that may arrive as a number or a string.

    Accepts thousands separators ("1,234.50") and returns ``None`` for
    missing or unparseable input rather than raising.
    """
    if value is None or value == "":
        return None
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value).replace(",", "").strip())
    except (InvalidOperation, ValueError):
        return None


def ensure_utc(dt: datetime) -> datetime:
    """Ensure a datetime is timezone-aware (UTC).

    If the datetime is naive, attach UTC; otherwise return as-is.
    SQLite drops tzinfo on round-trip, so values read back from the
    database pass through here before comparison.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def date_to_datetime(d: date) -> datetime:
    """Convert a date to a midnight-UTC datetime."""
    return datetime(d.year, d.month, d.day, tzinfo=timezone.utc)
