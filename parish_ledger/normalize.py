"""
Normalization helpers shared by the models and the matcher.

Dates arrive in several shapes (store timestamps, native dates, ISO strings)
and are reduced to a plain calendar day. Amounts are compared by magnitude
within a tolerance.
"""

from datetime import date, datetime, timedelta, timezone
from typing import Any, Mapping, Optional

DEFAULT_TOLERANCE = 0.01
# Absorbs binary representation error, e.g. 150.00 - 149.99 > 0.01
_FLOAT_SLACK = 1e-9

_STRING_FORMATS = ("%m/%d/%Y", "%m/%d/%y", "%Y/%m/%d")


def normalize_date(value: Any) -> Optional[date]:
    """
    Reduce a date-like value to its local calendar day.

    Accepts date, datetime (aware values are converted to local time first),
    store timestamps exposing ``ToDatetime()`` or ``to_datetime()``, serialized timestamps
    ({"seconds": ..., "nanoseconds": ...}) and strings. Returns None for
    empty or unparseable input.
    """
    if value is None or value == "":
        return None

    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone()
        return value.date()

    if isinstance(value, date):
        return value

    if hasattr(value, "ToDatetime"):
        return normalize_date(value.ToDatetime(tzinfo=timezone.utc))

    if hasattr(value, "to_datetime"):
        return normalize_date(value.to_datetime())

    if isinstance(value, Mapping):
        seconds = value.get("seconds", value.get("_seconds"))
        if seconds is None:
            return None
        nanos = value.get("nanoseconds", value.get("_nanoseconds", 0)) or 0
        instant = datetime.fromtimestamp(int(seconds), tz=timezone.utc)
        return normalize_date(instant + timedelta(microseconds=int(nanos) // 1000))

    if isinstance(value, str):
        return _parse_date_string(value.strip())

    return None


def _parse_date_string(text: str) -> Optional[date]:
    if not text:
        return None

    # Date-only ISO strings name a calendar day, not an instant
    if len(text) == 10 and text[4] == "-":
        try:
            return date.fromisoformat(text)
        except ValueError:
            return None

    iso = text[:-1] + "+00:00" if text.endswith("Z") else text
    try:
        return normalize_date(datetime.fromisoformat(iso))
    except ValueError:
        pass

    for fmt in _STRING_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue

    return None


def same_day(a: Any, b: Any) -> bool:
    """True if both values normalize to the same calendar day."""
    d1 = normalize_date(a)
    d2 = normalize_date(b)
    if d1 is None or d2 is None:
        return False
    return d1 == d2


def days_apart(a: Any, b: Any) -> Optional[int]:
    """Absolute calendar-day distance, or None if either side has no date."""
    d1 = normalize_date(a)
    d2 = normalize_date(b)
    if d1 is None or d2 is None:
        return None
    return abs((d1 - d2).days)


def within_days(a: Any, b: Any, days: int) -> bool:
    """True if the two dates are at most ``days`` calendar days apart."""
    distance = days_apart(a, b)
    return distance is not None and distance <= days


def to_cents(amount: Any) -> int:
    """Convert a decimal amount to absolute whole cents."""
    if amount is None:
        return 0
    return int(round(abs(float(amount)) * 100))


def amounts_match(x: Any, y: Any, tolerance: float = DEFAULT_TOLERANCE) -> bool:
    """
    Compare two amounts by absolute value within ``tolerance``.

    Statement amounts are signed while transaction amounts are stored
    unsigned, so only magnitudes are compared. Values are not rounded to
    cents first: 100.00 and 100.014 differ by more than one cent.
    """
    difference = abs(abs(float(x or 0)) - abs(float(y or 0)))
    return difference <= tolerance + _FLOAT_SLACK
