"""UTC-everywhere time handling for ticket timestamps and numbering years."""

from datetime import date, datetime, timezone


def now_utc() -> datetime:
    """
    Current time in UTC.

    Use this instead of datetime.now() everywhere.
    """
    return datetime.now(timezone.utc)


def two_digit_year(moment: datetime | date | None = None) -> int:
    """
    Year component used in ticket numbers (2026 -> 26).

    Args:
        moment: Point in time to take the year from (defaults to now, UTC)
    """
    if moment is None:
        moment = now_utc()
    return moment.year % 100


def parse_entry_date(value: str | date) -> date:
    """
    Parse a time entry / ticket date.

    Accepts a date or an ISO "YYYY-MM-DD" string. Datetimes are rejected:
    ticket dates are calendar days, not instants.

    Raises ValueError on anything else.
    """
    if isinstance(value, datetime):
        raise ValueError("Ticket dates are calendar days; got a datetime")
    if isinstance(value, date):
        return value
    return date.fromisoformat(value)
