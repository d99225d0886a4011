"""Money and time display helpers.

Pure functions used for notification summaries and API payloads.
Money is always handled as integer cents; booking slots are local
wall-clock times interpreted in the kitchen location's timezone.
"""

import re
from datetime import date, datetime, time
from zoneinfo import ZoneInfo

_CURRENCY_SYMBOLS = {"CAD": "$", "USD": "$", "EUR": "€", "GBP": "£"}

_TIME_OF_DAY = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def format_cents(amount_cents: int, currency: str = "CAD") -> str:
    """Render an integer cent amount as a currency string.

    Args:
        amount_cents: Amount in cents.
        currency: ISO 4217 currency code.

    Returns:
        Formatted amount, e.g. "$1,234.50".

    Raises:
        TypeError: If the amount is not an integer.
    """
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int):
        raise TypeError(f"amount_cents must be an int, got {type(amount_cents).__name__}")

    sign = "-" if amount_cents < 0 else ""
    units, cents = divmod(abs(amount_cents), 100)
    symbol = _CURRENCY_SYMBOLS.get(currency.upper())
    body = f"{units:,}.{cents:02d}"
    if symbol is None:
        return f"{sign}{body} {currency.upper()}"
    return f"{sign}{symbol}{body}"


def parse_time_of_day(hhmm: str) -> time:
    """Parse a strict 24-hour "HH:MM" string.

    Raises:
        ValueError: If the value is outside 00:00-23:59 or malformed.
    """
    match = _TIME_OF_DAY.match(hhmm) if isinstance(hhmm, str) else None
    if match is None:
        raise ValueError(f"Invalid time of day: {hhmm!r} (expected HH:MM between 00:00 and 23:59)")
    return time(int(match.group(1)), int(match.group(2)))


def format_time_of_day(hhmm: str) -> str:
    """Convert "HH:MM" (24-hour) to a 12-hour display string.

    Args:
        hhmm: Time of day, e.g. "13:05".

    Returns:
        Display string, e.g. "1:05 PM".

    Raises:
        ValueError: If the input is not a valid time of day.
    """
    parsed = parse_time_of_day(hhmm)
    suffix = "PM" if parsed.hour >= 12 else "AM"
    display_hour = parsed.hour % 12 or 12
    return f"{display_hour}:{parsed.minute:02d} {suffix}"


def _format_day(value: date, with_year: bool) -> str:
    text = f"{value:%b} {value.day}"
    if with_year:
        text = f"{text}, {value.year}"
    return text


def format_date_range(start: date | None = None, end: date | None = None) -> str:
    """Format an optional rental window.

    Args:
        start: First day of the window.
        end: Last day of the window.

    Returns:
        "" when both are absent, a single date when only one is present
        or both are equal, otherwise "start – end".
    """
    if start is None and end is None:
        return ""
    if start is None or end is None or start == end:
        return _format_day(start or end, with_year=False)
    with_year = start.year != end.year
    return f"{_format_day(start, with_year)} – {_format_day(end, with_year)}"


def booking_start_at(booking_date: date, hhmm: str, tz_name: str) -> datetime:
    """Build the aware datetime for a local booking time.

    Args:
        booking_date: Local calendar date of the booking.
        hhmm: Local wall-clock time.
        tz_name: IANA timezone of the kitchen's location.

    Returns:
        Timezone-aware datetime.
    """
    return datetime.combine(booking_date, parse_time_of_day(hhmm), tzinfo=ZoneInfo(tz_name))


def format_booking_slot(
    booking_date: date,
    start_time: str,
    end_time: str,
    tz_name: str,
) -> str:
    """Format a kitchen slot for display, e.g. "Mon, Jan 5, 2026, 9:00 AM – 1:00 PM NST"."""
    starts_at = booking_start_at(booking_date, start_time, tz_name)
    return (
        f"{starts_at:%a}, {_format_day(booking_date, with_year=True)}, "
        f"{format_time_of_day(start_time)} – {format_time_of_day(end_time)} {starts_at.tzname()}"
    )
