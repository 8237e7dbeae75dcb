"""
Normalizes the timestamp encodings found in stored documents.

Documents carry instants in several shapes: native `datetime` values written by
the store, epoch-seconds maps (`{"seconds": ..., "nanoseconds": ...}`) from
imported data, and ISO or date strings typed into forms. Everything is turned
into a timezone-aware UTC `datetime` as soon as it is read so sorting and
formatting never look at the source encoding again.
"""
# mindcare/timestamps.py

import datetime

EPOCH = datetime.datetime(1970, 1, 1, tzinfo=datetime.timezone.utc)

_DATE_FORMATS = (
    "%Y-%m-%d %I:%M %p",
    "%m/%d/%Y",
    "%d %b %Y",
    "%b %d, %Y",
    "%B %d, %Y",
)


def _from_epoch_seconds(seconds, nanoseconds=0):
    try:
        return EPOCH + datetime.timedelta(seconds=float(seconds), microseconds=float(nanoseconds or 0) / 1000)
    except (TypeError, ValueError, OverflowError):
        return None


def _parse_string(value):
    text = value.strip()
    if not text:
        return None
    try:
        parsed = datetime.datetime.fromisoformat(text.replace('Z', '+00:00'))
    except ValueError:
        parsed = None
        for fmt in _DATE_FORMATS:
            try:
                parsed = datetime.datetime.strptime(text, fmt)
                break
            except ValueError:
                continue
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.timezone.utc)
    return parsed.astimezone(datetime.timezone.utc)


def to_datetime(value):
    """Converts any supported timestamp encoding into an aware UTC datetime.

    Args:
        value: A `datetime`, `date`, epoch-seconds mapping or object, epoch
            milliseconds number, or ISO/date string.

    Returns:
        datetime.datetime or None: The instant, or None if the value cannot be parsed.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime.datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=datetime.timezone.utc)
        return value.astimezone(datetime.timezone.utc)
    if isinstance(value, datetime.date):
        return datetime.datetime(value.year, value.month, value.day, tzinfo=datetime.timezone.utc)
    if isinstance(value, dict):
        if isinstance(value.get('seconds'), (int, float)):
            return _from_epoch_seconds(value['seconds'], value.get('nanoseconds', 0))
        return None
    if isinstance(value, (int, float)):
        return _from_epoch_seconds(value / 1000)
    if isinstance(value, str):
        return _parse_string(value)
    seconds = getattr(value, 'seconds', None)
    if isinstance(seconds, (int, float)) and not isinstance(seconds, bool):
        return _from_epoch_seconds(seconds, getattr(value, 'nanoseconds', 0))
    return None


def to_epoch(value) -> float:
    """Returns seconds since the epoch, or 0.0 for values that cannot be parsed."""
    instant = to_datetime(value)
    if instant is None:
        return 0.0
    return instant.timestamp()


def format_timestamp(value, fallback="") -> str:
    """Formats a timestamp in local time, e.g. "Jan 10, 2024 • 10:00".

    Args:
        value: Any supported timestamp encoding.
        fallback (str): Returned when the value cannot be parsed.
    """
    instant = to_datetime(value)
    if instant is None:
        return fallback
    return instant.astimezone().strftime("%b %d, %Y • %H:%M")


def utcnow():
    return datetime.datetime.now(datetime.timezone.utc)


def day_bounds(day):
    """Returns the [start, end) UTC bounds of a calendar day."""
    if isinstance(day, datetime.datetime):
        day = day.date()
    start = datetime.datetime(day.year, day.month, day.day, tzinfo=datetime.timezone.utc)
    return start, start + datetime.timedelta(days=1)


def parse_slot_time(time_string):
    """Parses a slot label such as "10:00 AM" into (hours, minutes)."""
    parts = time_string.strip().split(' ')
    hours_text, _, minutes_text = parts[0].partition(':')
    hours = int(hours_text) % 12
    minutes = int(minutes_text or 0)
    meridiem = parts[1].upper() if len(parts) > 1 else ''
    if meridiem == 'PM':
        hours += 12
    return hours, minutes


def combine_slot(date_string, time_string):
    """Combines a "YYYY-MM-DD" date and a slot label into an aware datetime."""
    day = datetime.date.fromisoformat(date_string)
    hours, minutes = parse_slot_time(time_string)
    return datetime.datetime(day.year, day.month, day.day, hours, minutes, tzinfo=datetime.timezone.utc)
