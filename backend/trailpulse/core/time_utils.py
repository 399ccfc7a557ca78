from datetime import datetime, timezone
import math


def utcnow() -> datetime:
    """Current time as a naive UTC datetime (the storage convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_epoch_ms(dt: datetime) -> int:
    """Naive-UTC (or aware) datetime -> integer epoch milliseconds."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def parse_client_timestamp(value) -> datetime | None:
    """Parse a client-supplied timestamp into naive UTC.

    Accepts epoch milliseconds (int/float, as mobile clients send
    `Date.now()`), ISO-8601 strings (with or without 'Z'), or datetimes.
    Returns None for None/empty input. Raises ValueError otherwise.
    """
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError("Timestamp must be epoch milliseconds or ISO-8601")
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        try:
            dt = datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            raise ValueError("Timestamp out of range")
    elif isinstance(value, str):
        try:
            dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            raise ValueError("Timestamp must be epoch milliseconds or ISO-8601")
    else:
        raise ValueError("Timestamp must be epoch milliseconds or ISO-8601")
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def elapsed_seconds(start: datetime, end: datetime | None = None) -> int:
    """Whole seconds between `start` and `end` (default now), floored."""
    end = end or utcnow()
    return math.floor((end - start).total_seconds())


def seconds_to_hhmmss(total_seconds: int) -> str:
    """
    Convert total seconds (int) -> 'HH:MM:SS'.
    Example: 2732 -> '00:45:32'
    """
    total_seconds = int(total_seconds)
    hours = total_seconds // 3600
    minutes = (total_seconds % 3600) // 60
    seconds = total_seconds % 60
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def format_pace(seconds_per_km: float | None) -> str:
    """
    Format a pace in seconds per km as 'M:SS/km'.
    Example: 330 -> '5:30/km'
    """
    if not seconds_per_km or seconds_per_km <= 0 or math.isinf(seconds_per_km):
        return "0:00/km"

    pace_sec = int(seconds_per_km)
    minutes = pace_sec // 60
    seconds = pace_sec % 60
    return f"{minutes}:{seconds:02d}/km"
