# ABOUTME: Duration parsing utility for human-readable interval strings
# ABOUTME: Converts "<integer><unit>" strings (e.g., "30s", "1h", "2d", "1w") to timedelta objects

import re
from datetime import timedelta

DAY = timedelta(hours=24)
WEEK = 7 * DAY

# Unit symbol -> length of one unit
UNITS: dict[str, timedelta] = {
    "s": timedelta(seconds=1),
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
    "d": DAY,
    "w": WEEK,
}

_DURATION_PATTERN = re.compile(r"(\d+)([a-zA-Z]+)")


class InvalidDuration(ValueError):
    """Raised when a duration string cannot be parsed."""


def parse_duration(duration: str) -> timedelta:
    """
    Parse a duration string into a timedelta object.

    Supports a single integer followed by one unit symbol:
    - "45s" (seconds)
    - "30m" (minutes)
    - "1h" (hours)
    - "2d" (days, 24 hours each)
    - "1w" (weeks, 7 days each)

    Args:
        duration: Duration string to parse

    Returns:
        timedelta object representing the parsed duration

    Raises:
        InvalidDuration: If the integer is missing, zero, out of range or
            unparsable, or the unit is not one of s, m, h, d, w

    Examples:
        >>> parse_duration("1h")
        datetime.timedelta(seconds=3600)
        >>> parse_duration("2d")
        datetime.timedelta(days=2)
    """
    if not isinstance(duration, str) or not duration.strip():
        raise InvalidDuration(f"Invalid duration: {duration!r}. Expected format like '30m', '1h', '2d'")

    text = duration.strip()
    match = _DURATION_PATTERN.fullmatch(text)
    if not match:
        raise InvalidDuration(f"Invalid duration: {text!r}. Expected format like '30m', '1h', '2d'")

    value_str, unit = match.groups()
    value = int(value_str)
    if value == 0:
        raise InvalidDuration(f"Duration must be greater than zero. Got: {text!r}")

    if unit not in UNITS:
        raise InvalidDuration(f"Bad time unit {unit!r} in {text!r}. Expected one of: s, m, h, d, w")

    try:
        return value * UNITS[unit]
    except OverflowError as e:
        raise InvalidDuration(f"Duration {text!r} is too large") from e
