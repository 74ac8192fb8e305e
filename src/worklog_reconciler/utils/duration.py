"""Duration parsing and hour formatting helpers."""

import re
from decimal import ROUND_HALF_UP, Decimal

from worklog_reconciler.errors import ValidationError

_UNIT_SECONDS = {
    "w": 5 * 8 * 3600,
    "d": 8 * 3600,
    "h": 3600,
    "m": 60,
    "s": 1,
}

_PART_PATTERN = re.compile(r"(\d+(?:\.\d+)?)([wdhms])")


def format_hours(seconds: int) -> str:
    """Render a duration as canonical decimal hours.

    Hours are rounded half-up to two decimals and trailing zeros are
    stripped, so 45000 seconds renders as "12.5" and 7200 as "2".

    Args:
        seconds: Duration in seconds.

    Returns:
        Canonical decimal-hours string.
    """
    hours = (Decimal(seconds) / Decimal(3600)).quantize(
        Decimal("0.01"), rounding=ROUND_HALF_UP
    )
    return format(hours.normalize(), "f")


def parse_duration(text: str) -> int:
    """Parse a Jira-style duration string into seconds.

    Accepts one or more parts such as "2h", "1h30m", "45m" or "1.5h".
    Days and weeks are working days (8h) and working weeks (5d).

    Args:
        text: Duration string.

    Returns:
        Duration in seconds.

    Raises:
        ValidationError: If the string cannot be parsed or is not positive.
    """
    compact = text.replace(" ", "").lower()
    if not compact:
        raise ValidationError("Duration must not be empty")

    position = 0
    total = Decimal(0)
    for match in _PART_PATTERN.finditer(compact):
        if match.start() != position:
            break
        total += Decimal(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        position = match.end()

    if position != len(compact):
        raise ValidationError(f"Invalid duration format: {text!r}")

    seconds = int(total.to_integral_value(rounding=ROUND_HALF_UP))
    if seconds <= 0:
        raise ValidationError(f"Duration must be positive: {text!r}")
    return seconds
