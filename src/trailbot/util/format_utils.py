import math
import re
from datetime import datetime

from trailbot.scheduler.errors import InvalidDuration

DURATION_PATTERN = re.compile(r"^\s*(\d+)\s*([smhd])\s*$", re.IGNORECASE)

UNIT_SECONDS = {
    "s": 1,
    "m": 60,
    "h": 60 * 60,
    "d": 24 * 60 * 60,
}


def parse_duration(value: str) -> int:
    """Convert a short duration like ``30s``, ``5m``, ``1h`` or ``2d`` into seconds.

    Args:
        value: Duration typed by a user.

    Returns:
        Number of seconds.

    Raises:
        InvalidDuration: If the value does not match ``<number><s|m|h|d>``
            or is zero.
    """
    match = DURATION_PATTERN.match(value or "")
    if not match:
        raise InvalidDuration(f"Invalid time format {value!r}. Use a format like 30s, 5m, 1h or 2d.")

    amount, unit = match.groups()
    seconds = int(amount) * UNIT_SECONDS[unit.lower()]
    if seconds <= 0:
        raise InvalidDuration("Duration must be greater than zero.")
    return seconds


def format_duration(seconds: int) -> str:
    """Human-readable duration, rounded down to its largest unit."""
    if seconds < 60:
        return f"{seconds} sec{'s' if seconds != 1 else ''}"
    elif seconds < 3600:
        mins = seconds // 60
        return f"{mins} min{'s' if mins != 1 else ''}"
    elif seconds < 86400:
        hours = seconds // 3600
        return f"{hours} hour{'s' if hours != 1 else ''}"
    else:
        days = seconds // 86400
        return f"{days} day{'s' if days != 1 else ''}"


def format_clock(seconds: float) -> str:
    """``MM:SS`` clock for countdown displays; negative input renders as ``00:00``."""
    whole = max(0, math.floor(seconds))
    minutes, secs = divmod(whole, 60)
    return f"{minutes:02d}:{secs:02d}"


def discord_timestamp(value: datetime, style: str = "R") -> str:
    """Discord ``<t:unix:style>`` markup; ``R`` renders as relative time in the client."""
    return f"<t:{int(value.timestamp())}:{style}>"
