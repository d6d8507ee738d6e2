"""RouterOS style durations such as ``28w4d23h59m56s``."""

from __future__ import annotations

import re
from datetime import timedelta

_DURATION_RE = re.compile(
    r"(?:(?P<weeks>\d+)w)?"
    r"(?:(?P<days>\d+)d)?"
    r"(?:(?P<hours>\d+)h)?"
    r"(?:(?P<minutes>\d+)m)?"
    r"(?:(?P<seconds>\d+)s)?"
)


class DurationParseError(ValueError):
    """Raised when a string does not follow the WwDdHhMmSs grammar."""


def parse_duration(value: str) -> timedelta:
    """
    Parse a relative duration as reported by the device.

    Every component is optional but they must appear in the fixed order
    weeks, days, hours, minutes, seconds, and at least one must be present.
    """
    text = (value or "").strip()
    match = _DURATION_RE.fullmatch(text)
    if not text or match is None:
        raise DurationParseError(f"invalid duration {value!r}")

    parts = {name: int(amount) for name, amount in match.groupdict().items() if amount is not None}
    if not parts:
        raise DurationParseError(f"invalid duration {value!r}")
    return timedelta(**parts)


def format_duration(duration: timedelta, trim: bool = False) -> str:
    """
    Format a duration as ``1h30m0s``.

    Sub-second precision is dropped. With ``trim`` the trailing zero seconds
    and minutes are left out, so 8 hours becomes ``8h`` instead of ``8h0m0s``.
    """
    total = int(duration.total_seconds())
    sign = "-" if total < 0 else ""
    total = abs(total)
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)

    if hours:
        text = f"{hours}h{minutes}m{seconds}s"
    elif minutes:
        text = f"{minutes}m{seconds}s"
    else:
        return f"{sign}{seconds}s"

    if trim and seconds == 0:
        text = text[: -len("0s")]
        if hours and minutes == 0:
            text = text[: -len("0m")]
    return f"{sign}{text}"
