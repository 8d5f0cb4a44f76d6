"""Shared utilities used across the studio booking package."""

import re

MINUTES_PER_DAY = 24 * 60

_HHMM_RE = re.compile(r"^(\d{1,2}):(\d{2})$")


def parse_hhmm(value: str) -> int:
    """Convert an ``HH:MM`` string to minutes since midnight.

    ``24:00`` is accepted as the end-of-day boundary.

    Examples:
        >>> parse_hhmm("09:30")
        570
        >>> parse_hhmm("24:00")
        1440
    """
    match = _HHMM_RE.match(value.strip())
    if not match:
        raise ValueError(f"Expected HH:MM, got {value!r}")
    hours, minutes = int(match.group(1)), int(match.group(2))
    if minutes >= 60 or hours * 60 + minutes > MINUTES_PER_DAY:
        raise ValueError(f"Time out of range: {value!r}")
    return hours * 60 + minutes


def format_hhmm(minutes: int) -> str:
    """Format minutes since midnight as a zero-padded ``HH:MM`` string.

    Examples:
        >>> format_hhmm(570)
        '09:30'
        >>> format_hhmm(1440)
        '24:00'
    """
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def format_amount(amount_cents: int, currency: str) -> str:
    """Render an amount in minor units for humans, e.g. ``$250.00``."""
    symbol = "$" if currency.lower() in ("usd", "aud", "cad", "nzd") else ""
    text = f"{symbol}{amount_cents / 100:,.2f}"
    return text if symbol else f"{text} {currency.upper()}"
