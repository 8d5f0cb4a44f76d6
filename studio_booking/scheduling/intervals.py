"""
Half-open time intervals within a single calendar day.

Times are held as integer minutes since midnight. The ``HH:MM`` string form
is only used at the edges (store documents, API payloads, log messages),
where it sorts the same way as the integers do.

Usage:
    morning = TimeInterval.from_hhmm("09:00", "11:00")
    late = TimeInterval.starting_at("11:00", 120)
    assert not overlaps(morning, late)
"""

from dataclasses import dataclass
from typing import Union

from studio_booking.errors import InvalidInterval
from studio_booking.utils import MINUTES_PER_DAY, format_hhmm, parse_hhmm


def _to_minutes(value: Union[int, str]) -> int:
    if isinstance(value, str):
        try:
            return parse_hhmm(value)
        except ValueError as exc:
            raise InvalidInterval(str(exc)) from None
    return value


@dataclass(frozen=True, order=True)
class TimeInterval:
    """``[start, end)`` in minutes since midnight.

    ``end`` may equal 1440 (midnight at the end of the day) but an interval
    never wraps into the next day.
    """

    start: int
    end: int

    def __post_init__(self) -> None:
        for name in ("start", "end"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise InvalidInterval(f"Interval {name} must be whole minutes, got {value!r}")
        if not 0 <= self.start < MINUTES_PER_DAY:
            raise InvalidInterval(f"Interval start {self.start} is outside the day")
        if self.end > MINUTES_PER_DAY:
            raise InvalidInterval(
                f"Interval {format_hhmm(self.start)} + {self.end - self.start}min crosses midnight"
            )
        if self.end <= self.start:
            raise InvalidInterval(
                f"Interval end {format_hhmm(self.end)} must be after start {format_hhmm(self.start)}"
            )

    @classmethod
    def from_hhmm(cls, start: str, end: str) -> "TimeInterval":
        return cls(_to_minutes(start), _to_minutes(end))

    @classmethod
    def starting_at(cls, start: Union[int, str], duration_minutes: int) -> "TimeInterval":
        """Build an interval from a start time and a positive duration."""
        if isinstance(duration_minutes, bool) or not isinstance(duration_minutes, int):
            raise InvalidInterval(f"Duration must be whole minutes, got {duration_minutes!r}")
        if duration_minutes <= 0:
            raise InvalidInterval(f"Duration must be positive, got {duration_minutes}")
        begin = _to_minutes(start)
        return cls(begin, begin + duration_minutes)

    @property
    def duration(self) -> int:
        return self.end - self.start

    def contains(self, other: "TimeInterval") -> bool:
        """True if ``other`` lies entirely inside this interval."""
        return self.start <= other.start and other.end <= self.end

    def to_hhmm(self) -> tuple[str, str]:
        return format_hhmm(self.start), format_hhmm(self.end)

    def __str__(self) -> str:
        start, end = self.to_hhmm()
        return f"{start}-{end}"


def overlaps(a: TimeInterval, b: TimeInterval) -> bool:
    """Return True if two half-open intervals share any minute.

    Back-to-back intervals (``a.end == b.start``) do not overlap.
    """
    return a.start < b.end and b.start < a.end
