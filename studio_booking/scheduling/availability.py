"""
Conflict checking and fixed-grid slot partitioning.

Both operations reduce to ``overlaps``. Callers pass in booked intervals
already filtered to non-cancelled bookings for one engineer on one date;
nothing here touches the store.

Slot starts sit on a fixed grid anchored at the start of working hours.
They are not moved to the end of an existing booking, so a booking that
ends mid-slot blocks the whole grid slot it touches even when enough time
remains after it.
"""

import logging
from collections.abc import Iterable, Iterator
from typing import Optional

from studio_booking.errors import InvalidInterval
from studio_booking.scheduling.intervals import TimeInterval, overlaps

logger = logging.getLogger(__name__)


def is_available(candidate: TimeInterval, booked: Iterable[TimeInterval]) -> bool:
    """Return True if ``candidate`` overlaps none of ``booked``."""
    return not any(overlaps(candidate, other) for other in booked)


class FreeSlots:
    """Lazy, restartable sequence of free grid slots inside working hours.

    Each ``iter()`` walks the grid again from ``hours.start`` in ascending
    order, emitting ``[t, t + slot_length)`` for every grid start ``t`` whose
    slot fits inside ``hours`` and is available.
    """

    def __init__(
        self,
        hours: TimeInterval,
        booked: Iterable[TimeInterval],
        slot_length: int,
        step: Optional[int] = None,
    ) -> None:
        if step is None:
            step = slot_length
        for name, value in (("slot_length", slot_length), ("step", step)):
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise InvalidInterval(f"{name} must be a positive number of minutes, got {value!r}")
        self.hours = hours
        self.booked = tuple(booked)
        self.slot_length = slot_length
        self.step = step

    def __iter__(self) -> Iterator[TimeInterval]:
        start = self.hours.start
        while start + self.slot_length <= self.hours.end:
            candidate = TimeInterval(start, start + self.slot_length)
            if is_available(candidate, self.booked):
                yield candidate
            start += self.step

    def __repr__(self) -> str:
        return (
            f"FreeSlots(hours={self.hours}, booked={len(self.booked)}, "
            f"slot_length={self.slot_length}, step={self.step})"
        )


def free_slots(
    hours: TimeInterval,
    booked: Iterable[TimeInterval],
    slot_length: int,
    step: Optional[int] = None,
) -> FreeSlots:
    """Partition working hours into free slots.

    Args:
        hours: The engineer's working hours for the day.
        booked: Non-cancelled booked intervals for that engineer and day.
        slot_length: Slot length in minutes.
        step: Grid step in minutes; defaults to ``slot_length`` so candidate
            slots do not overlap each other.
    """
    return FreeSlots(hours, booked, slot_length, step)


def next_free_slot(
    hours: TimeInterval,
    booked: Iterable[TimeInterval],
    slot_length: int,
    step: Optional[int] = None,
) -> Optional[TimeInterval]:
    """Return the earliest free slot, or None if the day is full."""
    slot = next(iter(free_slots(hours, booked, slot_length, step)), None)
    if slot is None:
        logger.debug("No free %d-minute slot within %s", slot_length, hours)
    return slot
