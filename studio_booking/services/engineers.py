"""
Engineer lookup and on-demand availability.

Every availability answer is computed from a fresh query of booking records;
nothing is cached between requests and the schedule index is never consulted.
"""

from datetime import date
from typing import Optional

from studio_booking.config import settings
from studio_booking.errors import NotFound
from studio_booking.logging_context import get_request_logger
from studio_booking.scheduling.availability import free_slots, is_available
from studio_booking.scheduling.intervals import TimeInterval
from studio_booking.scheduling.lifecycle import BookingStatus
from studio_booking.schemas.booking_schema import AvailabilitySlot, AvailabilitySnapshot, Booking
from studio_booking.schemas.engineer_schema import Engineer
from studio_booking.services.store import BOOKINGS, ENGINEERS, DocumentStore, FieldFilter

logger = get_request_logger(__name__)


class EngineerDirectory:
    """Reads engineers and their booked time from the document store."""

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    async def get_engineer(self, engineer_id: str) -> Engineer:
        data = await self._store.get(ENGINEERS, engineer_id)
        if data is None:
            raise NotFound("engineer", engineer_id)
        return Engineer.from_document(engineer_id, data)

    async def list_engineers(self) -> list[Engineer]:
        rows = await self._store.query(ENGINEERS, [])
        engineers = [Engineer.from_document(doc_id, data) for doc_id, data in rows]
        return sorted(engineers, key=lambda e: e.name.lower())

    async def save_engineer(self, engineer: Engineer) -> Engineer:
        await self._store.set(ENGINEERS, engineer.id, engineer.to_document())
        logger.info("Engineer saved: %s (%s)", engineer.id, engineer.name)
        return engineer

    async def active_bookings(self, engineer_id: str, day: date) -> list[Booking]:
        """Non-cancelled bookings for one engineer on one date, read fresh."""
        rows = await self._store.query(
            BOOKINGS,
            [
                FieldFilter("engineerId", "==", engineer_id),
                FieldFilter("date", "==", day.isoformat()),
                FieldFilter("status", "!=", BookingStatus.CANCELLED.value),
            ],
        )
        bookings = [Booking.from_document(doc_id, data) for doc_id, data in rows]
        return [b for b in bookings if b.counts_toward_availability]

    async def booked_intervals(self, engineer_id: str, day: date) -> list[TimeInterval]:
        return [b.interval for b in await self.active_bookings(engineer_id, day)]

    async def get_engineer_availability(
        self,
        engineer_id: str,
        day: date,
        slot_length_minutes: Optional[int] = None,
        step_minutes: Optional[int] = None,
    ) -> AvailabilitySnapshot:
        """Free grid slots for an engineer on a date."""
        if slot_length_minutes is None:
            slot_length = settings.scheduling.slot_length_minutes
            step = step_minutes or settings.scheduling.slot_step_minutes
        else:
            slot_length, step = slot_length_minutes, step_minutes

        engineer = await self.get_engineer(engineer_id)
        hours = engineer.hours_for(day)
        if hours is None:
            logger.debug("Engineer %s does not work on %s", engineer_id, day)
            return AvailabilitySnapshot(
                engineer_id=engineer_id, booking_date=day, slot_length_minutes=slot_length,
            )

        booked = await self.booked_intervals(engineer_id, day)
        slots = [
            AvailabilitySlot.from_interval(s) for s in free_slots(hours, booked, slot_length, step)
        ]
        logger.debug(
            "Availability for %s on %s: %d free of %d booked",
            engineer_id, day, len(slots), len(booked),
        )
        return AvailabilitySnapshot(
            engineer_id=engineer_id,
            booking_date=day,
            slot_length_minutes=slot_length,
            working_hours=AvailabilitySlot.from_interval(hours),
            slots=slots,
        )

    async def check_availability(
        self, engineer_id: str, day: date, start_time: str, duration_hours: int
    ) -> bool:
        """True if the engineer works during, and has nothing booked over, the interval."""
        candidate = TimeInterval.starting_at(start_time, duration_hours * 60)
        engineer = await self.get_engineer(engineer_id)
        hours = engineer.hours_for(day)
        if hours is None or not hours.contains(candidate):
            return False
        return is_available(candidate, await self.booked_intervals(engineer_id, day))
