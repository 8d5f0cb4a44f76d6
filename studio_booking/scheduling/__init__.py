from studio_booking.scheduling.availability import (
    FreeSlots,
    free_slots,
    is_available,
    next_free_slot,
)
from studio_booking.scheduling.intervals import TimeInterval, overlaps
from studio_booking.scheduling.lifecycle import (
    BookingLifecycle,
    BookingStatus,
    BookingTrigger,
    InvalidTransitionError,
)

__all__ = [
    "TimeInterval",
    "overlaps",
    "is_available",
    "free_slots",
    "next_free_slot",
    "FreeSlots",
    "BookingLifecycle",
    "BookingStatus",
    "BookingTrigger",
    "InvalidTransitionError",
]
