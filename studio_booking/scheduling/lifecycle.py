"""
Finite state machine for booking status transitions.

A booking is created ``pending``, becomes ``confirmed`` only when an
authenticated payment notification arrives, and can be ``cancelled`` by the
client or an admin. Any other move is rejected with the list of triggers
that would have been valid.

Usage:
    lifecycle = BookingLifecycle(BookingStatus.PENDING)
    lifecycle.transition(BookingTrigger.PAYMENT_SUCCEEDED)
    assert lifecycle.current_status == BookingStatus.CONFIRMED
"""

import logging
from dataclasses import dataclass
from enum import Enum

from studio_booking.errors import BookingError

logger = logging.getLogger(__name__)


class BookingStatus(str, Enum):
    """Booking record status as stored."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class BookingTrigger(str, Enum):
    """Events that move a booking between statuses."""
    PAYMENT_SUCCEEDED = "payment_succeeded"
    CANCEL_REQUESTED = "cancel_requested"


@dataclass(frozen=True)
class Transition:
    from_status: BookingStatus
    to_status: BookingStatus
    trigger: BookingTrigger


class InvalidTransitionError(BookingError):
    """Raised when a transition is not valid from the current status."""

    def __init__(self, status: BookingStatus, trigger: BookingTrigger,
                 valid: list[BookingTrigger]) -> None:
        super().__init__(
            f"No valid transition from '{status.value}' "
            f"with trigger '{trigger.value}'. Valid triggers: {[t.value for t in valid]}"
        )
        self.status = status
        self.trigger = trigger


class BookingLifecycle:
    """Status machine for a single booking."""

    TRANSITIONS: list[Transition] = [
        Transition(BookingStatus.PENDING, BookingStatus.CONFIRMED,
                   BookingTrigger.PAYMENT_SUCCEEDED),
        Transition(BookingStatus.PENDING, BookingStatus.CANCELLED,
                   BookingTrigger.CANCEL_REQUESTED),
        Transition(BookingStatus.CONFIRMED, BookingStatus.CANCELLED,
                   BookingTrigger.CANCEL_REQUESTED),
    ]

    def __init__(self, status: BookingStatus = BookingStatus.PENDING) -> None:
        self._current_status = status

    @property
    def current_status(self) -> BookingStatus:
        return self._current_status

    def transition(self, trigger: BookingTrigger) -> BookingStatus:
        """
        Execute a status transition.

        Raises:
            InvalidTransitionError: If no valid transition exists.
        """
        for t in self.TRANSITIONS:
            if t.from_status == self._current_status and t.trigger == trigger:
                logger.debug(
                    "Booking status: %s -> %s (trigger: %s)",
                    self._current_status.value, t.to_status.value, trigger.value,
                )
                self._current_status = t.to_status
                return self._current_status

        raise InvalidTransitionError(self._current_status, trigger, self.get_valid_triggers())

    def get_valid_triggers(self) -> list[BookingTrigger]:
        """Return all triggers valid from the current status."""
        return [t.trigger for t in self.TRANSITIONS if t.from_status == self._current_status]
