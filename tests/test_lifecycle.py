"""Tests for the booking status state machine."""

import pytest

from studio_booking.errors import BookingError
from studio_booking.scheduling.lifecycle import (
    BookingLifecycle,
    BookingStatus,
    BookingTrigger,
    InvalidTransitionError,
)


@pytest.fixture
def lifecycle():
    return BookingLifecycle()


class TestInitialState:
    def test_starts_pending(self, lifecycle):
        assert lifecycle.current_status == BookingStatus.PENDING

    def test_pending_triggers(self, lifecycle):
        assert set(lifecycle.get_valid_triggers()) == {
            BookingTrigger.PAYMENT_SUCCEEDED, BookingTrigger.CANCEL_REQUESTED,
        }

    def test_cancelled_has_no_triggers(self):
        assert BookingLifecycle(BookingStatus.CANCELLED).get_valid_triggers() == []


class TestTransitions:
    def test_payment_confirms(self, lifecycle):
        assert lifecycle.transition(BookingTrigger.PAYMENT_SUCCEEDED) == BookingStatus.CONFIRMED

    def test_pending_can_be_cancelled(self, lifecycle):
        assert lifecycle.transition(BookingTrigger.CANCEL_REQUESTED) == BookingStatus.CANCELLED

    def test_confirmed_can_be_cancelled(self):
        lifecycle = BookingLifecycle(BookingStatus.CONFIRMED)
        assert lifecycle.transition(BookingTrigger.CANCEL_REQUESTED) == BookingStatus.CANCELLED

    def test_confirmed_cannot_be_paid_again(self):
        lifecycle = BookingLifecycle(BookingStatus.CONFIRMED)
        assert BookingTrigger.PAYMENT_SUCCEEDED not in lifecycle.get_valid_triggers()
        with pytest.raises(InvalidTransitionError):
            lifecycle.transition(BookingTrigger.PAYMENT_SUCCEEDED)

    def test_cancelled_rejects_payment(self):
        lifecycle = BookingLifecycle(BookingStatus.CANCELLED)
        with pytest.raises(InvalidTransitionError, match="cancelled"):
            lifecycle.transition(BookingTrigger.PAYMENT_SUCCEEDED)

    def test_failed_transition_keeps_status(self):
        lifecycle = BookingLifecycle(BookingStatus.CANCELLED)
        with pytest.raises(InvalidTransitionError):
            lifecycle.transition(BookingTrigger.CANCEL_REQUESTED)
        assert lifecycle.current_status == BookingStatus.CANCELLED

    def test_error_carries_context(self):
        lifecycle = BookingLifecycle(BookingStatus.CANCELLED)
        with pytest.raises(InvalidTransitionError) as exc_info:
            lifecycle.transition(BookingTrigger.PAYMENT_SUCCEEDED)
        assert exc_info.value.status == BookingStatus.CANCELLED
        assert exc_info.value.trigger == BookingTrigger.PAYMENT_SUCCEEDED

    def test_error_is_a_booking_error(self):
        lifecycle = BookingLifecycle(BookingStatus.CANCELLED)
        with pytest.raises(BookingError):
            lifecycle.transition(BookingTrigger.CANCEL_REQUESTED)
