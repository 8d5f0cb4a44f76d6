"""Shared test fixtures and helpers."""

from datetime import date
from typing import Optional

import pytest
import pytest_asyncio

from studio_booking.errors import NotificationFailed
from studio_booking.schemas.booking_schema import BookingRequest
from studio_booking.schemas.context_schema import RequestContext, Role
from studio_booking.schemas.engineer_schema import Engineer
from studio_booking.services.booking import BookingOrchestrator
from studio_booking.services.engineers import EngineerDirectory
from studio_booking.services.notifications import EmailMessage, NotificationDispatcher
from studio_booking.services.payments import PaymentConfirmation
from studio_booking.services.store import InMemoryDocumentStore

# A Monday
SESSION_DATE = date(2025, 3, 17)


class RecordingSender:
    """EmailSender that records messages and can fail a set number of times."""

    def __init__(self, failures: int = 0, error: Optional[Exception] = None) -> None:
        self.sent: list[EmailMessage] = []
        self.attempts = 0
        self._failures = failures
        self._error = error

    async def send(self, message: EmailMessage) -> None:
        self.attempts += 1
        if self._failures > 0:
            self._failures -= 1
            raise self._error or NotificationFailed("simulated outage")
        self.sent.append(message)


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def directory(store):
    return EngineerDirectory(store)


@pytest.fixture
def orchestrator(store, directory):
    return BookingOrchestrator(store, directory, max_write_attempts=5)


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def dispatcher(sender):
    return NotificationDispatcher(sender, max_attempts=3, backoff_seconds=0)


@pytest.fixture
def confirmation(store, directory, dispatcher):
    return PaymentConfirmation(store, directory, dispatcher)


@pytest.fixture
def client_ctx():
    return make_context("client-1", email="client1@example.com")


@pytest.fixture
def admin_ctx():
    return make_context("admin-1", role=Role.ADMIN)


@pytest_asyncio.fixture
async def engineer(directory):
    return await directory.save_engineer(make_engineer())


def make_engineer(
    engineer_id: str = "eng-1",
    name: str = "Sam Rivera",
    email: Optional[str] = "sam@example.com",
    working_hours: Optional[dict] = None,
    hourly_rate: Optional[int] = 60,
) -> Engineer:
    """Helper to create an Engineer working 08:00-22:00 every day."""
    return Engineer(
        id=engineer_id,
        name=name,
        email=email,
        specialties=["mixing", "tracking"],
        working_hours=working_hours or {"start": "08:00", "end": "22:00"},
        hourly_rate=hourly_rate,
    )


def make_context(
    user_id: str = "client-1",
    role: Role = Role.CLIENT,
    email: Optional[str] = None,
) -> RequestContext:
    return RequestContext(user_id=user_id, role=role, email=email)


def make_request(
    start_time: str = "10:00",
    duration_hours: int = 2,
    engineer_id: str = "eng-1",
    booking_date: date = SESSION_DATE,
    **kwargs,
) -> BookingRequest:
    """Helper to create a BookingRequest with sensible defaults."""
    return BookingRequest(
        engineer_id=engineer_id,
        booking_date=booking_date,
        start_time=start_time,
        duration_hours=duration_hours,
        **kwargs,
    )
