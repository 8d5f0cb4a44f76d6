"""Booking, schedule-index and availability data models."""

from datetime import date, datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic.alias_generators import to_camel

from studio_booking.errors import DocumentShapeError, InvalidInterval
from studio_booking.scheduling.intervals import TimeInterval
from studio_booking.scheduling.lifecycle import BookingStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BookingRequest(BaseModel):
    """A client's request to reserve an engineer.

    ``client_id`` and ``client_email`` are only honoured for admins booking on
    someone's behalf; otherwise the caller's own user id and email are used.
    """
    model_config = ConfigDict(populate_by_name=True)

    engineer_id: str
    booking_date: date = Field(alias="date")
    start_time: str
    duration_hours: int
    client_id: Optional[str] = None
    client_email: Optional[str] = None


class Booking(BaseModel):
    """One reservation as stored in the ``bookings`` collection."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str = ""
    engineer_id: str
    client_id: str
    booking_date: date = Field(alias="date")
    start_time: str
    duration_hours: int = Field(alias="duration")
    status: BookingStatus = BookingStatus.PENDING
    total_amount_cents: int
    currency: str = "usd"
    client_email: Optional[str] = None
    payment_reference: Optional[str] = Field(default=None, alias="stripePaymentIntentId")
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    paid_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    revision: int = 0

    @model_validator(mode="after")
    def _interval_within_day(self) -> "Booking":
        try:
            TimeInterval.starting_at(self.start_time, self.duration_hours * 60)
        except InvalidInterval as exc:
            raise ValueError(str(exc)) from exc
        return self

    @property
    def interval(self) -> TimeInterval:
        return TimeInterval.starting_at(self.start_time, self.duration_hours * 60)

    @property
    def counts_toward_availability(self) -> bool:
        return self.status != BookingStatus.CANCELLED

    @classmethod
    def from_document(cls, doc_id: str, data: dict[str, Any]) -> "Booking":
        try:
            return cls.model_validate({**data, "id": doc_id})
        except ValidationError as exc:
            raise DocumentShapeError("bookings", doc_id, str(exc)) from exc

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude={"id"})


class ScheduleEntry(BaseModel):
    """Denormalised booking summary kept on the per-date schedule index."""
    model_config = ConfigDict(populate_by_name=True)

    booking_id: str = Field(alias="id")
    start_time: str = Field(alias="startTime")
    duration_hours: int = Field(alias="duration")


class ScheduleIndex(BaseModel):
    """Per-engineer, per-date schedule summary.

    A read accelerator only: it may lag behind the booking records, which
    remain the source of truth for availability. ``revision`` increases on
    every write and backs the conditional write in booking creation.
    """
    model_config = ConfigDict(populate_by_name=True)

    bookings: list[ScheduleEntry] = Field(default_factory=list)
    revision: int = 0
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")

    @classmethod
    def from_document(cls, collection: str, doc_id: str,
                      data: Optional[dict[str, Any]]) -> "ScheduleIndex":
        if data is None:
            return cls()
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise DocumentShapeError(collection, doc_id, str(exc)) from exc

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class AvailabilitySlot(BaseModel):
    """Single free time slot."""
    start: str
    end: str

    @classmethod
    def from_interval(cls, interval: TimeInterval) -> "AvailabilitySlot":
        start, end = interval.to_hhmm()
        return cls(start=start, end=end)


class AvailabilitySnapshot(BaseModel):
    """Free slots for one engineer on one date. Computed on demand, never stored."""
    engineer_id: str
    booking_date: date
    slot_length_minutes: int
    working_hours: Optional[AvailabilitySlot] = None
    slots: list[AvailabilitySlot] = Field(default_factory=list)

    @property
    def available(self) -> bool:
        return bool(self.slots)

    @property
    def next_available(self) -> Optional[str]:
        return self.slots[0].start if self.slots else None
