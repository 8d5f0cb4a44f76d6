"""Exception taxonomy for booking operations.

``Conflict`` and ``NotFound`` are terminal for a request and should be shown
to the user. ``StoreUnavailable`` and ``GatewayUnavailable`` are transient and
safe to retry from the top of the operation.
"""

from typing import Optional


class BookingError(Exception):
    """Base class for every error raised by the booking core."""


class NotFound(BookingError):
    """A referenced engineer or booking does not exist."""

    def __init__(self, kind: str, identifier: str) -> None:
        super().__init__(f"{kind.capitalize()} '{identifier}' not found.")
        self.kind = kind
        self.identifier = identifier


class Conflict(BookingError):
    """The requested interval is not free."""


class AlreadyConfirmed(BookingError):
    """A booking is already confirmed under a different payment reference."""

    def __init__(self, booking_id: str, existing_reference: Optional[str]) -> None:
        super().__init__(
            f"Booking '{booking_id}' is already confirmed "
            f"with payment {existing_reference!r}."
        )
        self.booking_id = booking_id
        self.existing_reference = existing_reference


class InvalidInterval(BookingError, ValueError):
    """Malformed time input: non-positive duration, cross-midnight span, bad format."""


class Forbidden(BookingError):
    """The request context is not allowed to perform the operation."""


class StoreUnavailable(BookingError):
    """The document store failed or timed out."""


class DocumentShapeError(StoreUnavailable):
    """A stored document does not match the expected record shape."""

    def __init__(self, collection: str, doc_id: str, detail: str) -> None:
        super().__init__(f"Malformed document {collection}/{doc_id}: {detail}")
        self.collection = collection
        self.doc_id = doc_id


class ScheduleIndexOutOfSync(StoreUnavailable):
    """A booking was persisted but the schedule index could not be updated.

    The booking record stays authoritative; run ``reconcile_schedule`` for
    the engineer and date to rebuild the index.
    """

    def __init__(self, booking_id: str, engineer_id: str, date: str) -> None:
        super().__init__(
            f"Booking '{booking_id}' is missing from the schedule index "
            f"of engineer '{engineer_id}' on {date}."
        )
        self.booking_id = booking_id
        self.engineer_id = engineer_id
        self.date = date


class GatewayUnavailable(BookingError):
    """The payment gateway failed or timed out."""


class WebhookAuthenticationError(BookingError):
    """A payment notification failed signature verification."""


class NotificationFailed(BookingError):
    """An email could not be handed to the delivery provider."""
