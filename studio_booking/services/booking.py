"""
Booking orchestration: availability re-check, booking write, schedule index.

The store only guarantees atomic single-document writes, so creation runs an
optimistic protocol keyed on the engineer's per-date schedule index:

1. read the index revision, then read the non-cancelled bookings fresh
2. fail with Conflict if the requested interval overlaps any of them
3. add the booking as ``pending``
4. compare-and-set the index at the revision read in step 1

If step 4 loses to a concurrent writer, the provisional booking is deleted
and the sequence restarts at step 1, where an overlapping winner is now
visible. Booking records stay the source of truth; the index is a derived
summary that ``reconcile_schedule`` can rebuild at any time.
"""

from datetime import date, datetime, timezone
from typing import Optional

from studio_booking.config import settings
from studio_booking.errors import Conflict, Forbidden, NotFound, ScheduleIndexOutOfSync, StoreUnavailable
from studio_booking.logging_context import get_request_logger, set_request_id
from studio_booking.scheduling.availability import is_available
from studio_booking.scheduling.intervals import TimeInterval
from studio_booking.scheduling.lifecycle import BookingLifecycle, BookingStatus, BookingTrigger
from studio_booking.schemas.booking_schema import Booking, BookingRequest, ScheduleEntry, ScheduleIndex
from studio_booking.schemas.context_schema import RequestContext
from studio_booking.services.engineers import EngineerDirectory
from studio_booking.services.pricing import quote, validate_duration
from studio_booking.services.store import BOOKINGS, DocumentStore, FieldFilter, schedule_collection

logger = get_request_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BookingOrchestrator:
    """Creates, cancels and queries bookings against a document store."""

    def __init__(
        self,
        store: DocumentStore,
        engineers: Optional[EngineerDirectory] = None,
        max_write_attempts: Optional[int] = None,
    ) -> None:
        self._store = store
        self._engineers = engineers or EngineerDirectory(store)
        self._max_write_attempts = max_write_attempts or settings.scheduling.max_write_attempts

    # ------------------------------------------------------------------ #
    # Creation
    # ------------------------------------------------------------------ #

    async def create_booking(self, context: RequestContext, request: BookingRequest) -> Booking:
        """Reserve an engineer for the requested interval.

        Raises:
            InvalidInterval: Malformed time or unsupported duration (no I/O done).
            Forbidden: A non-admin tried to book for another client.
            NotFound: The engineer does not exist.
            Conflict: The interval is outside working hours or already booked.
            StoreUnavailable: Store failure; safe to retry the whole call.
            ScheduleIndexOutOfSync: Booking persisted but not indexed.
        """
        set_request_id(context.request_id)

        validate_duration(request.duration_hours)
        candidate = TimeInterval.starting_at(request.start_time, request.duration_hours * 60)
        client_id = self._resolve_client(context, request)
        client_email = (
            request.client_email if context.is_admin and request.client_email else context.email
        )

        engineer = await self._engineers.get_engineer(request.engineer_id)
        hours = engineer.hours_for(request.booking_date)
        if hours is None or not hours.contains(candidate):
            raise Conflict(
                f"{engineer.name} is not working {candidate} on {request.booking_date.isoformat()}."
            )
        price = quote(engineer, request.duration_hours)

        index_collection = schedule_collection(engineer.id)
        index_id = request.booking_date.isoformat()

        for attempt in range(1, self._max_write_attempts + 1):
            index = ScheduleIndex.from_document(
                index_collection, index_id, await self._store.get(index_collection, index_id)
            )
            booked = await self._engineers.booked_intervals(engineer.id, request.booking_date)
            if not is_available(candidate, booked):
                logger.info(
                    "Slot %s on %s for engineer %s is taken",
                    candidate, index_id, engineer.id,
                )
                raise Conflict(
                    f"{candidate} on {index_id} is no longer available. Please choose another time."
                )

            now = _utcnow()
            booking = Booking(
                engineer_id=engineer.id,
                client_id=client_id,
                booking_date=request.booking_date,
                start_time=candidate.to_hhmm()[0],
                duration_hours=request.duration_hours,
                status=BookingStatus.PENDING,
                total_amount_cents=price.total_cents,
                currency=price.currency,
                client_email=client_email,
                created_at=now,
                updated_at=now,
            )
            booking_id = await self._store.add(BOOKINGS, booking.to_document())
            booking = booking.model_copy(update={"id": booking_id})

            index.bookings.append(ScheduleEntry(
                booking_id=booking_id,
                start_time=booking.start_time,
                duration_hours=booking.duration_hours,
            ))
            index.updated_at = now
            try:
                indexed = await self._store.compare_and_set(
                    index_collection, index_id, index.revision, index.to_document()
                )
            except StoreUnavailable as exc:
                await self._roll_back(booking, exc)
                raise  # _roll_back always raises

            if indexed:
                logger.info(
                    "Booking created: %s for client %s with %s on %s %s (%d cents)",
                    booking_id, client_id, engineer.id, index_id, candidate, booking.total_amount_cents,
                )
                return booking

            logger.info(
                "Schedule for %s on %s changed concurrently; retrying (attempt %d/%d)",
                engineer.id, index_id, attempt, self._max_write_attempts,
            )
            await self._discard(booking)

        raise StoreUnavailable(
            f"Could not claim the schedule for {engineer.id} on {index_id} "
            f"after {self._max_write_attempts} attempts."
        )

    def _resolve_client(self, context: RequestContext, request: BookingRequest) -> str:
        if context.is_admin:
            return request.client_id or context.user_id
        if request.client_id and request.client_id != context.user_id:
            raise Forbidden("Clients can only book sessions for themselves.")
        return context.user_id

    async def _discard(self, booking: Booking) -> None:
        """Delete a provisional booking whose index write lost a race."""
        try:
            await self._store.delete(BOOKINGS, booking.id)
        except (StoreUnavailable, NotFound) as exc:
            logger.error("Could not discard provisional booking %s: %s", booking.id, exc)
            raise ScheduleIndexOutOfSync(
                booking.id, booking.engineer_id, booking.booking_date.isoformat()
            ) from exc

    async def _roll_back(self, booking: Booking, cause: StoreUnavailable) -> None:
        """Undo the booking write after the index write failed, then re-raise."""
        logger.warning(
            "Schedule index write failed for booking %s; rolling back: %s", booking.id, cause
        )
        await self._discard(booking)
        raise StoreUnavailable(
            f"Booking could not be recorded in the schedule; nothing was saved. ({cause})"
        ) from cause

    # ------------------------------------------------------------------ #
    # Cancellation
    # ------------------------------------------------------------------ #

    async def cancel_booking(self, context: RequestContext, booking_id: str) -> Booking:
        """Cancel a booking on behalf of its client or an admin.

        Raises:
            NotFound: Unknown booking.
            Forbidden: Caller is neither the client nor an admin.
            InvalidTransitionError: The booking is already cancelled.
        """
        set_request_id(context.request_id)

        for _ in range(self._max_write_attempts):
            booking = await self.get_booking(booking_id)
            if not (context.is_admin or context.user_id == booking.client_id):
                raise Forbidden(f"Not allowed to cancel booking '{booking_id}'.")

            lifecycle = BookingLifecycle(booking.status)
            new_status = lifecycle.transition(BookingTrigger.CANCEL_REQUESTED)
            now = _utcnow()
            cancelled = booking.model_copy(update={
                "status": new_status, "cancelled_at": now, "updated_at": now,
            })
            if await self._store.compare_and_set(
                BOOKINGS, booking_id, booking.revision, cancelled.to_document()
            ):
                cancelled = cancelled.model_copy(update={"revision": booking.revision + 1})
                logger.info("Booking cancelled: %s by %s", booking_id, context.user_id)
                await self._remove_from_index(cancelled)
                return cancelled
            logger.debug("Booking %s changed while cancelling; re-reading", booking_id)

        raise StoreUnavailable(f"Could not cancel booking '{booking_id}' under contention.")

    async def _remove_from_index(self, booking: Booking) -> None:
        """Best-effort: drop a cancelled booking from the schedule index."""
        collection = schedule_collection(booking.engineer_id)
        doc_id = booking.booking_date.isoformat()
        try:
            for _ in range(self._max_write_attempts):
                index = ScheduleIndex.from_document(
                    collection, doc_id, await self._store.get(collection, doc_id)
                )
                index.bookings = [e for e in index.bookings if e.booking_id != booking.id]
                index.updated_at = _utcnow()
                if await self._store.compare_and_set(
                    collection, doc_id, index.revision, index.to_document()
                ):
                    return
        except StoreUnavailable as exc:
            logger.warning(
                "Schedule index for %s on %s not updated after cancelling %s: %s",
                booking.engineer_id, doc_id, booking.id, exc,
            )
            return
        logger.warning(
            "Schedule index for %s on %s stayed contended; %s may still be listed",
            booking.engineer_id, doc_id, booking.id,
        )

    # ------------------------------------------------------------------ #
    # Queries and maintenance
    # ------------------------------------------------------------------ #

    async def get_booking(self, booking_id: str) -> Booking:
        data = await self._store.get(BOOKINGS, booking_id)
        if data is None:
            raise NotFound("booking", booking_id)
        return Booking.from_document(booking_id, data)

    async def list_bookings(
        self,
        engineer_id: Optional[str] = None,
        client_id: Optional[str] = None,
        status: Optional[BookingStatus] = None,
        day: Optional[date] = None,
    ) -> list[Booking]:
        """Bookings matching all given filters, ordered by date and start time."""
        filters = []
        if engineer_id:
            filters.append(FieldFilter("engineerId", "==", engineer_id))
        if client_id:
            filters.append(FieldFilter("clientId", "==", client_id))
        if status:
            filters.append(FieldFilter("status", "==", status.value))
        if day:
            filters.append(FieldFilter("date", "==", day.isoformat()))
        rows = await self._store.query(BOOKINGS, filters)
        bookings = [Booking.from_document(doc_id, data) for doc_id, data in rows]
        return sorted(bookings, key=lambda b: (b.booking_date, b.interval.start))

    async def reconcile_schedule(self, engineer_id: str, day: date) -> ScheduleIndex:
        """Rebuild the schedule index for one engineer and date from booking records."""
        collection = schedule_collection(engineer_id)
        doc_id = day.isoformat()
        for _ in range(self._max_write_attempts):
            current = ScheduleIndex.from_document(
                collection, doc_id, await self._store.get(collection, doc_id)
            )
            active = await self._engineers.active_bookings(engineer_id, day)
            rebuilt = ScheduleIndex(
                bookings=[
                    ScheduleEntry(
                        booking_id=b.id, start_time=b.start_time, duration_hours=b.duration_hours
                    )
                    for b in sorted(active, key=lambda b: b.interval.start)
                ],
                revision=current.revision,
                updated_at=_utcnow(),
            )
            if await self._store.compare_and_set(
                collection, doc_id, current.revision, rebuilt.to_document()
            ):
                stale = {e.booking_id for e in current.bookings} ^ {e.booking_id for e in rebuilt.bookings}
                if stale:
                    logger.warning(
                        "Reconciled schedule for %s on %s; corrected entries: %s",
                        engineer_id, doc_id, sorted(stale),
                    )
                return rebuilt.model_copy(update={"revision": current.revision + 1})

        raise StoreUnavailable(f"Could not reconcile schedule for {engineer_id} on {doc_id}.")
