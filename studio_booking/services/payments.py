"""
Payment intents, webhook verification and booking confirmation.

``PaymentWebhookHandler.handle`` is the only caller of
``PaymentConfirmation.confirm_booking``: a booking moves to ``confirmed``
only after a Stripe notification has passed signature verification.
"""

import json
from datetime import datetime, timezone
from typing import Optional, Union

import stripe
from pydantic import ValidationError

from studio_booking.config import settings
from studio_booking.errors import (
    AlreadyConfirmed,
    Conflict,
    GatewayUnavailable,
    NotFound,
    StoreUnavailable,
    WebhookAuthenticationError,
)
from studio_booking.logging_context import get_request_logger, request_scope
from studio_booking.scheduling.lifecycle import (
    BookingLifecycle,
    BookingStatus,
    BookingTrigger,
    InvalidTransitionError,
)
from studio_booking.schemas.booking_schema import Booking
from studio_booking.schemas.payment_schema import PaymentEvent, PaymentIntentResult
from studio_booking.services.engineers import EngineerDirectory
from studio_booking.services.notifications import NotificationDispatcher
from studio_booking.services.store import BOOKINGS, DocumentStore

logger = get_request_logger(__name__)

PAYMENT_SUCCEEDED_EVENT = "payment_intent.succeeded"


class PaymentGateway:
    """Thin wrapper around the Stripe API."""

    def __init__(
        self,
        secret_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        tolerance_seconds: Optional[int] = None,
    ) -> None:
        self._secret_key = secret_key if secret_key is not None else settings.payments.stripe_secret_key
        self._webhook_secret = (
            webhook_secret if webhook_secret is not None else settings.payments.webhook_secret
        )
        self._tolerance = (
            tolerance_seconds if tolerance_seconds is not None
            else settings.payments.webhook_tolerance_seconds
        )

    async def create_payment_intent(self, booking: Booking) -> PaymentIntentResult:
        """Create a PaymentIntent for a pending booking's fixed total.

        The idempotency key is derived from the booking id, so repeating the
        call for the same booking returns the same intent.
        """
        if booking.status != BookingStatus.PENDING:
            logger.warning(
                "PaymentIntent refused for %s booking %s", booking.status.value, booking.id
            )
            raise Conflict(
                f"Booking '{booking.id}' is {booking.status.value}; only pending bookings can be paid."
            )
        try:
            intent = await stripe.PaymentIntent.create_async(
                amount=booking.total_amount_cents,
                currency=booking.currency,
                metadata={
                    "bookingId": booking.id,
                    "engineerId": booking.engineer_id,
                    "clientId": booking.client_id,
                },
                api_key=self._secret_key,
                idempotency_key=f"booking-{booking.id}",
            )
        except stripe.StripeError as exc:
            logger.error("PaymentIntent creation failed for booking %s: %s", booking.id, exc)
            raise GatewayUnavailable(f"Payment provider error: {exc}") from exc

        logger.info(
            "PaymentIntent %s created for booking %s (%d %s)",
            intent.id, booking.id, booking.total_amount_cents, booking.currency,
        )
        return PaymentIntentResult(
            booking_id=booking.id,
            payment_intent_id=intent.id,
            client_secret=intent.client_secret,
            amount_cents=booking.total_amount_cents,
            currency=booking.currency,
        )

    def verify_notification(self, payload: Union[bytes, str], signature: Optional[str]) -> PaymentEvent:
        """Authenticate a webhook body against its ``Stripe-Signature`` header.

        Raises:
            WebhookAuthenticationError: Missing secret, missing or invalid
                signature, stale timestamp, or an unparseable body.
        """
        if not self._webhook_secret:
            logger.error("Webhook rejected: STRIPE_WEBHOOK_SECRET is not configured")
            raise WebhookAuthenticationError("Webhook secret is not configured.")
        if not signature:
            logger.warning("Webhook rejected: missing signature header")
            raise WebhookAuthenticationError("Missing signature header.")

        try:
            body = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        except UnicodeDecodeError as exc:
            logger.warning("Webhook rejected: body is not valid UTF-8")
            raise WebhookAuthenticationError("Malformed webhook body.") from exc
        try:
            stripe.WebhookSignature.verify_header(
                body, signature, self._webhook_secret, self._tolerance
            )
        except stripe.SignatureVerificationError as exc:
            logger.warning("Webhook rejected: %s", exc)
            raise WebhookAuthenticationError("Invalid webhook signature.") from exc

        try:
            return PaymentEvent.model_validate(json.loads(body))
        except (json.JSONDecodeError, ValidationError) as exc:
            logger.warning("Webhook rejected: malformed event body: %s", exc)
            raise WebhookAuthenticationError("Malformed webhook event.") from exc


class PaymentConfirmation:
    """Applies verified payments to bookings exactly once."""

    def __init__(
        self,
        store: DocumentStore,
        engineers: Optional[EngineerDirectory] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        max_write_attempts: Optional[int] = None,
    ) -> None:
        self._store = store
        self._engineers = engineers or EngineerDirectory(store)
        self._dispatcher = dispatcher
        self._max_write_attempts = max_write_attempts or settings.scheduling.max_write_attempts

    async def confirm_booking(self, booking_id: str, payment_reference: str) -> Booking:
        """
        Move a pending booking to confirmed.

        Redelivery of the same payment is a no-op. Only the call that
        performs the write queues notifications.

        Raises:
            NotFound: Unknown booking id.
            AlreadyConfirmed: Confirmed earlier by a different payment.
            InvalidTransitionError: The booking was cancelled.
        """
        for _ in range(self._max_write_attempts):
            data = await self._store.get(BOOKINGS, booking_id)
            if data is None:
                logger.warning("Payment %s references unknown booking %s", payment_reference, booking_id)
                raise NotFound("booking", booking_id)
            booking = Booking.from_document(booking_id, data)

            if booking.status == BookingStatus.CONFIRMED:
                if booking.payment_reference == payment_reference:
                    logger.info("Booking %s already confirmed by %s", booking_id, payment_reference)
                    return booking
                logger.warning(
                    "Booking %s already confirmed by %s; ignoring payment %s",
                    booking_id, booking.payment_reference, payment_reference,
                )
                raise AlreadyConfirmed(booking_id, booking.payment_reference)

            try:
                new_status = BookingLifecycle(booking.status).transition(
                    BookingTrigger.PAYMENT_SUCCEEDED
                )
            except InvalidTransitionError:
                logger.warning(
                    "Payment %s arrived for %s booking %s",
                    payment_reference, booking.status.value, booking_id,
                )
                raise

            now = datetime.now(timezone.utc)
            confirmed = booking.model_copy(update={
                "status": new_status,
                "payment_reference": payment_reference,
                "paid_at": now,
                "updated_at": now,
            })
            if await self._store.compare_and_set(
                BOOKINGS, booking_id, booking.revision, confirmed.to_document()
            ):
                confirmed = confirmed.model_copy(update={"revision": booking.revision + 1})
                logger.info("Booking confirmed: %s (payment %s)", booking_id, payment_reference)
                await self._notify(confirmed)
                return confirmed
            logger.debug("Booking %s changed during confirmation; re-reading", booking_id)

        raise StoreUnavailable(f"Could not confirm booking '{booking_id}' under contention.")

    async def _notify(self, booking: Booking) -> None:
        if self._dispatcher is None:
            return
        try:
            engineer = await self._engineers.get_engineer(booking.engineer_id)
        except (NotFound, StoreUnavailable) as exc:
            logger.warning("Engineer lookup failed for booking %s notifications: %s", booking.id, exc)
            engineer = None
        self._dispatcher.enqueue(booking, engineer)


class PaymentWebhookHandler:
    """Entry point for payment provider notifications."""

    def __init__(self, gateway: PaymentGateway, confirmation: PaymentConfirmation) -> None:
        self._gateway = gateway
        self._confirmation = confirmation

    async def handle(self, payload: Union[bytes, str], signature: Optional[str]) -> Optional[Booking]:
        """Verify and apply one notification.

        Returns the confirmed booking for ``payment_intent.succeeded`` and
        None for event types that are acknowledged but ignored.
        """
        event = self._gateway.verify_notification(payload, signature)
        with request_scope(f"WH-{event.id}"):
            return await self._apply(event)

    async def _apply(self, event: PaymentEvent) -> Optional[Booking]:
        if event.type != PAYMENT_SUCCEEDED_EVENT:
            logger.info("Ignoring webhook event %s of type %s", event.id, event.type)
            return None

        try:
            intent = event.payment_intent()
        except ValidationError as exc:
            logger.warning("Webhook event %s has a malformed PaymentIntent: %s", event.id, exc)
            raise WebhookAuthenticationError("Malformed webhook event.") from exc
        if not intent.booking_id:
            logger.warning("PaymentIntent %s carries no bookingId metadata", intent.id)
            raise NotFound("booking for payment", intent.id)

        return await self._confirmation.confirm_booking(intent.booking_id, intent.id)
