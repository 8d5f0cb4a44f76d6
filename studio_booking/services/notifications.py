"""
Booking confirmation emails.

Confirmation never waits on email: ``NotificationDispatcher.enqueue`` starts
a background task that retries each message with exponential backoff and
logs, rather than raises, a final failure.
"""

import asyncio
from dataclasses import dataclass
from html import escape
from typing import Optional, Protocol

import resend
from resend.exceptions import ResendError

from studio_booking.config import settings
from studio_booking.errors import NotificationFailed
from studio_booking.logging_context import get_request_logger
from studio_booking.schemas.booking_schema import Booking
from studio_booking.schemas.engineer_schema import Engineer
from studio_booking.utils import format_amount

logger = get_request_logger(__name__)


@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    html: str
    text: str


def _detail_rows(booking: Booking, engineer_name: str) -> list[tuple[str, str]]:
    start, end = booking.interval.to_hhmm()
    return [
        ("Booking ID", booking.id),
        ("Date", booking.booking_date.strftime("%A, %B %d, %Y")),
        ("Time", f"{start} - {end}"),
        ("Duration", f"{booking.duration_hours} hours"),
        ("Engineer", engineer_name),
        ("Client", booking.client_email or booking.client_id),
        ("Total", format_amount(booking.total_amount_cents, booking.currency)),
    ]


def _render(heading: str, intro: str, rows: list[tuple[str, str]]) -> tuple[str, str]:
    """Build the HTML and plain-text bodies. Only the HTML is escaped."""
    html_rows = "".join(
        f"<tr><td><strong>{escape(label)}</strong></td><td>{escape(str(value))}</td></tr>"
        for label, value in rows
    )
    html = f"<h2>{escape(heading)}</h2><p>{escape(intro)}</p><table>{html_rows}</table>"
    text = "\n".join([heading, "", intro, ""] + [f"{label}: {value}" for label, value in rows])
    return html, text


def client_confirmation_email(booking: Booking, engineer: Optional[Engineer]) -> Optional[EmailMessage]:
    """Receipt for the client, or None when no client address is known."""
    if not booking.client_email:
        return None
    engineer_name = engineer.name if engineer else booking.engineer_id
    html, text = _render(
        "Booking Confirmed",
        f"Your session at {settings.studio.name} is confirmed. See you in the studio!",
        _detail_rows(booking, engineer_name),
    )
    return EmailMessage(
        to=booking.client_email,
        subject=f"Booking Confirmed - {settings.studio.name}",
        html=html,
        text=text,
    )


def engineer_notification_email(booking: Booking, engineer: Optional[Engineer]) -> Optional[EmailMessage]:
    """Heads-up for the engineer, or None when the engineer has no address."""
    if engineer is None or not engineer.email:
        return None
    html, text = _render(
        "New Booking",
        f"You have a new confirmed session, {engineer.name}.",
        _detail_rows(booking, engineer.name),
    )
    return EmailMessage(
        to=engineer.email,
        subject=f"New Booking - {booking.booking_date.isoformat()} {booking.start_time}",
        html=html,
        text=text,
    )


class EmailSender(Protocol):
    async def send(self, message: EmailMessage) -> None: ...


class ResendEmailSender:
    """Delivers messages through the Resend API."""

    def __init__(self, api_key: Optional[str] = None, from_address: Optional[str] = None) -> None:
        self._api_key = api_key if api_key is not None else settings.notifications.resend_api_key
        self._from_address = from_address or settings.notifications.from_address

    async def send(self, message: EmailMessage) -> None:
        if not self._api_key:
            raise NotificationFailed("RESEND_API_KEY is not configured")
        resend.api_key = self._api_key
        params = {
            "from": self._from_address,
            "to": [message.to],
            "subject": message.subject,
            "html": message.html,
            "text": message.text,
        }
        try:
            # resend's client is synchronous
            response = await asyncio.to_thread(resend.Emails.send, params)
        except (ResendError, OSError) as exc:
            raise NotificationFailed(f"Resend rejected email to {message.to}: {exc}") from exc
        logger.debug("Email accepted by Resend: %s", response)


class NotificationDispatcher:
    """Queues booking emails as background tasks with retry and backoff."""

    def __init__(
        self,
        sender: Optional[EmailSender] = None,
        max_attempts: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
    ) -> None:
        self._sender = sender or ResendEmailSender()
        self._max_attempts = max_attempts or settings.notifications.max_attempts
        self._backoff = (
            backoff_seconds if backoff_seconds is not None
            else settings.notifications.backoff_seconds
        )
        self._pending: set[asyncio.Task] = set()

    def enqueue(self, booking: Booking, engineer: Optional[Engineer]) -> asyncio.Task:
        """Schedule the client and engineer emails for a confirmed booking."""
        messages = [
            m for m in (
                client_confirmation_email(booking, engineer),
                engineer_notification_email(booking, engineer),
            )
            if m is not None
        ]
        if not messages:
            logger.info("No recipients for booking %s notifications", booking.id)
        task = asyncio.create_task(self._deliver_all(booking.id, messages))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Wait for every queued notification task to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    async def _deliver_all(self, booking_id: str, messages: list[EmailMessage]) -> int:
        delivered = 0
        for message in messages:
            if await self._deliver(booking_id, message):
                delivered += 1
        return delivered

    async def _deliver(self, booking_id: str, message: EmailMessage) -> bool:
        for attempt in range(1, self._max_attempts + 1):
            try:
                await self._sender.send(message)
            except NotificationFailed as exc:
                if attempt == self._max_attempts:
                    logger.error(
                        "Giving up on '%s' to %s for booking %s after %d attempts: %s",
                        message.subject, message.to, booking_id, attempt, exc,
                    )
                    return False
                delay = self._backoff * (2 ** (attempt - 1))
                logger.warning(
                    "Email to %s failed (attempt %d/%d), retrying in %.1fs: %s",
                    message.to, attempt, self._max_attempts, delay, exc,
                )
                await asyncio.sleep(delay)
            else:
                logger.info("Sent '%s' to %s for booking %s", message.subject, message.to, booking_id)
                return True
        return False
