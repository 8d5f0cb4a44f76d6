"""Session pricing: studio time plus the engineer's hourly fee."""

from dataclasses import dataclass

from studio_booking.config import settings
from studio_booking.errors import InvalidInterval
from studio_booking.schemas.engineer_schema import Engineer


@dataclass(frozen=True)
class PriceQuote:
    """Price breakdown in minor currency units."""

    studio_cents: int
    engineer_cents: int
    currency: str

    @property
    def total_cents(self) -> int:
        return self.studio_cents + self.engineer_cents


def validate_duration(duration_hours: int) -> None:
    """Reject durations outside the bookable set (2, 3, 4, 6 or 8 hours by default)."""
    allowed = settings.scheduling.allowed_durations_hours
    if isinstance(duration_hours, bool) or duration_hours not in allowed:
        raise InvalidInterval(
            f"Duration must be one of {', '.join(str(h) for h in allowed)} hours, "
            f"got {duration_hours!r}"
        )


def quote(engineer: Engineer, duration_hours: int) -> PriceQuote:
    """Price a session. The result is fixed on the booking and never recomputed."""
    validate_duration(duration_hours)
    engineer_rate = engineer.hourly_rate
    if engineer_rate is None:
        engineer_rate = settings.studio.default_engineer_rate
    return PriceQuote(
        studio_cents=settings.studio.hourly_rate * duration_hours * 100,
        engineer_cents=engineer_rate * duration_hours * 100,
        currency=settings.studio.currency,
    )
