"""
Centralized configuration with environment variable overrides.

Studio rates, the booking grid, payment and email credentials are all
configurable here. Nothing is hardcoded in scheduling or service logic.
"""

import logging
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

from studio_booking.logging_context import LOG_FORMAT, install_request_id_filter

load_dotenv()

logger = logging.getLogger(__name__)


def _safe_int(env_var: str, default: str) -> int:
    """Parse an integer from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return int(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid integer for {env_var}: {raw!r}"
        ) from None


def _safe_float(env_var: str, default: str) -> float:
    """Parse a float from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return float(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid float for {env_var}: {raw!r}"
        ) from None


def _safe_int_tuple(env_var: str, default: str) -> tuple[int, ...]:
    """Parse a comma-separated list of integers, e.g. ``"2,3,4"``."""
    raw = os.getenv(env_var, default)
    try:
        return tuple(int(part) for part in raw.split(",") if part.strip())
    except (ValueError, TypeError, AttributeError):
        raise ValueError(
            f"Invalid integer list for {env_var}: {raw!r}"
        ) from None


@dataclass(frozen=True)
class StudioConfig:
    """Studio identity and pricing."""

    name: str = os.getenv("STUDIO_NAME", "CTRL Room Studios")
    hourly_rate: int = _safe_int("STUDIO_HOURLY_RATE", "75")
    default_engineer_rate: int = _safe_int("DEFAULT_ENGINEER_RATE", "50")
    currency: str = os.getenv("CURRENCY", "usd")


@dataclass(frozen=True)
class SchedulingConfig:
    """Slot grid and booking-write settings."""

    slot_length_minutes: int = _safe_int("SLOT_LENGTH_MINUTES", "120")
    slot_step_minutes: int = _safe_int(
        "SLOT_STEP_MINUTES", os.getenv("SLOT_LENGTH_MINUTES", "120")
    )
    allowed_durations_hours: tuple[int, ...] = _safe_int_tuple(
        "ALLOWED_DURATIONS_HOURS", "2,3,4,6,8"
    )
    max_write_attempts: int = _safe_int("BOOKING_MAX_WRITE_ATTEMPTS", "5")


@dataclass(frozen=True)
class PaymentConfig:
    """Stripe credentials and webhook verification settings."""

    stripe_secret_key: str = os.getenv("STRIPE_SECRET_KEY", "")
    webhook_secret: str = os.getenv("STRIPE_WEBHOOK_SECRET", "")
    webhook_tolerance_seconds: int = _safe_int("STRIPE_WEBHOOK_TOLERANCE_SECONDS", "300")


@dataclass(frozen=True)
class NotificationConfig:
    """Email delivery settings for booking notifications."""

    resend_api_key: str = os.getenv("RESEND_API_KEY", "")
    from_address: str = os.getenv(
        "EMAIL_FROM_ADDRESS", "CTRL Room Studios <bookings@ctrlroom.studio>"
    )
    max_attempts: int = _safe_int("NOTIFY_MAX_ATTEMPTS", "3")
    backoff_seconds: float = _safe_float("NOTIFY_BACKOFF_SECONDS", "0.5")


@dataclass(frozen=True)
class StoreConfig:
    """Firestore connection settings. Empty values fall back to ADC defaults."""

    project_id: str = os.getenv("FIRESTORE_PROJECT_ID", "")
    database: str = os.getenv("FIRESTORE_DATABASE", "(default)")


@dataclass(frozen=True)
class AppConfig:
    """Root configuration aggregating all sub-configs."""

    studio: StudioConfig = field(default_factory=StudioConfig)
    scheduling: SchedulingConfig = field(default_factory=SchedulingConfig)
    payments: PaymentConfig = field(default_factory=PaymentConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    service_name: str = os.getenv("SERVICE_NAME", "studio-booking")


def _validate_config(config: AppConfig) -> None:
    """Validate configuration values are within acceptable ranges."""
    if config.studio.hourly_rate < 0:
        raise ValueError(
            f"STUDIO_HOURLY_RATE must be >= 0, got {config.studio.hourly_rate}"
        )
    if config.studio.default_engineer_rate < 0:
        raise ValueError(
            f"DEFAULT_ENGINEER_RATE must be >= 0, got {config.studio.default_engineer_rate}"
        )
    if not config.studio.currency:
        raise ValueError("CURRENCY must not be empty")
    if not config.store.database:
        raise ValueError("FIRESTORE_DATABASE must not be empty")

    if not 0 < config.scheduling.slot_length_minutes <= 24 * 60:
        raise ValueError(
            "SLOT_LENGTH_MINUTES must be between 1 and 1440, "
            f"got {config.scheduling.slot_length_minutes}"
        )
    if config.scheduling.slot_step_minutes < 1:
        raise ValueError(
            f"SLOT_STEP_MINUTES must be >= 1, got {config.scheduling.slot_step_minutes}"
        )
    if not config.scheduling.allowed_durations_hours:
        raise ValueError("ALLOWED_DURATIONS_HOURS must list at least one duration")
    for hours in config.scheduling.allowed_durations_hours:
        if not 0 < hours < 24:
            raise ValueError(
                f"ALLOWED_DURATIONS_HOURS entries must be between 1 and 23, got {hours}"
            )
    if config.scheduling.max_write_attempts < 1:
        raise ValueError(
            "BOOKING_MAX_WRITE_ATTEMPTS must be >= 1, "
            f"got {config.scheduling.max_write_attempts}"
        )

    if config.payments.webhook_tolerance_seconds < 0:
        raise ValueError(
            "STRIPE_WEBHOOK_TOLERANCE_SECONDS must be >= 0, "
            f"got {config.payments.webhook_tolerance_seconds}"
        )

    if config.notifications.max_attempts < 1:
        raise ValueError(
            f"NOTIFY_MAX_ATTEMPTS must be >= 1, got {config.notifications.max_attempts}"
        )
    if config.notifications.backoff_seconds < 0:
        raise ValueError(
            "NOTIFY_BACKOFF_SECONDS must be >= 0, "
            f"got {config.notifications.backoff_seconds}"
        )


def load_config() -> AppConfig:
    """Load and validate application configuration."""
    config = AppConfig()
    _validate_config(config)
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    install_request_id_filter(logging.getLogger().handlers)
    logger.info("Configuration loaded for '%s'", config.studio.name)
    return config


# Singleton instance
settings = load_config()
