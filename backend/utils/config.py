"""Environment-driven application settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[2]


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    """Immutable runtime configuration.

    Tests derive variants with ``dataclasses.replace`` instead of mutating
    environment variables.
    """

    app_name: str = "Guest House Booking API"
    app_version: str = "1.0.0"
    log_level: str = "INFO"

    database_path: Path = PROJECT_ROOT / "data" / "guesthouse.db"
    database_busy_timeout_seconds: float = 5.0

    staff_token: str | None = None
    staff_session_ttl_minutes: int = 480

    booking_max_stay_nights: int = 60
    booking_max_guests: int = 10
    booking_reject_past_check_in: bool = True
    booking_default_source: str = "online"
    booking_allowed_sources: tuple[str, ...] = ("online", "voice", "staff")
    guest_token_bytes: int = 32

    bookable_room_statuses: tuple[str, ...] = ("available", "clean", "dirty")
    occupancy_max_window_days: int = 366

    seed_demo_inventory: bool = True


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Build settings once per process from environment variables."""
    defaults = Settings()
    return Settings(
        app_name=os.getenv("APP_NAME", defaults.app_name),
        app_version=os.getenv("APP_VERSION", defaults.app_version),
        log_level=os.getenv("LOG_LEVEL", defaults.log_level),
        database_path=Path(os.getenv("DATABASE_PATH", str(defaults.database_path))),
        database_busy_timeout_seconds=float(
            os.getenv(
                "DATABASE_BUSY_TIMEOUT_SECONDS",
                str(defaults.database_busy_timeout_seconds),
            )
        ),
        staff_token=os.getenv("STAFF_TOKEN") or None,
        staff_session_ttl_minutes=int(
            os.getenv("STAFF_SESSION_TTL_MINUTES", str(defaults.staff_session_ttl_minutes))
        ),
        booking_max_stay_nights=int(
            os.getenv("BOOKING_MAX_STAY_NIGHTS", str(defaults.booking_max_stay_nights))
        ),
        booking_max_guests=int(
            os.getenv("BOOKING_MAX_GUESTS", str(defaults.booking_max_guests))
        ),
        booking_reject_past_check_in=_env_bool(
            "BOOKING_REJECT_PAST_CHECK_IN",
            defaults.booking_reject_past_check_in,
        ),
        guest_token_bytes=int(os.getenv("GUEST_TOKEN_BYTES", str(defaults.guest_token_bytes))),
        occupancy_max_window_days=int(
            os.getenv("OCCUPANCY_MAX_WINDOW_DAYS", str(defaults.occupancy_max_window_days))
        ),
        seed_demo_inventory=_env_bool("SEED_DEMO_INVENTORY", defaults.seed_demo_inventory),
    )
