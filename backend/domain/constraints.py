"""Domain-level validation rules for booking admission."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Optional


@dataclass(frozen=True)
class BookingPolicy:
    max_stay_nights: int
    max_guests: int
    reject_past_check_in: bool
    guest_token_bytes: int


def validate_booking_policy(policy: BookingPolicy) -> None:
    if policy.max_stay_nights <= 0:
        raise ValueError("max_stay_nights must be > 0")
    if policy.max_guests <= 0:
        raise ValueError("max_guests must be > 0")
    if policy.guest_token_bytes < 16:
        raise ValueError("guest_token_bytes must be >= 16")


def validate_stay(
    check_in: date,
    check_out: date,
    policy: BookingPolicy,
    today: Optional[date] = None,
) -> None:
    """Raise ValueError when a requested stay breaks the booking policy."""
    if check_in >= check_out:
        raise ValueError(
            f"check_out ({check_out.isoformat()}) must be after check_in ({check_in.isoformat()})"
        )
    nights = (check_out - check_in).days
    if nights > policy.max_stay_nights:
        raise ValueError(f"stay of {nights} nights exceeds the {policy.max_stay_nights} night limit")
    if policy.reject_past_check_in and today is not None and check_in < today:
        raise ValueError(
            f"check_in ({check_in.isoformat()}) cannot be in the past; today is {today.isoformat()}"
        )


def validate_guest_count(num_guests: int, policy: BookingPolicy) -> None:
    if num_guests <= 0:
        raise ValueError("num_guests must be > 0")
    if num_guests > policy.max_guests:
        raise ValueError(f"num_guests must be <= {policy.max_guests}")
