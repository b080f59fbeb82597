"""Domain models for rooms, stays and reservations."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Optional


STATUS_CONFIRMED = "confirmed"
STATUS_CANCELLED = "cancelled"


@dataclass(frozen=True)
class RoomType:
    room_type_id: str
    name: str
    description: str
    max_occupancy: int


@dataclass(frozen=True)
class Room:
    room_id: str
    room_number: str
    room_type_id: str
    capacity: int
    status: str


@dataclass(frozen=True)
class DateRange:
    """Half-open stay interval ``[check_in, check_out)``.

    The check-out night is not occupied, so a stay ending on the 18th and
    another starting on the 18th do not overlap.
    """

    check_in: date
    check_out: date

    def __post_init__(self) -> None:
        if self.check_in >= self.check_out:
            raise ValueError("check_in must be before check_out")

    @property
    def nights(self) -> int:
        return (self.check_out - self.check_in).days

    def overlaps(self, other: "DateRange") -> bool:
        return self.check_in < other.check_out and other.check_in < self.check_out


@dataclass(frozen=True)
class GuestDetails:
    name: str
    email: str
    phone: Optional[str] = None


@dataclass(frozen=True)
class Reservation:
    reservation_id: str
    room_id: str
    guest_id: str
    stay: DateRange
    status: str
    guest_token: str
    created_at: str
    num_guests: int = 1
    source: str = "online"
    special_requests: str = ""
    cancelled_at: Optional[str] = None
    cancel_reason: Optional[str] = None

    @property
    def is_confirmed(self) -> bool:
        return self.status == STATUS_CONFIRMED


@dataclass(frozen=True)
class AdmissionDecision:
    """Outcome of one admission attempt for a single room."""

    accepted: bool
    room_id: str
    reservation_id: Optional[str] = None
    guest_token: Optional[str] = None
    reason: Optional[str] = None
    conflicting_reservation_id: Optional[str] = None

    @classmethod
    def accept(cls, room_id: str, reservation_id: str, guest_token: str) -> "AdmissionDecision":
        return cls(
            accepted=True,
            room_id=room_id,
            reservation_id=reservation_id,
            guest_token=guest_token,
        )

    @classmethod
    def reject(
        cls,
        room_id: str,
        conflicting_reservation_id: Optional[str] = None,
    ) -> "AdmissionDecision":
        return cls(
            accepted=False,
            room_id=room_id,
            reason="conflict",
            conflicting_reservation_id=conflicting_reservation_id,
        )


@dataclass(frozen=True)
class RoomTypeAvailability:
    room_type_id: str
    name: str
    description: str
    max_occupancy: int
    available_count: int
    room_ids: list[str]
