"""Booking workflow: request validation, room resolution and guest access."""

from __future__ import annotations

import re
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Callable, Iterator, Optional

from backend.domain.constraints import (
    BookingPolicy,
    validate_booking_policy,
    validate_guest_count,
    validate_stay,
)
from backend.domain.models import STATUS_CONFIRMED, DateRange, GuestDetails, Reservation, Room
from backend.repository.data_repository import DataRepository, GuestBookingView, RepositoryError
from backend.services.admission_service import (
    AdmissionCoordinator,
    BookingConflictError,
    BookingError,
    BookingInfrastructureError,
    BookingValidationError,
)
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class RoomNotFoundError(BookingError):
    """Raised when the requested room or room type does not exist."""


class BookingNotFoundError(BookingError):
    """Raised when a reservation id or guest token matches nothing."""


@dataclass(frozen=True)
class BookingRequest:
    check_in: date
    check_out: date
    guest_name: str
    guest_email: str
    guest_phone: Optional[str] = None
    room_id: Optional[str] = None
    room_type_id: Optional[str] = None
    num_guests: int = 1
    special_requests: str = ""
    source: Optional[str] = None


@dataclass(frozen=True)
class BookingConfirmation:
    reservation_id: str
    guest_token: str
    room_id: str
    room_number: str
    check_in: date
    check_out: date
    nights: int
    status: str = STATUS_CONFIRMED


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


@contextmanager
def _storage_guard(action: str) -> Iterator[None]:
    try:
        yield
    except RepositoryError as exc:
        logger.exception("%s failed on storage", action)
        raise BookingInfrastructureError(
            "Booking storage is temporarily unavailable; retry shortly"
        ) from exc


class BookingService:
    """Turns HTTP-level booking requests into per-room admissions."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        coordinator: Optional[AdmissionCoordinator] = None,
        today_provider: Optional[Callable[[], date]] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._coordinator = coordinator or AdmissionCoordinator(
            repository=self._repository,
            settings=self._settings,
        )
        self._today = today_provider or _utc_today
        self._policy = BookingPolicy(
            max_stay_nights=self._settings.booking_max_stay_nights,
            max_guests=self._settings.booking_max_guests,
            reject_past_check_in=self._settings.booking_reject_past_check_in,
            guest_token_bytes=self._settings.guest_token_bytes,
        )
        validate_booking_policy(self._policy)

    @property
    def policy(self) -> BookingPolicy:
        return self._policy

    def _validate_request(self, request: BookingRequest) -> tuple[DateRange, GuestDetails, str]:
        if bool(request.room_id) == bool(request.room_type_id):
            raise BookingValidationError("Provide exactly one of room_id or room_type_id")

        guest_name = request.guest_name.strip()
        guest_email = request.guest_email.strip().lower()
        if not guest_name:
            raise BookingValidationError("guest_name is required")
        if not _EMAIL_PATTERN.fullmatch(guest_email):
            raise BookingValidationError("guest_email is not a valid email address")

        source = request.source or self._settings.booking_default_source
        if source not in self._settings.booking_allowed_sources:
            raise BookingValidationError(
                f"source must be one of {', '.join(self._settings.booking_allowed_sources)}"
            )

        try:
            validate_stay(request.check_in, request.check_out, self._policy, today=self._today())
            validate_guest_count(request.num_guests, self._policy)
        except ValueError as exc:
            raise BookingValidationError(str(exc)) from exc

        phone = request.guest_phone.strip() if request.guest_phone else None
        guest = GuestDetails(name=guest_name, email=guest_email, phone=phone or None)
        return DateRange(request.check_in, request.check_out), guest, source

    def _candidate_rooms(self, request: BookingRequest) -> list[Room]:
        if request.room_id:
            room = self._repository.get_room(request.room_id)
            if room is None:
                raise RoomNotFoundError(f"Room {request.room_id} not found")
            if room.capacity < request.num_guests:
                raise BookingValidationError(
                    f"Room {room.room_number} holds at most {room.capacity} guests"
                )
            if room.status not in self._settings.bookable_room_statuses:
                raise BookingConflictError(f"Room {room.room_number} is out of service")
            return [room]

        room_type = self._repository.get_room_type(request.room_type_id or "")
        if room_type is None:
            raise RoomNotFoundError(f"Room type {request.room_type_id} not found")
        rooms = [
            room
            for room in self._repository.list_rooms(
                room_type_id=room_type.room_type_id,
                statuses=self._settings.bookable_room_statuses,
            )
            if room.capacity >= request.num_guests
        ]
        if not rooms:
            raise RoomNotFoundError(
                f"No bookable rooms of type {room_type.name} for {request.num_guests} guests"
            )
        return rooms

    def create_booking(self, request: BookingRequest) -> BookingConfirmation:
        """Validate, then admit the stay on the first room that accepts it."""
        try:
            stay, guest, source = self._validate_request(request)
        except BookingValidationError as exc:
            logger.warning("Booking request rejected: %s", exc)
            raise

        with _storage_guard("Room lookup"):
            candidates = self._candidate_rooms(request)
            busy_room_ids = self._repository.list_busy_room_ids(stay)

        # The busy snapshot only prunes attempts; each admit re-checks under the write lock.
        for room in candidates:
            if request.room_type_id and room.room_id in busy_room_ids:
                continue
            decision = self._coordinator.admit(
                room_id=room.room_id,
                check_in=stay.check_in,
                check_out=stay.check_out,
                guest=guest,
                num_guests=request.num_guests,
                source=source,
                special_requests=request.special_requests,
            )
            if decision.accepted:
                return BookingConfirmation(
                    reservation_id=decision.reservation_id or "",
                    guest_token=decision.guest_token or "",
                    room_id=room.room_id,
                    room_number=room.room_number,
                    check_in=stay.check_in,
                    check_out=stay.check_out,
                    nights=stay.nights,
                )

        logger.info("No room available for %s..%s", stay.check_in, stay.check_out)
        raise BookingConflictError("No rooms available for these dates")

    def get_booking(self, reservation_id: str) -> Reservation:
        with _storage_guard("Booking lookup"):
            reservation = self._repository.get_reservation(reservation_id)
        if reservation is None:
            raise BookingNotFoundError(f"Booking {reservation_id} not found")
        return reservation

    def get_guest_token(self, reservation_id: str) -> str:
        return self.get_booking(reservation_id).guest_token

    def cancel_booking(self, reservation_id: str, reason: Optional[str] = None) -> Reservation:
        """Cancel a booking; cancelling twice returns the cancelled record."""
        with _storage_guard("Booking cancellation"):
            reservation = self._repository.cancel_reservation(reservation_id, reason)
        if reservation is None:
            raise BookingNotFoundError(f"Booking {reservation_id} not found")
        logger.info("Reservation %s cancelled", reservation_id)
        return reservation

    def verify_guest_token(self, guest_token: str) -> GuestBookingView:
        if not guest_token:
            raise BookingValidationError("token is required")
        with _storage_guard("Guest token lookup"):
            view = self._repository.get_guest_view(guest_token)
        if view is None:
            logger.warning("Guest token lookup failed")
            raise BookingNotFoundError("Invalid or expired token")
        return view
