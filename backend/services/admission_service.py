"""Concurrency-safe admission of a booking request for one room.

Checking availability and writing the reservation happen in one write-locked
transaction, and the storage triggers reject any overlapping confirmed
reservation that slips past the check. Two workers racing for the same room
and dates therefore produce exactly one accepted reservation.
"""

from __future__ import annotations

from datetime import date
from typing import Optional

from backend.domain.conflicts import find_conflict
from backend.domain.models import AdmissionDecision, DateRange, GuestDetails
from backend.repository.data_repository import (
    DataRepository,
    RepositoryError,
    ReservationOverlapError,
    UnknownRoomError,
)
from backend.services.reservation_writer import ReservationWriter, ReservationWriterError
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


class BookingError(Exception):
    """Base exception for booking workflow failures."""


class BookingValidationError(BookingError):
    """Raised when a request is malformed; no shared state has been touched."""


class BookingConflictError(BookingError):
    """Raised when the requested stay overlaps an existing confirmed reservation."""


class BookingInfrastructureError(BookingError):
    """Raised on transient storage failures; callers should retry with backoff."""


class AdmissionCoordinator:
    """Accepts or rejects a stay on a single room atomically."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        writer: Optional[ReservationWriter] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._writer = writer or ReservationWriter(settings=self._settings)

    @staticmethod
    def _validate(
        room_id: str,
        check_in: date,
        check_out: date,
        guest: GuestDetails,
        num_guests: int,
    ) -> DateRange:
        if not room_id:
            raise BookingValidationError("room_id is required")
        if not guest.name.strip() or not guest.email.strip():
            raise BookingValidationError("guest name and email are required")
        if num_guests <= 0:
            raise BookingValidationError("num_guests must be > 0")
        if check_in >= check_out:
            raise BookingValidationError(
                f"check_out ({check_out.isoformat()}) must be after check_in ({check_in.isoformat()})"
            )
        return DateRange(check_in=check_in, check_out=check_out)

    def admit(
        self,
        *,
        room_id: str,
        check_in: date,
        check_out: date,
        guest: GuestDetails,
        num_guests: int = 1,
        source: str = "online",
        special_requests: str = "",
    ) -> AdmissionDecision:
        stay = self._validate(room_id, check_in, check_out, guest, num_guests)

        try:
            with self._repository.reservation_transaction() as transaction:
                existing = transaction.list_confirmed_reservations(room_id, stay)
                conflict = find_conflict(stay, existing, room_id=room_id)
                if conflict is not None:
                    logger.info(
                        "Room %s unavailable for %s..%s (conflicts with %s)",
                        room_id,
                        stay.check_in,
                        stay.check_out,
                        conflict.reservation_id,
                    )
                    return AdmissionDecision.reject(room_id, conflict.reservation_id)

                reservation = self._writer.write(
                    transaction,
                    room_id=room_id,
                    stay=stay,
                    guest=guest,
                    num_guests=num_guests,
                    source=source,
                    special_requests=special_requests,
                )
        except ReservationOverlapError:
            logger.info(
                "Overlap constraint rejected room %s for %s..%s",
                room_id,
                stay.check_in,
                stay.check_out,
            )
            return AdmissionDecision.reject(room_id)
        except UnknownRoomError as exc:
            logger.warning("Admission requested for unknown room %s", room_id)
            raise BookingValidationError(f"room {room_id} does not exist") from exc
        except (RepositoryError, ReservationWriterError) as exc:
            logger.exception("Admission for room %s failed on storage", room_id)
            raise BookingInfrastructureError(
                "Booking storage is temporarily unavailable; retry shortly"
            ) from exc

        logger.info(
            "Reservation %s confirmed for room %s (%s..%s)",
            reservation.reservation_id,
            room_id,
            stay.check_in,
            stay.check_out,
        )
        return AdmissionDecision.accept(
            room_id=room_id,
            reservation_id=reservation.reservation_id,
            guest_token=reservation.guest_token,
        )
