"""Persists accepted reservations and issues guest access tokens."""

from __future__ import annotations

import secrets
import uuid
from datetime import datetime, timezone
from typing import Optional

from backend.domain.models import STATUS_CONFIRMED, DateRange, GuestDetails, Reservation
from backend.repository.data_repository import DuplicateGuestTokenError, ReservationTransaction
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


class ReservationWriterError(Exception):
    """Raised when a reservation record cannot be written."""


class ReservationWriter:
    """Writes the reservation row inside the caller's admission transaction.

    Nothing is committed here: the surrounding transaction either commits the
    guest and the reservation together or neither.
    """

    _MAX_TOKEN_ATTEMPTS = 3

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()

    def new_guest_token(self) -> str:
        return secrets.token_urlsafe(self._settings.guest_token_bytes)

    def write(
        self,
        transaction: ReservationTransaction,
        *,
        room_id: str,
        stay: DateRange,
        guest: GuestDetails,
        num_guests: int = 1,
        source: str = "online",
        special_requests: str = "",
    ) -> Reservation:
        guest_id = transaction.upsert_guest(guest)
        reservation_id = str(uuid.uuid4())
        created_at = datetime.now(timezone.utc).isoformat()

        for attempt in range(1, self._MAX_TOKEN_ATTEMPTS + 1):
            reservation = Reservation(
                reservation_id=reservation_id,
                room_id=room_id,
                guest_id=guest_id,
                stay=stay,
                status=STATUS_CONFIRMED,
                guest_token=self.new_guest_token(),
                created_at=created_at,
                num_guests=num_guests,
                source=source,
                special_requests=special_requests,
            )
            try:
                transaction.insert_reservation(reservation)
                return reservation
            except DuplicateGuestTokenError:
                logger.warning("Guest token collision on attempt %s; regenerating", attempt)
        raise ReservationWriterError("Could not issue a unique guest token")
