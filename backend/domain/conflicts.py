"""Pure overlap checks between a candidate stay and existing reservations."""

from __future__ import annotations

from typing import Iterable, Optional

from backend.domain.models import DateRange, Reservation


def ranges_overlap(first: DateRange, second: DateRange) -> bool:
    """Half-open overlap: ``[a, b)`` and ``[c, d)`` overlap iff a < d and c < b."""
    return first.check_in < second.check_out and second.check_in < first.check_out


def find_conflict(
    candidate: DateRange,
    reservations: Iterable[Reservation],
    room_id: Optional[str] = None,
) -> Optional[Reservation]:
    """Return the first confirmed reservation overlapping ``candidate``.

    Cancelled reservations never conflict. When ``room_id`` is given,
    reservations for other rooms are ignored.
    """
    for reservation in reservations:
        if not reservation.is_confirmed:
            continue
        if room_id is not None and reservation.room_id != room_id:
            continue
        if ranges_overlap(candidate, reservation.stay):
            return reservation
    return None


def has_conflict(
    candidate: DateRange,
    reservations: Iterable[Reservation],
    room_id: Optional[str] = None,
) -> bool:
    return find_conflict(candidate, reservations, room_id=room_id) is not None
