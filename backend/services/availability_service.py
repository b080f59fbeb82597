"""Read-side availability search and occupancy reporting."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional

import numpy as np
import pandas as pd

from backend.domain.models import DateRange, Reservation, RoomTypeAvailability
from backend.repository.data_repository import DataRepository, RepositoryError
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


class AvailabilityError(Exception):
    """Base exception for availability queries."""


class AvailabilityValidationError(AvailabilityError):
    """Raised when search or report parameters are invalid."""


class AvailabilityStorageError(AvailabilityError):
    """Raised when the store cannot answer the query."""


@dataclass(frozen=True)
class OccupancyRow:
    night: str
    room_type_id: str
    room_type_name: str
    occupied_rooms: int
    total_rooms: int
    occupancy_rate: float


@dataclass(frozen=True)
class OccupancyReport:
    start: str
    end: str
    rows: list[OccupancyRow]
    overall_occupancy_rate: float


class AvailabilityService:
    """Answers 'what can be booked' and 'how full were we' questions.

    Results are snapshots: a room listed as available can still be taken by a
    concurrent booking before the guest submits, in which case the booking
    endpoint answers 409.
    """

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)

    @staticmethod
    def _window(start: date, end: date) -> DateRange:
        if start >= end:
            raise AvailabilityValidationError("check_out must be after check_in")
        return DateRange(check_in=start, check_out=end)

    def search(self, check_in: date, check_out: date, guests: int = 1) -> list[RoomTypeAvailability]:
        """Count free rooms per room type for the stay and party size."""
        if guests <= 0:
            raise AvailabilityValidationError("guests must be > 0")
        stay = self._window(check_in, check_out)

        try:
            room_types = self._repository.list_room_types()
            rooms = self._repository.list_rooms(statuses=self._settings.bookable_room_statuses)
            busy_room_ids = self._repository.list_busy_room_ids(stay)
        except RepositoryError as exc:
            logger.exception("Availability search failed on storage")
            raise AvailabilityStorageError("Availability is temporarily unavailable") from exc

        free_by_type: dict[str, list[str]] = {room_type.room_type_id: [] for room_type in room_types}
        for room in rooms:
            if room.room_id in busy_room_ids or room.capacity < guests:
                continue
            free_by_type.setdefault(room.room_type_id, []).append(room.room_id)

        results = []
        for room_type in room_types:
            room_ids = free_by_type[room_type.room_type_id] if room_type.max_occupancy >= guests else []
            results.append(
                RoomTypeAvailability(
                    room_type_id=room_type.room_type_id,
                    name=room_type.name,
                    description=room_type.description,
                    max_occupancy=room_type.max_occupancy,
                    available_count=len(room_ids),
                    room_ids=room_ids,
                )
            )
        logger.info(
            "Availability for %s..%s (%s guests): %s free rooms",
            check_in,
            check_out,
            guests,
            sum(item.available_count for item in results),
        )
        return results

    def room_reservations(
        self,
        room_id: str,
        window: Optional[DateRange] = None,
    ) -> list[Reservation]:
        try:
            return self._repository.list_confirmed_reservations(room_id, window)
        except RepositoryError as exc:
            logger.exception("Reservation listing failed on storage")
            raise AvailabilityStorageError("Reservations are temporarily unavailable") from exc

    def occupancy_report(self, start: date, end: date) -> OccupancyReport:
        """Nightly occupied-room ratio per room type over ``[start, end)``."""
        window = self._window(start, end)
        if window.nights > self._settings.occupancy_max_window_days:
            raise AvailabilityValidationError(
                f"report window must not exceed {self._settings.occupancy_max_window_days} nights"
            )

        try:
            room_types = self._repository.list_room_types()
            rooms = self._repository.list_rooms()
            records = self._repository.list_occupancy_records(window)
        except RepositoryError as exc:
            logger.exception("Occupancy report failed on storage")
            raise AvailabilityStorageError("Occupancy data is temporarily unavailable") from exc

        first_night = pd.Timestamp(window.check_in)
        last_night = pd.Timestamp(window.check_out - timedelta(days=1))
        nights = pd.date_range(first_night, last_night, freq="D")
        type_ids = [room_type.room_type_id for room_type in room_types]
        type_names = {room_type.room_type_id: room_type.name for room_type in room_types}
        totals = Counter(room.room_type_id for room in rooms)
        index = pd.MultiIndex.from_product([nights, type_ids], names=["night", "room_type_id"])

        if records:
            frame = pd.DataFrame(
                [
                    {
                        "room_id": record.room_id,
                        "room_type_id": record.room_type_id,
                        "check_in": record.check_in,
                        "check_out": record.check_out,
                    }
                    for record in records
                ]
            )
            frame["first"] = pd.to_datetime(frame["check_in"], format="%Y-%m-%d").clip(lower=first_night)
            frame["last"] = (
                pd.to_datetime(frame["check_out"], format="%Y-%m-%d") - pd.Timedelta(days=1)
            ).clip(upper=last_night)
            frame["night"] = [
                pd.date_range(first, last, freq="D")
                for first, last in zip(frame["first"], frame["last"])
            ]
            frame = frame.explode("night").dropna(subset=["night"])
            frame["night"] = pd.to_datetime(frame["night"])
            occupied = (
                frame.groupby(["night", "room_type_id"])["room_id"]
                .nunique()
                .reindex(index, fill_value=0)
            )
        else:
            occupied = pd.Series(0, index=index, dtype="int64")

        report = occupied.rename("occupied_rooms").reset_index()
        report["total_rooms"] = report["room_type_id"].map(lambda type_id: totals.get(type_id, 0))
        report["occupancy_rate"] = np.where(
            report["total_rooms"] > 0,
            report["occupied_rooms"] / report["total_rooms"].replace(0, 1),
            0.0,
        )

        rows = [
            OccupancyRow(
                night=row.night.date().isoformat(),
                room_type_id=str(row.room_type_id),
                room_type_name=type_names[row.room_type_id],
                occupied_rooms=int(row.occupied_rooms),
                total_rooms=int(row.total_rooms),
                occupancy_rate=round(float(row.occupancy_rate), 4),
            )
            for row in report.itertuples(index=False)
        ]
        room_nights = int(report["total_rooms"].sum())
        overall = float(report["occupied_rooms"].sum()) / room_nights if room_nights else 0.0
        return OccupancyReport(
            start=window.check_in.isoformat(),
            end=window.check_out.isoformat(),
            rows=rows,
            overall_occupancy_rate=round(overall, 4),
        )
