"""Repository layer responsible for all database access.

The Reservations table is the availability index. Two storage rules back the
admission protocol:

* writers open ``BEGIN IMMEDIATE`` transactions, so the availability check and
  the insert of one admission run under the database write lock;
* triggers abort any insert or update that would leave two overlapping
  confirmed reservations on the same room, whatever code path issued it.
"""

from __future__ import annotations

import sqlite3
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional, Sequence

from backend.domain.models import (
    STATUS_CANCELLED,
    STATUS_CONFIRMED,
    DateRange,
    GuestDetails,
    Reservation,
    Room,
    RoomType,
)
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)

OVERLAP_ABORT_MESSAGE = "reservation_overlap"

_INVENTORY_NAMESPACE = uuid.UUID("6f1c3d2e-8b1a-4c55-9a0e-2f3b7d9c1a40")

DEMO_ROOM_TYPES = (
    ("22cea29f-51e6-438c-848e-211a046a9e28", "Standard Room", "Queen bed, garden view", 2),
    ("5b0e8f5c-3a9d-4c2e-9d51-7e6a1c0b2f11", "Deluxe Room", "King bed, balcony", 2),
    ("9d4a2c71-6e3b-4f8a-b0c5-1d2e3f4a5b62", "Executive Suite", "Separate lounge and work desk", 3),
    ("c3e1b9a4-7f2d-4e6c-8a15-0b9c8d7e6f73", "Family Room", "Two queen beds", 4),
    ("e8f7d6c5-b4a3-4921-8f0e-1d2c3b4a5968", "Presidential Suite", "Top floor, private terrace", 4),
)

DEMO_ROOMS = (
    ("101", "22cea29f-51e6-438c-848e-211a046a9e28", 2),
    ("201", "5b0e8f5c-3a9d-4c2e-9d51-7e6a1c0b2f11", 2),
    ("202", "5b0e8f5c-3a9d-4c2e-9d51-7e6a1c0b2f11", 2),
    ("301", "9d4a2c71-6e3b-4f8a-b0c5-1d2e3f4a5b62", 3),
    ("401", "c3e1b9a4-7f2d-4e6c-8a15-0b9c8d7e6f73", 4),
    ("501", "e8f7d6c5-b4a3-4921-8f0e-1d2c3b4a5968", 4),
)

_RESERVATION_COLUMNS = """
    id,
    room_id,
    guest_id,
    check_in,
    check_out,
    status,
    guest_token,
    num_guests,
    source,
    special_requests,
    created_at,
    cancelled_at,
    cancel_reason
"""

_CONFIRMED_OVERLAP_QUERY = f"""
    SELECT {_RESERVATION_COLUMNS}
    FROM Reservations
    WHERE room_id = ?
      AND status = 'confirmed'
      AND check_in < ?
      AND check_out > ?
    ORDER BY check_in ASC;
"""


class RepositoryError(RuntimeError):
    """Base failure raised by the persistence layer."""


class StorageUnavailableError(RepositoryError):
    """Raised when the database cannot be reached or the write lock times out."""


class ReservationOverlapError(RepositoryError):
    """Raised when the overlap trigger aborts a reservation write."""


class DuplicateGuestTokenError(RepositoryError):
    """Raised when a generated guest token is already taken."""


class UnknownRoomError(RepositoryError):
    """Raised when a reservation references a room that does not exist."""


@dataclass(frozen=True)
class GuestBookingView:
    """Non-sensitive booking projection exposed to token holders."""

    reservation_id: str
    check_in: str
    check_out: str
    status: str
    guest_name: str
    room_number: str


@dataclass(frozen=True)
class NightlyOccupancyRecord:
    """Confirmed reservation joined with its room type for reporting."""

    reservation_id: str
    room_id: str
    room_type_id: str
    room_type_name: str
    check_in: str
    check_out: str


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _row_to_reservation(row: sqlite3.Row) -> Reservation:
    return Reservation(
        reservation_id=str(row["id"]),
        room_id=str(row["room_id"]),
        guest_id=str(row["guest_id"]),
        stay=DateRange(
            check_in=date.fromisoformat(row["check_in"]),
            check_out=date.fromisoformat(row["check_out"]),
        ),
        status=str(row["status"]),
        guest_token=str(row["guest_token"]),
        created_at=str(row["created_at"]),
        num_guests=int(row["num_guests"]),
        source=str(row["source"]),
        special_requests=str(row["special_requests"] or ""),
        cancelled_at=row["cancelled_at"],
        cancel_reason=row["cancel_reason"],
    )


def _row_to_room(row: sqlite3.Row) -> Room:
    return Room(
        room_id=str(row["id"]),
        room_number=str(row["room_number"]),
        room_type_id=str(row["room_type_id"]),
        capacity=int(row["capacity"]),
        status=str(row["status"]),
    )


def _query_confirmed_overlaps(
    connection: sqlite3.Connection,
    room_id: str,
    stay: Optional[DateRange],
) -> list[Reservation]:
    if stay is None:
        cursor = connection.execute(
            f"""
            SELECT {_RESERVATION_COLUMNS}
            FROM Reservations
            WHERE room_id = ? AND status = 'confirmed'
            ORDER BY check_in ASC;
            """,
            (room_id,),
        )
    else:
        cursor = connection.execute(
            _CONFIRMED_OVERLAP_QUERY,
            (room_id, stay.check_out.isoformat(), stay.check_in.isoformat()),
        )
    return [_row_to_reservation(row) for row in cursor.fetchall()]


class ReservationTransaction:
    """Write-locked unit of work handed out by ``DataRepository.reservation_transaction``."""

    def __init__(self, connection: sqlite3.Connection) -> None:
        self._connection = connection

    def list_confirmed_reservations(
        self,
        room_id: str,
        stay: Optional[DateRange] = None,
    ) -> list[Reservation]:
        return _query_confirmed_overlaps(self._connection, room_id, stay)

    def upsert_guest(self, guest: GuestDetails) -> str:
        """Find the guest by email, refreshing name and phone, or create it."""
        self._connection.execute(
            """
            INSERT INTO Guests (id, name, email, phone)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(email) DO UPDATE SET
                name = excluded.name,
                phone = COALESCE(excluded.phone, Guests.phone);
            """,
            (str(uuid.uuid4()), guest.name, guest.email, guest.phone),
        )
        row = self._connection.execute(
            "SELECT id FROM Guests WHERE email = ?;",
            (guest.email,),
        ).fetchone()
        return str(row["id"])

    def insert_reservation(self, reservation: Reservation) -> None:
        try:
            self._connection.execute(
                """
                INSERT INTO Reservations (
                    id,
                    room_id,
                    guest_id,
                    check_in,
                    check_out,
                    status,
                    guest_token,
                    num_guests,
                    source,
                    special_requests,
                    created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    reservation.reservation_id,
                    reservation.room_id,
                    reservation.guest_id,
                    reservation.stay.check_in.isoformat(),
                    reservation.stay.check_out.isoformat(),
                    reservation.status,
                    reservation.guest_token,
                    reservation.num_guests,
                    reservation.source,
                    reservation.special_requests,
                    reservation.created_at,
                ),
            )
        except sqlite3.IntegrityError as exc:
            message = str(exc)
            if OVERLAP_ABORT_MESSAGE in message:
                raise ReservationOverlapError(
                    f"room {reservation.room_id} already booked for "
                    f"{reservation.stay.check_in}..{reservation.stay.check_out}"
                ) from exc
            if "guest_token" in message:
                raise DuplicateGuestTokenError("guest token collision") from exc
            if "FOREIGN KEY" in message:
                raise UnknownRoomError(f"room {reservation.room_id} does not exist") from exc
            raise RepositoryError(f"Reservation insert failed: {exc}") from exc


class DataRepository:
    """Encapsulates SQLite access so business logic stays storage-agnostic."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def database_path(self) -> Path:
        return self._db_path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            connection = sqlite3.connect(
                self._db_path,
                timeout=self._settings.database_busy_timeout_seconds,
                isolation_level=None,
            )
        except sqlite3.Error as exc:
            raise StorageUnavailableError(f"Cannot open database: {exc}") from exc
        connection.row_factory = sqlite3.Row
        try:
            connection.execute("PRAGMA foreign_keys = ON;")
            yield connection
        except sqlite3.IntegrityError:
            # constraint failures are translated by the statement that hit them
            raise
        except sqlite3.DatabaseError as exc:
            raise StorageUnavailableError(f"Database operation failed: {exc}") from exc
        finally:
            connection.close()

    @contextmanager
    def reservation_transaction(self) -> Iterator[ReservationTransaction]:
        """Hold the database write lock for one check-and-reserve unit.

        Commits when the block exits normally. Any exception, including
        cancellation of the calling worker, rolls everything back.
        """
        with self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE;")
            try:
                yield ReservationTransaction(conn)
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK;")
                raise
            conn.execute("COMMIT;")

    def initialize_database(self) -> None:
        """Create all persistence artifacts before API startup."""
        try:
            with self._connect() as conn:
                conn.execute("PRAGMA journal_mode = WAL;")
                conn.executescript(
                    """
                    CREATE TABLE IF NOT EXISTS RoomTypes (
                        id TEXT PRIMARY KEY,
                        name TEXT NOT NULL UNIQUE,
                        description TEXT NOT NULL DEFAULT '',
                        max_occupancy INTEGER NOT NULL CHECK (max_occupancy > 0)
                    );

                    CREATE TABLE IF NOT EXISTS Rooms (
                        id TEXT PRIMARY KEY,
                        room_number TEXT NOT NULL UNIQUE,
                        room_type_id TEXT NOT NULL,
                        capacity INTEGER NOT NULL CHECK (capacity > 0),
                        status TEXT NOT NULL DEFAULT 'available'
                            CHECK (status IN ('available', 'clean', 'dirty', 'maintenance')),
                        FOREIGN KEY (room_type_id) REFERENCES RoomTypes(id)
                    );

                    CREATE TABLE IF NOT EXISTS Guests (
                        id TEXT PRIMARY KEY,
                        name TEXT NOT NULL,
                        email TEXT NOT NULL UNIQUE,
                        phone TEXT,
                        created_at TEXT DEFAULT CURRENT_TIMESTAMP
                    );

                    CREATE TABLE IF NOT EXISTS Reservations (
                        id TEXT PRIMARY KEY,
                        room_id TEXT NOT NULL,
                        guest_id TEXT NOT NULL,
                        check_in TEXT NOT NULL,
                        check_out TEXT NOT NULL,
                        status TEXT NOT NULL CHECK (status IN ('confirmed', 'cancelled')),
                        guest_token TEXT NOT NULL UNIQUE,
                        num_guests INTEGER NOT NULL DEFAULT 1 CHECK (num_guests > 0),
                        source TEXT NOT NULL DEFAULT 'online',
                        special_requests TEXT NOT NULL DEFAULT '',
                        created_at TEXT NOT NULL,
                        cancelled_at TEXT,
                        cancel_reason TEXT,
                        CHECK (check_in < check_out),
                        FOREIGN KEY (room_id) REFERENCES Rooms(id),
                        FOREIGN KEY (guest_id) REFERENCES Guests(id)
                    );

                    CREATE INDEX IF NOT EXISTS idx_reservations_room_status_dates
                    ON Reservations(room_id, status, check_in, check_out);

                    CREATE INDEX IF NOT EXISTS idx_rooms_type_status
                    ON Rooms(room_type_id, status);

                    CREATE TRIGGER IF NOT EXISTS trg_reservations_no_overlap_insert
                    BEFORE INSERT ON Reservations
                    WHEN NEW.status = 'confirmed'
                    BEGIN
                        SELECT RAISE(ABORT, 'reservation_overlap')
                        WHERE EXISTS (
                            SELECT 1 FROM Reservations
                            WHERE room_id = NEW.room_id
                              AND status = 'confirmed'
                              AND check_in < NEW.check_out
                              AND NEW.check_in < check_out
                        );
                    END;

                    CREATE TRIGGER IF NOT EXISTS trg_reservations_no_overlap_update
                    BEFORE UPDATE OF room_id, check_in, check_out, status ON Reservations
                    WHEN NEW.status = 'confirmed'
                    BEGIN
                        SELECT RAISE(ABORT, 'reservation_overlap')
                        WHERE EXISTS (
                            SELECT 1 FROM Reservations
                            WHERE room_id = NEW.room_id
                              AND id != NEW.id
                              AND status = 'confirmed'
                              AND check_in < NEW.check_out
                              AND NEW.check_in < check_out
                        );
                    END;

                    CREATE TRIGGER IF NOT EXISTS trg_reservations_cancel_is_final
                    BEFORE UPDATE OF status ON Reservations
                    WHEN OLD.status = 'cancelled' AND NEW.status != 'cancelled'
                    BEGIN
                        SELECT RAISE(ABORT, 'reservation_reactivation');
                    END;

                    CREATE TRIGGER IF NOT EXISTS trg_reservations_no_delete
                    BEFORE DELETE ON Reservations
                    BEGIN
                        SELECT RAISE(ABORT, 'reservation_delete_forbidden');
                    END;
                    """
                )
            logger.info("Database initialized at %s", self._db_path)
        except sqlite3.Error as exc:
            raise RepositoryError(f"Database initialization failed: {exc}") from exc

    def seed_demo_inventory(self) -> None:
        """Seed the guest-house room types and rooms only when empty."""
        try:
            with self._connect() as conn:
                # count under the write lock so concurrent workers seed once
                conn.execute("BEGIN IMMEDIATE;")
                room_count = int(conn.execute("SELECT COUNT(*) AS count FROM Rooms;").fetchone()["count"])
                if room_count > 0:
                    conn.execute("ROLLBACK;")
                    logger.info("Room inventory already present; skipping seed")
                    return
                conn.executemany(
                    """
                    INSERT OR IGNORE INTO RoomTypes (id, name, description, max_occupancy)
                    VALUES (?, ?, ?, ?);
                    """,
                    DEMO_ROOM_TYPES,
                )
                conn.executemany(
                    """
                    INSERT OR IGNORE INTO Rooms (id, room_number, room_type_id, capacity)
                    VALUES (?, ?, ?, ?);
                    """,
                    [
                        (str(uuid.uuid5(_INVENTORY_NAMESPACE, number)), number, type_id, capacity)
                        for number, type_id, capacity in DEMO_ROOMS
                    ],
                )
                conn.execute("COMMIT;")
            logger.info("Seeded %s room types and %s rooms", len(DEMO_ROOM_TYPES), len(DEMO_ROOMS))
        except sqlite3.Error as exc:
            raise RepositoryError(f"Inventory seeding failed: {exc}") from exc

    def create_room_type(
        self,
        name: str,
        max_occupancy: int,
        description: str = "",
        room_type_id: Optional[str] = None,
    ) -> str:
        resolved_id = room_type_id or str(uuid.uuid4())
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO RoomTypes (id, name, description, max_occupancy)
                VALUES (?, ?, ?, ?);
                """,
                (resolved_id, name, description, max_occupancy),
            )
        return resolved_id

    def create_room(
        self,
        room_number: str,
        room_type_id: str,
        capacity: int,
        status: str = "available",
        room_id: Optional[str] = None,
    ) -> str:
        resolved_id = room_id or str(uuid.uuid4())
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO Rooms (id, room_number, room_type_id, capacity, status)
                VALUES (?, ?, ?, ?, ?);
                """,
                (resolved_id, room_number, room_type_id, capacity, status),
            )
        return resolved_id

    def set_room_status(self, room_id: str, status: str) -> None:
        with self._connect() as conn:
            conn.execute("UPDATE Rooms SET status = ? WHERE id = ?;", (status, room_id))

    def get_room(self, room_id: str) -> Optional[Room]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT id, room_number, room_type_id, capacity, status FROM Rooms WHERE id = ?;",
                (room_id,),
            ).fetchone()
            return None if row is None else _row_to_room(row)

    def get_room_type(self, room_type_id: str) -> Optional[RoomType]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT id, name, description, max_occupancy FROM RoomTypes WHERE id = ?;",
                (room_type_id,),
            ).fetchone()
            if row is None:
                return None
            return RoomType(
                room_type_id=str(row["id"]),
                name=str(row["name"]),
                description=str(row["description"]),
                max_occupancy=int(row["max_occupancy"]),
            )

    def list_room_types(self) -> list[RoomType]:
        with self._connect() as conn:
            cursor = conn.execute(
                "SELECT id, name, description, max_occupancy FROM RoomTypes ORDER BY name ASC;"
            )
            return [
                RoomType(
                    room_type_id=str(row["id"]),
                    name=str(row["name"]),
                    description=str(row["description"]),
                    max_occupancy=int(row["max_occupancy"]),
                )
                for row in cursor.fetchall()
            ]

    def list_rooms(
        self,
        room_type_id: Optional[str] = None,
        statuses: Optional[Sequence[str]] = None,
    ) -> List[Room]:
        """Return rooms ordered by room number, optionally filtered."""
        conditions: list[str] = []
        params: list[str] = []
        if room_type_id is not None:
            conditions.append("room_type_id = ?")
            params.append(room_type_id)
        if statuses:
            placeholders = ",".join("?" for _ in statuses)
            conditions.append(f"status IN ({placeholders})")
            params.extend(statuses)
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        with self._connect() as conn:
            cursor = conn.execute(
                f"""
                SELECT id, room_number, room_type_id, capacity, status
                FROM Rooms
                {where}
                ORDER BY room_number ASC;
                """,
                tuple(params),
            )
            return [_row_to_room(row) for row in cursor.fetchall()]

    def list_confirmed_reservations(
        self,
        room_id: str,
        stay: Optional[DateRange] = None,
    ) -> list[Reservation]:
        """Return confirmed reservations on a room, optionally overlapping ``stay``."""
        with self._connect() as conn:
            return _query_confirmed_overlaps(conn, room_id, stay)

    def list_busy_room_ids(self, stay: DateRange) -> set[str]:
        """Return rooms holding a confirmed reservation overlapping ``stay``."""
        with self._connect() as conn:
            cursor = conn.execute(
                """
                SELECT DISTINCT room_id
                FROM Reservations
                WHERE status = 'confirmed'
                  AND check_in < ?
                  AND check_out > ?;
                """,
                (stay.check_out.isoformat(), stay.check_in.isoformat()),
            )
            return {str(row["room_id"]) for row in cursor.fetchall()}

    def list_reservations(self, room_id: Optional[str] = None) -> list[Reservation]:
        """Return every reservation, cancelled included, in creation order."""
        with self._connect() as conn:
            if room_id is None:
                cursor = conn.execute(
                    f"SELECT {_RESERVATION_COLUMNS} FROM Reservations ORDER BY created_at ASC, id ASC;"
                )
            else:
                cursor = conn.execute(
                    f"""
                    SELECT {_RESERVATION_COLUMNS}
                    FROM Reservations
                    WHERE room_id = ?
                    ORDER BY created_at ASC, id ASC;
                    """,
                    (room_id,),
                )
            return [_row_to_reservation(row) for row in cursor.fetchall()]

    def list_occupancy_records(self, window: DateRange) -> list[NightlyOccupancyRecord]:
        """Confirmed reservations overlapping ``window`` joined with room types."""
        with self._connect() as conn:
            cursor = conn.execute(
                """
                SELECT
                    res.id,
                    res.room_id,
                    r.room_type_id,
                    rt.name AS room_type_name,
                    res.check_in,
                    res.check_out
                FROM Reservations AS res
                INNER JOIN Rooms AS r ON r.id = res.room_id
                INNER JOIN RoomTypes AS rt ON rt.id = r.room_type_id
                WHERE res.status = 'confirmed'
                  AND res.check_in < ?
                  AND res.check_out > ?
                ORDER BY res.check_in ASC;
                """,
                (window.check_out.isoformat(), window.check_in.isoformat()),
            )
            return [
                NightlyOccupancyRecord(
                    reservation_id=str(row["id"]),
                    room_id=str(row["room_id"]),
                    room_type_id=str(row["room_type_id"]),
                    room_type_name=str(row["room_type_name"]),
                    check_in=str(row["check_in"]),
                    check_out=str(row["check_out"]),
                )
                for row in cursor.fetchall()
            ]

    def get_reservation(self, reservation_id: str) -> Optional[Reservation]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_RESERVATION_COLUMNS} FROM Reservations WHERE id = ?;",
                (reservation_id,),
            ).fetchone()
            return None if row is None else _row_to_reservation(row)

    def get_guest_view(self, guest_token: str) -> Optional[GuestBookingView]:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT
                    res.id,
                    res.check_in,
                    res.check_out,
                    res.status,
                    g.name AS guest_name,
                    r.room_number
                FROM Reservations AS res
                INNER JOIN Guests AS g ON g.id = res.guest_id
                INNER JOIN Rooms AS r ON r.id = res.room_id
                WHERE res.guest_token = ?;
                """,
                (guest_token,),
            ).fetchone()
            if row is None:
                return None
            return GuestBookingView(
                reservation_id=str(row["id"]),
                check_in=str(row["check_in"]),
                check_out=str(row["check_out"]),
                status=str(row["status"]),
                guest_name=str(row["guest_name"]),
                room_number=str(row["room_number"]),
            )

    def cancel_reservation(
        self,
        reservation_id: str,
        reason: Optional[str] = None,
    ) -> Optional[Reservation]:
        """Mark a confirmed reservation cancelled; already-cancelled rows are left as-is."""
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE Reservations
                SET status = ?, cancelled_at = ?, cancel_reason = ?
                WHERE id = ? AND status = ?;
                """,
                (STATUS_CANCELLED, _utc_now_iso(), reason, reservation_id, STATUS_CONFIRMED),
            )
            row = conn.execute(
                f"SELECT {_RESERVATION_COLUMNS} FROM Reservations WHERE id = ?;",
                (reservation_id,),
            ).fetchone()
            return None if row is None else _row_to_reservation(row)

    def count_reservations(self) -> int:
        with self._connect() as conn:
            return int(conn.execute("SELECT COUNT(*) AS count FROM Reservations;").fetchone()["count"])

    def count_guests(self) -> int:
        with self._connect() as conn:
            return int(conn.execute("SELECT COUNT(*) AS count FROM Guests;").fetchone()["count"])


def demo_room_id(room_number: str) -> str:
    """Deterministic id of a seeded demo room."""
    return str(uuid.uuid5(_INVENTORY_NAMESPACE, room_number))
