from __future__ import annotations

import random
import sqlite3
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import date, timedelta

import pytest

from backend.domain.models import DateRange, GuestDetails
from backend.repository.data_repository import (
    DataRepository,
    ReservationOverlapError,
    ReservationTransaction,
    StorageUnavailableError,
)
from backend.services.admission_service import (
    AdmissionCoordinator,
    BookingInfrastructureError,
    BookingValidationError,
)
from backend.services.reservation_writer import ReservationWriter
from backend.utils.config import get_settings


CHECK_IN = date(2026, 5, 15)
CHECK_OUT = date(2026, 5, 18)


def _build_test_settings(tmp_path, filename: str, **overrides):
    get_settings.cache_clear()
    base = get_settings()
    return replace(
        base,
        database_path=tmp_path / filename,
        seed_demo_inventory=False,
        **overrides,
    )


def _build_repository(tmp_path, filename: str, room_count: int = 1, **overrides):
    settings = _build_test_settings(tmp_path, filename, **overrides)
    repository = DataRepository(settings)
    repository.initialize_database()
    room_type_id = repository.create_room_type("Standard Room", max_occupancy=2)
    room_ids = [
        repository.create_room(str(100 + number), room_type_id, capacity=2)
        for number in range(1, room_count + 1)
    ]
    return settings, repository, room_ids


def _guest(number: int) -> GuestDetails:
    return GuestDetails(name=f"Guest {number}", email=f"guest{number}@example.com")


def _race(worker_count: int, attempt):
    barrier = threading.Barrier(worker_count)

    def run(number: int):
        barrier.wait(timeout=10)
        return attempt(number)

    with ThreadPoolExecutor(max_workers=worker_count) as pool:
        return list(pool.map(run, range(worker_count)))


def test_simultaneous_identical_requests_admit_exactly_one(tmp_path):
    settings, repository, (room_id,) = _build_repository(tmp_path, "race.db")
    coordinator = AdmissionCoordinator(repository=repository, settings=settings)

    decisions = _race(
        3,
        lambda number: coordinator.admit(
            room_id=room_id,
            check_in=CHECK_IN,
            check_out=CHECK_OUT,
            guest=_guest(number),
        ),
    )

    accepted = [decision for decision in decisions if decision.accepted]
    rejected = [decision for decision in decisions if not decision.accepted]
    assert len(accepted) == 1
    assert len(rejected) == 2
    assert all(decision.reason == "conflict" for decision in rejected)
    assert accepted[0].guest_token

    confirmed = repository.list_confirmed_reservations(room_id)
    assert len(confirmed) == 1
    assert confirmed[0].reservation_id == accepted[0].reservation_id


def test_many_racing_workers_still_admit_one(tmp_path):
    settings, repository, (room_id,) = _build_repository(tmp_path, "race_many.db")
    coordinator = AdmissionCoordinator(repository=repository, settings=settings)

    decisions = _race(
        12,
        lambda number: coordinator.admit(
            room_id=room_id,
            check_in=CHECK_IN + timedelta(days=number % 2),
            check_out=CHECK_OUT,
            guest=_guest(number),
        ),
    )

    assert sum(1 for decision in decisions if decision.accepted) == 1
    assert repository.count_reservations() == 1


def test_requests_for_different_rooms_are_all_admitted(tmp_path):
    settings, repository, room_ids = _build_repository(tmp_path, "independent.db", room_count=4)
    coordinator = AdmissionCoordinator(repository=repository, settings=settings)

    decisions = _race(
        4,
        lambda number: coordinator.admit(
            room_id=room_ids[number],
            check_in=CHECK_IN,
            check_out=CHECK_OUT,
            guest=_guest(number),
        ),
    )

    assert all(decision.accepted for decision in decisions)
    assert {decision.room_id for decision in decisions} == set(room_ids)


def test_other_room_waits_only_for_the_held_admission(tmp_path):
    # SQLite's write lock spans the database: room B queues behind room A's
    # open admission and proceeds once it commits, within the busy timeout.
    settings, repository, (room_a, room_b) = _build_repository(tmp_path, "cross_room.db", room_count=2)
    coordinator = AdmissionCoordinator(repository=repository, settings=settings)
    writer = ReservationWriter(settings=settings)
    lock_taken = threading.Event()

    def hold_room_a():
        with repository.reservation_transaction() as transaction:
            writer.write(transaction, room_id=room_a, stay=DateRange(CHECK_IN, CHECK_OUT), guest=_guest(1))
            lock_taken.set()
            time.sleep(0.3)

    holder = threading.Thread(target=hold_room_a)
    holder.start()
    try:
        assert lock_taken.wait(timeout=5)
        started = time.perf_counter()
        decision = coordinator.admit(room_id=room_b, check_in=CHECK_IN, check_out=CHECK_OUT, guest=_guest(2))
        waited = time.perf_counter() - started
    finally:
        holder.join(timeout=5)

    assert decision.accepted
    assert waited < settings.database_busy_timeout_seconds
    assert len(repository.list_confirmed_reservations(room_a)) == 1
    assert len(repository.list_confirmed_reservations(room_b)) == 1


def test_unknown_room_is_a_validation_error(tmp_path):
    settings, repository, _ = _build_repository(tmp_path, "unknown_room.db")
    coordinator = AdmissionCoordinator(repository=repository, settings=settings)

    with pytest.raises(BookingValidationError, match="does not exist"):
        coordinator.admit(room_id="no-such-room", check_in=CHECK_IN, check_out=CHECK_OUT, guest=_guest(1))

    assert repository.count_reservations() == 0
    assert repository.count_guests() == 0


def test_corrupt_store_is_reported_as_infrastructure_error(tmp_path):
    settings = _build_test_settings(tmp_path, "corrupt.db")
    settings.database_path.write_bytes(b"this is not a sqlite database" * 200)
    repository = DataRepository(settings)
    coordinator = AdmissionCoordinator(repository=repository, settings=settings)

    with pytest.raises(BookingInfrastructureError):
        coordinator.admit(room_id="room-1", check_in=CHECK_IN, check_out=CHECK_OUT, guest=_guest(1))
    with pytest.raises(StorageUnavailableError):
        repository.count_reservations()


def test_back_to_back_stays_are_both_accepted(tmp_path):
    settings, repository, (room_id,) = _build_repository(tmp_path, "adjacent.db")
    coordinator = AdmissionCoordinator(repository=repository, settings=settings)

    first = coordinator.admit(
        room_id=room_id,
        check_in=date(2026, 5, 15),
        check_out=date(2026, 5, 18),
        guest=_guest(1),
    )
    second = coordinator.admit(
        room_id=room_id,
        check_in=date(2026, 5, 18),
        check_out=date(2026, 5, 20),
        guest=_guest(2),
    )
    overlapping = coordinator.admit(
        room_id=room_id,
        check_in=date(2026, 5, 17),
        check_out=date(2026, 5, 19),
        guest=_guest(3),
    )

    assert first.accepted and second.accepted
    assert not overlapping.accepted
    assert overlapping.conflicting_reservation_id in {first.reservation_id, second.reservation_id}


def test_cancelled_reservation_frees_the_dates(tmp_path):
    settings, repository, (room_id,) = _build_repository(tmp_path, "cancel.db")
    coordinator = AdmissionCoordinator(repository=repository, settings=settings)

    first = coordinator.admit(room_id=room_id, check_in=CHECK_IN, check_out=CHECK_OUT, guest=_guest(1))
    repository.cancel_reservation(first.reservation_id, "guest request")
    second = coordinator.admit(room_id=room_id, check_in=CHECK_IN, check_out=CHECK_OUT, guest=_guest(2))

    assert second.accepted
    assert [r.reservation_id for r in repository.list_confirmed_reservations(room_id)] == [
        second.reservation_id
    ]


@pytest.mark.parametrize(
    ("check_in", "check_out", "guest"),
    [
        (CHECK_IN, CHECK_IN, _guest(1)),
        (CHECK_OUT, CHECK_IN, _guest(1)),
        (CHECK_IN, CHECK_OUT, GuestDetails(name=" ", email="guest@example.com")),
    ],
)
def test_malformed_requests_fail_before_touching_storage(tmp_path, monkeypatch, check_in, check_out, guest):
    settings, repository, (room_id,) = _build_repository(tmp_path, "validation.db")
    coordinator = AdmissionCoordinator(repository=repository, settings=settings)

    def _must_not_lock():
        raise AssertionError("validation must run before the write lock is taken")

    monkeypatch.setattr(repository, "reservation_transaction", _must_not_lock)

    with pytest.raises(BookingValidationError):
        coordinator.admit(room_id=room_id, check_in=check_in, check_out=check_out, guest=guest)


def test_randomized_contention_never_overlaps(tmp_path):
    settings, repository, room_ids = _build_repository(tmp_path, "replay.db", room_count=3)
    coordinator = AdmissionCoordinator(repository=repository, settings=settings)
    rng = random.Random(20260515)
    requests = []
    for number in range(40):
        start = CHECK_IN + timedelta(days=rng.randint(0, 20))
        requests.append((rng.choice(room_ids), start, start + timedelta(days=rng.randint(1, 5)), number))

    def attempt(request):
        room_id, check_in, check_out, number = request
        return request, coordinator.admit(
            room_id=room_id,
            check_in=check_in,
            check_out=check_out,
            guest=_guest(number),
        )

    with ThreadPoolExecutor(max_workers=8) as pool:
        outcomes = list(pool.map(attempt, requests))

    accepted_ids = {decision.reservation_id for _, decision in outcomes if decision.accepted}
    assert repository.count_reservations() == len(accepted_ids)

    for room_id in room_ids:
        confirmed = repository.list_confirmed_reservations(room_id)
        for index, first in enumerate(confirmed):
            for second in confirmed[index + 1:]:
                assert not first.stay.overlaps(second.stay)

    # A request is only ever turned away by a reservation that really overlaps it.
    for (room_id, check_in, check_out, _), decision in outcomes:
        if decision.accepted:
            continue
        stay = DateRange(check_in, check_out)
        assert repository.list_confirmed_reservations(room_id, stay)


def test_overlap_trigger_rejects_write_that_skipped_the_check(tmp_path, monkeypatch):
    settings, repository, (room_id,) = _build_repository(tmp_path, "trigger.db")
    coordinator = AdmissionCoordinator(repository=repository, settings=settings)
    first = coordinator.admit(room_id=room_id, check_in=CHECK_IN, check_out=CHECK_OUT, guest=_guest(1))

    monkeypatch.setattr(
        "backend.services.admission_service.find_conflict",
        lambda *args, **kwargs: None,
    )
    second = coordinator.admit(
        room_id=room_id,
        check_in=CHECK_IN + timedelta(days=1),
        check_out=CHECK_OUT + timedelta(days=1),
        guest=_guest(2),
    )

    assert first.accepted
    assert not second.accepted
    assert second.reason == "conflict"
    assert repository.count_reservations() == 1


def test_storage_rejects_direct_overlapping_insert(tmp_path):
    settings, repository, (room_id,) = _build_repository(tmp_path, "direct.db")
    writer = ReservationWriter(settings=settings)
    stay = DateRange(CHECK_IN, CHECK_OUT)

    with repository.reservation_transaction() as transaction:
        writer.write(transaction, room_id=room_id, stay=stay, guest=_guest(1))

    with pytest.raises(ReservationOverlapError):
        with repository.reservation_transaction() as transaction:
            writer.write(transaction, room_id=room_id, stay=stay, guest=_guest(2))

    assert repository.count_reservations() == 1
    assert repository.count_guests() == 1


def test_cancelled_reservation_cannot_be_reactivated_or_deleted(tmp_path):
    settings, repository, (room_id,) = _build_repository(tmp_path, "final.db")
    coordinator = AdmissionCoordinator(repository=repository, settings=settings)
    decision = coordinator.admit(room_id=room_id, check_in=CHECK_IN, check_out=CHECK_OUT, guest=_guest(1))
    repository.cancel_reservation(decision.reservation_id)

    connection = sqlite3.connect(repository.database_path)
    try:
        with pytest.raises(sqlite3.IntegrityError, match="reservation_reactivation"):
            connection.execute(
                "UPDATE Reservations SET status = 'confirmed' WHERE id = ?;",
                (decision.reservation_id,),
            )
        with pytest.raises(sqlite3.IntegrityError, match="reservation_delete_forbidden"):
            connection.execute("DELETE FROM Reservations WHERE id = ?;", (decision.reservation_id,))
    finally:
        connection.close()


def test_failure_mid_admission_leaves_no_partial_state(tmp_path, monkeypatch):
    settings, repository, (room_id,) = _build_repository(tmp_path, "rollback.db")
    coordinator = AdmissionCoordinator(repository=repository, settings=settings)

    class WorkerCancelled(Exception):
        pass

    def _cancelled(self, reservation):
        raise WorkerCancelled()

    monkeypatch.setattr(ReservationTransaction, "insert_reservation", _cancelled)

    with pytest.raises(WorkerCancelled):
        coordinator.admit(room_id=room_id, check_in=CHECK_IN, check_out=CHECK_OUT, guest=_guest(1))

    assert repository.count_guests() == 0
    assert repository.count_reservations() == 0


def test_guest_tokens_are_unique_and_not_derived_from_booking_data(tmp_path):
    settings, repository, (room_id,) = _build_repository(tmp_path, "tokens.db")
    coordinator = AdmissionCoordinator(repository=repository, settings=settings)

    decisions = [
        coordinator.admit(
            room_id=room_id,
            check_in=CHECK_IN + timedelta(days=2 * number),
            check_out=CHECK_IN + timedelta(days=2 * number + 1),
            guest=_guest(1),
        )
        for number in range(25)
    ]

    tokens = [decision.guest_token for decision in decisions]
    assert all(decision.accepted for decision in decisions)
    assert len(set(tokens)) == len(tokens)
    for decision in decisions:
        assert len(decision.guest_token) >= 43
        assert decision.reservation_id not in decision.guest_token
        assert room_id not in decision.guest_token


def test_guest_token_collision_is_regenerated(tmp_path, monkeypatch):
    settings, repository, (room_id,) = _build_repository(tmp_path, "collision.db")
    writer = ReservationWriter(settings=settings)
    tokens = iter(["collision-token", "collision-token", "fresh-token"])
    monkeypatch.setattr(writer, "new_guest_token", lambda: next(tokens))
    coordinator = AdmissionCoordinator(repository=repository, settings=settings, writer=writer)

    first = coordinator.admit(room_id=room_id, check_in=CHECK_IN, check_out=CHECK_OUT, guest=_guest(1))
    second = coordinator.admit(
        room_id=room_id,
        check_in=CHECK_OUT,
        check_out=CHECK_OUT + timedelta(days=2),
        guest=_guest(2),
    )

    assert first.guest_token == "collision-token"
    assert second.accepted
    assert second.guest_token == "fresh-token"


def test_exhausted_token_retries_surface_as_infrastructure_error(tmp_path, monkeypatch):
    settings, repository, (room_id,) = _build_repository(tmp_path, "exhausted.db")
    writer = ReservationWriter(settings=settings)
    monkeypatch.setattr(writer, "new_guest_token", lambda: "always-the-same")
    coordinator = AdmissionCoordinator(repository=repository, settings=settings, writer=writer)
    coordinator.admit(room_id=room_id, check_in=CHECK_IN, check_out=CHECK_OUT, guest=_guest(1))

    with pytest.raises(BookingInfrastructureError):
        coordinator.admit(
            room_id=room_id,
            check_in=CHECK_OUT,
            check_out=CHECK_OUT + timedelta(days=1),
            guest=_guest(2),
        )
    assert repository.count_reservations() == 1
    assert repository.count_guests() == 1


def test_unreachable_storage_is_not_reported_as_conflict(tmp_path, monkeypatch):
    settings, repository, (room_id,) = _build_repository(tmp_path, "unreachable.db")
    coordinator = AdmissionCoordinator(repository=repository, settings=settings)

    def _unavailable():
        raise StorageUnavailableError("database is locked")

    monkeypatch.setattr(repository, "reservation_transaction", _unavailable)

    with pytest.raises(BookingInfrastructureError):
        coordinator.admit(room_id=room_id, check_in=CHECK_IN, check_out=CHECK_OUT, guest=_guest(1))


def test_lock_wait_is_bounded_by_busy_timeout(tmp_path):
    settings, repository, (room_id,) = _build_repository(
        tmp_path,
        "timeout.db",
        database_busy_timeout_seconds=0.2,
    )
    coordinator = AdmissionCoordinator(repository=repository, settings=settings)

    blocker = sqlite3.connect(repository.database_path, isolation_level=None)
    try:
        blocker.execute("BEGIN IMMEDIATE;")
        with pytest.raises(BookingInfrastructureError):
            coordinator.admit(room_id=room_id, check_in=CHECK_IN, check_out=CHECK_OUT, guest=_guest(1))
        blocker.execute("ROLLBACK;")
    finally:
        blocker.close()

    decision = coordinator.admit(room_id=room_id, check_in=CHECK_IN, check_out=CHECK_OUT, guest=_guest(1))
    assert decision.accepted
