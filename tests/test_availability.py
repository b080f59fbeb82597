from __future__ import annotations

from dataclasses import replace
from datetime import date

import pytest

from backend.domain.models import DateRange, GuestDetails
from backend.repository.data_repository import (
    DEMO_ROOM_TYPES,
    DataRepository,
    StorageUnavailableError,
    demo_room_id,
)
from backend.services.admission_service import AdmissionCoordinator
from backend.services.availability_service import (
    AvailabilityService,
    AvailabilityStorageError,
    AvailabilityValidationError,
)
from backend.utils.config import get_settings


ROOM_TYPE_IDS = {name: type_id for type_id, name, _, _ in DEMO_ROOM_TYPES}


def _build_test_settings(tmp_path, filename: str):
    get_settings.cache_clear()
    base = get_settings()
    return replace(base, database_path=tmp_path / filename, occupancy_max_window_days=31)


def _build_services(tmp_path, filename: str):
    settings = _build_test_settings(tmp_path, filename)
    repository = DataRepository(settings)
    repository.initialize_database()
    repository.seed_demo_inventory()
    coordinator = AdmissionCoordinator(repository=repository, settings=settings)
    return AvailabilityService(repository=repository, settings=settings), coordinator, repository


def _book(coordinator: AdmissionCoordinator, room_number: str, check_in: date, check_out: date):
    decision = coordinator.admit(
        room_id=demo_room_id(room_number),
        check_in=check_in,
        check_out=check_out,
        guest=GuestDetails(name=f"Guest {room_number}", email=f"guest{room_number}@example.com"),
    )
    assert decision.accepted
    return decision


def test_search_counts_free_rooms_per_type(tmp_path):
    service, coordinator, _ = _build_services(tmp_path, "search.db")
    _book(coordinator, "101", date(2026, 5, 15), date(2026, 5, 18))

    results = {item.name: item for item in service.search(date(2026, 5, 16), date(2026, 5, 17))}

    assert results["Standard Room"].available_count == 0
    assert results["Deluxe Room"].available_count == 2
    assert set(results["Deluxe Room"].room_ids) == {demo_room_id("201"), demo_room_id("202")}


def test_search_respects_party_size_and_room_status(tmp_path):
    service, _, repository = _build_services(tmp_path, "party.db")
    repository.set_room_status(demo_room_id("401"), "maintenance")

    results = {item.name: item.available_count for item in service.search(date(2026, 5, 15), date(2026, 5, 18), guests=3)}

    assert results == {
        "Deluxe Room": 0,
        "Executive Suite": 1,
        "Family Room": 0,
        "Presidential Suite": 1,
        "Standard Room": 0,
    }


def test_search_frees_rooms_from_adjacent_stays(tmp_path):
    service, coordinator, _ = _build_services(tmp_path, "adjacent.db")
    _book(coordinator, "101", date(2026, 5, 10), date(2026, 5, 15))

    results = {item.name: item for item in service.search(date(2026, 5, 15), date(2026, 5, 16))}
    assert results["Standard Room"].available_count == 1


def test_search_rejects_bad_parameters(tmp_path):
    service, _, _ = _build_services(tmp_path, "bad_search.db")

    with pytest.raises(AvailabilityValidationError):
        service.search(date(2026, 5, 15), date(2026, 5, 15))
    with pytest.raises(AvailabilityValidationError):
        service.search(date(2026, 5, 15), date(2026, 5, 16), guests=0)


def test_search_storage_failure_is_reported(tmp_path, monkeypatch):
    service, _, repository = _build_services(tmp_path, "search_down.db")

    def _unavailable():
        raise StorageUnavailableError("disk I/O error")

    monkeypatch.setattr(repository, "list_room_types", _unavailable)

    with pytest.raises(AvailabilityStorageError):
        service.search(date(2026, 5, 15), date(2026, 5, 16))


def test_occupancy_report_counts_room_nights(tmp_path):
    service, coordinator, repository = _build_services(tmp_path, "occupancy.db")
    _book(coordinator, "101", date(2026, 5, 15), date(2026, 5, 18))
    _book(coordinator, "201", date(2026, 5, 16), date(2026, 5, 17))
    _book(coordinator, "401", date(2026, 5, 10), date(2026, 5, 16))
    _book(coordinator, "501", date(2026, 5, 19), date(2026, 5, 25))
    cancelled = _book(coordinator, "301", date(2026, 5, 15), date(2026, 5, 20))
    repository.cancel_reservation(cancelled.reservation_id)

    report = service.occupancy_report(date(2026, 5, 15), date(2026, 5, 20))

    assert report.start == "2026-05-15"
    assert report.end == "2026-05-20"
    assert len(report.rows) == 5 * len(DEMO_ROOM_TYPES)
    cells = {(row.night, row.room_type_name): row for row in report.rows}

    for night in ("2026-05-15", "2026-05-16", "2026-05-17"):
        assert cells[(night, "Standard Room")].occupancy_rate == 1.0
    assert cells[("2026-05-18", "Standard Room")].occupied_rooms == 0
    assert cells[("2026-05-16", "Deluxe Room")].occupied_rooms == 1
    assert cells[("2026-05-16", "Deluxe Room")].total_rooms == 2
    assert cells[("2026-05-16", "Deluxe Room")].occupancy_rate == 0.5
    assert cells[("2026-05-15", "Family Room")].occupied_rooms == 1
    assert cells[("2026-05-16", "Family Room")].occupied_rooms == 0
    assert cells[("2026-05-19", "Presidential Suite")].occupied_rooms == 1
    assert all(row.occupied_rooms == 0 for row in report.rows if row.room_type_name == "Executive Suite")
    # 6 occupied room-nights out of 6 rooms x 5 nights
    assert report.overall_occupancy_rate == 0.2


def test_occupancy_report_for_empty_hotel(tmp_path):
    service, _, _ = _build_services(tmp_path, "empty.db")

    report = service.occupancy_report(date(2026, 5, 15), date(2026, 5, 17))

    assert len(report.rows) == 2 * len(DEMO_ROOM_TYPES)
    assert all(row.occupied_rooms == 0 and row.occupancy_rate == 0.0 for row in report.rows)
    assert report.overall_occupancy_rate == 0.0


def test_occupancy_report_window_is_bounded(tmp_path):
    service, _, _ = _build_services(tmp_path, "window.db")

    with pytest.raises(AvailabilityValidationError):
        service.occupancy_report(date(2026, 5, 1), date(2026, 7, 1))
    with pytest.raises(AvailabilityValidationError):
        service.occupancy_report(date(2026, 5, 2), date(2026, 5, 1))


def test_room_reservations_lists_confirmed_only(tmp_path):
    service, coordinator, repository = _build_services(tmp_path, "room_list.db")
    kept = _book(coordinator, "101", date(2026, 5, 15), date(2026, 5, 18))
    dropped = _book(coordinator, "101", date(2026, 5, 20), date(2026, 5, 22))
    repository.cancel_reservation(dropped.reservation_id)

    everything = service.room_reservations(demo_room_id("101"))
    windowed = service.room_reservations(
        demo_room_id("101"),
        DateRange(date(2026, 5, 18), date(2026, 5, 25)),
    )

    assert [reservation.reservation_id for reservation in everything] == [kept.reservation_id]
    assert windowed == []
