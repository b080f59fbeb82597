from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace

import pytest

from backend.repository.data_repository import (
    DEMO_ROOM_TYPES,
    DEMO_ROOMS,
    DataRepository,
    StorageUnavailableError,
)
from backend.utils.config import get_settings


def _build_test_settings(tmp_path, filename: str):
    get_settings.cache_clear()
    base = get_settings()
    return replace(base, database_path=tmp_path / filename)


def test_workers_seeding_together_create_inventory_once(tmp_path):
    settings = _build_test_settings(tmp_path, "seed_race.db")
    DataRepository(settings).initialize_database()
    workers = 4
    barrier = threading.Barrier(workers)

    def seed(_: int):
        repository = DataRepository(settings)
        barrier.wait(timeout=10)
        try:
            repository.seed_demo_inventory()
        except Exception as exc:
            return exc
        return None

    with ThreadPoolExecutor(max_workers=workers) as pool:
        failures = [outcome for outcome in pool.map(seed, range(workers)) if outcome is not None]

    repository = DataRepository(settings)
    assert failures == []
    assert len(repository.list_rooms()) == len(DEMO_ROOMS)
    assert len(repository.list_room_types()) == len(DEMO_ROOM_TYPES)


def test_seed_is_idempotent(tmp_path):
    repository = DataRepository(_build_test_settings(tmp_path, "seed_twice.db"))
    repository.initialize_database()

    repository.seed_demo_inventory()
    repository.seed_demo_inventory()

    assert len(repository.list_rooms()) == len(DEMO_ROOMS)


def test_non_database_file_is_reported_as_unavailable(tmp_path):
    settings = _build_test_settings(tmp_path, "not_a_db.db")
    settings.database_path.write_bytes(b"this is not a sqlite database" * 200)
    repository = DataRepository(settings)

    with pytest.raises(StorageUnavailableError):
        repository.list_rooms()
    with pytest.raises(StorageUnavailableError):
        repository.get_reservation("anything")
