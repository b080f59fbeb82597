#!/usr/bin/env python3
"""Fire simultaneous identical bookings at a running server and audit the outcome.

    python scripts/double_booking_probe.py --requests 3

Expected against a fresh database: one 200 and the rest 409.
"""

from __future__ import annotations

import argparse
import sys
import threading
import time
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from datetime import date, timedelta

import requests


DEFAULT_URL = "http://127.0.0.1:8000/bookings"
STANDARD_ROOM_TYPE_ID = "22cea29f-51e6-438c-848e-211a046a9e28"


def _payload(check_in: str, check_out: str, room_type_id: str) -> dict[str, str]:
    return {
        "checkIn": check_in,
        "checkOut": check_out,
        "roomTypeId": room_type_id,
        "guestName": "Race Condition Tester",
        "guestEmail": "race@example.com",
        "guestPhone": "+1234567890",
    }


def _fire(
    request_number: int,
    url: str,
    payload: dict[str, str],
    barrier: threading.Barrier,
) -> int:
    barrier.wait()
    started = time.perf_counter()
    try:
        response = requests.post(url, json=payload, timeout=15)
    except requests.exceptions.RequestException as exc:
        print(f"[Req {request_number}] failed hard: {exc}")
        return 0
    elapsed_ms = (time.perf_counter() - started) * 1000
    print(
        f"[Req {request_number}] {response.status_code} in {elapsed_ms:.0f}ms - "
        f"{response.text[:100]}"
    )
    return response.status_code


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--url", default=DEFAULT_URL)
    parser.add_argument("--requests", type=int, default=3)
    parser.add_argument("--check-in", type=date.fromisoformat, default=date.today() + timedelta(days=30))
    parser.add_argument("--nights", type=int, default=3)
    parser.add_argument("--room-type-id", default=STANDARD_ROOM_TYPE_ID)
    args = parser.parse_args(argv)

    check_out = args.check_in + timedelta(days=args.nights)
    payload = _payload(args.check_in.isoformat(), check_out.isoformat(), args.room_type_id)
    barrier = threading.Barrier(args.requests)
    print(f"Firing {args.requests} simultaneous booking requests for the same room and dates...")
    with ThreadPoolExecutor(max_workers=args.requests) as pool:
        statuses = list(
            pool.map(
                lambda number: _fire(number, args.url, payload, barrier),
                range(1, args.requests + 1),
            )
        )

    counts = Counter(statuses)
    print("\n--- Audit Results ---")
    print(f"Successful bookings (expected 1): {counts[200]}")
    print(f"Rejected conflicts (expected {args.requests - 1}): {counts[409]}")
    other = {code: count for code, count in counts.items() if code not in (200, 409)}
    if other:
        print(f"Other outcomes: {other}")
    return 0 if counts[200] == 1 and counts[409] == args.requests - 1 else 1


if __name__ == "__main__":
    sys.exit(main())
