"""
main.py: Server launcher and entry point.

Run this file to start the booking API:

    python main.py

This file does NOT contain application logic. See app.py for the FastAPI
application, service wiring, and startup sequence.

Direct uvicorn usage:
    uvicorn app:app --reload
"""

from __future__ import annotations

import os

import uvicorn


HOST = os.getenv("HOST", "127.0.0.1")
PORT = int(os.getenv("PORT", "8000"))
# Each worker process opens its own SQLite connections to the same file.
WORKERS = int(os.getenv("WEB_CONCURRENCY", "1"))


def main() -> None:
    """Start the guest-house booking API."""
    print("=" * 60)
    print("  Guest House Booking API")
    print("=" * 60)
    print(f"  Server   : http://{HOST}:{PORT}")
    print(f"  API docs : http://{HOST}:{PORT}/docs")
    print("=" * 60)
    print("  Press CTRL+C to stop\n")

    uvicorn.run(
        "app:app",       # points to app.py → app object
        host=HOST,
        port=PORT,
        workers=WORKERS,
        log_level="info",
    )


if __name__ == "__main__":
    main()
