"""Front-desk staff authentication with a shared staff token."""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Callable, Optional

from backend.utils.config import Settings, get_settings


class AuthenticationError(Exception):
    """Base authentication failure."""


class StaffTokenNotConfiguredError(AuthenticationError):
    """Raised when STAFF_TOKEN is missing."""


class InvalidStaffTokenError(AuthenticationError):
    """Raised when a staff token or session bearer is invalid."""


class StaffAuthService:
    """Exchanges the staff token for short-lived bearer sessions."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._sessions: dict[str, datetime] = {}
        self._lock = Lock()

    @property
    def auth_enabled(self) -> bool:
        return bool(self._settings.staff_token)

    def _expected_token(self) -> str:
        if not self._settings.staff_token:
            raise StaffTokenNotConfiguredError(
                "STAFF_TOKEN is not configured. Set STAFF_TOKEN in environment variables."
            )
        return self._settings.staff_token

    def login(self, provided_staff_token: str) -> str:
        expected = self._expected_token()
        if not secrets.compare_digest(provided_staff_token, expected):
            raise InvalidStaffTokenError("Invalid staff token")
        session_token = secrets.token_urlsafe(32)
        expires_at = self._clock() + timedelta(minutes=self._settings.staff_session_ttl_minutes)
        with self._lock:
            self._sessions[session_token] = expires_at
        return session_token

    def validate_bearer_token(self, bearer_token: str) -> None:
        if not self.auth_enabled:
            return
        now = self._clock()
        with self._lock:
            # drop expired sessions so the table does not grow unbounded
            for token, expires_at in list(self._sessions.items()):
                if expires_at <= now:
                    del self._sessions[token]
            known = any(
                secrets.compare_digest(bearer_token, token) for token in self._sessions
            )
        if not known:
            raise InvalidStaffTokenError("Invalid or expired bearer token. Login first.")
