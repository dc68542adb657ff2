"""Login lockout per (email, client ip), kept in the SQLite state database.

``AuthService.login`` drives the limiter: ``check`` before the password is
compared, ``record_failure`` after a rejected login and ``reset`` after a
successful one. Lockouts surface as ``RateLimitedError``; auditing them is
the service's job.
"""

from __future__ import annotations

import sqlite3
import time
from dataclasses import dataclass
from pathlib import Path
from threading import Lock
from typing import Callable

from aegisx.auth.errors import RateLimitedError
from aegisx.core.migrations import apply_migrations

Principal = tuple[str, str]


def _principal(email: str, client_ip: str) -> Principal:
    return email.strip().lower(), client_ip.strip() or "unknown"


@dataclass(frozen=True)
class FailureWindow:
    """Failed logins counted for one principal."""

    failed_attempts: int
    first_failed_at: int
    locked_until: int = 0

    def is_locked(self, now: int) -> bool:
        return self.locked_until > now

    def is_over(self, now: int, window_seconds: int) -> bool:
        """A window ends when it ages out or when its lock has run out."""
        if self.locked_until:
            return self.locked_until <= now
        return now - self.first_failed_at > window_seconds


class LoginRateLimiter:
    """Locks a principal for ``lock_seconds`` after ``max_attempts`` failures.

    Failures count inside a sliding ``window_seconds`` that starts with the
    first failure. An expired lock starts a fresh window.
    """

    def __init__(
        self,
        *,
        database_path: Path,
        max_attempts: int,
        window_seconds: int,
        lock_seconds: int,
        clock: Callable[[], float] = time.time,
    ) -> None:
        apply_migrations(database_path)
        self._connection = sqlite3.connect(str(database_path), check_same_thread=False)
        self._connection.row_factory = sqlite3.Row
        self._lock = Lock()
        self._clock = clock
        self._max_attempts = max(1, int(max_attempts))
        self._window_seconds = max(1, int(window_seconds))
        self._lock_seconds = max(1, int(lock_seconds))

    def _now(self) -> int:
        return int(self._clock())

    def _load(self, principal: Principal) -> FailureWindow | None:
        row = self._connection.execute(
            "SELECT failed_attempts, first_failed_at, locked_until "
            "FROM auth_login_attempts WHERE email = ? AND client_ip = ?",
            principal,
        ).fetchone()
        if row is None:
            return None
        return FailureWindow(
            failed_attempts=int(row["failed_attempts"] or 0),
            first_failed_at=int(row["first_failed_at"] or 0),
            locked_until=int(row["locked_until"] or 0),
        )

    def _store(self, principal: Principal, window: FailureWindow, now: int) -> None:
        self._connection.execute(
            """
            INSERT INTO auth_login_attempts(
              email, client_ip, failed_attempts, first_failed_at, last_failed_at, locked_until
            ) VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(email, client_ip) DO UPDATE SET
              failed_attempts = excluded.failed_attempts,
              first_failed_at = excluded.first_failed_at,
              last_failed_at = excluded.last_failed_at,
              locked_until = excluded.locked_until
            """,
            (*principal, window.failed_attempts, window.first_failed_at, now, window.locked_until),
        )
        self._connection.commit()

    def _clear(self, principal: Principal) -> None:
        self._connection.execute(
            "DELETE FROM auth_login_attempts WHERE email = ? AND client_ip = ?", principal
        )
        self._connection.commit()

    def check(self, email: str, client_ip: str) -> None:
        """Raise ``RateLimitedError`` while the principal is locked."""
        now = self._now()
        principal = _principal(email, client_ip)
        with self._lock:
            window = self._load(principal)
            if window is None:
                return
            if window.is_locked(now):
                raise RateLimitedError(window.locked_until - now)
            if window.is_over(now, self._window_seconds):
                self._clear(principal)

    def record_failure(self, email: str, client_ip: str) -> bool:
        """Count a failed login; ``True`` when this failure locks the principal."""
        now = self._now()
        principal = _principal(email, client_ip)
        with self._lock:
            window = self._load(principal)
            if window is None or window.is_over(now, self._window_seconds):
                window = FailureWindow(failed_attempts=1, first_failed_at=now)
            else:
                window = FailureWindow(
                    failed_attempts=window.failed_attempts + 1,
                    first_failed_at=window.first_failed_at,
                )
            locks = window.failed_attempts >= self._max_attempts
            if locks:
                window = FailureWindow(
                    failed_attempts=window.failed_attempts,
                    first_failed_at=window.first_failed_at,
                    locked_until=now + self._lock_seconds,
                )
            self._store(principal, window, now)
        return locks

    def reset(self, email: str, client_ip: str) -> None:
        """Forget the failures of a principal after a successful login."""
        with self._lock:
            self._clear(_principal(email, client_ip))

    def close(self) -> None:
        with self._lock:
            self._connection.close()
