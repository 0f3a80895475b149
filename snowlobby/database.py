"""Player account store: sign-up, id lookup and login."""

from __future__ import annotations

import hashlib
import hmac
import os
import sqlite3
import threading
from typing import Optional

from snowlobby.client import LoginInfo

NAME_LEN = 21
_ITERATIONS = 100_000

_SCHEMA = """
CREATE TABLE IF NOT EXISTS accounts (
    user_id TEXT PRIMARY KEY,
    salt BLOB NOT NULL,
    digest BLOB NOT NULL,
    wins INTEGER NOT NULL DEFAULT 0,
    losses INTEGER NOT NULL DEFAULT 0,
    color INTEGER NOT NULL DEFAULT 0,
    grade INTEGER NOT NULL DEFAULT 0
)
"""


def _digest(secret: str, salt: bytes) -> bytes:
    return hashlib.pbkdf2_hmac("sha256", secret.encode("utf-8"), salt, _ITERATIONS)


class AccountDatabase:
    """Accounts kept in an SQLite database, ``:memory:`` by default."""

    def __init__(self, path: str = ":memory:") -> None:
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(path, check_same_thread=False)
        with self._conn:
            self._conn.execute(_SCHEMA)

    def __enter__(self) -> "AccountDatabase":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def login(self, user_id: str, password: str) -> Optional[LoginInfo]:
        """Return the account's record, or None when the id or password is wrong."""
        with self._lock:
            row = self._conn.execute(
                "SELECT salt, digest, wins, losses, color, grade"
                " FROM accounts WHERE user_id = ?",
                (user_id,),
            ).fetchone()
        if row is None:
            return None
        salt, digest, wins, losses, color, grade = row
        if not hmac.compare_digest(_digest(password, salt), digest):
            return None
        return LoginInfo(name=user_id, wins=wins, losses=losses, color=color, grade=grade)

    def check_id(self, user_id: str) -> bool:
        """True when an account with this id exists."""
        with self._lock:
            row = self._conn.execute(
                "SELECT 1 FROM accounts WHERE user_id = ?", (user_id,)
            ).fetchone()
        return row is not None

    def sign_up(self, user_id: str, password: str) -> bool:
        """Create an account; False when the id is already taken."""
        if not user_id or len(user_id.encode("utf-8")) >= NAME_LEN:
            raise ValueError(f"user id must be 1 to {NAME_LEN - 1} bytes")
        salt = os.urandom(16)
        try:
            with self._lock, self._conn:
                self._conn.execute(
                    "INSERT INTO accounts (user_id, salt, digest) VALUES (?, ?, ?)",
                    (user_id, salt, _digest(password, salt)),
                )
        except sqlite3.IntegrityError:
            return False
        return True

    def close(self) -> None:
        with self._lock:
            self._conn.close()