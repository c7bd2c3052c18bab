"""Profile stores holding each learner's point balance and unlocked content."""

from __future__ import annotations

import sqlite3
import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol

from .errors import StoreError

SCHEMA_VERSION = 1


@dataclass(frozen=True)
class Profile:
    """Learner profile record."""

    id: int
    name: str


@dataclass(frozen=True)
class LedgerState:
    """Spendable balance and the content ids a learner may access."""

    point_balance: int = 0
    unlocked_ids: frozenset[str] = field(default_factory=frozenset)

    def is_unlocked(self, content_id: str) -> bool:
        return content_id in self.unlocked_ids


class ProfileStore(Protocol):
    """Authoritative document store for ledger state.

    ``write`` sets the balance and adds the unlocked ids in one update and
    raises ``StoreError`` on failure, including timeouts. Unlocked ids are
    never removed. When ``expected_balance`` is given the write only applies
    if the stored balance still equals it; otherwise ``StoreError`` is raised.
    """

    def read(self, user_id: int) -> LedgerState: ...

    def write(self, user_id: int, state: LedgerState, *, expected_balance: int | None = None) -> None: ...


class InMemoryProfileStore:
    """Dict-backed store for embedding and tests."""

    def __init__(self) -> None:
        self._documents: dict[int, LedgerState] = {}
        self._lock = threading.Lock()

    def seed(self, user_id: int, state: LedgerState) -> None:
        with self._lock:
            self._documents[user_id] = state

    def read(self, user_id: int) -> LedgerState:
        with self._lock:
            state = self._documents.get(user_id)
        if state is None:
            raise StoreError(f"Unknown profile: {user_id}")
        return state

    def write(self, user_id: int, state: LedgerState, *, expected_balance: int | None = None) -> None:
        if state.point_balance < 0:
            raise StoreError("Point balance cannot be negative.")
        with self._lock:
            stored = self._documents.get(user_id)
            if stored is None:
                raise StoreError(f"Unknown profile: {user_id}")
            if expected_balance is not None and stored.point_balance != expected_balance:
                raise StoreError(f"Balance of profile {user_id} changed since it was read.")
            self._documents[user_id] = LedgerState(
                point_balance=state.point_balance,
                unlocked_ids=stored.unlocked_ids | state.unlocked_ids,
            )


class SQLiteProfileStore:
    """SQLite-backed profile store with forward-only migrations."""

    def __init__(self, db_path: Path | str, timeout: float = 5.0) -> None:
        """Open the database and bring the schema up to date."""
        if isinstance(db_path, Path):
            db_path.parent.mkdir(parents=True, exist_ok=True)
            target = str(db_path)
        else:
            target = db_path
        self._conn = sqlite3.connect(target, timeout=timeout, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._apply_migrations()

    def _apply_migrations(self) -> None:
        """Apply forward-only schema migrations to latest version."""
        current = int(self._conn.execute("PRAGMA user_version").fetchone()[0])
        if current > SCHEMA_VERSION:
            raise RuntimeError(f"Database schema version {current} is newer than supported {SCHEMA_VERSION}.")

        with self._conn:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS schema_migrations (
                    version INTEGER PRIMARY KEY,
                    applied_at TEXT NOT NULL
                )
                """)

        for version in range(current + 1, SCHEMA_VERSION + 1):
            if version == 1:
                self._migrate_to_v1()
            with self._conn:
                self._conn.execute(f"PRAGMA user_version = {version}")
                self._conn.execute(
                    "INSERT OR REPLACE INTO schema_migrations (version, applied_at) VALUES (?, ?)",
                    (version, datetime.now(UTC).isoformat()),
                )

    def _migrate_to_v1(self) -> None:
        """Create profile, unlock and completion tables."""
        with self._conn:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS profiles (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL UNIQUE,
                    point_balance INTEGER NOT NULL DEFAULT 0 CHECK (point_balance >= 0),
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """)
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS unlocked_content (
                    profile_id INTEGER NOT NULL,
                    content_id TEXT NOT NULL,
                    unlocked_at TEXT NOT NULL,
                    PRIMARY KEY (profile_id, content_id)
                )
                """)
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS case_completions (
                    profile_id INTEGER NOT NULL,
                    case_id TEXT NOT NULL,
                    points_awarded INTEGER NOT NULL,
                    completed_at TEXT NOT NULL,
                    PRIMARY KEY (profile_id, case_id)
                )
                """)

    def list_profiles(self) -> list[Profile]:
        """Return profiles ordered by name."""
        with self._lock:
            rows = self._conn.execute("SELECT id, name FROM profiles ORDER BY name").fetchall()
        return [Profile(id=int(row["id"]), name=str(row["name"])) for row in rows]

    def create_profile(self, name: str, starting_points: int = 0) -> Profile:
        """Create a new profile with an opening balance."""
        if starting_points < 0:
            raise ValueError("Starting points cannot be negative.")
        now = datetime.now(UTC).isoformat()
        with self._lock, self._conn:
            cursor = self._conn.execute(
                "INSERT INTO profiles (name, point_balance, created_at, updated_at) VALUES (?, ?, ?, ?)",
                (name, starting_points, now, now),
            )
        row_id = cursor.lastrowid
        if row_id is None:
            raise RuntimeError("Could not create profile.")
        return Profile(id=int(row_id), name=name)

    def get_profile(self, profile_id: int) -> Profile | None:
        """Get one profile by id."""
        with self._lock:
            row = self._conn.execute("SELECT id, name FROM profiles WHERE id = ?", (profile_id,)).fetchone()
        if row is None:
            return None
        return Profile(id=int(row["id"]), name=str(row["name"]))

    def delete_profile(self, profile_id: int) -> bool:
        """Delete profile with its unlocks and completions."""
        with self._lock, self._conn:
            self._conn.execute("DELETE FROM unlocked_content WHERE profile_id = ?", (profile_id,))
            self._conn.execute("DELETE FROM case_completions WHERE profile_id = ?", (profile_id,))
            cursor = self._conn.execute("DELETE FROM profiles WHERE id = ?", (profile_id,))
        return cursor.rowcount > 0

    def read(self, user_id: int) -> LedgerState:
        """Return the stored ledger document for a profile."""
        try:
            with self._lock:
                row = self._conn.execute("SELECT point_balance FROM profiles WHERE id = ?", (user_id,)).fetchone()
                unlocked = self._conn.execute(
                    "SELECT content_id FROM unlocked_content WHERE profile_id = ?",
                    (user_id,),
                ).fetchall()
        except sqlite3.Error as exc:
            raise StoreError(f"Could not read profile {user_id}: {exc}") from exc
        if row is None:
            raise StoreError(f"Unknown profile: {user_id}")
        return LedgerState(
            point_balance=int(row["point_balance"]),
            unlocked_ids=frozenset(str(item["content_id"]) for item in unlocked),
        )

    def write(self, user_id: int, state: LedgerState, *, expected_balance: int | None = None) -> None:
        """Persist balance and unlocked ids in a single transaction.

        With ``expected_balance`` the update is a compare-and-set on the stored
        balance, so a writer holding a stale read cannot overwrite a newer one.
        """
        if state.point_balance < 0:
            raise StoreError("Point balance cannot be negative.")
        now = datetime.now(UTC).isoformat()
        try:
            with self._lock, self._conn:
                if expected_balance is None:
                    cursor = self._conn.execute(
                        "UPDATE profiles SET point_balance = ?, updated_at = ? WHERE id = ?",
                        (state.point_balance, now, user_id),
                    )
                else:
                    cursor = self._conn.execute(
                        "UPDATE profiles SET point_balance = ?, updated_at = ? WHERE id = ? AND point_balance = ?",
                        (state.point_balance, now, user_id, expected_balance),
                    )
                if cursor.rowcount == 0:
                    exists = self._conn.execute("SELECT 1 FROM profiles WHERE id = ?", (user_id,)).fetchone()
                    if exists is None:
                        raise StoreError(f"Unknown profile: {user_id}")
                    raise StoreError(f"Balance of profile {user_id} changed since it was read.")
                self._conn.executemany(
                    """
                    INSERT OR IGNORE INTO unlocked_content (profile_id, content_id, unlocked_at)
                    VALUES (?, ?, ?)
                    """,
                    [(user_id, content_id, now) for content_id in sorted(state.unlocked_ids)],
                )
        except sqlite3.Error as exc:
            raise StoreError(f"Could not write profile {user_id}: {exc}") from exc

    def completed_case_ids(self, profile_id: int) -> set[str]:
        """Return ids of cases the profile has resolved."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT case_id FROM case_completions WHERE profile_id = ?",
                (profile_id,),
            ).fetchall()
        return {str(row["case_id"]) for row in rows}

    def record_case_completion(self, profile_id: int, case_id: str, points: int) -> bool:
        """Record a resolved case and credit its reward once. Returns False on repeats."""
        if points < 0:
            raise ValueError("Case reward cannot be negative.")
        now = datetime.now(UTC).isoformat()
        try:
            with self._lock, self._conn:
                cursor = self._conn.execute(
                    """
                    INSERT OR IGNORE INTO case_completions (profile_id, case_id, points_awarded, completed_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (profile_id, case_id, points, now),
                )
                if cursor.rowcount == 0:
                    return False
                updated = self._conn.execute(
                    "UPDATE profiles SET point_balance = point_balance + ?, updated_at = ? WHERE id = ?",
                    (points, now, profile_id),
                )
                if updated.rowcount == 0:
                    raise StoreError(f"Unknown profile: {profile_id}")
        except sqlite3.Error as exc:
            raise StoreError(f"Could not record completion for profile {profile_id}: {exc}") from exc
        return True

    def list_unlock_rows(self, profile_id: int) -> list[dict[str, object]]:
        """Return unlock rows for export."""
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT content_id, unlocked_at
                FROM unlocked_content
                WHERE profile_id = ?
                ORDER BY unlocked_at, content_id
                """,
                (profile_id,),
            ).fetchall()
        return [{"content_id": str(row["content_id"]), "unlocked_at": str(row["unlocked_at"])} for row in rows]

    def list_completion_rows(self, profile_id: int) -> list[dict[str, object]]:
        """Return case completion rows for export."""
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT case_id, points_awarded, completed_at
                FROM case_completions
                WHERE profile_id = ?
                ORDER BY completed_at, case_id
                """,
                (profile_id,),
            ).fetchall()
        return [
            {
                "case_id": str(row["case_id"]),
                "points_awarded": int(row["points_awarded"]),
                "completed_at": str(row["completed_at"]),
            }
            for row in rows
        ]

    def replace_profile_data(
        self,
        profile_id: int,
        point_balance: int,
        unlock_rows: list[dict[str, object]],
        completion_rows: list[dict[str, object]],
    ) -> None:
        """Overwrite a profile's ledger and completions with imported rows."""
        now = datetime.now(UTC).isoformat()
        with self._lock, self._conn:
            self._conn.execute(
                "UPDATE profiles SET point_balance = ?, updated_at = ? WHERE id = ?",
                (max(0, point_balance), now, profile_id),
            )
            self._conn.execute("DELETE FROM unlocked_content WHERE profile_id = ?", (profile_id,))
            self._conn.execute("DELETE FROM case_completions WHERE profile_id = ?", (profile_id,))
            self._conn.executemany(
                "INSERT OR IGNORE INTO unlocked_content (profile_id, content_id, unlocked_at) VALUES (?, ?, ?)",
                [(profile_id, row["content_id"], row["unlocked_at"]) for row in unlock_rows],
            )
            self._conn.executemany(
                """
                INSERT OR IGNORE INTO case_completions (profile_id, case_id, points_awarded, completed_at)
                VALUES (?, ?, ?, ?)
                """,
                [
                    (profile_id, row["case_id"], row["points_awarded"], row["completed_at"])
                    for row in completion_rows
                ],
            )

    def close(self) -> None:
        """Close db connection."""
        self._conn.close()

    def __del__(self) -> None:  # pragma: no cover
        """Best-effort connection cleanup."""
        try:
            self.close()
        except Exception:
            pass
