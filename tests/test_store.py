import sqlite3
from pathlib import Path

import pytest

from codecase.errors import StoreError
from codecase.store import SCHEMA_VERSION, InMemoryProfileStore, LedgerState, SQLiteProfileStore


def test_profiles_round_trip() -> None:
    store = SQLiteProfileStore(":memory:")
    profile = store.create_profile("alice", starting_points=40)
    assert store.list_profiles()[0].name == "alice"
    assert store.get_profile(profile.id) == profile
    assert store.read(profile.id) == LedgerState(point_balance=40)


def test_duplicate_profile_name_is_rejected() -> None:
    store = SQLiteProfileStore(":memory:")
    store.create_profile("alice")
    with pytest.raises(sqlite3.IntegrityError):
        store.create_profile("alice")


def test_negative_starting_points_rejected() -> None:
    store = SQLiteProfileStore(":memory:")
    with pytest.raises(ValueError):
        store.create_profile("neg", starting_points=-1)


def test_write_replaces_balance_and_adds_unlocks() -> None:
    store = SQLiteProfileStore(":memory:")
    profile = store.create_profile("bob", starting_points=500)
    store.write(profile.id, LedgerState(point_balance=300, unlocked_ids=frozenset({"case-2"})))
    assert store.read(profile.id) == LedgerState(point_balance=300, unlocked_ids=frozenset({"case-2"}))


def test_write_unknown_profile_raises_store_error() -> None:
    store = SQLiteProfileStore(":memory:")
    with pytest.raises(StoreError):
        store.write(404, LedgerState(point_balance=1))
    with pytest.raises(StoreError):
        store.read(404)


def test_write_rejects_negative_balance() -> None:
    store = SQLiteProfileStore(":memory:")
    profile = store.create_profile("carol")
    with pytest.raises(StoreError):
        store.write(profile.id, LedgerState(point_balance=-10))
    assert store.read(profile.id).point_balance == 0


def test_write_on_closed_connection_surfaces_store_error() -> None:
    store = SQLiteProfileStore(":memory:")
    profile = store.create_profile("dana")
    store.close()
    with pytest.raises(StoreError):
        store.write(profile.id, LedgerState(point_balance=5))


def test_case_completion_credits_once() -> None:
    store = SQLiteProfileStore(":memory:")
    profile = store.create_profile("erin", starting_points=10)
    assert store.record_case_completion(profile.id, "case-a", 750) is True
    assert store.record_case_completion(profile.id, "case-a", 750) is False
    assert store.read(profile.id).point_balance == 760
    assert store.completed_case_ids(profile.id) == {"case-a"}


def test_delete_profile_removes_ledger_rows() -> None:
    store = SQLiteProfileStore(":memory:")
    profile = store.create_profile("remove-me", starting_points=500)
    store.write(profile.id, LedgerState(point_balance=100, unlocked_ids=frozenset({"case-2"})))
    store.record_case_completion(profile.id, "case-a", 10)

    assert store.delete_profile(profile.id) is True
    assert store.get_profile(profile.id) is None
    assert store.list_unlock_rows(profile.id) == []
    assert store.completed_case_ids(profile.id) == set()
    assert store.delete_profile(profile.id) is False


def test_migration_sets_user_version_and_schema_history() -> None:
    store = SQLiteProfileStore(":memory:")
    version = int(store._conn.execute("PRAGMA user_version").fetchone()[0])  # noqa: SLF001
    assert version == SCHEMA_VERSION
    rows = store._conn.execute("SELECT version FROM schema_migrations ORDER BY version").fetchall()  # noqa: SLF001
    assert [int(row["version"]) for row in rows] == [1]


def test_newer_schema_version_is_refused(tmp_path: Path) -> None:
    db_path = tmp_path / "future.db"
    conn = sqlite3.connect(db_path)
    conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION + 1}")
    conn.close()
    with pytest.raises(RuntimeError):
        SQLiteProfileStore(db_path)


def test_file_store_persists_between_connections(tmp_path: Path) -> None:
    db_path = tmp_path / "nested" / "profiles.db"
    store = SQLiteProfileStore(db_path)
    profile = store.create_profile("fay", starting_points=20)
    store.write(profile.id, LedgerState(point_balance=5, unlocked_ids=frozenset({"x"})))
    store.close()

    reopened = SQLiteProfileStore(db_path)
    assert reopened.read(profile.id) == LedgerState(point_balance=5, unlocked_ids=frozenset({"x"}))
    reopened.close()


def test_replace_profile_data_overwrites_rows() -> None:
    store = SQLiteProfileStore(":memory:")
    profile = store.create_profile("gus")
    store.replace_profile_data(
        profile.id,
        120,
        [{"content_id": "case-2", "unlocked_at": "2026-01-01T00:00:00+00:00"}],
        [{"case_id": "case-a", "points_awarded": 750, "completed_at": "2026-01-02T00:00:00+00:00"}],
    )
    assert store.read(profile.id) == LedgerState(point_balance=120, unlocked_ids=frozenset({"case-2"}))
    assert store.list_completion_rows(profile.id) == [
        {"case_id": "case-a", "points_awarded": 750, "completed_at": "2026-01-02T00:00:00+00:00"}
    ]


def test_in_memory_store_contract() -> None:
    store = InMemoryProfileStore()
    with pytest.raises(StoreError):
        store.read(1)
    store.seed(1, LedgerState(point_balance=10))
    store.write(1, LedgerState(point_balance=3, unlocked_ids=frozenset({"a"})))
    assert store.read(1).unlocked_ids == frozenset({"a"})
    with pytest.raises(StoreError):
        store.write(2, LedgerState())
    with pytest.raises(StoreError):
        store.write(1, LedgerState(point_balance=-1))


def test_sqlite_write_with_stale_expected_balance_is_rejected() -> None:
    store = SQLiteProfileStore(":memory:")
    profile = store.create_profile("hana", starting_points=250)
    store.write(profile.id, LedgerState(point_balance=50, unlocked_ids=frozenset({"a"})), expected_balance=250)

    with pytest.raises(StoreError):
        store.write(profile.id, LedgerState(point_balance=50, unlocked_ids=frozenset({"b"})), expected_balance=250)
    assert store.read(profile.id) == LedgerState(point_balance=50, unlocked_ids=frozenset({"a"}))

    with pytest.raises(StoreError):
        store.write(404, LedgerState(point_balance=1), expected_balance=0)


def test_in_memory_write_merges_unlocks_and_checks_balance() -> None:
    store = InMemoryProfileStore()
    store.seed(1, LedgerState(point_balance=250, unlocked_ids=frozenset({"a"})))
    store.write(1, LedgerState(point_balance=50, unlocked_ids=frozenset({"b"})), expected_balance=250)
    assert store.read(1) == LedgerState(point_balance=50, unlocked_ids=frozenset({"a", "b"}))

    with pytest.raises(StoreError):
        store.write(1, LedgerState(point_balance=0, unlocked_ids=frozenset({"c"})), expected_balance=250)
    assert store.read(1).unlocked_ids == frozenset({"a", "b"})
