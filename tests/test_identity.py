"""Tests for the stable identity map and its backing stores.

Covers:
- resolve() is stable for repeated calls
- ids are 32 uppercase hex chars and differ between rows and kinds
- lookup() never assigns
- reverse_resolve() round-trips and misses return None
- forget() retires the volatile id; a later resolve() gets a new id
- SQLite store persists across instances and converges under threads
- stores report a stable-id collision by returning None from insert()
"""

from __future__ import annotations

import re
import threading
from pathlib import Path

import pytest

from gitpress.versioning.identity import (
    IdentityMap,
    InMemoryIdentityStore,
    SQLiteIdentityStore,
    generate_stable_id,
)


@pytest.fixture(params=["memory", "sqlite"])
def identity_map(request, tmp_path: Path) -> IdentityMap:
    if request.param == "memory":
        return IdentityMap(InMemoryIdentityStore())
    return IdentityMap(SQLiteIdentityStore(tmp_path / "identity.db"))


class TestGenerateStableId:
    def test_format(self):
        assert re.fullmatch(r"[0-9A-F]{32}", generate_stable_id())

    def test_ids_are_unique(self):
        ids = {generate_stable_id() for _ in range(1000)}
        assert len(ids) == 1000


class TestResolve:
    def test_repeated_resolve_returns_same_id(self, identity_map):
        first = identity_map.resolve("posts", 1)
        assert identity_map.resolve("posts", 1) == first
        assert identity_map.resolve("posts", "1") == first

    def test_different_rows_get_different_ids(self, identity_map):
        assert identity_map.resolve("posts", 1) != identity_map.resolve("posts", 2)

    def test_same_row_number_in_other_kind_is_independent(self, identity_map):
        assert identity_map.resolve("posts", 7) != identity_map.resolve("terms", 7)

    def test_lookup_does_not_assign(self, identity_map):
        assert identity_map.lookup("posts", 99) is None
        assert identity_map.lookup("posts", 99) is None
        stable_id = identity_map.resolve("posts", 99)
        assert identity_map.lookup("posts", 99) == stable_id


class TestReverseResolve:
    def test_round_trip(self, identity_map):
        stable_id = identity_map.resolve("terms", 5)
        assert identity_map.reverse_resolve("terms", stable_id) == "5"

    def test_unknown_id_is_a_miss(self, identity_map):
        assert identity_map.reverse_resolve("terms", generate_stable_id()) is None

    def test_wrong_kind_is_a_miss(self, identity_map):
        stable_id = identity_map.resolve("terms", 5)
        assert identity_map.reverse_resolve("posts", stable_id) is None


class TestForget:
    def test_forget_then_resolve_assigns_new_id(self, identity_map):
        old = identity_map.resolve("posts", 3)
        identity_map.forget("posts", 3)
        new = identity_map.resolve("posts", 3)
        assert new != old

    def test_forgotten_id_stays_known(self, identity_map):
        old = identity_map.resolve("posts", 3)
        identity_map.forget("posts", 3)
        assert identity_map.is_known("posts", old)
        assert identity_map.reverse_resolve("posts", old) is None
        assert identity_map.lookup("posts", 3) is None

    def test_forget_unknown_row_is_noop(self, identity_map):
        identity_map.forget("posts", 12345)
        assert identity_map.lookup("posts", 12345) is None


class TestSQLiteIdentityStore:
    def test_mapping_survives_reopen(self, tmp_path: Path):
        db = tmp_path / "nested" / "identity.db"
        first = IdentityMap(SQLiteIdentityStore(db)).resolve("posts", 10)
        second = IdentityMap(SQLiteIdentityStore(db)).resolve("posts", 10)
        assert first == second

    def test_concurrent_first_resolution_converges(self, tmp_path: Path):
        store = SQLiteIdentityStore(tmp_path / "identity.db")
        results: list[str] = []
        lock = threading.Lock()

        def worker():
            value = IdentityMap(store).resolve("posts", 42)
            with lock:
                results.append(value)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(results) == 8
        assert len(set(results)) == 1

    def test_insert_returns_existing_winner(self, tmp_path: Path):
        store = SQLiteIdentityStore(tmp_path / "identity.db")
        assert store.insert("posts", "1", "A" * 32) == "A" * 32
        assert store.insert("posts", "1", "B" * 32) == "A" * 32
        assert not store.contains_any("B" * 32)


class TestCollisionHandling:
    def test_existing_stable_id_is_never_reused(self, monkeypatch):
        store = InMemoryIdentityStore()
        store.insert("posts", "1", "A" * 32)
        candidates = iter(["A" * 32, "C" * 32])
        monkeypatch.setattr(
            "gitpress.versioning.identity.generate_stable_id",
            lambda: next(candidates),
        )
        assert IdentityMap(store).resolve("posts", 2) == "C" * 32

    @pytest.mark.parametrize("store_kind", ["memory", "sqlite"])
    def test_insert_of_assigned_stable_id_returns_none(
        self, store_kind, tmp_path: Path
    ):
        if store_kind == "memory":
            store = InMemoryIdentityStore()
        else:
            store = SQLiteIdentityStore(tmp_path / "identity.db")
        store.insert("posts", "1", "A" * 32)

        assert store.insert("posts", "2", "A" * 32) is None
        assert store.lookup("posts", "2") is None
        assert store.reverse_lookup("posts", "A" * 32) == "1"

    def test_collision_at_insert_retries_with_fresh_id(
        self, monkeypatch, tmp_path: Path
    ):
        store = SQLiteIdentityStore(tmp_path / "identity.db")
        store.insert("posts", "1", "A" * 32)
        # Another process takes "A" * 32 between the check and the insert.
        monkeypatch.setattr(store, "contains_any", lambda stable_id: False)
        candidates = iter(["A" * 32, "C" * 32])
        monkeypatch.setattr(
            "gitpress.versioning.identity.generate_stable_id",
            lambda: next(candidates),
        )
        assert IdentityMap(store).resolve("posts", 2) == "C" * 32
