"""
Tests for MBBS Storage

Directory lookups, stats counters, and snapshot persistence.
"""

import json
import os
import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest

from mbbs.db.models import NodeRecord
from mbbs.db.storage import Storage, split_stat_key, stat_key
from mbbs.errors import PersistenceError


class FakeClock:
    """Settable epoch-seconds clock."""

    def __init__(self, now: float = 1_700_000_000):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestDirectory:
    """Tests for node directory operations."""

    def setup_method(self):
        self.storage = Storage()

    def test_lookup_unknown_returns_decimal(self):
        """Unknown nodes render as their decimal number."""
        assert self.storage.lookup(7) == "7"
        assert self.storage.lookup(0xDEADBEEF) == str(0xDEADBEEF)

    def test_upsert_then_lookup(self):
        self.storage.upsert(7, {"longName": "Alice", "shortName": "AL"})
        assert self.storage.lookup(7) == "Alice"

    def test_upsert_idempotent(self):
        identity = {"longName": "Alice", "shortName": "AL", "id": "!00000007"}
        self.storage.upsert(7, identity)
        self.storage.upsert(7, identity)

        assert self.storage.lookup(7) == "Alice"
        assert len(self.storage.users) == 1

    def test_upsert_replaces_whole_record(self):
        """Upsert does not merge: missing fields disappear."""
        self.storage.upsert(7, {"longName": "Alice", "shortName": "AL", "hwModel": "TBEAM"})
        self.storage.upsert(7, {"longName": "Alicia"})

        record = self.storage.get(7)
        assert record.long_name == "Alicia"
        assert record.short_name is None
        assert record.hw_model is None

    def test_upsert_marks_dirty(self):
        assert not self.storage.dirty
        self.storage.upsert(1, {"longName": "x"})
        assert self.storage.dirty

    def test_record_keeps_extra_identity_fields(self):
        identity = {"longName": "Alice", "macaddr": "AAECAwQF", "role": "ROUTER"}
        record = NodeRecord.from_identity(7, identity)

        assert record.attributes == {"macaddr": "AAECAwQF", "role": "ROUTER"}
        assert record.to_identity() == identity


class TestStats:
    """Tests for stats aggregation."""

    def setup_method(self):
        self.clock = FakeClock()
        self.storage = Storage(clock=self.clock)

    def test_first_increment(self):
        entry = self.storage.increment("Alice", "TextMessage")
        assert entry.count == 1
        assert entry.last_seen == 1_700_000_000

    def test_repeated_increment(self):
        """k increments yield count k and the last call's timestamp."""
        for i in range(5):
            self.clock.now = 1_700_000_000 + i * 10
            self.storage.increment("Alice", "TextMessage")

        entry = self.storage.stats[("Alice", "TextMessage")]
        assert entry.count == 5
        assert entry.last_seen == 1_700_000_040

    def test_keys_are_independent(self):
        self.storage.increment("Alice", "TextMessage")
        self.storage.increment("Alice", "Routing")
        self.storage.increment("Bob", "TextMessage")

        assert len(self.storage.stats) == 3
        assert all(e.count == 1 for e in self.storage.stats.values())

    def test_stat_key_split_with_colon_in_name(self):
        """Names may contain the separator; labels never do."""
        key = stat_key("Base: North", "TextMessage")
        assert split_stat_key(key) == ("Base: North", "TextMessage")

    def test_stats_table_sorted(self):
        self.storage.increment("Zed", "TextMessage")
        self.storage.increment("Alice", "Routing")

        table = self.storage.stats_table()
        assert table.index("Alice:Routing") < table.index("Zed:TextMessage")
        assert table.startswith("Stats")


class TestPersistence:
    """Tests for snapshot load/save."""

    def setup_method(self):
        self.tmpdir = Path(tempfile.mkdtemp())
        self.path = self.tmpdir / "storage.json"
        self.clock = FakeClock()

    def test_missing_file_starts_empty(self):
        storage = Storage.load(self.path)
        assert storage.users == {}
        assert storage.stats == {}

    def test_corrupt_file_starts_empty(self):
        self.path.write_text("{not json")
        storage = Storage.load(self.path)
        assert storage.users == {}
        assert storage.stats == {}

    @pytest.mark.parametrize("content", [
        "[1, 2, 3]",
        '{"users": [1]}',
        '{"users": "abc"}',
        '{"users": {}, "stats": ["a"]}',
        '{"users": {"7": {"longName": "Alice"}}, "stats": 5}',
    ])
    def test_wrong_shape_starts_empty(self, content):
        self.path.write_text(content)
        storage = Storage.load(self.path)
        assert storage.users == {}
        assert storage.stats == {}

    def test_non_string_name_falls_back_to_number(self):
        self.path.write_text(json.dumps({"users": {"7": {"longName": {"x": 1}}}}))
        storage = Storage.load(self.path)

        assert storage.lookup(7) == "7"
        storage.increment(storage.lookup(7), "TextMessage")
        assert storage.stats[("7", "TextMessage")].count == 1

    def test_malformed_stat_entries_skipped(self):
        self.path.write_text(json.dumps({
            "users": {},
            "stats": {"Alice:TextMessage": [2, 1700000000], "Bob:Routing": "ab", "Eve:NodeInfo": [{}, 1]},
        }))
        storage = Storage.load(self.path)

        assert set(storage.stats) == {("Alice", "TextMessage")}

    def test_round_trip(self):
        storage = Storage(self.path, clock=self.clock)
        storage.upsert(7, {"longName": "Alice", "shortName": "AL"})
        storage.upsert(0x12345678, {"longName": "Bob"})
        storage.increment("Alice", "TextMessage")
        self.clock.now += 30
        storage.increment("Alice", "TextMessage")
        storage.increment("Bob", "NodeInfo")
        storage.save()

        loaded = Storage.load(self.path)

        assert set(loaded.users) == {7, 0x12345678}
        assert loaded.lookup(7) == "Alice"
        assert loaded.get(7).short_name == "AL"
        assert set(loaded.stats) == set(storage.stats)
        for key, entry in storage.stats.items():
            assert loaded.stats[key].count == entry.count
            assert loaded.stats[key].last_seen == entry.last_seen

    def test_snapshot_format(self):
        """Users keyed by stringified id, stats as [count, lastSeen]."""
        storage = Storage(self.path, clock=self.clock)
        storage.upsert(7, {"longName": "Alice"})
        storage.increment("Alice", "TextMessage")
        storage.save()

        data = json.loads(self.path.read_text())
        assert data["users"] == {"7": {"longName": "Alice"}}
        assert data["stats"] == {"Alice:TextMessage": [1, 1_700_000_000]}

    def test_save_leaves_no_temp_files(self):
        storage = Storage(self.path)
        storage.upsert(7, {"longName": "Alice"})
        storage.save()

        assert os.listdir(self.tmpdir) == ["storage.json"]
        assert not storage.dirty

    def test_save_failure_raises_persistence_error(self):
        storage = Storage(self.path)
        storage.upsert(7, {"longName": "Alice"})

        with patch("mbbs.db.storage.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(PersistenceError):
                storage.save()

        # Previous state untouched, temp file cleaned up
        assert not self.path.exists()
        assert os.listdir(self.tmpdir) == []
        assert storage.dirty

    def test_flush_logs_and_keeps_memory_state(self):
        storage = Storage(self.path)
        storage.upsert(7, {"longName": "Alice"})

        with patch.object(storage, "save", side_effect=PersistenceError("nope")):
            assert storage.flush() is False

        assert storage.lookup(7) == "Alice"
        assert storage.dirty

    def test_flush_noop_when_clean(self):
        storage = Storage(self.path)
        assert storage.flush() is True
        assert not self.path.exists()

    def test_skips_malformed_entries(self):
        self.path.write_text(json.dumps({
            "users": {"abc": {"longName": "Bad"}, "7": {"longName": "Alice"}},
            "stats": {"Alice:TextMessage": [2, 100], "Broken:Routing": "x"},
        }))
        storage = Storage.load(self.path)

        assert list(storage.users) == [7]
        assert list(storage.stats) == [("Alice", "TextMessage")]


class TestBroadcast:
    """The broadcast sentinel is never a directory key."""

    def test_upsert_broadcast_ignored(self):
        from mbbs.mesh.events import BROADCAST_NUM

        storage = Storage()
        storage.upsert(BROADCAST_NUM, {"longName": "Everyone"})

        assert storage.users == {}
        assert not storage.dirty
