"""
Tests for MBBS Archival Log
"""

import tempfile
from datetime import date
from pathlib import Path

import pytest

from mbbs.db.archive import ArchiveLog, archive_filename, read_archive
from mbbs.errors import PersistenceError
from mbbs.mesh.events import BROADCAST_NUM, AppData, Encrypted, Envelope


def envelope(from_num: int, payload: bytes = b"hi") -> Envelope:
    return Envelope(from_num=from_num, to_num=BROADCAST_NUM, body=AppData(1, payload))


class TestArchiveLog:
    """Tests for per-day append-only files."""

    def setup_method(self):
        self.tmpdir = Path(tempfile.mkdtemp())
        self.day = date(2025, 12, 10)
        self.archive = ArchiveLog(self.tmpdir, today=lambda: self.day)

    def test_filename(self):
        assert archive_filename(date(2025, 12, 10)) == "network.2025-12-10.jsonl"
        assert self.archive.current_path() == self.tmpdir / "network.2025-12-10.jsonl"

    def test_append_preserves_order(self):
        for num in (1, 2, 3):
            self.archive.append(envelope(num))

        records = list(read_archive(self.archive.current_path()))
        assert [r.from_num for r in records] == [1, 2, 3]

    def test_encrypted_roundtrip(self):
        self.archive.append(Envelope(from_num=5, to_num=6, body=Encrypted(b"\x00\xff")))

        [record] = read_archive(self.archive.current_path())
        assert record.body == Encrypted(b"\x00\xff")

    def test_day_rollover(self):
        self.archive.append(envelope(1))
        self.day = date(2025, 12, 11)
        self.archive.append(envelope(2))

        first = list(read_archive(self.tmpdir / "network.2025-12-10.jsonl"))
        second = list(read_archive(self.tmpdir / "network.2025-12-11.jsonl"))
        assert [r.from_num for r in first] == [1]
        assert [r.from_num for r in second] == [2]

    def test_creates_directory(self):
        archive = ArchiveLog(self.tmpdir / "nested" / "dir", today=lambda: self.day)
        path = archive.append(envelope(1))
        assert path.exists()

    def test_unwritable_raises(self):
        blocker = self.tmpdir / "blocker"
        blocker.write_text("not a directory")
        archive = ArchiveLog(blocker, today=lambda: self.day)

        with pytest.raises(PersistenceError):
            archive.append(envelope(1))


class TestReadArchive:
    def test_skips_malformed_lines(self):
        tmpdir = Path(tempfile.mkdtemp())
        archive = ArchiveLog(tmpdir, today=lambda: date(2025, 1, 1))
        path = archive.append(envelope(1))
        with open(path, "a") as f:
            f.write("{truncated\n")
            f.write("\n")
            f.write('{"no": "from"}\n')
        archive.append(envelope(2))

        assert [r.from_num for r in read_archive(path)] == [1, 2]

    def test_missing_file_raises(self):
        with pytest.raises(OSError):
            list(read_archive(Path(tempfile.mkdtemp()) / "missing.jsonl"))

    def test_skips_undecodable_lines(self):
        tmpdir = Path(tempfile.mkdtemp())
        archive = ArchiveLog(tmpdir, today=lambda: date(2025, 1, 1))
        path = archive.append(envelope(1))
        with open(path, "ab") as f:
            f.write(b'{"from": 9, "to": \xff\xfe}\n')
        archive.append(envelope(2))

        assert [r.from_num for r in read_archive(path)] == [1, 2]
