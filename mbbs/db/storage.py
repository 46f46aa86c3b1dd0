"""
MBBS Storage

Node directory and usage statistics, persisted together as one JSON
snapshot that is rewritten in full after every mutation.
"""

import json
import logging
import os
import tempfile
import time
from pathlib import Path
from typing import Any, Callable, Iterator, Optional

from ..errors import PersistenceError
from ..mesh.events import BROADCAST_NUM
from ..utils.formatting import format_stat_time
from .models import NodeRecord, StatEntry

logger = logging.getLogger(__name__)

# Separator between participant and event label in persisted stat keys
STAT_KEY_SEP = ":"


def stat_key(participant: str, label: str) -> str:
    """Composite key as persisted: "<participant>:<label>"."""
    return f"{participant}{STAT_KEY_SEP}{label}"


def split_stat_key(key: str) -> tuple[str, str]:
    """Split a persisted key. Labels never contain the separator, names may."""
    participant, _, label = key.rpartition(STAT_KEY_SEP)
    return participant, label


class Storage:
    """
    Directory (node number -> identity) plus stats (key -> count/last seen).

    Owned by the bridge and handed to the dispatcher; nothing else mutates
    it, so no locking.
    """

    def __init__(
        self,
        path: Optional[Path] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            path: Snapshot file. None keeps state in memory only.
            clock: Source of epoch seconds for stat timestamps
        """
        self.path = Path(path) if path is not None else None
        self._clock = clock
        self.users: dict[int, NodeRecord] = {}
        self.stats: dict[tuple[str, str], StatEntry] = {}
        self._dirty = False

    # Directory

    def upsert(self, num: int, identity: dict[str, Any]):
        """Replace whatever we know about a node."""
        if num == BROADCAST_NUM:
            logger.debug("Ignoring identity for the broadcast address")
            return
        self.users[num] = NodeRecord.from_identity(num, identity)
        self._dirty = True
        logger.debug(f"Directory upsert {num}: {self.users[num].long_name!r}")

    def get(self, num: int) -> Optional[NodeRecord]:
        return self.users.get(num)

    def lookup(self, num: int) -> str:
        """Display name for a node, or its decimal number if never seen."""
        record = self.users.get(num)
        if record is not None and record.long_name:
            return record.long_name
        return str(num)

    # Stats

    def increment(self, participant: str, label: str) -> StatEntry:
        """Bump the counter for (participant, label) and stamp it with now."""
        now = int(self._clock())
        key = (participant, label)

        entry = self.stats.get(key)
        if entry is None:
            entry = StatEntry(count=1, last_seen=now)
            self.stats[key] = entry
        else:
            entry.count += 1
            entry.last_seen = now

        self._dirty = True
        return entry

    def iter_stats(self) -> Iterator[tuple[tuple[str, str], StatEntry]]:
        """Stats ordered by persisted key."""
        for key in sorted(self.stats, key=lambda k: stat_key(*k)):
            yield key, self.stats[key]

    def stats_table(self) -> str:
        """Human-readable stats dump."""
        lines = ["Stats -------------------------------------"]
        for (participant, label), entry in self.iter_stats():
            key = stat_key(participant, label)
            lines.append(f"{key:>10}: {entry.count} [{format_stat_time(entry.last_seen)}]")
        lines.append("------------------------------------------")
        return "\n".join(lines)

    def print_stats(self):
        print(self.stats_table())

    # Persistence

    @property
    def dirty(self) -> bool:
        return self._dirty

    def to_dict(self) -> dict[str, Any]:
        return {
            "users": {
                str(num): record.to_identity()
                for num, record in sorted(self.users.items())
            },
            "stats": {
                stat_key(*key): entry.to_list()
                for key, entry in self.iter_stats()
            },
        }

    def _load_dict(self, data: dict[str, Any]):
        users = data.get("users") or {}
        stats = data.get("stats") or {}
        if not isinstance(users, dict) or not isinstance(stats, dict):
            raise ValueError("users and stats must be objects")

        for num_str, identity in users.items():
            try:
                num = int(num_str)
            except ValueError:
                logger.warning(f"Skipping directory entry with bad id {num_str!r}")
                continue
            if isinstance(identity, dict):
                self.users[num] = NodeRecord.from_identity(num, identity)

        for key, value in stats.items():
            try:
                count, last_seen = value
                self.stats[split_stat_key(key)] = StatEntry(int(count), int(last_seen))
            except (TypeError, ValueError):
                logger.warning(f"Skipping malformed stat entry {key!r}")

    @classmethod
    def load(cls, path: Path, clock: Callable[[], float] = time.time) -> "Storage":
        """
        Load a snapshot.

        A missing or unreadable file yields empty storage; startup never
        fails on it.
        """
        storage = cls(path, clock=clock)
        path = Path(path)

        if not path.exists():
            logger.info(f"No storage at {path}, starting empty")
            return storage

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError("snapshot is not an object")
            storage._load_dict(data)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load storage from {path}, starting empty: {e}")
            storage.users.clear()
            storage.stats.clear()
            return storage

        logger.info(
            f"Loaded storage: {len(storage.users)} nodes, {len(storage.stats)} stats"
        )
        return storage

    def save(self):
        """
        Write the full snapshot and atomically replace the file.

        Raises:
            PersistenceError: snapshot could not be written
        """
        if self.path is None:
            self._dirty = False
            return

        directory = self.path.parent
        tmp_name = None
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=directory
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self.to_dict(), f)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
            tmp_name = None
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(f"Failed to save storage to {self.path}: {e}") from e
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass

        self._dirty = False

    def flush(self) -> bool:
        """
        Save if anything changed. Failures are logged; in-memory state stays
        authoritative until the next successful write.
        """
        if not self._dirty:
            return True
        try:
            self.save()
            return True
        except PersistenceError as e:
            logger.error(str(e))
            return False
