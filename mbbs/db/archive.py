"""
MBBS Archival Log

Append-only, one file per calendar day, one JSON record per line.
"""

import json
import logging
from datetime import date
from pathlib import Path
from typing import Callable, Iterator, Optional

from ..errors import PersistenceError
from ..mesh.events import Envelope

logger = logging.getLogger(__name__)

ARCHIVE_PREFIX = "network"
ARCHIVE_SUFFIX = ".jsonl"


def archive_filename(day: date) -> str:
    """File name for a given day, e.g. network.2025-12-10.jsonl."""
    return f"{ARCHIVE_PREFIX}.{day.strftime('%Y-%m-%d')}{ARCHIVE_SUFFIX}"


class ArchiveLog:
    """Writes every envelope we hear, in encounter order."""

    def __init__(self, directory: Path, today: Callable[[], date] = date.today):
        """
        Args:
            directory: Where daily files are created
            today: Local calendar date source
        """
        self.directory = Path(directory)
        self._today = today

    def current_path(self) -> Path:
        return self.directory / archive_filename(self._today())

    def append(self, envelope: Envelope) -> Path:
        """
        Append one envelope to today's file.

        Raises:
            PersistenceError: file could not be written
        """
        path = self.current_path()
        line = json.dumps(envelope.to_dict(), separators=(",", ":"))
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            with open(path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
        except OSError as e:
            raise PersistenceError(f"Failed to append to archive {path}: {e}") from e
        return path


def read_archive(path: Path) -> Iterator[Envelope]:
    """
    Stream envelopes back out of an archive file.

    Malformed lines (a torn final write, bytes that are not UTF-8) are
    logged and skipped.
    """
    with open(path, "rb") as f:
        for lineno, raw in enumerate(f, 1):
            try:
                line = raw.decode("utf-8").strip()
            except UnicodeDecodeError as e:
                logger.warning(f"{path}:{lineno}: skipping undecodable record: {e}")
                continue
            if not line:
                continue
            envelope = _parse_line(line, path, lineno)
            if envelope is not None:
                yield envelope


def _parse_line(line: str, path: Path, lineno: int) -> Optional[Envelope]:
    try:
        return Envelope.from_dict(json.loads(line))
    except (ValueError, KeyError, TypeError) as e:
        logger.warning(f"{path}:{lineno}: skipping malformed record: {e}")
        return None
