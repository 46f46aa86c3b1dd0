"""MBBS Storage Module - Node directory, stats snapshot, and archive."""

from .archive import ArchiveLog, read_archive
from .models import NodeRecord, StatEntry
from .storage import Storage

__all__ = ["ArchiveLog", "read_archive", "NodeRecord", "StatEntry", "Storage"]
