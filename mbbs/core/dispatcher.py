"""
MBBS Packet Dispatcher

Routes each top-level decoded event to the directory, the port router,
the stats counters and the archive.
"""

import logging
from typing import TYPE_CHECKING, Optional

from ..errors import PersistenceError
from ..mesh.events import AppData, DecodedEvent, Encrypted, NodeInfoEvent, PacketEvent
from .router import DataPortRouter, PortClass

if TYPE_CHECKING:
    from ..db.archive import ArchiveLog
    from ..db.storage import Storage

logger = logging.getLogger(__name__)


class PacketDispatcher:
    """
    Dispatches decoded events.

    Malformed or unknown shapes are a no-op; nothing in here raises on bad
    radio input. Storage is flushed before dispatch() returns whenever an
    event changed it.
    """

    def __init__(
        self,
        storage: "Storage",
        router: DataPortRouter,
        archive: Optional["ArchiveLog"] = None,
    ):
        """
        Initialize dispatcher.

        Args:
            storage: Directory/stats store, owned by the bridge
            router: Data port router sharing the same storage
            archive: Archival log, or None to skip archiving
        """
        self.storage = storage
        self.router = router
        self.archive = archive

    async def dispatch(self, event: DecodedEvent) -> Optional[PortClass]:
        """
        Handle one event.

        Returns:
            The port classification for decoded packets, otherwise None
        """
        result = None

        if isinstance(event, NodeInfoEvent):
            self._handle_node_info(event)
        elif isinstance(event, PacketEvent):
            result = self._handle_packet(event)
        else:
            logger.debug(f"Ignoring event of type {type(event).__name__}")

        self.storage.flush()
        return result

    def _handle_node_info(self, event: NodeInfoEvent):
        if not event.user:
            return
        self.storage.upsert(event.num, event.user)

    def _handle_packet(self, event: PacketEvent) -> Optional[PortClass]:
        envelope = event.envelope
        self._archive(event)

        body = envelope.body
        if isinstance(body, Encrypted):
            # No key material, nothing to decode
            logger.debug(f"Encrypted packet from {envelope.from_num}, skipping")
            return None
        if not isinstance(body, AppData):
            return None

        port_class = self.router.route(envelope, body)

        # Name lookup after routing so a NodeInfo packet counts under its new name
        participant = self.storage.lookup(envelope.from_num)
        self.storage.increment(participant, port_class.value)
        return port_class

    def _archive(self, event: PacketEvent):
        if self.archive is None:
            return
        try:
            self.archive.append(event.envelope)
        except PersistenceError as e:
            logger.error(str(e))
