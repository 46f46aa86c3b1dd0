"""
MBBS Data Port Router

Looks at the port number of a decoded packet and turns it into
notifications and directory updates.
"""

import asyncio
import logging
from enum import Enum
from typing import TYPE_CHECKING, Optional

from meshtastic.protobuf import portnums_pb2

from ..errors import DecodeError, NotificationError
from ..mesh.events import BROADCAST_NUM, AppData, Envelope, decode_user
from ..utils.formatting import truncate

if TYPE_CHECKING:
    from ..db.storage import Storage

logger = logging.getLogger(__name__)

NON_UTF8_PLACEHOLDER = "Non-utf8 msg"
BROADCAST_NAME = "BROADCAST"


class PortClass(Enum):
    """Classification of an application port; the value is the stats label."""
    TEXT_MESSAGE = "TextMessage"
    NODE_INFO = "NodeInfo"
    ROUTING = "Routing"
    UNKNOWN = "Unknown"


PORT_CLASSES = {
    portnums_pb2.PortNum.TEXT_MESSAGE_APP: PortClass.TEXT_MESSAGE,
    portnums_pb2.PortNum.NODEINFO_APP: PortClass.NODE_INFO,
    portnums_pb2.PortNum.ROUTING_APP: PortClass.ROUTING,
}


def classify(portnum: int) -> PortClass:
    return PORT_CLASSES.get(portnum, PortClass.UNKNOWN)


def decode_text(payload: bytes) -> str:
    """UTF-8 text, or a fixed placeholder when the payload is not valid UTF-8."""
    try:
        return payload.decode("utf-8")
    except UnicodeDecodeError:
        return NON_UTF8_PLACEHOLDER


class DataPortRouter:
    """
    Routes decoded application data by port.

    - TEXT_MESSAGE_APP: notify "{from} : {text} ({to})"
    - NODEINFO_APP: upsert sender identity
    - ROUTING_APP and anything else: label only
    """

    def __init__(self, storage: "Storage", notifier):
        """
        Args:
            storage: Directory/stats store
            notifier: Sink with an async send(text)
        """
        self.storage = storage
        self.notifier = notifier
        self._queue: asyncio.Queue = asyncio.Queue()
        self._consumer: Optional[asyncio.Task] = None

    def display_name(self, num: int) -> str:
        """Directory name for a node; BROADCAST is never looked up."""
        if num == BROADCAST_NUM:
            return BROADCAST_NAME
        return self.storage.lookup(num)

    def route(self, envelope: Envelope, data: AppData) -> PortClass:
        """Apply side effects for one packet and return its classification."""
        port_class = classify(data.portnum)

        if port_class is PortClass.TEXT_MESSAGE:
            self._handle_text(envelope, data)
        elif port_class is PortClass.NODE_INFO:
            self._handle_nodeinfo(envelope, data)
        else:
            logger.debug(f"{data.port_name} from {envelope.from_num}, no action")

        return port_class

    def _handle_text(self, envelope: Envelope, data: AppData):
        text = decode_text(data.payload)
        from_name = self.display_name(envelope.from_num)
        to_name = self.display_name(envelope.to_num)

        logger.info(f"Text from {from_name} to {to_name}: {truncate(text)}")
        self.notify(f"{from_name} : {text} ({to_name})")

    def _handle_nodeinfo(self, envelope: Envelope, data: AppData):
        try:
            identity = decode_user(data.payload)
        except DecodeError as e:
            logger.warning(f"Ignoring NodeInfo from {envelope.from_num}: {e}")
            return
        self.storage.upsert(envelope.from_num, identity)

    def notify(self, text: str):
        """
        Queue text for delivery so dispatch never waits on the sink.

        A single consumer sends queued messages one at a time, in order.
        """
        self._queue.put_nowait(text)
        if self._consumer is None or self._consumer.done():
            self._consumer = asyncio.ensure_future(self._consume())

    async def _consume(self):
        while True:
            text = await self._queue.get()
            try:
                await self._deliver(text)
            finally:
                self._queue.task_done()

    async def _deliver(self, text: str):
        try:
            await self.notifier.send(text)
        except NotificationError as e:
            logger.error(f"Notification failed: {e}")
        except Exception as e:
            logger.error(f"Unexpected notification error: {e}")

    async def drain(self):
        """Wait until every queued notification is delivered, then stop the consumer."""
        if self._consumer is None:
            return
        await self._queue.join()
        consumer, self._consumer = self._consumer, None
        consumer.cancel()
        await asyncio.gather(consumer, return_exceptions=True)
