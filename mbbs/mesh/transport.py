"""
MBBS Meshtastic Transport

Opens and configures a connection to the radio and turns the library's
pub/sub callbacks into an awaitable event stream.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional

import meshtastic.ble_interface
import meshtastic.serial_interface
import meshtastic.tcp_interface
from meshtastic.protobuf import mesh_pb2
from pubsub import pub

from ..config import MeshtasticConfig
from ..errors import ConfigureError, ConnectError
from .events import DecodedEvent, event_from_node, event_from_packet

logger = logging.getLogger(__name__)

RECEIVE_TOPIC = "meshtastic.receive"
NODE_UPDATED_TOPIC = "meshtastic.node.updated"
CONNECTION_LOST_TOPIC = "meshtastic.connection.lost"


@dataclass
class DeviceInfo:
    """A radio found by discovery."""
    name: Optional[str]
    address: str


def _close_interface(interface):
    try:
        interface.close()
    except Exception as e:
        logger.warning(f"Error closing interface: {e}")


class MeshStream:
    """
    Event stream over one meshtastic interface.

    The library calls us from its reader thread; events are handed to the
    asyncio loop through a queue. recv() returns None once the connection
    is lost or the stream is closed.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop):
        self._loop = loop
        self._queue: asyncio.Queue = asyncio.Queue()
        self._interface = None
        self._subscribed = False
        self._closed = False

    @property
    def interface(self):
        return self._interface

    def subscribe(self):
        pub.subscribe(self._on_receive, RECEIVE_TOPIC)
        pub.subscribe(self._on_node_updated, NODE_UPDATED_TOPIC)
        pub.subscribe(self._on_disconnect, CONNECTION_LOST_TOPIC)
        self._subscribed = True

    def unsubscribe(self):
        if not self._subscribed:
            return
        for listener, topic in (
            (self._on_receive, RECEIVE_TOPIC),
            (self._on_node_updated, NODE_UPDATED_TOPIC),
            (self._on_disconnect, CONNECTION_LOST_TOPIC),
        ):
            try:
                pub.unsubscribe(listener, topic)
            except Exception as e:
                logger.debug(f"Unsubscribe from {topic} failed: {e}")
        self._subscribed = False

    def attach(self, interface):
        self._interface = interface

    def _ours(self, interface) -> bool:
        # Until attach() the interface is still being constructed; accept it
        return self._interface is None or interface is self._interface

    def _put(self, event: Optional[DecodedEvent]):
        if self._closed:
            return
        self._loop.call_soon_threadsafe(self._queue.put_nowait, event)

    def _on_receive(self, packet, interface):
        """Internal handler for received packets."""
        if not self._ours(interface):
            return
        event = event_from_packet(packet)
        if event is not None:
            self._put(event)

    def _on_node_updated(self, node, interface):
        """Internal handler for node database updates."""
        if not self._ours(interface):
            return
        event = event_from_node(node)
        if event is not None:
            self._put(event)

    def _on_disconnect(self, interface):
        """Handle disconnection event."""
        if not self._ours(interface):
            return
        logger.warning("Meshtastic connection lost")
        self._put(None)

    async def recv(self) -> Optional[DecodedEvent]:
        """Next decoded event, or None when the stream is closed."""
        if self._closed and self._queue.empty():
            return None
        return await self._queue.get()

    async def close(self):
        """Release the interface. Errors are logged, never raised."""
        self.unsubscribe()
        self._closed = True
        interface, self._interface = self._interface, None
        if interface is not None:
            await asyncio.to_thread(_close_interface, interface)
            logger.info("Disconnected from Meshtastic")
        self._queue.put_nowait(None)


class MeshtasticTransport:
    """
    Meshtastic transport provider.

    Supports BLE, Serial, and TCP connections.
    """

    def __init__(self, connection_type: str = "ble"):
        """
        Initialize transport.

        Args:
            connection_type: ble | serial | tcp
        """
        self.connection_type = connection_type

    async def discover(self, timeout: float) -> list[DeviceInfo]:
        """
        Scan for BLE radios.

        Raises:
            ConnectError: scan failed or did not finish in time
        """
        logger.info("Scanning BLE devices...")
        try:
            devices = await asyncio.wait_for(
                asyncio.to_thread(meshtastic.ble_interface.BLEInterface.scan),
                timeout,
            )
        except asyncio.TimeoutError as e:
            raise ConnectError(f"BLE scan did not finish within {timeout:g}s") from e
        except Exception as e:
            raise ConnectError(f"BLE scan failed: {e}") from e

        return [DeviceInfo(name=d.name, address=d.address) for d in devices]

    @property
    def connects_on_open(self) -> bool:
        """BLEInterface runs the library's own config handshake in its constructor."""
        return self.connection_type == "ble"

    def open_timeout(self, config: MeshtasticConfig) -> float:
        """Deadline for open(); on BLE it also covers the library handshake."""
        if self.connects_on_open:
            return config.open_timeout_seconds + config.configure_timeout_seconds
        return config.open_timeout_seconds

    def _create_interface(self, device: str):
        """
        Blocking: build the library interface for this connection type.

        Serial and TCP interfaces are built unconnected. configure() starts
        them so their one config request carries the session id. noNodes
        stops _startConfig() from replacing that id with a random one; the
        radio only skips its node database for the reserved nodeless id.
        """
        if self.connection_type == "ble":
            return meshtastic.ble_interface.BLEInterface(address=device)
        elif self.connection_type == "serial":
            return meshtastic.serial_interface.SerialInterface(
                devPath=device,
                connectNow=False,
                noNodes=True,
            )
        elif self.connection_type == "tcp":
            host, _, port = device.partition(":")
            return meshtastic.tcp_interface.TCPInterface(
                hostname=host,
                portNumber=int(port) if port else 4403,
                connectNow=False,
                noNodes=True,
            )
        raise ValueError(f"Unknown connection type: {self.connection_type}")

    async def open(self, device: str, timeout: float) -> MeshStream:
        """
        Connect to the radio.

        Raises:
            ConnectError: connection failed or timed out
        """
        logger.info(f"Opening {self.connection_type} to meshtastic device {device}...")
        loop = asyncio.get_running_loop()

        stream = MeshStream(loop)
        # Subscribe first so the node database dump during connect is not lost
        stream.subscribe()

        future = loop.run_in_executor(None, self._create_interface, device)
        try:
            interface = await asyncio.wait_for(asyncio.shield(future), timeout)
        except BaseException as e:
            stream.unsubscribe()
            # The worker thread cannot be interrupted; close whatever it produces
            future.add_done_callback(_close_late_interface)
            if isinstance(e, asyncio.TimeoutError):
                raise ConnectError(f"Timed out opening {device} after {timeout:g}s") from e
            if isinstance(e, Exception):
                raise ConnectError(f"Failed to open {device}: {e}") from e
            raise

        stream.attach(interface)
        logger.info(f"Connected to {device}")
        return stream

    async def configure(self, stream: MeshStream, session_id: int, timeout: float) -> MeshStream:
        """
        Run the config handshake under a fresh session id and wait for the
        radio to complete it with that same id.

        Raises:
            ConfigureError: handshake failed or timed out
        """
        interface = stream.interface
        if interface is None:
            raise ConfigureError("Stream is not connected")

        handshake = _request_config if self.connects_on_open else _connect_with_id
        try:
            await asyncio.wait_for(
                asyncio.to_thread(handshake, interface, session_id, timeout),
                timeout,
            )
        except asyncio.TimeoutError as e:
            raise ConfigureError(f"Configuration {session_id} not acknowledged within {timeout:g}s") from e
        except ConfigureError:
            raise
        except Exception as e:
            raise ConfigureError(f"Configuration {session_id} failed: {e}") from e

        logger.info(f"Configured with session id {session_id}")
        return stream


def _connect_with_id(interface, session_id: int, timeout: float):
    """Start an unconnected stream interface; connect() waits for the config to complete."""
    interface.configId = session_id
    interface.connect()
    if interface.configId != session_id:
        raise ConfigureError(f"Radio configured under {interface.configId}, expected {session_id}")


def _request_config(interface, session_id: int, timeout: float):
    """
    Ask an already connected interface for a new config dump under the
    session id. isConnected is set again only when config_complete_id
    matches interface.configId.
    """
    # Completion starts a new heartbeat timer chain
    if interface.heartbeatTimer is not None:
        interface.heartbeatTimer.cancel()
        interface.heartbeatTimer = None

    interface.isConnected.clear()
    interface.configId = session_id
    start_config = mesh_pb2.ToRadio()
    start_config.want_config_id = session_id
    interface._sendToRadio(start_config)

    if not interface.isConnected.wait(timeout):
        raise ConfigureError(f"Configuration {session_id} not acknowledged within {timeout:g}s")


def _close_late_interface(future: "asyncio.Future[Any]"):
    if future.cancelled() or future.exception() is not None:
        return
    logger.info("Closing interface that finished connecting after its deadline")
    _close_interface(future.result())


class MockStream:
    """
    Scripted stream for testing.

    Events pushed with simulate_receive() are returned by recv();
    simulate_disconnect() makes recv() return None.
    """

    def __init__(self, close_error: Optional[Exception] = None):
        self._queue: asyncio.Queue = asyncio.Queue()
        self.close_error = close_error
        self.closed = False
        self.session_id: Optional[int] = None

    def simulate_receive(self, event: DecodedEvent):
        self._queue.put_nowait(event)

    def simulate_disconnect(self):
        self._queue.put_nowait(None)

    async def recv(self) -> Optional[DecodedEvent]:
        return await self._queue.get()

    async def close(self):
        self.closed = True
        if self.close_error is not None:
            raise self.close_error


class MockTransport:
    """
    Mock transport for testing.

    Useful for development without actual hardware.
    """

    def __init__(self, devices: Optional[list[DeviceInfo]] = None):
        self.devices = devices or [DeviceInfo(name="Mock_1234", address="00:00:00:00:12:34")]
        self.open_error: Optional[Exception] = None
        self.configure_error: Optional[Exception] = None
        self.open_delay: float = 0
        self.streams: list[MockStream] = []
        self.open_calls: list[str] = []
        self.next_stream: Optional[MockStream] = None

    async def discover(self, timeout: float) -> list[DeviceInfo]:
        return list(self.devices)

    def open_timeout(self, config: MeshtasticConfig) -> float:
        return config.open_timeout_seconds

    async def open(self, device: str, timeout: float) -> MockStream:
        self.open_calls.append(device)
        if self.open_delay:
            try:
                await asyncio.wait_for(asyncio.sleep(self.open_delay), timeout)
            except asyncio.TimeoutError as e:
                raise ConnectError(f"Timed out opening {device}") from e
        if self.open_error is not None:
            raise self.open_error
        stream = self.next_stream or MockStream()
        self.next_stream = None
        self.streams.append(stream)
        logger.info(f"Mock transport opened {device}")
        return stream

    async def configure(self, stream: MockStream, session_id: int, timeout: float) -> MockStream:
        if self.configure_error is not None:
            raise self.configure_error
        stream.session_id = session_id
        return stream
