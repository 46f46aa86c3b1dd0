"""
MBBS Session

One attempt at holding an open, configured transport connection:
open -> configure -> listen -> close.
"""

import asyncio
import logging
import random
from enum import Enum
from typing import Callable, Optional

from ..config import BridgeConfig, MeshtasticConfig
from ..errors import (
    ConfigureError,
    ConnectError,
    ConnectionLostError,
    DispatchError,
    IdleTimeoutError,
    OperationCancelled,
    SessionError,
    SessionOutcome,
    SessionStatus,
)
from ..mesh.events import NODELESS_CONFIG_ID
from .cancel import CancellationToken
from .dispatcher import PacketDispatcher
from .watchdog import IdleWatchdog

logger = logging.getLogger(__name__)


class BridgeState(Enum):
    """Lifecycle states."""
    IDLE = "idle"
    OPENING = "opening"
    CONFIGURING = "configuring"
    LISTENING = "listening"
    CLOSING = "closing"
    TERMINATED = "terminated"


def generate_session_id() -> int:
    """Random non-zero 32-bit id for the config handshake, never the nodeless id."""
    while True:
        session_id = random.randint(1, 0xFFFFFFFF)
        if session_id != NODELESS_CONFIG_ID:
            return session_id


class Session:
    """
    A single connection attempt.

    run() never raises for session-level failures; it returns a
    SessionOutcome the lifecycle loop acts on.
    """

    def __init__(
        self,
        transport,
        device: str,
        dispatcher: PacketDispatcher,
        cancel: CancellationToken,
        mesh_config: Optional[MeshtasticConfig] = None,
        bridge_config: Optional[BridgeConfig] = None,
        on_state: Optional[Callable[[BridgeState], None]] = None,
    ):
        """
        Initialize session.

        Args:
            transport: Provider with open()/configure()
            device: Device identifier handed to transport.open()
            dispatcher: Packet dispatcher for received events
            cancel: Shared cancellation token
            mesh_config: Open/configure timeouts
            bridge_config: Tick interval and idle threshold
            on_state: Called on every state transition
        """
        self.transport = transport
        self.device = device
        self.dispatcher = dispatcher
        self.cancel = cancel
        self.mesh_config = mesh_config or MeshtasticConfig()
        self.bridge_config = bridge_config or BridgeConfig()
        self._on_state = on_state

        self.session_id = generate_session_id()
        self.status = SessionStatus.RUNNING
        self.events_received = 0
        self.watchdog = IdleWatchdog(
            tick_interval=self.bridge_config.tick_interval_seconds,
            threshold=self.bridge_config.idle_timeout_seconds,
        )

    def _set_state(self, state: BridgeState):
        logger.debug(f"Session {self.session_id}: {state.value}")
        if self._on_state:
            self._on_state(state)

    async def run(self) -> SessionOutcome:
        """Run the session to completion."""
        stream = None
        try:
            self._set_state(BridgeState.OPENING)
            stream = await self._open()

            self._set_state(BridgeState.CONFIGURING)
            stream = await self._configure(stream)

            self._set_state(BridgeState.LISTENING)
            outcome = await self._listen(stream)
        except OperationCancelled:
            outcome = SessionOutcome.cancelled()
        except SessionError as e:
            outcome = SessionOutcome.failed(e)
        finally:
            if stream is not None:
                self._set_state(BridgeState.CLOSING)
                await self._close(stream)

        self.status = outcome.status
        return outcome

    async def _open(self):
        timeout = self.transport.open_timeout(self.mesh_config)
        try:
            return await self.cancel.run(self.transport.open(self.device, timeout), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise ConnectError(f"Timed out opening {self.device} after {timeout:g}s") from e
        except (OperationCancelled, ConnectError):
            raise
        except Exception as e:
            raise ConnectError(f"Failed to open {self.device}: {e}") from e

    async def _configure(self, stream):
        timeout = self.mesh_config.configure_timeout_seconds
        logger.info(f"Configuring session {self.session_id}")
        try:
            return await self.cancel.run(
                self.transport.configure(stream, self.session_id, timeout),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            raise ConfigureError(f"Configuration not acknowledged within {timeout:g}s") from e
        except (OperationCancelled, ConfigureError):
            raise
        except Exception as e:
            raise ConfigureError(f"Configuration failed: {e}") from e

    async def _listen(self, stream) -> SessionOutcome:
        """
        Race the next event, a watchdog tick, and cancellation until one of
        them ends the session.
        """
        tick = self.bridge_config.tick_interval_seconds
        cancel_wait = asyncio.ensure_future(self.cancel.wait())
        recv_task: Optional[asyncio.Future] = None

        try:
            while True:
                if self.cancel.cancelled:
                    return SessionOutcome.cancelled()

                if recv_task is None:
                    recv_task = asyncio.ensure_future(stream.recv())

                done, _ = await asyncio.wait(
                    {recv_task, cancel_wait},
                    timeout=tick,
                    return_when=asyncio.FIRST_COMPLETED,
                )

                if cancel_wait in done:
                    return SessionOutcome.cancelled()

                if recv_task in done:
                    task, recv_task = recv_task, None
                    try:
                        event = task.result()
                    except Exception as e:
                        return SessionOutcome.failed(ConnectionLostError(f"Receive failed: {e}"))

                    if event is None:
                        return SessionOutcome.failed(ConnectionLostError("Transport stream closed"))

                    logger.debug("Got message.")
                    self.watchdog.reset()
                    self.events_received += 1
                    try:
                        await self.dispatcher.dispatch(event)
                    except Exception as e:
                        logger.exception("Dispatch failed")
                        return SessionOutcome.failed(DispatchError(f"Dispatch failed: {e}"))
                    continue

                # Nothing arrived within one tick
                if self.watchdog.tick():
                    return SessionOutcome.failed(IdleTimeoutError(
                        f"Idle for more than {self.watchdog.threshold:g}s"
                    ))
        finally:
            cancel_wait.cancel()
            if recv_task is not None:
                recv_task.cancel()

    async def _close(self, stream):
        """Release the stream. Failures are logged only."""
        try:
            await stream.close()
        except Exception as e:
            logger.warning(f"Error closing transport stream: {e}")
