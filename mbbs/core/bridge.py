"""
MBBS Bridge

Connection lifecycle manager: runs sessions back to back, reports
failures, and retries until cancelled.
"""

import asyncio
import logging
import time
from pathlib import Path
from typing import Optional

from ..config import Config
from ..db.archive import ArchiveLog
from ..db.storage import Storage
from ..errors import SessionError, SessionOutcome
from ..utils.formatting import format_uptime
from .cancel import CancellationToken, install_signal_handlers
from .dispatcher import PacketDispatcher
from .router import DataPortRouter
from .session import BridgeState, Session

logger = logging.getLogger(__name__)


class Bridge:
    """
    Main bridge class - owns the transport, storage and notifier.

    Responsibilities:
    - Load directory/stats storage once at startup
    - Open, configure and listen on one session at a time
    - Report failures and reconnect after a fixed delay
    - Stop cleanly when the cancellation token is set
    """

    def __init__(
        self,
        config: Config,
        transport,
        notifier,
        storage: Optional[Storage] = None,
        archive: Optional[ArchiveLog] = None,
        cancel: Optional[CancellationToken] = None,
    ):
        """
        Initialize bridge with configuration.

        Args:
            config: Loaded configuration object
            transport: Transport provider (open/configure)
            notifier: Notification sink with async send(text)
            storage: Preloaded storage; loaded from config when None
            archive: Archival log; created from config when None
            cancel: Shared cancellation token
        """
        self.config = config
        self.transport = transport
        self.notifier = notifier
        self.cancel = cancel or CancellationToken()

        self.storage = storage if storage is not None else Storage.load(Path(config.storage.path))
        self.archive = archive if archive is not None else ArchiveLog(Path(config.storage.archive_dir))
        self.router = DataPortRouter(self.storage, notifier)
        self.dispatcher = PacketDispatcher(self.storage, self.router, self.archive)

        self.state = BridgeState.IDLE
        self.sessions_started = 0
        self.failures = 0
        self.last_outcome: Optional[SessionOutcome] = None
        self.start_time: float = 0

        logger.info(f"Bridge initialized for device {self.device!r}")

    @property
    def device(self) -> str:
        return self.config.meshtastic.device_id

    def _set_state(self, state: BridgeState):
        self.state = state

    async def run(self):
        """
        Main run loop.

        Runs sessions until cancelled. Never raises: every failure is
        reported and retried.
        """
        self.start_time = time.time()

        while not self.cancel.cancelled:
            outcome = await self._run_session()
            self.last_outcome = outcome

            if outcome is not None and outcome.is_failure:
                self.failures += 1
                self._report_failure(outcome.error)

            if self.cancel.cancelled:
                break

            self._set_state(BridgeState.IDLE)
            delay = self.config.bridge.retry_delay_seconds
            logger.info(f"Reconnecting in {delay:g}s")
            if not await self.cancel.sleep(delay):
                break

        await self._shutdown()

    async def _run_session(self) -> Optional[SessionOutcome]:
        session = Session(
            transport=self.transport,
            device=self.device,
            dispatcher=self.dispatcher,
            cancel=self.cancel,
            mesh_config=self.config.meshtastic,
            bridge_config=self.config.bridge,
            on_state=self._set_state,
        )
        self.sessions_started += 1

        self.notify(f"Listening for events from {self.device}")

        try:
            return await session.run()
        except Exception as e:
            # Anything that slipped past the session still must not kill us
            logger.exception("Unexpected error in session")
            return SessionOutcome.failed(SessionError(f"Unexpected error: {e}"))

    def _report_failure(self, error: Optional[SessionError]):
        logger.error(f"Error running service: {error}")
        self.notify(f"Error running service: {error}")

    def notify(self, text: str):
        """Queue an alert behind any pending text messages. Failures are logged."""
        self.router.notify(text)

    async def _shutdown(self):
        """Graceful shutdown."""
        logger.info("Shutting down bridge...")
        await self.router.drain()
        self.storage.flush()
        self._set_state(BridgeState.TERMINATED)
        logger.info(
            f"Bridge stopped after {format_uptime(self.start_time)}: "
            f"{self.sessions_started} sessions, {self.failures} failures"
        )


async def run_bridge(bridge: Bridge):
    """Run a bridge with SIGINT/SIGTERM wired to its cancellation token."""
    install_signal_handlers(bridge.cancel)
    await bridge.run()


def start(config: Config, transport=None, notifier=None):
    """Blocking entry point used by the CLI."""
    from ..mesh.transport import MeshtasticTransport
    from ..notify.telegram import build_notifier

    transport = transport or MeshtasticTransport(config.meshtastic.connection_type)
    notifier = notifier or build_notifier(config.telegram)
    try:
        bridge = Bridge(config, transport, notifier)
        asyncio.run(run_bridge(bridge))
    finally:
        notifier.close()
