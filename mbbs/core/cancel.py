"""
MBBS Cancellation Coordinator

A single shutdown signal shared by every suspension point.
"""

import asyncio
import logging
import signal
from typing import Awaitable, Optional, TypeVar

from ..errors import OperationCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationToken:
    """
    Settable-once shutdown signal.

    cancel() is idempotent. Every wait in the bridge goes through run() or
    sleep() so it resolves promptly once the token is set.
    """

    def __init__(self):
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self):
        """Request shutdown."""
        if not self._event.is_set():
            logger.info("Cancellation requested")
            self._event.set()

    async def wait(self):
        """Block until cancellation is requested."""
        await self._event.wait()

    async def sleep(self, seconds: float) -> bool:
        """
        Sleep unless cancelled first.

        Returns:
            True if the full delay elapsed, False if cancelled
        """
        if self.cancelled:
            return False
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return True
        return False

    async def run(self, aw: Awaitable[T], timeout: Optional[float] = None) -> T:
        """
        Await aw, racing it against cancellation.

        Raises:
            OperationCancelled: cancellation won the race
            asyncio.TimeoutError: timeout elapsed first
        """
        task = asyncio.ensure_future(aw)
        if self.cancelled:
            task.cancel()
            raise OperationCancelled()

        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            waiter.cancel()

        if task in done:
            return task.result()

        task.cancel()
        if waiter in done:
            raise OperationCancelled()
        raise asyncio.TimeoutError()


def install_signal_handlers(token: CancellationToken):
    """Cancel the token on the first SIGINT or SIGTERM."""
    loop = asyncio.get_running_loop()

    def _handler(signum, frame=None):
        logger.info(f"Received signal {signum}, initiating shutdown...")
        loop.call_soon_threadsafe(token.cancel)

    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, _handler, signum)
        except (NotImplementedError, RuntimeError):
            # Windows event loops have no add_signal_handler
            signal.signal(signum, _handler)
