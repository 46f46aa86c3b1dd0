"""
MBBS Idle Watchdog

Counts idle time in whole ticks inside the listening loop.
"""

import logging

logger = logging.getLogger(__name__)


class IdleWatchdog:
    """Idle accumulator: tick() adds one interval, reset() clears it."""

    def __init__(self, tick_interval: float = 10, threshold: float = 300):
        self.tick_interval = tick_interval
        self.threshold = threshold
        self.idle_seconds: float = 0
        self._fired = False

    @property
    def expired(self) -> bool:
        return self.idle_seconds >= self.threshold

    def reset(self):
        self.idle_seconds = 0

    def tick(self) -> bool:
        """
        Record one idle tick.

        Returns True exactly once per watchdog, on the tick that crosses
        the threshold.
        """
        self.idle_seconds += self.tick_interval
        logger.info(f"Nothing happened in {self.idle_seconds:g}s, but still alive")

        if self.expired and not self._fired:
            self._fired = True
            logger.warning(f"Idle for more than {self.threshold:g}s, resetting connection")
            return True
        return False
