"""
MBBS Notification Sinks

Human-readable alerts leave the bridge through one of these.
"""

import asyncio
import logging

import requests

from ..config import TelegramConfig
from ..errors import NotificationError

logger = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org/bot{token}/sendMessage"


class TelegramNotifier:
    """Send alerts to a Telegram chat through the Bot API."""

    def __init__(self, config: TelegramConfig, session: requests.Session = None):
        """
        Initialize notifier.

        Args:
            config: Telegram settings (token, chat id, timeout)
            session: Optional requests session, mainly for tests
        """
        self.config = config
        self._session = session or requests.Session()
        self._url = TELEGRAM_API_URL.format(token=config.bot_token)

    def _post(self, text: str):
        response = self._session.post(
            self._url,
            json={"chat_id": self.config.chat_id, "text": text},
            timeout=self.config.timeout_seconds,
        )
        response.raise_for_status()
        body = response.json()
        if not body.get("ok", False):
            raise NotificationError(
                f"Telegram rejected message: {body.get('description', 'unknown error')}"
            )

    async def send(self, text: str):
        """
        Deliver text to the configured chat.

        Raises:
            NotificationError: delivery failed
        """
        try:
            await asyncio.to_thread(self._post, text)
        except NotificationError:
            raise
        except (requests.exceptions.RequestException, ValueError) as e:
            raise NotificationError(f"Telegram send failed: {e}") from e
        logger.debug(f"Sent to Telegram: {text[:50]}")

    def close(self):
        self._session.close()


class LogNotifier:
    """Fallback sink when no Telegram bot is configured: alerts go to the log."""

    async def send(self, text: str):
        logger.info(f"NOTIFY: {text}")

    def close(self):
        pass


def build_notifier(config: TelegramConfig):
    """Pick the sink for this configuration."""
    if config.enabled and config.bot_token and config.chat_id:
        logger.info("Connecting to telegram...")
        return TelegramNotifier(config)
    logger.warning("Telegram not configured, notifications will only be logged")
    return LogNotifier()
