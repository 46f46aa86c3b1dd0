"""
Tests for MBBS Notification Sinks
"""

import logging
from unittest.mock import MagicMock

import pytest
import requests

from mbbs.config import TelegramConfig
from mbbs.errors import NotificationError
from mbbs.notify.telegram import LogNotifier, TelegramNotifier, build_notifier


class TestTelegramNotifier:
    """Tests for Bot API delivery with a mocked HTTP session."""

    def setup_method(self):
        self.config = TelegramConfig(enabled=True, bot_token="123:abc", chat_id="-100200", timeout_seconds=3)
        self.session = MagicMock()
        self.response = MagicMock()
        self.response.json.return_value = {"ok": True, "result": {}}
        self.session.post.return_value = self.response
        self.notifier = TelegramNotifier(self.config, session=self.session)

    @pytest.mark.asyncio
    async def test_send_posts_message(self):
        await self.notifier.send("Alice : hello (BROADCAST)")

        self.session.post.assert_called_once_with(
            "https://api.telegram.org/bot123:abc/sendMessage",
            json={"chat_id": "-100200", "text": "Alice : hello (BROADCAST)"},
            timeout=3,
        )

    @pytest.mark.asyncio
    async def test_connection_error(self):
        self.session.post.side_effect = requests.exceptions.ConnectionError("down")

        with pytest.raises(NotificationError, match="down"):
            await self.notifier.send("hi")

    @pytest.mark.asyncio
    async def test_http_error(self):
        self.response.raise_for_status.side_effect = requests.exceptions.HTTPError("401 Unauthorized")

        with pytest.raises(NotificationError):
            await self.notifier.send("hi")

    @pytest.mark.asyncio
    async def test_rejected_by_api(self):
        self.response.json.return_value = {"ok": False, "description": "chat not found"}

        with pytest.raises(NotificationError, match="chat not found"):
            await self.notifier.send("hi")

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        self.response.json.side_effect = ValueError("not json")

        with pytest.raises(NotificationError):
            await self.notifier.send("hi")

    def test_close(self):
        self.notifier.close()
        self.session.close.assert_called_once()


class TestLogNotifier:
    @pytest.mark.asyncio
    async def test_logs_message(self, caplog):
        with caplog.at_level(logging.INFO, logger="mbbs.notify.telegram"):
            await LogNotifier().send("Error running service: no radio")

        assert "Error running service: no radio" in caplog.text


class TestBuildNotifier:
    def test_telegram_when_configured(self):
        notifier = build_notifier(TelegramConfig(enabled=True, bot_token="t", chat_id="1"))
        try:
            assert isinstance(notifier, TelegramNotifier)
        finally:
            notifier.close()

    @pytest.mark.parametrize("config", [
        TelegramConfig(),
        TelegramConfig(enabled=True, bot_token="", chat_id="1"),
        TelegramConfig(enabled=True, bot_token="t", chat_id=""),
        TelegramConfig(enabled=False, bot_token="t", chat_id="1"),
    ])
    def test_log_fallback(self, config):
        assert isinstance(build_notifier(config), LogNotifier)
