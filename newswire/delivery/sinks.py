"""Destinations that receive digest chunks, in order."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Optional

import requests

from newswire.delivery.chunking import DISCORD_MAX_MESSAGE_LENGTH, TELEGRAM_MAX_MESSAGE_LENGTH
from newswire.utils.retry import call_with_retry


logger = logging.getLogger(__name__)

DISCORD_API_BASE = "https://discord.com/api/v10"
TELEGRAM_API_BASE = "https://api.telegram.org"
# Discord channel type for a regular text channel in a server.
DISCORD_GUILD_TEXT = 0


class DeliveryError(Exception):
    """Raised when a destination cannot be resolved or a message cannot be sent."""


class DigestSink:
    """Base destination. Subclasses implement `resolve()` and `_send_once()`."""

    name = "sink"
    max_message_length = DISCORD_MAX_MESSAGE_LENGTH

    def __init__(
        self,
        *,
        timeout: int = 30,
        retry_attempts: int = 3,
        retry_delay: float = 2.0,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.timeout = timeout
        self.retry_attempts = max(1, int(retry_attempts))
        self.retry_delay = retry_delay
        self.session = session or requests.Session()
        self._sleep = sleep
        self._closed = False

    def resolve(self) -> None:
        """Check the destination exists and accepts messages. Raises DeliveryError."""

    def _send_once(self, chunk: str) -> None:
        raise NotImplementedError

    def send(self, chunk: str) -> None:
        if len(chunk) > self.max_message_length:
            raise DeliveryError(f"chunk of {len(chunk)} chars exceeds the {self.max_message_length} limit of {self.name}")
        try:
            call_with_retry(
                self._send_once,
                chunk,
                max_retries=self.retry_attempts,
                base_delay=self.retry_delay,
                sleep=self._sleep,
            )
        except DeliveryError:
            raise
        except Exception as e:
            raise DeliveryError(f"{self.name} delivery failed: {e}") from e

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.session.close()


class LoggingSink(DigestSink):
    """Writes chunks to the log instead of a chat platform (no destination configured)."""

    name = "log"

    def _send_once(self, chunk: str) -> None:
        logger.info(f"Digest chunk ({len(chunk)} chars):\n{chunk}")


class DiscordChannelSink(DigestSink):
    name = "discord"
    max_message_length = DISCORD_MAX_MESSAGE_LENGTH

    def __init__(self, bot_token: str, channel_id: str, **kwargs: Any):
        super().__init__(**kwargs)
        self.channel_id = str(channel_id)
        self.session.headers.update(
            {
                "Authorization": f"Bot {bot_token}",
                "User-Agent": "DiscordBot (newswire, 1.0)",
            }
        )

    def resolve(self) -> None:
        url = f"{DISCORD_API_BASE}/channels/{self.channel_id}"
        try:
            resp = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            raise DeliveryError(f"cannot reach Discord: {e}") from e
        if resp.status_code == 404:
            logger.warning(f"❌ Discord channel {self.channel_id} not found")
            raise DeliveryError(f"Discord channel {self.channel_id} not found")
        if resp.status_code in (401, 403):
            raise DeliveryError(f"Discord refused access to channel {self.channel_id} ({resp.status_code})")
        try:
            resp.raise_for_status()
        except requests.HTTPError as e:
            raise DeliveryError(f"Discord channel lookup failed: {e}") from e
        channel_type = resp.json().get("type")
        if channel_type != DISCORD_GUILD_TEXT:
            logger.warning(f"❌ Discord channel {self.channel_id} is not a guild text channel (type {channel_type})")
            raise DeliveryError(f"Discord channel {self.channel_id} is not a guild text channel")

    def _send_once(self, chunk: str) -> None:
        url = f"{DISCORD_API_BASE}/channels/{self.channel_id}/messages"
        try:
            resp = self.session.post(url, json={"content": chunk}, timeout=self.timeout)
            resp.raise_for_status()
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            if status == 429:
                logger.warning("Discord rate limit hit")
            elif status == 403:
                logger.error("Discord forbidden - check the bot's channel permissions")
            else:
                logger.error(f"Discord HTTP error: {e}")
            raise


class TelegramSink(DigestSink):
    name = "telegram"
    max_message_length = TELEGRAM_MAX_MESSAGE_LENGTH

    def __init__(self, bot_token: str, chat_id: str, **kwargs: Any):
        super().__init__(**kwargs)
        self.chat_id = str(chat_id)
        self._base = f"{TELEGRAM_API_BASE}/bot{bot_token}"

    def resolve(self) -> None:
        try:
            resp = self.session.get(f"{self._base}/getChat", params={"chat_id": self.chat_id}, timeout=self.timeout)
            result = resp.json()
        except (requests.RequestException, ValueError) as e:
            raise DeliveryError(f"cannot reach Telegram: {e}") from e
        if not result.get("ok"):
            raise DeliveryError(f"Telegram chat {self.chat_id} unavailable: {result.get('description', 'Unknown error')}")

    def _send_once(self, chunk: str) -> None:
        data = {
            "chat_id": self.chat_id,
            "text": chunk,
            "parse_mode": "Markdown",
            "disable_web_page_preview": True,
        }
        resp = self.session.post(f"{self._base}/sendMessage", json=data, timeout=self.timeout)
        result = resp.json()
        if not result.get("ok"):
            # Digest markdown is not always valid Telegram markdown.
            logger.warning("Telegram markdown parsing failed, retrying without formatting")
            plain = {k: v for k, v in data.items() if k != "parse_mode"}
            resp = self.session.post(f"{self._base}/sendMessage", json=plain, timeout=self.timeout)
            resp.raise_for_status()
            result = resp.json()
            if not result.get("ok"):
                raise DeliveryError(f"Telegram API error: {result.get('description', 'Unknown error')}")
