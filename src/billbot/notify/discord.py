"""Result delivery to chat channels."""

import logging
from abc import ABC, abstractmethod
from typing import Optional

import requests

from ..errors import NotificationError

logger = logging.getLogger(__name__)

DISCORD_API_URL = "https://discord.com/api/v10"
MAX_MESSAGE_LENGTH = 2000


class Notifier(ABC):
    """Abstract interface for delivering a message to a channel."""

    @abstractmethod
    def deliver(self, channel_id: str, text: str) -> None:
        """Send text to the channel.

        Raises:
            NotificationError: If delivery fails
        """
        pass


class DiscordNotifier(Notifier):
    """Posts messages to a Discord channel as a bot."""

    def __init__(
        self,
        bot_token: str,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
        base_url: str = DISCORD_API_URL,
    ):
        self.bot_token = bot_token
        self.session = session or requests.Session()
        self.timeout = timeout
        self.base_url = base_url

    def deliver(self, channel_id: str, text: str) -> None:
        if len(text) > MAX_MESSAGE_LENGTH:
            text = text[: MAX_MESSAGE_LENGTH - 1] + "…"

        url = f"{self.base_url}/channels/{channel_id}/messages"
        try:
            response = self.session.post(
                url,
                headers={
                    "Authorization": f"Bot {self.bot_token}",
                    "Content-Type": "application/json",
                },
                json={"content": text},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise NotificationError(f"Failed to send Discord message: {e}") from e

        if not response.ok:
            raise NotificationError(
                f"Failed to send Discord message ({response.status_code}): {response.text}"
            )

        logger.debug(f"Delivered {len(text)} chars to channel {channel_id}")
