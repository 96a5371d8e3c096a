"""Discord webhook notification sink."""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

import requests

logger = logging.getLogger(__name__)

# Discord rejects message content longer than this.
DISCORD_MAX_CONTENT_LENGTH = 2000


class NotificationError(Exception):
    """Raised when a notification could not be delivered."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NotificationSink(Protocol):
    async def send(self, text: str) -> None: ...


def _truncate(text: str, limit: int = DISCORD_MAX_CONTENT_LENGTH) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 1] + "…"


class DiscordWebhookSink:
    """Posts plain-text messages to a Discord webhook."""

    def __init__(
        self,
        webhook_url: str,
        *,
        timeout: float = 10.0,
        session: requests.Session | None = None,
    ) -> None:
        self._webhook_url = webhook_url
        self._timeout = timeout
        self._session = session or requests.Session()

    def send_sync(self, text: str) -> None:
        """Deliver a message.

        Raises:
            NotificationError: On transport failure or a non-2xx response.
        """
        try:
            response = self._session.post(
                self._webhook_url,
                json={"content": _truncate(text)},
                timeout=self._timeout,
            )
        except requests.RequestException as e:
            raise NotificationError(f"Discord webhook failed: {e}") from e

        if not response.ok:
            detail = f"{response.status_code} {response.reason or ''} {response.text or ''}".strip()
            raise NotificationError(f"Discord webhook failed: {detail}", status_code=response.status_code)
        logger.debug("Discord webhook delivered (%d chars)", len(text))

    async def send(self, text: str) -> None:
        await asyncio.to_thread(self.send_sync, text)

    def close(self) -> None:
        self._session.close()
