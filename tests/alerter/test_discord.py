"""Tests for the Discord webhook sink."""

from unittest.mock import MagicMock

import pytest
import requests

from cardano_portfolio_tracker.alerter.discord import (
    DISCORD_MAX_CONTENT_LENGTH,
    DiscordWebhookSink,
    NotificationError,
)

WEBHOOK = "https://discord.test/api/webhooks/1/abc"


@pytest.fixture
def session() -> MagicMock:
    session = MagicMock(spec=requests.Session)
    session.post.return_value = MagicMock(ok=True, status_code=204)
    return session


class TestDiscordWebhookSink:
    """Tests for DiscordWebhookSink."""

    async def test_posts_content(self, session) -> None:
        sink = DiscordWebhookSink(WEBHOOK, timeout=5.0, session=session)

        await sink.send("hello")

        session.post.assert_called_once_with(WEBHOOK, json={"content": "hello"}, timeout=5.0)

    def test_truncates_long_messages(self, session) -> None:
        sink = DiscordWebhookSink(WEBHOOK, session=session)

        sink.send_sync("x" * 2500)

        content = session.post.call_args.kwargs["json"]["content"]
        assert len(content) == DISCORD_MAX_CONTENT_LENGTH
        assert content.endswith("…")

    def test_non_ok_response(self, session) -> None:
        session.post.return_value = MagicMock(ok=False, status_code=429, reason="Too Many Requests", text="")
        sink = DiscordWebhookSink(WEBHOOK, session=session)

        with pytest.raises(NotificationError) as exc:
            sink.send_sync("hello")

        assert exc.value.status_code == 429
        assert str(exc.value) == "Discord webhook failed: 429 Too Many Requests"

    async def test_transport_error(self, session) -> None:
        session.post.side_effect = requests.ConnectionError("refused")
        sink = DiscordWebhookSink(WEBHOOK, session=session)

        with pytest.raises(NotificationError, match="refused") as exc:
            await sink.send("hello")

        assert exc.value.status_code is None

    def test_close(self, session) -> None:
        DiscordWebhookSink(WEBHOOK, session=session).close()

        session.close.assert_called_once()
