from unittest.mock import MagicMock

import pytest
import requests

from billbot.errors import NotificationError
from billbot.notify.discord import MAX_MESSAGE_LENGTH, DiscordNotifier


def make_notifier(status=200):
    session = MagicMock()
    session.post.return_value = MagicMock(status_code=status, ok=status < 400, text="error body")
    return DiscordNotifier("bot-token", session=session), session


def test_posts_message_as_bot():
    notifier, session = make_notifier()

    notifier.deliver("123", "hello")

    args, kwargs = session.post.call_args
    assert args[0].endswith("/channels/123/messages")
    assert kwargs["headers"]["Authorization"] == "Bot bot-token"
    assert kwargs["json"] == {"content": "hello"}


def test_long_messages_are_truncated():
    notifier, session = make_notifier()

    notifier.deliver("123", "x" * 5000)

    assert len(session.post.call_args.kwargs["json"]["content"]) == MAX_MESSAGE_LENGTH


def test_error_status_raises():
    notifier, _ = make_notifier(status=403)

    with pytest.raises(NotificationError) as exc_info:
        notifier.deliver("123", "hello")
    assert "403" in str(exc_info.value)


def test_network_error_raises():
    session = MagicMock()
    session.post.side_effect = requests.ConnectionError("dns failure")

    with pytest.raises(NotificationError):
        DiscordNotifier("bot-token", session=session).deliver("123", "hello")
