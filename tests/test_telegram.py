"""Tests for the Telegram channel — mock HTTP responses from the Bot API."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from relay.channels import TelegramChannel, get_channel
from relay.channels.base import (
    ChannelAuthError,
    ChannelConnectionError,
    ChannelError,
    ChannelMessage,
)
from relay.config import RelayConfig


def _mock_response(status_code=200, body=None):
    resp = MagicMock()
    resp.status_code = status_code
    if body is None:
        resp.json = MagicMock(side_effect=ValueError("no json"))
    else:
        resp.json = MagicMock(return_value=body)
    return resp


def _ok(result):
    return _mock_response(200, {"ok": True, "result": result})


def _update(update_id, text=None, chat_id=10, sender_id=20):
    message = {"message_id": update_id, "chat": {"id": chat_id}, "from": {"id": sender_id}}
    if text is not None:
        message["text"] = text
    return {"update_id": update_id, "message": message}


@pytest.fixture()
def channel():
    ch = TelegramChannel(token="123:ABC", base_url="https://tg.example/")
    ch._client = AsyncMock()
    return ch


class TestCalls:
    @pytest.mark.asyncio
    async def test_verify(self, channel):
        channel._client.post = AsyncMock(return_value=_ok({"id": 1, "username": "relay_bot"}))
        me = await channel.verify()
        assert me["username"] == "relay_bot"
        url = channel._client.post.call_args.args[0]
        assert url == "https://tg.example/bot123:ABC/getMe"

    @pytest.mark.asyncio
    async def test_missing_token(self):
        ch = TelegramChannel(token="")
        ch._client = AsyncMock()
        with pytest.raises(ChannelAuthError):
            await ch.verify()
        ch._client.post.assert_not_called()

    @pytest.mark.asyncio
    async def test_unauthorized(self, channel):
        channel._client.post = AsyncMock(
            return_value=_mock_response(401, {"ok": False, "description": "Unauthorized"})
        )
        with pytest.raises(ChannelAuthError):
            await channel.verify()

    @pytest.mark.asyncio
    async def test_api_error(self, channel):
        channel._client.post = AsyncMock(
            return_value=_mock_response(400, {"ok": False, "description": "chat not found"})
        )
        with pytest.raises(ChannelError, match="chat not found"):
            await channel.resolve("@nobody")

    @pytest.mark.asyncio
    async def test_non_json(self, channel):
        channel._client.post = AsyncMock(return_value=_mock_response(502))
        with pytest.raises(ChannelError, match="non-JSON"):
            await channel.verify()

    @pytest.mark.asyncio
    async def test_network_error(self, channel):
        channel._client.post = AsyncMock(side_effect=httpx.ConnectError("refused"))
        with pytest.raises(ChannelConnectionError):
            await channel.verify()

    @pytest.mark.asyncio
    async def test_server_disconnect_is_connection_error(self, channel):
        channel._client.post = AsyncMock(
            side_effect=httpx.RemoteProtocolError("Server disconnected without sending a response.")
        )
        with pytest.raises(ChannelConnectionError):
            await channel.send_message("100", "hi")

    @pytest.mark.asyncio
    async def test_resolve_returns_string_id(self, channel):
        channel._client.post = AsyncMock(return_value=_ok({"id": -100123, "type": "group"}))
        assert await channel.resolve("-100123") == "-100123"
        assert channel._client.post.call_args.kwargs["json"] == {"chat_id": "-100123"}

    @pytest.mark.asyncio
    async def test_resolve_rejects_username(self, channel):
        channel._client.post = AsyncMock()
        with pytest.raises(ChannelError, match="numeric chat id"):
            await channel.resolve("@operator")
        channel._client.post.assert_not_called()

    @pytest.mark.asyncio
    async def test_send_message(self, channel):
        channel._client.post = AsyncMock(return_value=_ok({"message_id": 5}))
        await channel.send_message("100", "hi")
        call = channel._client.post.call_args
        assert call.args[0].endswith("/sendMessage")
        assert call.kwargs["json"] == {"chat_id": "100", "text": "hi"}


class TestParseUpdate:
    def test_text_message(self):
        msg = TelegramChannel._parse_update(_update(1, "hello", chat_id=-5, sender_id=9))
        assert msg == ChannelMessage(chat_id="-5", sender_id="9", text="hello")

    def test_no_text(self):
        assert TelegramChannel._parse_update(_update(1)) is None

    def test_channel_post_without_sender(self):
        update = {"update_id": 3, "channel_post": {"chat": {"id": -7}, "text": "hey"}}
        assert TelegramChannel._parse_update(update) == ChannelMessage("-7", "unknown", "hey")

    def test_other_update_kind(self):
        assert TelegramChannel._parse_update({"update_id": 4, "edited_message": {}}) is None


class TestMessages:
    @pytest.mark.asyncio
    async def test_yields_text_and_advances_offset(self, channel):
        channel._client.post = AsyncMock(side_effect=[
            _ok([_update(5, "first"), _update(6)]),
            _ok([_update(7, "second")]),
        ])
        stream = channel.messages()
        try:
            first = await stream.__anext__()
            second = await stream.__anext__()
        finally:
            await stream.aclose()

        assert first.text == "first"
        assert second.text == "second"
        calls = channel._client.post.call_args_list
        assert "offset" not in calls[0].kwargs["json"]
        assert calls[1].kwargs["json"]["offset"] == 7
        assert calls[0].kwargs["timeout"] == channel.timeout + channel.poll_timeout

    @pytest.mark.asyncio
    async def test_retries_network_errors_with_backoff(self, channel):
        channel._client.post = AsyncMock(side_effect=[
            httpx.ConnectError("down"),
            httpx.ReadTimeout("slow"),
            _ok([_update(1, "back")]),
        ])
        sleep = AsyncMock()
        with patch("relay.channels.telegram.asyncio.sleep", sleep):
            stream = channel.messages()
            try:
                msg = await stream.__anext__()
            finally:
                await stream.aclose()
        assert msg.text == "back"
        assert [c.args[0] for c in sleep.await_args_list] == [1, 2]

    @pytest.mark.asyncio
    async def test_survives_server_disconnect_and_unexpected_errors(self, channel):
        channel._client.post = AsyncMock(side_effect=[
            httpx.RemoteProtocolError("Server disconnected without sending a response."),
            KeyError("result"),
            _ok([_update(1, "back")]),
        ])
        sleep = AsyncMock()
        with patch("relay.channels.telegram.asyncio.sleep", sleep):
            stream = channel.messages()
            try:
                msg = await stream.__anext__()
            finally:
                await stream.aclose()
        assert msg.text == "back"
        assert [c.args[0] for c in sleep.await_args_list] == [1, 2]

    @pytest.mark.asyncio
    async def test_auth_error_ends_stream(self, channel):
        channel._client.post = AsyncMock(return_value=_mock_response(401, {"ok": False}))
        stream = channel.messages()
        with pytest.raises(ChannelAuthError):
            await stream.__anext__()


class TestFactory:
    def test_none_disables(self):
        assert get_channel(RelayConfig(channel="none")) is None

    def test_telegram(self):
        ch = get_channel(RelayConfig(channel="Telegram", telegram_token="t"))
        assert isinstance(ch, TelegramChannel)

    def test_unknown(self):
        with pytest.raises(ValueError, match="Unknown channel"):
            get_channel(RelayConfig(channel="irc"))
