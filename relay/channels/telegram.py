"""Telegram Bot API channel.

Uses httpx for async HTTP and long-polls ``getUpdates`` for inbound
messages, reconnecting with exponential backoff on network failures.
No live Telegram is required to import — errors surface at call time.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator

import httpx

from relay.channels.base import (
    ChannelAuthError,
    ChannelConnectionError,
    ChannelError,
    ChannelMessage,
    RemoteChannel,
)

logger = logging.getLogger(__name__)

_BACKOFF_BASE = 1
_BACKOFF_MAX = 60


class TelegramChannel(RemoteChannel):
    """Thin async wrapper around the Telegram Bot API.

    Parameters
    ----------
    token:
        Bot token from @BotFather.
    base_url:
        API root, overridable for self-hosted Bot API servers.
    poll_timeout:
        Seconds the server may hold a ``getUpdates`` call open.
    """

    name = "telegram"

    def __init__(
        self,
        token: str,
        base_url: str = "https://api.telegram.org",
        poll_timeout: int = 30,
        timeout: float = 10.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.poll_timeout = poll_timeout
        self.timeout = timeout
        self._token = token
        self._offset: int | None = None
        self._client: httpx.AsyncClient = httpx.AsyncClient(timeout=self.timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    async def verify(self) -> dict:
        """Call ``getMe`` — fails with :class:`ChannelAuthError` on a bad token."""
        if not self._token:
            raise ChannelAuthError("Telegram bot token is not set")
        me = await self._call("getMe")
        logger.info("Logged in as: %s", me.get("username") or me.get("id"))
        return me

    async def resolve(self, target: str) -> str:
        """Look up *target* with ``getChat`` and return its numeric chat id.

        Bots cannot look up private users by ``@username``, so targets must
        be numeric ids. A leading ``@`` is refused before any request is made.
        """
        if target.startswith("@"):
            raise ChannelError(
                f"cannot resolve {target!r}: Telegram bots need a numeric chat id, "
                "not an @username"
            )
        chat = await self._call("getChat", chat_id=target)
        return str(chat["id"])

    async def send_message(self, chat_id: str, text: str) -> None:
        await self._call("sendMessage", chat_id=chat_id, text=text)

    async def messages(self) -> AsyncIterator[ChannelMessage]:
        backoff = _BACKOFF_BASE
        while True:
            try:
                updates = await self._poll()
            except ChannelAuthError:
                raise
            except ChannelError as exc:
                logger.warning("Telegram polling failed: %s, retrying in %ss", exc, backoff)
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, _BACKOFF_MAX)
                continue
            except Exception as exc:  # noqa: BLE001
                logger.warning("Unexpected Telegram polling error: %s, retrying in %ss",
                               exc, backoff)
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, _BACKOFF_MAX)
                continue

            backoff = _BACKOFF_BASE
            for update in updates:
                self._offset = update["update_id"] + 1
                msg = self._parse_update(update)
                if msg is not None:
                    yield msg

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    async def _poll(self) -> list[dict]:
        params: dict[str, Any] = {
            "timeout": self.poll_timeout,
            "allowed_updates": ["message", "channel_post"],
        }
        if self._offset is not None:
            params["offset"] = self._offset
        result = await self._call(
            "getUpdates", _timeout=self.timeout + self.poll_timeout, **params
        )
        return result if isinstance(result, list) else []

    @staticmethod
    def _parse_update(update: dict) -> ChannelMessage | None:
        message = update.get("message") or update.get("channel_post")
        if not message:
            return None
        text = message.get("text")
        if not text:
            return None
        chat = message.get("chat") or {}
        sender = message.get("from") or {}
        return ChannelMessage(
            chat_id=str(chat.get("id", "")),
            sender_id=str(sender["id"]) if "id" in sender else "unknown",
            text=text,
        )

    async def _call(self, method: str, _timeout: float | None = None, **params: Any) -> Any:
        # The token is part of the URL, so never log it.
        url = f"{self.base_url}/bot{self._token}/{method}"
        try:
            response = await self._client.post(
                url, json=params, timeout=_timeout or self.timeout
            )
        except httpx.TransportError as exc:
            raise ChannelConnectionError(f"Cannot reach Telegram ({method}): {exc}") from exc

        if response.status_code == 401:
            raise ChannelAuthError("Telegram rejected the bot token")
        try:
            body = response.json()
        except ValueError as exc:
            raise ChannelError(
                f"Telegram {method} returned non-JSON (HTTP {response.status_code})"
            ) from exc
        if not body.get("ok"):
            raise ChannelError(
                f"Telegram {method} failed: {body.get('description', response.status_code)}"
            )
        return body.get("result")
