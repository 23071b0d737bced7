"""Remote channel bridge — operator chat ⇄ device fleet.

Inbound chat text is routed by a simple colon grammar::

    esp32:<connection id>:<command>   → that one device (if connected)
    anything else                     → every connected device

Outbound, :meth:`RemoteChannelBridge.notify` pushes status lines (device
registrations, optionally disconnections) to the operator.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Iterable

from relay.channels.base import ChannelError, ChannelMessage, RemoteChannel
from relay.messages import BroadcastRelay, UnicastCommand
from relay.router import Router

logger = logging.getLogger(__name__)

COMMAND_TAG = "esp32"
SEPARATOR = ":"


class RemoteChannelSetupError(Exception):
    """Raised when the channel cannot be authenticated or targets resolved."""


@dataclass(frozen=True)
class PointToPoint:
    target_id: str
    command: str


@dataclass(frozen=True)
class Broadcast:
    text: str


def parse_command(text: str) -> PointToPoint | Broadcast:
    """Apply the addressing rule to one chat message body."""
    parts = text.split(SEPARATOR)
    if len(parts) >= 3 and parts[0].lower() == COMMAND_TAG:
        return PointToPoint(target_id=parts[1], command=SEPARATOR.join(parts[2:]))
    return Broadcast(text=text)


class RemoteChannelBridge:
    """Connects a :class:`RemoteChannel` to the :class:`Router`.

    Parameters
    ----------
    channel:
        The chat backend.
    router:
        Delivery to devices.
    targets:
        Usernames or chat ids whose messages are accepted as commands.
    notify_target:
        Username or chat id that receives status notifications.  Must also
        be one of *targets* to have its own messages accepted.
    """

    def __init__(
        self,
        channel: RemoteChannel,
        router: Router,
        targets: Iterable[str],
        notify_target: str | None = None,
    ) -> None:
        self.channel = channel
        self.router = router
        self._target_names = [t for t in targets if t]
        self._notify_name = notify_target
        self._allowed: frozenset[str] = frozenset()
        self._notify_chat: str | None = None
        self._task: asyncio.Task | None = None
        self.stats = {"unicast": 0, "broadcast": 0, "dropped": 0}

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def start(self) -> None:
        """Authenticate, resolve targets and start consuming messages."""
        if not self._target_names:
            raise RemoteChannelSetupError("No remote targets configured")
        try:
            await self.channel.verify()
            resolved = {}
            for name in self._target_names:
                resolved[name] = await self.channel.resolve(name)
                logger.info("[%s] Listening to %s (chat %s)",
                            self.channel.name, name, resolved[name])
            if self._notify_name:
                notify_chat = resolved.get(self._notify_name)
                if notify_chat is None:
                    notify_chat = await self.channel.resolve(self._notify_name)
            else:
                notify_chat = None
        except ChannelError as exc:
            raise RemoteChannelSetupError(f"{self.channel.name} setup failed: {exc}") from exc

        self._allowed = frozenset(resolved.values())
        self._notify_chat = notify_chat
        self._task = asyncio.create_task(self._consume())

    async def stop(self) -> None:
        try:
            if self._task is not None:
                self._task.cancel()
                try:
                    await self._task
                except asyncio.CancelledError:
                    pass
                except Exception:
                    logger.exception("[%s] Message stream task had failed", self.channel.name)
                self._task = None
        finally:
            await self.channel.aclose()

    @property
    def ready(self) -> bool:
        """``True`` once targets are resolved and messages are flowing."""
        return self._task is not None and not self._task.done()

    @property
    def allowed_chats(self) -> frozenset[str]:
        return self._allowed

    # ------------------------------------------------------------------ #
    # Inbound
    # ------------------------------------------------------------------ #

    async def handle_inbound(self, message: ChannelMessage) -> None:
        """Route one accepted chat message to the device fleet."""
        if message.chat_id not in self._allowed or not message.text:
            return

        logger.info("[%s] %s (%s): %s",
                    self.channel.name, message.chat_id, message.sender_id, message.text)

        parsed = parse_command(message.text)
        if isinstance(parsed, PointToPoint):
            sent = await self.router.unicast(
                parsed.target_id,
                UnicastCommand(id=parsed.target_id, message=parsed.command),
            )
            if sent:
                self.stats["unicast"] += 1
                logger.info("Sent to ESP32 (%s): %s", parsed.target_id, parsed.command)
            else:
                self.stats["dropped"] += 1
                logger.info("Dropped command for unknown or closed client %s",
                            parsed.target_id)
        else:
            self.stats["broadcast"] += 1
            await self.router.broadcast(
                BroadcastRelay(
                    from_=message.chat_id, sender=message.sender_id, message=parsed.text
                )
            )

    async def _consume(self) -> None:
        try:
            async for message in self.channel.messages():
                try:
                    await self.handle_inbound(message)
                except Exception:
                    logger.exception("Failed to route message from %s", message.chat_id)
        except ChannelError as exc:
            logger.error("[%s] Message stream ended: %s", self.channel.name, exc)
        except Exception:
            logger.exception("[%s] Message stream crashed", self.channel.name)

    # ------------------------------------------------------------------ #
    # Outbound
    # ------------------------------------------------------------------ #

    async def notify(self, text: str) -> None:
        """Push a status line to the operator; no-op until resolved."""
        if self._notify_chat is None:
            return
        try:
            await self.channel.send_message(self._notify_chat, text)
        except ChannelError as exc:
            logger.warning("Operator notification failed: %s", exc)
