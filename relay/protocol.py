"""Device protocol handler.

Translates transport events (open, message, close, error) into registry
mutations and operator notifications.  A bad frame is never fatal: it is
logged and dropped, and the device stays connected.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

from relay.messages import (
    ConnectedMessage,
    ConnectMessage,
    HeartbeatMessage,
    MalformedMessage,
    UnknownMessage,
    decode_device_message,
)
from relay.registry import ConnectionRegistry, Transport

logger = logging.getLogger(__name__)

DEFAULT_LABEL = "Unknown"

Notifier = Callable[[str], Awaitable[None]]


class DeviceProtocolHandler:
    """Single entry point for everything a device sends."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        notifier: Notifier | None = None,
        notify_on_disconnect: bool = False,
    ) -> None:
        self.registry = registry
        self.notifier = notifier
        self.notify_on_disconnect = notify_on_disconnect
        self.stats = {"messages": 0, "malformed": 0, "unknown": 0}

    async def open(self, transport: Transport, address: str) -> str:
        """Register a new transport and greet the device with its id."""
        conn_id = self.registry.register(transport, address)
        logger.info(
            "Client connected: %s (%s) (Total: %d)", conn_id, address, len(self.registry)
        )
        try:
            await transport.send_text(ConnectedMessage(id=conn_id).to_json())
        except Exception as exc:
            logger.warning("Failed to greet %s: %s", conn_id, exc)
        return conn_id

    async def handle(self, conn_id: str, raw: str | bytes) -> None:
        """Process one inbound frame from *conn_id*."""
        self.stats["messages"] += 1
        logger.debug("Message from %s: %r", conn_id, raw)

        msg = decode_device_message(raw)
        if isinstance(msg, MalformedMessage):
            self.stats["malformed"] += 1
            logger.warning("Invalid message from %s: %s", conn_id, msg.reason)
            return

        conn = self.registry.get(conn_id)
        if conn is None:
            logger.debug("Message for unregistered connection %s dropped", conn_id)
            return

        if isinstance(msg, ConnectMessage):
            label = msg.label or DEFAULT_LABEL
            address = msg.address or conn.address
            self.registry.update(
                conn_id, address=address, label=label, last_seen=self.registry.now()
            )
            text = f"🟢 Client registered: {label} ({address}) (Total: {len(self.registry)})"
            logger.info(
                "Client registered: %s (%s) (Total: %d)", label, address, len(self.registry)
            )
            await self._notify(text)

        elif isinstance(msg, HeartbeatMessage):
            self.registry.touch(conn_id)
            logger.debug("Heartbeat from %s (%s)", conn_id, conn.address)

        elif isinstance(msg, UnknownMessage):
            self.stats["unknown"] += 1
            logger.info("Unknown message type from %s: %s", conn_id, msg.type)

    async def close(self, conn_id: str) -> None:
        """Forget *conn_id*; safe to call more than once."""
        conn = self.registry.remove(conn_id)
        if conn is None:
            return
        text = (
            f"🔴 Client disconnected: {conn_id} ({conn.address}) "
            f"(Total: {len(self.registry)})"
        )
        logger.info(
            "Client disconnected: %s (%s) (Total: %d)",
            conn_id, conn.address, len(self.registry),
        )
        if self.notify_on_disconnect:
            await self._notify(text)

    def error(self, conn_id: str, exc: BaseException) -> None:
        logger.warning("Error from %s: %s", conn_id, exc)

    async def _notify(self, text: str) -> None:
        if self.notifier is None:
            return
        try:
            await self.notifier(text)
        except Exception:
            logger.exception("Operator notification failed")
