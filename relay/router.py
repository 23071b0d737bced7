"""Outbound delivery to one device or to the whole fleet."""

from __future__ import annotations

import logging

from relay.messages import OutboundMessage
from relay.registry import Connection, ConnectionRegistry

logger = logging.getLogger(__name__)


class Router:
    """Sends serialised messages over registry connections."""

    def __init__(self, registry: ConnectionRegistry) -> None:
        self.registry = registry

    async def unicast(self, conn_id: str, message: OutboundMessage) -> bool:
        """Send to *conn_id* if it is registered and open.

        Returns ``True`` when the frame was handed to the transport.
        """
        conn = self.registry.get(conn_id)
        if conn is None or not conn.is_open:
            return False
        return await self._send(conn, message.to_json())

    async def broadcast(self, message: OutboundMessage) -> int:
        """Send to every open connection; returns how many succeeded.

        Acts on a snapshot, and a failure on one connection never stops
        delivery to the rest.
        """
        data = message.to_json()
        delivered = 0
        for conn in self.registry.snapshot():
            if not conn.is_open:
                continue
            if await self._send(conn, data):
                delivered += 1
        return delivered

    async def _send(self, conn: Connection, data: str) -> bool:
        try:
            await conn.transport.send_text(data)
        except Exception as exc:
            logger.warning("Send to %s (%s) failed: %s", conn.id, conn.address, exc)
            return False
        return True
