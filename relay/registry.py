"""In-memory registry of connected devices.

The registry is the single source of truth for which devices are currently
reachable.  All mutations are plain synchronous methods, so on the asyncio
event loop each one runs to completion without interleaving with any other
handler, timer or broadcast.

Usage::

    registry = ConnectionRegistry()
    conn_id = registry.register(transport, "10.0.0.12")
    registry.update(conn_id, label="garage door")
    for conn in registry.snapshot():
        ...
    registry.remove(conn_id)
"""

from __future__ import annotations

import abc
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

logger = logging.getLogger(__name__)

UNREGISTERED_LABEL = "unregistered"

_UPDATABLE = frozenset({"address", "label", "last_seen"})


class TransportError(Exception):
    """Raised when a frame cannot be delivered over a transport."""


class Transport(abc.ABC):
    """A bidirectional device session owned by exactly one Connection."""

    @property
    @abc.abstractmethod
    def is_open(self) -> bool:
        """``True`` until the session has been closed or terminated."""
        raise NotImplementedError

    @abc.abstractmethod
    async def send_text(self, data: str) -> None:
        """Send one text frame.  Raises :class:`TransportError` on failure."""
        raise NotImplementedError

    @abc.abstractmethod
    async def terminate(self) -> None:
        """Forcibly close the session."""
        raise NotImplementedError


@dataclass
class Connection:
    """One active device session and its metadata."""

    id: str
    transport: Transport
    address: str
    label: str = UNREGISTERED_LABEL
    last_seen: float = 0.0
    connected_at: float = 0.0

    @property
    def is_open(self) -> bool:
        return self.transport.is_open

    def to_dict(self) -> dict[str, Any]:
        """Status view used by the HTTP listing endpoint."""
        return {
            "id": self.id,
            "connected": self.is_open,
            "address": self.address,
            "label": self.label,
            "last_seen": _iso(self.last_seen),
            "connected_at": _iso(self.connected_at),
        }


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


class ConnectionRegistry:
    """Owns every active :class:`Connection`, keyed by server-assigned id."""

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self._clock = clock
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()))
        self._connections: dict[str, Connection] = {}

    # ------------------------------------------------------------------ #
    # Mutations
    # ------------------------------------------------------------------ #

    def register(self, transport: Transport, address: str) -> str:
        """Store a new connection with default metadata and return its id."""
        conn_id = self._id_factory()
        # Only live ids are checked; retired ids are not retained.
        while conn_id in self._connections:
            logger.warning("Connection id collision on %s, regenerating", conn_id)
            conn_id = self._id_factory()

        now = self._clock()
        self._connections[conn_id] = Connection(
            id=conn_id,
            transport=transport,
            address=address,
            last_seen=now,
            connected_at=now,
        )
        return conn_id

    def update(self, conn_id: str, **fields: Any) -> bool:
        """Merge *fields* into an existing entry.

        Returns ``False`` (and changes nothing) when *conn_id* is not
        registered, so a late heartbeat can never resurrect an evicted
        connection.
        """
        unknown = set(fields) - _UPDATABLE
        if unknown:
            raise ValueError(f"Cannot update connection fields: {sorted(unknown)}")

        conn = self._connections.get(conn_id)
        if conn is None:
            logger.debug("Ignoring update for unknown connection %s", conn_id)
            return False
        for name, value in fields.items():
            setattr(conn, name, value)
        return True

    def remove(self, conn_id: str) -> Connection | None:
        """Delete an entry.  Removing an absent id is a no-op."""
        return self._connections.pop(conn_id, None)

    def touch(self, conn_id: str) -> bool:
        """Mark *conn_id* as seen right now."""
        return self.update(conn_id, last_seen=self._clock())

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #

    def get(self, conn_id: str) -> Connection | None:
        return self._connections.get(conn_id)

    def snapshot(self) -> list[Connection]:
        """Return a copy of the current entries, safe to act on while the
        registry keeps changing."""
        return list(self._connections.values())

    def now(self) -> float:
        return self._clock()

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, conn_id: object) -> bool:
        return conn_id in self._connections
