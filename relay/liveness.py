"""Liveness monitor — periodic ping broadcast and stale-connection sweep.

Two independent background loops share the registry:

* **probe**: every ``probe_interval`` seconds, send ``{"type": "command",
  "action": "ping"}`` to every open device.  This never updates
  ``last_seen``; it prompts the device to answer and surfaces half-open
  sockets through send failures.
* **sweep**: every ``sweep_interval`` seconds, terminate and remove every
  connection whose ``last_seen`` is older than ``stale_after``.
"""

from __future__ import annotations

import asyncio
import logging

from relay.messages import PingCommand
from relay.registry import ConnectionRegistry
from relay.router import Router

logger = logging.getLogger(__name__)


class LivenessMonitor:
    """Runs the probe and sweep loops against a :class:`ConnectionRegistry`."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        router: Router,
        probe_interval: float = 30.0,
        sweep_interval: float = 10.0,
        stale_after: float = 30.0,
    ) -> None:
        if sweep_interval >= probe_interval:
            raise ValueError(
                f"sweep_interval ({sweep_interval}s) must be shorter than "
                f"probe_interval ({probe_interval}s)"
            )
        if stale_after <= 0:
            raise ValueError("stale_after must be positive")
        self.registry = registry
        self.router = router
        self.probe_interval = probe_interval
        self.sweep_interval = sweep_interval
        self.stale_after = stale_after
        self._running = False
        self._tasks: list[asyncio.Task] = []

    async def start(self) -> None:
        """Start both loops in background tasks."""
        if self._running:
            logger.warning("Liveness monitor is already running")
            return
        self._running = True
        self._tasks = [
            asyncio.create_task(self._loop("probe", self.probe_interval, self.probe_once)),
            asyncio.create_task(self._loop("sweep", self.sweep_interval, self.sweep_once)),
        ]
        logger.info(
            "Liveness monitor started (probe=%ss, sweep=%ss, stale_after=%ss)",
            self.probe_interval, self.sweep_interval, self.stale_after,
        )

    async def stop(self) -> None:
        self._running = False
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []
        logger.info("Liveness monitor stopped")

    @property
    def running(self) -> bool:
        return self._running

    async def probe_once(self) -> int:
        """Ping every open connection; returns how many were reached."""
        reached = await self.router.broadcast(PingCommand())
        logger.debug("Probe sent to %d connection(s)", reached)
        return reached

    async def sweep_once(self, now: float | None = None) -> list[str]:
        """Evict every stale connection and return the evicted ids."""
        if now is None:
            now = self.registry.now()
        evicted: list[str] = []
        for conn in self.registry.snapshot():
            if now - conn.last_seen <= self.stale_after:
                continue
            # Remove first so a close callback fired by terminate() is a no-op.
            if self.registry.remove(conn.id) is None:
                continue
            logger.info("Removing inactive client: %s (%s)", conn.id, conn.address)
            try:
                await conn.transport.terminate()
            except Exception as exc:
                logger.warning("Terminate failed for %s: %s", conn.id, exc)
            evicted.append(conn.id)
        return evicted

    async def _loop(self, name: str, interval: float, tick) -> None:
        while self._running:
            await asyncio.sleep(interval)
            try:
                await tick()
            except Exception:
                logger.exception("Liveness %s tick failed", name)
