"""ESP32 relay — WebSocket device hub with a Telegram operator bridge.

Exposes:
  WS   /  and  /ws               — device connections
  GET  /                         — banner
  GET  /esp32-clients            — current connections
  GET  /health                   — liveness check

Start with::

    esp32-relay
    # or
    uvicorn relay.server:create_app --factory --host 0.0.0.0 --port 8080
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import PlainTextResponse

from relay import __version__
from relay.bridge import RemoteChannelBridge
from relay.channels import RemoteChannel, get_channel
from relay.config import RelayConfig
from relay.liveness import LivenessMonitor
from relay.protocol import DeviceProtocolHandler
from relay.registry import ConnectionRegistry
from relay.router import Router
from relay.websocket import device_ws_handler

logger = logging.getLogger(__name__)

router = APIRouter()


# ──────────────────────────────────────────────────────────────────
# Endpoints
# ──────────────────────────────────────────────────────────────────

@router.get("/", response_class=PlainTextResponse)
async def index():
    return "🤖 ESP32 relay server is running!"


@router.get("/esp32-clients")
async def list_clients(request: Request):
    registry: ConnectionRegistry = request.app.state.registry
    return [conn.to_dict() for conn in registry.snapshot()]


@router.get("/health")
async def health(request: Request):
    state = request.app.state
    bridge: RemoteChannelBridge | None = state.bridge
    healthy = state.monitor.running and (bridge is None or bridge.ready)
    return {
        "status": "ok" if healthy else "degraded",
        "connections": len(state.registry),
        "channel_ready": bool(bridge and bridge.ready),
    }


# ──────────────────────────────────────────────────────────────────
# Application factory
# ──────────────────────────────────────────────────────────────────

def create_app(
    config: RelayConfig | None = None,
    channel: RemoteChannel | None = None,
    registry: ConnectionRegistry | None = None,
) -> FastAPI:
    """Wire registry, router, monitor, protocol handler and bridge.

    *channel* overrides the one named by ``config.channel`` (tests pass a
    fake here).
    """
    config = config or RelayConfig.from_env()
    registry = registry or ConnectionRegistry()
    fanout = Router(registry)
    monitor = LivenessMonitor(
        registry,
        fanout,
        probe_interval=config.probe_interval,
        sweep_interval=config.sweep_interval,
        stale_after=config.stale_after,
    )

    if channel is None:
        channel = get_channel(config)
    bridge = None
    if channel is not None:
        bridge = RemoteChannelBridge(
            channel, fanout, targets=config.targets, notify_target=config.target_user or None
        )

    protocol = DeviceProtocolHandler(
        registry,
        notifier=bridge.notify if bridge else None,
        notify_on_disconnect=config.notify_on_disconnect,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await monitor.start()
        try:
            if bridge is not None:
                # RemoteChannelSetupError propagates and aborts startup.
                await bridge.start()
            else:
                logger.warning("No remote channel configured — operator bridge disabled")
            yield
        finally:
            if bridge is not None:
                await bridge.stop()
            await monitor.stop()

    app = FastAPI(title="ESP32 Relay", version=__version__, lifespan=lifespan)
    app.state.config = config
    app.state.registry = registry
    app.state.router = fanout
    app.state.monitor = monitor
    app.state.protocol = protocol
    app.state.bridge = bridge

    app.include_router(router)
    app.add_api_websocket_route("/", device_ws_handler)
    app.add_api_websocket_route("/ws", device_ws_handler)
    return app


# ──────────────────────────────────────────────────────────────────
# Entry point
# ──────────────────────────────────────────────────────────────────

def main():
    import uvicorn
    config = RelayConfig.from_env()
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger.info("Starting ESP32 relay on %s:%d", config.host, config.port)
    uvicorn.run(create_app(config), host=config.host, port=config.port)


if __name__ == "__main__":
    main()
