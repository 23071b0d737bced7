"""WebSocket endpoint for ESP32 devices.

Each accepted socket becomes one registry connection.  The endpoint only
moves frames; every decision is made by
:class:`relay.protocol.DeviceProtocolHandler`.

Mount it in FastAPI via::

    app.add_api_websocket_route("/ws", device_ws_handler)
"""

from __future__ import annotations

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from relay.protocol import DeviceProtocolHandler
from relay.registry import Transport, TransportError

# 1001 "going away", sent when the liveness sweep drops a silent device.
_TERMINATE_CODE = 1001


class WebSocketTransport(Transport):
    """Adapts a Starlette :class:`WebSocket` to the registry's transport."""

    def __init__(self, websocket: WebSocket) -> None:
        self.websocket = websocket
        self._closed = False

    @property
    def is_open(self) -> bool:
        return (
            not self._closed
            and self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    async def send_text(self, data: str) -> None:
        if not self.is_open:
            raise TransportError("websocket is closed")
        try:
            await self.websocket.send_text(data)
        except Exception as exc:
            self._closed = True
            raise TransportError(str(exc)) from exc

    async def terminate(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self.websocket.close(code=_TERMINATE_CODE)
        except RuntimeError:
            # Already closed by the peer.
            pass

    def mark_closed(self) -> None:
        self._closed = True


async def device_ws_handler(websocket: WebSocket) -> None:
    """Handle one device WebSocket for its whole lifetime."""
    protocol: DeviceProtocolHandler = websocket.app.state.protocol

    await websocket.accept()
    address = websocket.client.host if websocket.client else "unknown"
    transport = WebSocketTransport(websocket)
    conn_id = await protocol.open(transport, address)

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            data = message.get("text")
            if data is None:
                data = message.get("bytes")
            if data is not None:
                await protocol.handle(conn_id, data)
    except WebSocketDisconnect:
        pass
    except Exception as exc:
        protocol.error(conn_id, exc)
    finally:
        transport.mark_closed()
        await protocol.close(conn_id)
