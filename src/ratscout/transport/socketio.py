"""
Socket.IO relay link — carries envelope frames between watch and phone bridges.

Each frame travels as the binary argument of a ``frame`` event. The relay
emits ``ready`` once the connection has joined its device room; connect()
does not return before that.
"""

import asyncio
import logging
from typing import Any, Optional

import socketio

from ratscout.errors import LinkClosed
from ratscout.transport.link import TransportLink

logger = logging.getLogger("ratscout.transport.socketio")

SOCKETIO_PATH = "/socket.io/"
FRAME_EVENT = "frame"


class SocketIOLink(TransportLink):
    def __init__(
        self,
        url: str,
        device_id: str,
        token: Optional[str] = None,
        transports: Optional[list[str]] = None,
        ready_timeout: float = 15.0,
    ):
        super().__init__()
        self._url = url
        self._device_id = device_id
        self._token = token
        self._transports = transports or ["websocket"]
        self._ready_timeout = ready_timeout
        self._sio: Optional[socketio.AsyncClient] = None
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected and self._sio is not None and self._sio.connected

    async def connect(self) -> None:
        """Connect to the relay and wait for its ``ready`` event."""
        if self._sio and self._sio.connected:
            return

        self._sio = socketio.AsyncClient()
        ready_event = asyncio.Event()

        @self._sio.on("ready")
        async def on_ready(*_args: Any) -> None:
            self._connected = True
            ready_event.set()

        @self._sio.on(FRAME_EVENT)
        async def on_frame(data: Any) -> None:
            if not isinstance(data, (bytes, bytearray)):
                logger.warning("Ignoring non-binary frame of type %s", type(data).__name__)
                return
            await self._deliver(bytes(data))

        @self._sio.event
        async def disconnect(_reason: str = "") -> None:
            self._connected = False

        auth: dict[str, Any] = {"device_id": self._device_id}
        if self._token:
            auth["token"] = self._token
        await self._sio.connect(
            self._url,
            auth=auth,
            transports=self._transports,
            socketio_path=SOCKETIO_PATH,
        )

        try:
            await asyncio.wait_for(ready_event.wait(), timeout=self._ready_timeout)
        except asyncio.TimeoutError:
            await self._sio.disconnect()
            raise TimeoutError(f"Timed out waiting for 'ready' event after {self._ready_timeout}s")

    async def send(self, data: bytes) -> None:
        if self._closed or not self._sio or not self._sio.connected:
            raise LinkClosed("Socket.IO relay not connected")
        await self._sio.emit(FRAME_EVENT, data)

    async def close(self) -> None:
        await super().close()
        self._connected = False
        if self._sio:
            await self._sio.disconnect()
            self._sio = None
