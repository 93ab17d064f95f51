"""
Transport link — an unreliable, message-oriented byte pipe between watch and phone.

A link delivers whole buffers, FIFO per direction, or drops them. It never
retries; timeouts and retries belong to the layers above.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional

from ratscout.errors import LinkBusy, LinkClosed

logger = logging.getLogger("ratscout.transport.link")

MessageHandler = Callable[[bytes], Awaitable[None]]


class TransportLink(ABC):
    """Base link. Exactly one handler may be bound at a time."""

    def __init__(self) -> None:
        self._handler: Optional[MessageHandler] = None
        self._closed = False

    @property
    def bound(self) -> bool:
        return self._handler is not None

    @property
    def closed(self) -> bool:
        return self._closed

    def bind(self, handler: MessageHandler) -> None:
        if self._closed:
            raise LinkClosed()
        if self._handler is not None:
            raise LinkBusy()
        self._handler = handler

    def unbind(self) -> None:
        self._handler = None

    async def _deliver(self, data: bytes) -> None:
        """Hand one inbound buffer to the bound handler, if any."""
        handler = self._handler
        if handler is None:
            logger.debug("Dropping %d bytes: no handler bound", len(data))
            return
        try:
            await handler(data)
        except Exception:
            logger.exception("Message handler failed on %d-byte buffer", len(data))

    @abstractmethod
    async def send(self, data: bytes) -> None:
        ...

    async def close(self) -> None:
        self._closed = True
        self._handler = None


class LoopbackLink(TransportLink):
    """In-process link endpoint. Create connected endpoints with ``pair()``.

    ``drop`` is an optional predicate; buffers for which it returns True are
    silently lost, modelling an unreliable radio link.
    """

    def __init__(self, drop: Optional[Callable[[bytes], bool]] = None) -> None:
        super().__init__()
        self._peer: Optional["LoopbackLink"] = None
        self._inbox: asyncio.Queue[bytes] = asyncio.Queue()
        self._pump: Optional[asyncio.Task[None]] = None
        self._drop = drop
        self.sent: list[bytes] = []

    @classmethod
    def pair(
        cls,
        drop: Optional[Callable[[bytes], bool]] = None,
    ) -> tuple["LoopbackLink", "LoopbackLink"]:
        a, b = cls(drop), cls(drop)
        a._peer, b._peer = b, a
        return a, b

    def bind(self, handler: MessageHandler) -> None:
        super().bind(handler)
        if self._pump is None or self._pump.done():
            self._pump = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        while True:
            data = await self._inbox.get()
            await self._deliver(data)

    async def send(self, data: bytes) -> None:
        if self._closed or self._peer is None or self._peer.closed:
            raise LinkClosed()
        self.sent.append(data)
        if self._drop is not None and self._drop(data):
            logger.debug("Loopback dropped %d bytes", len(data))
            return
        self._peer._inbox.put_nowait(data)

    async def close(self) -> None:
        await super().close()
        if self._pump is not None:
            self._pump.cancel()
            try:
                await self._pump
            except asyncio.CancelledError:
                pass
            self._pump = None
