"""Client-side transports carrying bridge frames.

A transport moves opaque text frames over one physical connection. Loss
of the connection in any direction surfaces as ``TransportClosed``; the
multiplexer owns reconnection.
"""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake

from hub.errors import TransportClosed

if TYPE_CHECKING:  # pragma: no cover
    from .backends import BackendRegistry, ClientConnection

log = logging.getLogger("hub.bridge.transport")


class Transport(ABC):
    @property
    @abstractmethod
    def connected(self) -> bool: ...

    @abstractmethod
    async def connect(self) -> None: ...

    @abstractmethod
    async def send(self, text: str) -> None: ...

    @abstractmethod
    async def receive(self) -> str: ...

    @abstractmethod
    async def close(self) -> None: ...


class WebSocketTransport(Transport):
    def __init__(self, url: str, *, open_timeout: float = 10.0) -> None:
        self.url = url
        self.open_timeout = open_timeout
        self._ws = None

    @property
    def connected(self) -> bool:
        return self._ws is not None

    async def connect(self) -> None:
        try:
            self._ws = await websockets.connect(
                self.url, open_timeout=self.open_timeout
            )
        except (OSError, InvalidHandshake, asyncio.TimeoutError) as e:
            self._ws = None
            raise TransportClosed(f"connect to {self.url} failed: {e}") from e
        log.info("connected to %s", self.url)

    async def send(self, text: str) -> None:
        if self._ws is None:
            raise TransportClosed("not connected")
        try:
            await self._ws.send(text)
        except ConnectionClosed as e:
            self._ws = None
            raise TransportClosed(str(e)) from e

    async def receive(self) -> str:
        if self._ws is None:
            raise TransportClosed("not connected")
        try:
            frame = await self._ws.recv()
        except ConnectionClosed as e:
            self._ws = None
            raise TransportClosed(str(e)) from e
        if isinstance(frame, bytes):
            frame = frame.decode("utf-8", errors="replace")
        return frame

    async def close(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()


_DROPPED = object()


class LoopbackTransport(Transport):
    """In-process transport talking straight to a ``BackendRegistry``.

    Used for single-process deployments and tests. ``drop()`` simulates a
    lost connection; the next ``connect()`` creates a fresh server-side
    connection, as a real reconnect would.
    """

    def __init__(
        self, registry: "BackendRegistry", remote_address: str = "loopback"
    ) -> None:
        self.registry = registry
        self.remote_address = remote_address
        self._conn: ClientConnection | None = None
        self._inbox: asyncio.Queue | None = None
        self.connects = 0

    @property
    def connected(self) -> bool:
        return self._conn is not None

    async def connect(self) -> None:
        from .backends import ClientConnection

        if not self.registry.admit(self.remote_address):
            raise TransportClosed(
                f"connection from {self.remote_address} rejected"
            )
        inbox: asyncio.Queue = asyncio.Queue()
        self._inbox = inbox

        async def _push(frame: str) -> None:
            inbox.put_nowait(frame)

        self._conn = ClientConnection(_push, self.remote_address)
        self.registry.attach_client(self._conn)
        self.connects += 1

    async def send(self, text: str) -> None:
        if self._conn is None:
            raise TransportClosed("not connected")
        await self.registry.handle_message(self._conn, text)

    async def receive(self) -> str:
        if self._inbox is None:
            raise TransportClosed("not connected")
        frame = await self._inbox.get()
        if frame is _DROPPED:
            raise TransportClosed("connection dropped")
        return frame

    def drop(self) -> None:
        conn, self._conn = self._conn, None
        if conn is not None:
            self.registry.detach_client(conn)
        if self._inbox is not None:
            self._inbox.put_nowait(_DROPPED)

    async def close(self) -> None:
        self.drop()


__all__ = ["Transport", "WebSocketTransport", "LoopbackTransport"]
