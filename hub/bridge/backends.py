"""Server half of the bridge: backend singletons + client connections.

BackendRegistry holds at most one Backend per module name. Each physical
client connection subscribes to channels with ``__open__`` frames; a
backend's ``send_to_clients`` reaches every connection subscribed to its
name. Inbound frames are routed by tag; frames for a name without a
backend are dropped and reported.

Nothing a backend does (sync raise, async rejection, fetch timeout) is
allowed to escape into the server loop.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional

import aiohttp

from hub import hooks, metrics
from hub.errors import (
    MalformedMessageError,
    UnroutableMessageError,
    map_exception,
)
from hub.events import (
    BackendFailed,
    ChannelOpened,
    ClientConnected,
    ClientDisconnected,
    ConnectionRejected,
    MessageUnroutable,
    emit,
)
from . import wire

log = logging.getLogger("hub.bridge.server")

DEFAULT_BACKEND_TIMEOUT_S = 10.0

Admission = Callable[[Optional[str]], bool]


class ClientConnection:
    """One physical client connection (server side).

    Outbound frames go through a queue drained by a single writer task, so
    frames leave in the order they were broadcast.
    """

    def __init__(
        self,
        send: Callable[[str], Awaitable[None]],
        remote_address: str | None = None,
    ) -> None:
        self.id = uuid.uuid4().hex[:12]
        self.remote_address = remote_address
        self.channels: set[str] = set()
        self._send = send
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._writer: asyncio.Task | None = None
        self.closed = False

    def start(self) -> None:
        if self._writer is None:
            self._writer = asyncio.get_running_loop().create_task(
                self._drain(), name=f"bridge-writer:{self.id}"
            )

    def enqueue(self, frame: str) -> bool:
        if self.closed:
            return False
        self._queue.put_nowait(frame)
        return True

    async def _drain(self) -> None:
        while True:
            frame = await self._queue.get()
            try:
                await self._send(frame)
            except asyncio.CancelledError:
                raise
            except Exception as e:  # noqa: BLE001
                log.warning("client %s send failed: %s", self.id, e)
                self.closed = True
                return

    def shutdown(self) -> None:
        self.closed = True
        if self._writer is not None and not self._writer.done():
            self._writer.cancel()


class Backend:
    """Server-side singleton counterpart of a module type.

    Optional hooks (capability set, like module hooks):
        start()                         called when the server starts
        stop()                          called on shutdown
        on_notification(event, payload) frame from any client on this channel
    """

    name: str = ""

    def __init__(self, name: str | None = None) -> None:
        if name:
            self.name = name
        if not self.name:
            raise ValueError("backend name cannot be empty")
        self._registry: BackendRegistry | None = None
        self.timeout: float = DEFAULT_BACKEND_TIMEOUT_S

    def send_to_clients(self, event: str, payload: Any = None) -> int:
        """Broadcast to every client subscribed to this channel."""
        if self._registry is None:
            raise RuntimeError(f"backend '{self.name}' is not registered")
        return self._registry.broadcast(self.name, event, payload)

    def run_task(
        self, aw: Awaitable[Any], timeout: float | None = None
    ) -> asyncio.Future | None:
        """Background work with a deadline; failures are reported."""
        limit = self.timeout if timeout is None else timeout

        async def _guarded() -> Any:
            return await asyncio.wait_for(aw, limit)

        return hooks.spawn(_guarded(), self._report_task_failure)

    def _report_task_failure(self, exc: BaseException) -> None:
        if self._registry is not None:
            self._registry.report(self, "task", exc)
        else:  # pragma: no cover
            log.error("backend %s task failed: %s", self.name, exc)

    async def fetch_json(
        self, url: str, *, timeout: float | None = None, **kwargs: Any
    ) -> Any:
        """GET ``url`` and decode JSON; raises on HTTP error / timeout."""
        total = self.timeout if timeout is None else timeout
        client_timeout = aiohttp.ClientTimeout(total=total)
        async with aiohttp.ClientSession(timeout=client_timeout) as session:
            async with session.get(url, **kwargs) as resp:
                resp.raise_for_status()
                return await resp.json(content_type=None)


class BackendRegistry:
    def __init__(
        self,
        *,
        backend_timeout: float = DEFAULT_BACKEND_TIMEOUT_S,
        admission: Admission | None = None,
    ) -> None:
        self.backend_timeout = backend_timeout
        self.admission = admission
        self._backends: Dict[str, Backend] = {}
        self._clients: Dict[str, ClientConnection] = {}

    # Backends -------------------------------------------------------------
    def register(self, backend: Backend) -> Backend:
        if backend.name in self._backends:
            raise ValueError(f"Backend '{backend.name}' already registered")
        backend._registry = self
        backend.timeout = self.backend_timeout
        self._backends[backend.name] = backend
        return backend

    def unregister(self, name: str) -> None:
        backend = self._backends.pop(name, None)
        if backend is not None:
            backend._registry = None

    def get(self, name: str) -> Backend | None:
        return self._backends.get(name)

    def names(self) -> List[str]:
        return list(self._backends)

    async def start(self) -> None:
        for backend in list(self._backends.values()):
            try:
                await hooks.invoke(backend, "start")
            except Exception as e:  # noqa: BLE001
                self.report(backend, "start", e)

    async def stop(self) -> None:
        for backend in reversed(list(self._backends.values())):
            try:
                await hooks.invoke(backend, "stop")
            except Exception as e:  # noqa: BLE001
                self.report(backend, "stop", e)
        for conn in list(self._clients.values()):
            self.detach_client(conn)

    def report(self, backend: Backend, phase: str, exc: BaseException) -> None:
        error_type = (
            "timeout"
            if isinstance(exc, asyncio.TimeoutError)
            else map_exception(exc, "backend")
        )
        log.error(
            "backend %s failed in %s: %s",
            backend.name,
            phase,
            exc,
            exc_info=(type(exc), exc, exc.__traceback__),
            extra={"backend": backend.name, "phase": phase},
        )
        emit(
            BackendFailed(
                backend=backend.name,
                phase=phase,
                error_type=error_type,
                message=str(exc) or exc.__class__.__name__,
            )
        )

    # Connections ----------------------------------------------------------
    def should_accept_connection(self, remote_address: str | None) -> bool:
        """Admission hook; replaced by the access-control collaborator."""
        if self.admission is None:
            return True
        return bool(self.admission(remote_address))

    def admit(self, remote_address: str | None) -> bool:
        try:
            accepted = self.should_accept_connection(remote_address)
        except Exception as e:  # noqa: BLE001
            log.error("admission hook failed for %s: %s", remote_address, e)
            accepted = False
        if not accepted:
            log.warning("connection from %s rejected", remote_address)
            emit(ConnectionRejected(remote_address=remote_address))
        return accepted

    def attach_client(self, conn: ClientConnection) -> None:
        conn.start()
        self._clients[conn.id] = conn
        emit(
            ClientConnected(
                client_id=conn.id, remote_address=conn.remote_address
            )
        )

    def detach_client(self, conn: ClientConnection) -> None:
        if self._clients.pop(conn.id, None) is None:
            return
        conn.shutdown()
        emit(ClientDisconnected(client_id=conn.id))

    def clients(self) -> List[ClientConnection]:
        return list(self._clients.values())

    # Routing --------------------------------------------------------------
    async def handle_message(self, conn: ClientConnection, text: str) -> None:
        try:
            msg = wire.decode(text)
        except MalformedMessageError as e:
            log.warning("client %s sent malformed frame: %s", conn.id, e)
            metrics.inc("channel_malformed_total", {"side": "server"})
            return
        if msg.event == wire.OPEN:
            conn.channels.add(msg.channel)
            emit(ChannelOpened(channel=msg.channel, side="server"))
            return
        if msg.event == wire.CLOSE:
            conn.channels.discard(msg.channel)
            return
        backend = self._backends.get(msg.channel)
        if backend is None:
            err = UnroutableMessageError(msg.channel)
            log.warning("%s (event=%s); dropped", err, msg.event)
            emit(
                MessageUnroutable(
                    channel=msg.channel, event=msg.event, side="server"
                )
            )
            return
        metrics.inc_channel("received", msg.channel)
        hooks.fire(
            backend,
            "on_notification",
            (msg.event, msg.payload),
            lambda exc: self.report(backend, "on_notification", exc),
        )

    def broadcast(self, channel: str, event: str, payload: Any = None) -> int:
        frame = wire.encode(channel, event, payload)
        delivered = 0
        for conn in list(self._clients.values()):
            if channel in conn.channels and conn.enqueue(frame):
                delivered += 1
        if delivered:
            metrics.inc_channel("sent", channel)
        return delivered


__all__ = [
    "Backend",
    "BackendRegistry",
    "ClientConnection",
    "DEFAULT_BACKEND_TIMEOUT_S",
]
