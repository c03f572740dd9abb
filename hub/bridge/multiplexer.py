"""ChannelMultiplexer: per-module-name channels over one client transport.

Every instance of a module type shares the channel named after the type.
Channels are opened lazily on first registration and re-opened after each
reconnect. Sends fail fast while the transport is down; they are reported
and never raised to the module. Inbound frames fan out to every live
instance whose module name equals the frame tag.

Connection states: DISCONNECTED -> CONNECTING -> CONNECTED -> DISCONNECTED.
"""
from __future__ import annotations

import asyncio
import copy
import logging
from enum import Enum
from typing import Any, Callable, Dict, List

from hub import hooks, metrics
from hub.errors import (
    ChannelUnavailableError,
    HubError,
    MalformedMessageError,
    TransportClosed,
)
from hub.events import (
    ChannelOpened,
    ChannelSendFailed,
    ChannelStateChanged,
    MessageUnroutable,
    emit,
)
from hub.instance import CHANNEL_STATES, ModuleInstance
from . import wire
from .transport import Transport

log = logging.getLogger("hub.bridge.client")

FailureHandler = Callable[[ModuleInstance, str, BaseException], None]


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class ChannelMultiplexer:
    def __init__(
        self,
        transport: Transport,
        *,
        reconnect_interval: float = 2.0,
        failure_handler: FailureHandler | None = None,
    ) -> None:
        self.transport = transport
        self.reconnect_interval = reconnect_interval
        self.failure_handler = failure_handler
        self.state = ConnectionState.DISCONNECTED
        self._subscribers: Dict[str, List[ModuleInstance]] = {}
        # channels the client wants open, in first-registration order
        self._opened: Dict[str, None] = {}
        # channels announced on the current physical connection
        self._remote_open: set[str] = set()
        self._outbox: asyncio.Queue | None = None
        self._reader: asyncio.Task | None = None
        self._writer: asyncio.Task | None = None
        self._runner: asyncio.Task | None = None
        self._lost = asyncio.Event()
        self._up = asyncio.Event()
        self._running = False

    # Introspection --------------------------------------------------------
    @property
    def channels(self) -> List[str]:
        return list(self._opened)

    def subscribers(self, name: str) -> List[ModuleInstance]:
        return list(self._subscribers.get(name, ()))

    def is_open(self, name: str) -> bool:
        return (
            self.state is ConnectionState.CONNECTED
            and name in self._remote_open
        )

    def _set_state(self, state: ConnectionState) -> None:
        previous, self.state = self.state, state
        if previous is state:
            return
        if state is ConnectionState.CONNECTED:
            self._up.set()
        else:
            self._up.clear()
        log.info("bridge %s -> %s", previous.value, state.value)
        emit(
            ChannelStateChanged(
                previous=previous.value,
                state=state.value,
                channels=list(self._opened),
            )
        )

    # Registration ---------------------------------------------------------
    def register(self, instance: ModuleInstance) -> None:
        name = instance.name
        subs = self._subscribers.setdefault(name, [])
        if instance not in subs:
            subs.append(instance)
        if name in self._opened:
            return
        self._opened[name] = None
        emit(ChannelOpened(channel=name, side="client"))
        if self.state is ConnectionState.CONNECTED:
            self._enqueue(name, wire.OPEN, wire.encode(name, wire.OPEN))
            self._remote_open.add(name)

    def unregister(self, instance: ModuleInstance) -> None:
        name = instance.name
        subs = self._subscribers.get(name)
        if not subs or instance not in subs:
            return
        subs.remove(instance)
        if subs:
            return
        del self._subscribers[name]
        self._opened.pop(name, None)
        if name in self._remote_open:
            self._remote_open.discard(name)
            if self.state is ConnectionState.CONNECTED:
                self._enqueue(name, wire.CLOSE, wire.encode(name, wire.CLOSE))

    # Outbound -------------------------------------------------------------
    def send_to_backend(
        self, name: str, event: str, payload: Any = None
    ) -> bool:
        if not self.is_open(name):
            reason = (
                "bridge is " + self.state.value
                if self.state is not ConnectionState.CONNECTED
                else "channel is not open"
            )
            self._send_failed(
                name, event, ChannelUnavailableError(f"{name}: {reason}")
            )
            return False
        try:
            frame = wire.encode(name, event, payload)
        except MalformedMessageError as e:
            self._send_failed(name, event, e)
            return False
        self._enqueue(name, event, frame)
        return True

    def _enqueue(self, channel: str, event: str, frame: str) -> None:
        if self._outbox is None:  # pragma: no cover - guarded by is_open
            raise ChannelUnavailableError("no connection")
        self._outbox.put_nowait((channel, event, frame))

    def _send_failed(self, channel: str, event: str, exc: HubError) -> None:
        log.warning(
            "send %s/%s failed: %s",
            channel,
            event,
            exc,
            extra={"channel": channel, "phase": "send"},
        )
        emit(
            ChannelSendFailed(
                channel=channel,
                event=event,
                error_type=exc.error_type,
                message=str(exc),
            )
        )

    # Connection -----------------------------------------------------------
    async def connect(self) -> None:
        """Connect the transport, re-open channels, start reader + writer."""
        self._set_state(ConnectionState.CONNECTING)
        try:
            await self.transport.connect()
            self._remote_open = set()
            while True:
                pending = [c for c in self._opened if c not in self._remote_open]
                if not pending:
                    break
                for channel in pending:
                    await self.transport.send(wire.encode(channel, wire.OPEN))
                    self._remote_open.add(channel)
            for channel in self._remote_open - set(self._opened):
                await self.transport.send(wire.encode(channel, wire.CLOSE))
                self._remote_open.discard(channel)
        except Exception as e:
            self._remote_open.clear()
            self._set_state(ConnectionState.DISCONNECTED)
            if isinstance(e, TransportClosed):
                raise
            raise TransportClosed(f"connect failed: {e!r}") from e
        self._outbox = asyncio.Queue()
        self._lost = asyncio.Event()
        self._set_state(ConnectionState.CONNECTED)
        loop = asyncio.get_running_loop()
        self._reader = loop.create_task(self._read(), name="bridge-reader")
        self._writer = loop.create_task(self._write(), name="bridge-writer")

    async def _read(self) -> None:
        while True:
            try:
                text = await self.transport.receive()
            except TransportClosed as e:
                log.warning("bridge connection lost: %s", e)
                self._connection_lost()
                return
            self._dispatch(text)

    async def _write(self) -> None:
        outbox = self._outbox
        assert outbox is not None
        while True:
            channel, event, frame = await outbox.get()
            try:
                await self.transport.send(frame)
            except TransportClosed as e:
                self._send_failed(channel, event, e)
                self._connection_lost()
                return
            if event not in wire.CONTROL_EVENTS:
                metrics.inc_channel("sent", channel)

    def _connection_lost(self) -> None:
        if self.state is not ConnectionState.CONNECTED:
            return
        self._remote_open.clear()
        self._set_state(ConnectionState.DISCONNECTED)
        outbox, self._outbox = self._outbox, None
        while outbox is not None and not outbox.empty():
            channel, event, _ = outbox.get_nowait()
            if event in wire.CONTROL_EVENTS:
                continue
            self._send_failed(
                channel, event, ChannelUnavailableError("connection lost")
            )
        current = asyncio.current_task()
        for task in (self._reader, self._writer):
            if task is not None and task is not current and not task.done():
                task.cancel()
        self._lost.set()

    async def wait_connected(self, timeout: float | None = None) -> None:
        await asyncio.wait_for(self._up.wait(), timeout)

    async def run(self) -> None:
        """Connect and keep reconnecting until ``close``."""
        self._running = True
        while self._running:
            try:
                await self.connect()
            except TransportClosed as e:
                log.warning(
                    "bridge connect failed: %s; retry in %.1fs",
                    e,
                    self.reconnect_interval,
                )
                await asyncio.sleep(self.reconnect_interval)
                continue
            await self._lost.wait()
            if self._running:
                await asyncio.sleep(self.reconnect_interval)

    def start(self) -> asyncio.Task:
        if self._runner is None or self._runner.done():
            self._runner = asyncio.get_running_loop().create_task(
                self.run(), name="bridge-runner"
            )
        return self._runner

    async def close(self) -> None:
        self._running = False
        tasks = [
            t
            for t in (self._runner, self._reader, self._writer)
            if t is not None and not t.done()
        ]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._runner = self._reader = self._writer = None
        self._outbox = None
        self._remote_open.clear()
        self._set_state(ConnectionState.DISCONNECTED)
        self._lost.set()
        await self.transport.close()

    # Inbound --------------------------------------------------------------
    def _dispatch(self, text: str) -> None:
        try:
            msg = wire.decode(text)
        except MalformedMessageError as e:
            log.warning("dropping malformed frame: %s", e)
            metrics.inc("channel_malformed_total", {"side": "client"})
            return
        if msg.is_control:
            return
        subs = self._subscribers.get(msg.channel)
        if not subs:
            log.warning(
                "no instance subscribed to channel '%s' (event=%s); dropped",
                msg.channel,
                msg.event,
                extra={"channel": msg.channel},
            )
            emit(
                MessageUnroutable(
                    channel=msg.channel, event=msg.event, side="client"
                )
            )
            return
        metrics.inc_channel("received", msg.channel)
        for instance in list(subs):
            if instance.state not in CHANNEL_STATES:
                continue
            if not instance.provides("on_backend_notification"):
                continue
            hooks.fire(
                instance.hooks,
                "on_backend_notification",
                (msg.event, copy.deepcopy(msg.payload)),
                lambda exc, inst=instance: self._hook_failed(inst, exc),
            )

    def _hook_failed(self, instance: ModuleInstance, exc: BaseException) -> None:
        if self.failure_handler is not None:
            self.failure_handler(instance, "on_backend_notification", exc)
            return
        log.error(
            "backend notification hook failed for %s: %s",
            instance.identifier,
            exc,
            extra={
                "instance": instance.identifier,
                "phase": "on_backend_notification",
            },
        )


__all__ = ["ChannelMultiplexer", "ConnectionState"]
