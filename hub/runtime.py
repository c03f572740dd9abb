"""Client runtime: wires display, bus, scheduler, bridge and controller.

    rt = ClientRuntime(get_config())
    await rt.start()      # place configured modules, connect bridge, boot
    ...
    await rt.stop()       # teardown in reverse order, close bridge

Placements naming an unknown module are logged and skipped; the rest of
the mirror boots normally.
"""
from __future__ import annotations

import asyncio
import logging
from typing import List

from hub import metrics
from hub.bridge import ChannelMultiplexer, Transport, WebSocketTransport
from hub.config import AggregatedConfig, get_config
from hub.display import Display, DomUpdateScheduler
from hub.errors import UnknownModuleError
from hub.instance import ModuleInstance
from hub.modules import (
    ConfigResolver,
    LifecycleController,
    ModuleRegistry,
    ResourceLoader,
)
from hub.modules.resources import Fetcher
from hub.notifications import NotificationBus
from hub.registry import load_modules

log = logging.getLogger("hub.runtime")


class ClientRuntime:
    def __init__(
        self,
        config: AggregatedConfig | None = None,
        registry: ModuleRegistry | None = None,
        *,
        transport: Transport | None = None,
        fetch: Fetcher | None = None,
    ) -> None:
        cfg = config or get_config()
        self.config = cfg
        self.registry = (
            registry
            if registry is not None
            else load_modules(cfg.resources.modules_dir)
        )
        self.display = Display(cfg.display.positions)
        self.bus = NotificationBus()
        self.scheduler = DomUpdateScheduler(
            default_duration=cfg.display.default_transition_s
        )
        self.loader = ResourceLoader(
            fetch,
            language=cfg.language,
            fallback_language=cfg.resources.fallback_language,
        )
        if transport is None and cfg.bridge.enabled:
            transport = WebSocketTransport(cfg.bridge.url)
        self.multiplexer = (
            ChannelMultiplexer(
                transport, reconnect_interval=cfg.bridge.reconnect_interval_s
            )
            if transport is not None
            else None
        )
        self.controller = LifecycleController(
            self.registry,
            bus=self.bus,
            resolver=ConfigResolver(deep=cfg.deep_merge),
            loader=self.loader,
            scheduler=self.scheduler,
            display=self.display,
            multiplexer=self.multiplexer,
        )
        self.instances: List[ModuleInstance] = []
        self._placed = False

    def place_all(self) -> List[ModuleInstance]:
        """Register one instance per enabled placement, in config order."""
        for placement in self.config.modules:
            if placement.disabled:
                continue
            try:
                instance = self.controller.register(
                    placement.module, placement
                )
            except UnknownModuleError as e:
                log.error("%s; placement skipped", e)
                metrics.inc(
                    "placements_skipped_total", {"module": placement.module}
                )
                continue
            self.instances.append(instance)
        self._placed = True
        return list(self.instances)

    async def start(
        self, *, connect_timeout: float | None = 5.0
    ) -> List[ModuleInstance]:
        if not self._placed:
            self.place_all()
        if self.multiplexer is not None:
            self.multiplexer.start()
            try:
                await self.multiplexer.wait_connected(connect_timeout)
            except asyncio.TimeoutError:
                log.warning(
                    "bridge not connected after %ss; booting anyway",
                    connect_timeout,
                )
        return await self.controller.boot(self.instances)

    async def stop(self) -> None:
        await self.controller.teardown()
        self.scheduler.cancel_all()
        if self.multiplexer is not None:
            await self.multiplexer.close()

    def status(self) -> dict:
        return {
            "bridge": (
                self.multiplexer.state.value
                if self.multiplexer is not None
                else "disabled"
            ),
            "instances": {
                i.identifier: i.state.value
                for i in self.controller.instances()
            },
            "display": self.display.snapshot(),
        }


__all__ = ["ClientRuntime"]
