"""DomUpdateScheduler: coalesced, optionally animated region updates.

One in-flight transition per instance. A new request for the same
instance cancels the previous transition and starts immediately with
fresh content; the old exit effect is skipped (fast-forward). Nothing is
ever queued behind another update, so bursts cannot build a backlog.
Different instances never wait on each other.

Transition steps:
    produce content (hook, may be async)
    exit effect on the old content      (duration / 2, unless fast-forward)
    detach old content
    attach new content                  (exactly once per transition)
    entry effect                        (duration / 2)
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import Callable, Dict

from hub import hooks, metrics
from hub.events import DomUpdateSuperseded, emit
from hub.instance import DEAD_STATES, ModuleInstance

log = logging.getLogger("hub.display")

FailureHandler = Callable[[ModuleInstance, str, BaseException], None]


class TransitionKind(str, Enum):
    NONE = "none"
    FADE = "fade"


@dataclass(frozen=True)
class TransitionOptions:
    duration: float = 0.0  # seconds
    entry: TransitionKind = TransitionKind.FADE
    exit: TransitionKind = TransitionKind.FADE

    @property
    def animated(self) -> bool:
        return self.duration > 0 and (
            self.entry is not TransitionKind.NONE
            or self.exit is not TransitionKind.NONE
        )


IMMEDIATE = TransitionOptions()


class DomUpdateScheduler:
    def __init__(
        self,
        failure_handler: FailureHandler | None = None,
        *,
        default_duration: float = 0.0,
    ) -> None:
        self.failure_handler = failure_handler
        self.default = TransitionOptions(duration=default_duration)
        self._inflight: Dict[str, asyncio.Task] = {}

    def options(
        self,
        duration: float | None = None,
        entry: TransitionKind | str | None = None,
        exit: TransitionKind | str | None = None,
    ) -> TransitionOptions:
        return TransitionOptions(
            duration=self.default.duration if duration is None else duration,
            entry=TransitionKind(entry) if entry else self.default.entry,
            exit=TransitionKind(exit) if exit else self.default.exit,
        )

    def pending(self, instance: ModuleInstance) -> bool:
        task = self._inflight.get(instance.identifier)
        return task is not None and not task.done()

    def request_update(
        self,
        instance: ModuleInstance,
        options: TransitionOptions | None = None,
    ) -> asyncio.Future:
        """Schedule a transition; resolves to True once content attached."""
        loop = asyncio.get_running_loop()
        if instance.node is None or instance.state in DEAD_STATES:
            done = loop.create_future()
            done.set_result(False)
            return done
        key = instance.identifier
        previous = self._inflight.get(key)
        superseded = previous is not None and not previous.done()
        if superseded:
            previous.cancel()
            emit(DomUpdateSuperseded(identifier=key, module=instance.name))
        task = loop.create_task(
            self._transition(instance, options or self.default, superseded),
            name=f"dom-update:{key}",
        )
        self._inflight[key] = task
        task.add_done_callback(partial(self._finished, key))
        return task

    def _finished(self, key: str, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:  # pragma: no cover - _transition catches hooks
            log.error("dom update for %s crashed: %s", key, exc)

    async def _transition(
        self,
        instance: ModuleInstance,
        options: TransitionOptions,
        fast_forward: bool,
    ) -> bool:
        node = instance.node
        try:
            content = await hooks.invoke(instance.hooks, "produce_content")
        except asyncio.CancelledError:
            raise
        except Exception as e:  # noqa: BLE001
            self._failed(instance, e)
            return False
        if instance.state in DEAD_STATES or node is not instance.node:
            return False
        if fast_forward:
            # the superseded transition may have stopped mid fade-out
            node.opacity = 1.0
            node.transition = None
        if node.attached and not options.animated and content == node.content:
            return False

        if node.attached:
            if (
                options.animated
                and options.exit is not TransitionKind.NONE
                and not fast_forward
            ):
                node.transition = f"{options.exit.value}-out"
                node.opacity = 0.0
                await asyncio.sleep(options.duration / 2)
            node.detach()
        node.attach(content)
        node.transition = None
        metrics.inc("dom_updates_total", {"module": instance.name})

        if options.animated and options.entry is not TransitionKind.NONE:
            node.transition = f"{options.entry.value}-in"
            node.opacity = 0.0
            try:
                await asyncio.sleep(options.duration / 2)
            finally:
                node.opacity = 1.0
                node.transition = None
        return True

    def _failed(self, instance: ModuleInstance, exc: BaseException) -> None:
        if self.failure_handler is not None:
            self.failure_handler(instance, "produce_content", exc)
        else:
            log.error(
                "produce_content failed for %s: %s",
                instance.identifier,
                exc,
                extra={
                    "instance": instance.identifier,
                    "phase": "produce_content",
                },
            )

    async def settled(self, instance: ModuleInstance) -> None:
        """Wait until no transition is in flight for ``instance``."""
        while True:
            task = self._inflight.get(instance.identifier)
            if task is None or task.done():
                return
            await asyncio.wait([task])

    def cancel(self, instance: ModuleInstance) -> None:
        task = self._inflight.pop(instance.identifier, None)
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        # a failing transition reports itself; it must not cancel itself
        if task is not None and task is not current and not task.done():
            task.cancel()

    def cancel_all(self) -> None:
        for task in list(self._inflight.values()):
            if not task.done():
                task.cancel()
        self._inflight.clear()


__all__ = [
    "DomUpdateScheduler",
    "TransitionKind",
    "TransitionOptions",
    "IMMEDIATE",
]
