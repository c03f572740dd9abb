"""LifecycleController: owns every ModuleInstance and its state machine.

    REGISTERED -> RESOURCES_LOADING -> RESOURCES_LOADED -> STARTED
        -> CONTENT_ATTACHED -> RUNNING <-> SUSPENDED -> TERMINATED
    (any non-terminal state) -> FAILED

Each ``advance`` performs exactly one transition. Hook failures are caught
at the instance boundary: logged with the instance identity, counted,
emitted as ``ModuleFailed``, and the instance moves to FAILED. Siblings
keep running. A resource failure is not fatal: the instance stays in
RESOURCES_LOADING and may be advanced again later.

The controller is also the failure handler for the bus, the scheduler and
the multiplexer, so every per-instance failure ends up in ``fail``.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping

from hub import hooks, metrics
from hub.config.schemas.display import DEFAULT_POSITIONS, ModulePlacement
from hub.display import (
    IMMEDIATE,
    ContentNode,
    Display,
    DomUpdateScheduler,
    TransitionKind,
)
from hub.errors import (
    ChannelUnavailableError,
    ConfigLockedError,
    HookFailure,
    ResourceLoadError,
    UnknownModuleError,
    map_exception,
)
from hub.events import (
    ChannelSendFailed,
    ModuleFailed,
    ModuleRegistered,
    ModuleStateChanged,
    ResourceLoadFailed,
    emit,
)
from hub.instance import (
    ACTIVE_STATES,
    DEAD_STATES,
    LifecycleState,
    ModuleInstance,
)
from hub.notifications import (
    DOM_OBJECTS_CREATED,
    MODULE_DOM_CREATED,
    NotificationBus,
)
from .config_resolver import ConfigResolver
from .definition import ModuleDefinition, ModuleRegistry
from .resources import ResourceLoader

log = logging.getLogger("hub.lifecycle")

S = LifecycleState


class LifecycleController:
    def __init__(
        self,
        registry: ModuleRegistry,
        *,
        bus: NotificationBus | None = None,
        resolver: ConfigResolver | None = None,
        loader: ResourceLoader | None = None,
        scheduler: DomUpdateScheduler | None = None,
        display: Display | None = None,
        multiplexer: Any = None,
    ) -> None:
        self.registry = registry
        self.bus = bus or NotificationBus()
        self.resolver = resolver or ConfigResolver()
        self.loader = loader or ResourceLoader()
        self.scheduler = scheduler or DomUpdateScheduler()
        self.display = display or Display(DEFAULT_POSITIONS)
        self.multiplexer = multiplexer
        self.bus.failure_handler = self.fail
        self.scheduler.failure_handler = self.fail
        if multiplexer is not None:
            multiplexer.failure_handler = self.fail
        self._instances: List[ModuleInstance] = []
        self._next_index = 0
        self._terminating: set[str] = set()
        self._steps: Dict[
            LifecycleState,
            tuple[str, Callable[[ModuleInstance], Awaitable[bool]]],
        ] = {
            S.REGISTERED: ("init", self._initialize),
            S.RESOURCES_LOADING: ("resources", self._load_resources),
            S.RESOURCES_LOADED: ("start", self._start),
            S.STARTED: ("produce_content", self._attach_content),
            S.CONTENT_ATTACHED: ("on_content_attached", self._go_live),
        }

    # Registration ---------------------------------------------------------
    def register(
        self,
        definition_or_name: ModuleDefinition | str,
        placement: ModulePlacement | str | None = None,
        user_config: Mapping[str, Any] | None = None,
    ) -> ModuleInstance:
        # UnknownModuleError propagates: nothing is created
        if isinstance(definition_or_name, ModuleDefinition):
            definition = self.registry.get(definition_or_name.name)
            if definition is not definition_or_name:
                raise UnknownModuleError(definition_or_name.name)
        else:
            definition = self.registry.get(definition_or_name)

        header: str | None = None
        classes: tuple[str, ...] = ()
        if isinstance(placement, ModulePlacement):
            position = placement.position
            header = placement.header
            classes = tuple(placement.classes)
            if user_config is None:
                user_config = placement.config
        else:
            position = placement
        if position is not None:
            self.display.region(position)  # ValueError for unknown names

        config = self.resolver.resolve(definition, user_config)
        instance = ModuleInstance(
            self._next_index,
            definition,
            config,
            user_config=user_config,
            position=position,
            header=header,
            classes=classes,
        )
        self._next_index += 1
        self._instances.append(instance)
        self.bus.register(instance)
        log.info(
            "registered %s at %s",
            instance.identifier,
            position or "<headless>",
            extra={
                "instance": instance.identifier,
                "hub_module": definition.name,
            },
        )
        emit(
            ModuleRegistered(
                identifier=instance.identifier,
                module=definition.name,
                position=position,
            )
        )
        return instance

    def instances(self) -> List[ModuleInstance]:
        return list(self._instances)

    def get(self, identifier: str) -> ModuleInstance | None:
        for instance in self._instances:
            if instance.identifier == identifier:
                return instance
        return None

    def reconfigure(
        self, instance: ModuleInstance, overrides: Mapping[str, Any]
    ) -> Mapping[str, Any]:
        if instance.config_locked or instance.state not in (
            S.REGISTERED,
            S.RESOURCES_LOADING,
            S.RESOURCES_LOADED,
        ):
            raise ConfigLockedError(
                f"{instance.identifier}: configuration is read-only "
                f"in state {instance.state.value}"
            )
        merged = {**instance.user_config, **dict(overrides)}
        instance.user_config = merged
        instance.config = self.resolver.resolve(instance.definition, merged)
        return instance.config

    # State machine --------------------------------------------------------
    def _set_state(self, instance: ModuleInstance, state: LifecycleState) -> None:
        previous, instance.state = instance.state, state
        log.debug(
            "%s: %s -> %s",
            instance.identifier,
            previous.value,
            state.value,
            extra={"instance": instance.identifier},
        )
        emit(
            ModuleStateChanged(
                identifier=instance.identifier,
                module=instance.name,
                previous=previous.value,
                state=state.value,
            )
        )

    async def advance(self, instance: ModuleInstance) -> bool:
        """Perform one transition; False when the instance did not move."""
        step = self._steps.get(instance.state)
        if step is None:
            return False
        phase, action = step
        t0 = time.perf_counter()
        try:
            moved = await action(instance)
        except asyncio.CancelledError:
            raise
        except Exception as e:  # noqa: BLE001
            self.fail(instance, phase, e)
            return False
        if moved:
            metrics.observe(
                "lifecycle_step_ms",
                (time.perf_counter() - t0) * 1000,
                {"phase": phase},
            )
        return moved

    async def run_to_running(self, instance: ModuleInstance) -> bool:
        while await self.advance(instance):
            pass
        return instance.state is S.RUNNING

    async def boot(
        self, instances: Iterable[ModuleInstance] | None = None
    ) -> List[ModuleInstance]:
        """Drive instances concurrently, then announce DOM_OBJECTS_CREATED."""
        batch = list(self._instances if instances is None else instances)
        await asyncio.gather(*(self.run_to_running(i) for i in batch))
        self.bus.publish(None, DOM_OBJECTS_CREATED)
        running = [i for i in batch if i.state is S.RUNNING]
        log.info("boot complete: %d/%d running", len(running), len(batch))
        return running

    async def _initialize(self, instance: ModuleInstance) -> bool:
        instance.hooks = instance.definition.create()
        bind = getattr(instance.hooks, "_bind", None)
        if callable(bind):
            bind(instance, self)
        await hooks.invoke(instance.hooks, "init")
        if instance.state in DEAD_STATES:
            return False
        self._set_state(instance, S.RESOURCES_LOADING)
        return True

    async def _load_resources(self, instance: ModuleInstance) -> bool:
        try:
            instance.resources = await self.loader.load(instance)
        except ResourceLoadError as e:
            log.error(
                "%s: %s",
                instance.identifier,
                e,
                extra={
                    "instance": instance.identifier,
                    "hub_module": instance.name,
                    "phase": "resources",
                },
            )
            emit(
                ResourceLoadFailed(
                    identifier=instance.identifier,
                    module=instance.name,
                    resource=e.resource,
                    message=e.reason,
                )
            )
            return False
        if instance.state in DEAD_STATES:
            self.loader.release(instance)
            return False
        self._set_state(instance, S.RESOURCES_LOADED)
        return True

    async def _start(self, instance: ModuleInstance) -> bool:
        if self.multiplexer is not None:
            self.multiplexer.register(instance)
        instance.config_locked = True
        await hooks.invoke(instance.hooks, "start")
        if instance.state in DEAD_STATES:
            return False
        self._set_state(instance, S.STARTED)
        return True

    async def _attach_content(self, instance: ModuleInstance) -> bool:
        if instance.position is not None:
            node = ContentNode(
                instance.identifier,
                instance.name,
                header=instance.header,
                classes=instance.classes,
            )
            self.display.region(instance.position).append(node)
            instance.node = node
            self.scheduler.request_update(instance, IMMEDIATE)
            # a newer request may supersede the initial one; wait it out
            await self.scheduler.settled(instance)
            if instance.state in DEAD_STATES:
                return False
        self._set_state(instance, S.CONTENT_ATTACHED)
        return True

    async def _go_live(self, instance: ModuleInstance) -> bool:
        self._set_state(instance, S.RUNNING)
        self.bus.publish(None, MODULE_DOM_CREATED, target=instance)
        if instance.state in DEAD_STATES:
            return False
        await hooks.invoke(instance.hooks, "on_content_attached")
        return instance.state not in DEAD_STATES

    # Failure path ---------------------------------------------------------
    def fail(
        self, instance: ModuleInstance, phase: str, exc: BaseException
    ) -> None:
        if instance.state in DEAD_STATES:
            log.debug(
                "%s: ignoring %s failure in state %s",
                instance.identifier,
                phase,
                instance.state.value,
            )
            return
        failure = (
            exc
            if isinstance(exc, HookFailure)
            else HookFailure(instance.identifier, phase, exc)
        )
        log.error(
            "%s",
            failure,
            exc_info=(type(exc), exc, exc.__traceback__),
            extra={
                "instance": instance.identifier,
                "hub_module": instance.name,
                "phase": phase,
            },
        )
        self.scheduler.cancel(instance)
        self._set_state(instance, S.FAILED)
        emit(
            ModuleFailed(
                identifier=instance.identifier,
                module=instance.name,
                phase=phase,
                error_type=map_exception(exc, phase),
                message=str(exc) or exc.__class__.__name__,
            )
        )

    # Visibility -----------------------------------------------------------
    def suspend(self, instance: ModuleInstance, lock: str | None = None) -> bool:
        if instance.state not in ACTIVE_STATES:
            return False
        if lock:
            instance.locks.add(lock)
        if instance.state is S.SUSPENDED:
            return True
        if instance.node is not None:
            instance.node.hidden = True
        self._set_state(instance, S.SUSPENDED)
        hooks.fire(
            instance.hooks,
            "on_suspend",
            (),
            lambda exc: self.fail(instance, "on_suspend", exc),
        )
        return True

    def resume(
        self,
        instance: ModuleInstance,
        lock: str | None = None,
        force: bool = False,
    ) -> bool:
        if force:
            instance.locks.clear()
        elif lock:
            instance.locks.discard(lock)
        if instance.state is S.RUNNING:
            return True
        if instance.state is not S.SUSPENDED:
            return False
        if instance.locks:
            log.debug(
                "%s stays hidden, locked by %s",
                instance.identifier,
                sorted(instance.locks),
            )
            return False
        if instance.node is not None:
            instance.node.hidden = False
        self._set_state(instance, S.RUNNING)
        hooks.fire(
            instance.hooks,
            "on_resume",
            (),
            lambda exc: self.fail(instance, "on_resume", exc),
        )
        return True

    # Display / bridge helpers used by Module ------------------------------
    def request_update(
        self,
        instance: ModuleInstance,
        *,
        duration: float | None = None,
        entry: TransitionKind | str | None = None,
        exit: TransitionKind | str | None = None,
    ) -> asyncio.Future:
        options = self.scheduler.options(duration, entry, exit)
        return self.scheduler.request_update(instance, options)

    def send_to_backend(
        self, instance: ModuleInstance, event: str, payload: Any = None
    ) -> bool:
        if self.multiplexer is None:
            err = ChannelUnavailableError("no bridge configured")
            log.warning(
                "%s: send %s failed: %s",
                instance.identifier,
                event,
                err,
                extra={"instance": instance.identifier, "channel": instance.name},
            )
            emit(
                ChannelSendFailed(
                    channel=instance.name,
                    event=event,
                    error_type=err.error_type,
                    message=str(err),
                )
            )
            return False
        return self.multiplexer.send_to_backend(instance.name, event, payload)

    # Teardown -------------------------------------------------------------
    async def terminate(self, instance: ModuleInstance) -> None:
        key = instance.identifier
        if instance.state is S.TERMINATED or key in self._terminating:
            return
        self._terminating.add(key)
        try:
            await self._terminate(instance)
        finally:
            self._terminating.discard(key)

    async def _terminate(self, instance: ModuleInstance) -> None:
        self.scheduler.cancel(instance)
        if instance.hooks is not None:
            try:
                await hooks.invoke(instance.hooks, "stop")
            except Exception as e:  # noqa: BLE001
                log.error(
                    "%s: stop hook failed: %s",
                    instance.identifier,
                    e,
                    extra={"instance": instance.identifier, "phase": "stop"},
                )
                metrics.inc_module_failure(instance.name, "stop")
        self.loader.release(instance)
        instance.resources = None
        node = instance.node
        if node is not None:
            if node.region is not None:
                node.region.remove(node)
            node.detach()
            instance.node = None
        self.bus.unregister(instance)
        if self.multiplexer is not None:
            self.multiplexer.unregister(instance)
        instance.locks.clear()
        self._set_state(instance, S.TERMINATED)

    async def teardown(self) -> None:
        for instance in reversed(self._instances):
            await self.terminate(instance)


__all__ = ["LifecycleController"]
