"""NotificationBus: synchronous in-process broadcast among module instances.

Semantics:
  - recipients are RUNNING / SUSPENDED instances, in registration order
  - the sender never receives its own notification (also when targeted)
  - ``target`` narrows delivery to one instance (object or identifier)
  - delivery is fire-and-forget: recipient hook errors go to the failure
    handler (the lifecycle controller) and delivery continues
  - a publish issued while a delivery is running is queued and delivered
    right after it, so one publish never interleaves with another

``sender=None`` marks a system-originated notification.
"""
from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, List, Optional

from hub import hooks, metrics
from hub.instance import ACTIVE_STATES, ModuleInstance

log = logging.getLogger("hub.notifications")

# reserved system notifications
MODULE_DOM_CREATED = "MODULE_DOM_CREATED"
DOM_OBJECTS_CREATED = "DOM_OBJECTS_CREATED"
SYSTEM_NOTIFICATIONS = frozenset({MODULE_DOM_CREATED, DOM_OBJECTS_CREATED})

FailureHandler = Callable[[ModuleInstance, str, BaseException], None]


@dataclass(frozen=True, slots=True)
class Notification:
    name: str
    payload: Any = None
    sender: Optional[ModuleInstance] = None
    target: ModuleInstance | str | None = None


class NotificationBus:
    def __init__(self, failure_handler: FailureHandler | None = None) -> None:
        self._instances: List[ModuleInstance] = []
        self._queue: Deque[Notification] = deque()
        self._delivering = False
        self.failure_handler = failure_handler

    def register(self, instance: ModuleInstance) -> None:
        if instance not in self._instances:
            self._instances.append(instance)

    def unregister(self, instance: ModuleInstance) -> None:
        if instance in self._instances:
            self._instances.remove(instance)

    def registered(self) -> List[ModuleInstance]:
        return list(self._instances)

    @staticmethod
    def _matches(instance: ModuleInstance, target: ModuleInstance | str) -> bool:
        if isinstance(target, str):
            return instance.identifier == target
        return instance is target

    def recipients(
        self,
        sender: Optional[ModuleInstance],
        target: ModuleInstance | str | None = None,
    ) -> List[ModuleInstance]:
        """Everyone registered and active, minus the sender."""
        pool = self._instances
        if target is not None:
            pool = [i for i in pool if self._matches(i, target)]
        return [
            i for i in pool if i is not sender and i.state in ACTIVE_STATES
        ]

    def publish(
        self,
        sender: Optional[ModuleInstance],
        name: str,
        payload: Any = None,
        target: ModuleInstance | str | None = None,
    ) -> None:
        if sender is not None and name in SYSTEM_NOTIFICATIONS:
            raise ValueError(f"'{name}' is reserved for system notifications")
        metrics.inc("notifications_published_total", {"name": name})
        self._queue.append(Notification(name, payload, sender, target))
        if self._delivering:
            return
        self._delivering = True
        try:
            while self._queue:
                self._deliver(self._queue.popleft())
        finally:
            self._delivering = False

    def _deliver(self, n: Notification) -> None:
        for instance in self.recipients(n.sender, n.target):
            # an earlier recipient may have failed / terminated this one
            if instance.state not in ACTIVE_STATES:
                continue
            if not instance.provides("on_notification"):
                continue
            hooks.fire(
                instance.hooks,
                "on_notification",
                (n.name, n.payload, n.sender),
                lambda exc, inst=instance: self._failed(inst, exc),
            )
            metrics.inc("notifications_delivered_total", {"name": n.name})

    def _failed(self, instance: ModuleInstance, exc: BaseException) -> None:
        if self.failure_handler is not None:
            self.failure_handler(instance, "on_notification", exc)
            return
        log.error(
            "notification hook failed for %s: %s",
            instance.identifier,
            exc,
            extra={"instance": instance.identifier, "phase": "on_notification"},
        )

    def clear(self) -> None:
        self._instances.clear()
        self._queue.clear()


__all__ = [
    "NotificationBus",
    "Notification",
    "MODULE_DOM_CREATED",
    "DOM_OBJECTS_CREATED",
    "SYSTEM_NOTIFICATIONS",
]
