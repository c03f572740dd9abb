"""ModuleInstance + lifecycle states.

Instance state is owned by ``LifecycleController``; other components only
read ``state`` (bus recipient filter, scheduler, multiplexer delivery).
"""
from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any, Mapping

if TYPE_CHECKING:  # pragma: no cover
    from hub.display.nodes import ContentNode
    from hub.modules.definition import ModuleDefinition
    from hub.modules.resources import LoadedResources


class LifecycleState(str, Enum):
    REGISTERED = "registered"
    RESOURCES_LOADING = "resources_loading"
    RESOURCES_LOADED = "resources_loaded"
    STARTED = "started"
    CONTENT_ATTACHED = "content_attached"
    RUNNING = "running"
    SUSPENDED = "suspended"
    TERMINATED = "terminated"
    FAILED = "failed"


# notification recipients
ACTIVE_STATES = frozenset({LifecycleState.RUNNING, LifecycleState.SUSPENDED})
# backend notifications reach an instance once its channel is open
CHANNEL_STATES = frozenset(
    {
        LifecycleState.STARTED,
        LifecycleState.CONTENT_ATTACHED,
        LifecycleState.RUNNING,
        LifecycleState.SUSPENDED,
    }
)
DEAD_STATES = frozenset({LifecycleState.TERMINATED, LifecycleState.FAILED})


class ModuleInstance:
    __slots__ = (
        "identifier",
        "index",
        "definition",
        "position",
        "header",
        "classes",
        "user_config",
        "config",
        "config_locked",
        "state",
        "locks",
        "node",
        "resources",
        "hooks",
    )

    def __init__(
        self,
        index: int,
        definition: "ModuleDefinition",
        config: Mapping[str, Any],
        user_config: Mapping[str, Any] | None = None,
        position: str | None = None,
        header: str | None = None,
        classes: tuple[str, ...] = (),
    ) -> None:
        self.index = index
        self.identifier = f"module_{index}_{definition.name}"
        self.definition = definition
        self.position = position
        self.header = header
        self.classes = classes
        self.user_config = dict(user_config or {})
        self.config = config
        self.config_locked = False
        self.state = LifecycleState.REGISTERED
        self.locks: set[str] = set()
        self.node: ContentNode | None = None
        self.resources: LoadedResources | None = None
        # hook implementation object (instance of the module class)
        self.hooks: Any = None

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def hidden(self) -> bool:
        return self.state is LifecycleState.SUSPENDED

    def provides(self, hook: str) -> bool:
        return hook in self.definition.hooks

    def __repr__(self) -> str:  # pragma: no cover
        return f"<ModuleInstance {self.identifier} {self.state.value}>"


__all__ = [
    "LifecycleState",
    "ACTIVE_STATES",
    "CHANNEL_STATES",
    "DEAD_STATES",
    "ModuleInstance",
]
