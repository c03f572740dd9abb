"""Module definitions, the process-scoped registry, and the authoring base.

A module type is a Python class. Class attributes declare its contract:

    defaults      mapping of option -> default value
    scripts       script resources (relative to the module directory or URL)
    styles        style resources
    translations  mapping locale -> translation file

Hooks are ordinary methods, all optional (see ``HOOK_NAMES``). Which of
them a class implements is computed once at registration and stored on
the definition as its capability set; dispatch consults that set instead
of probing at call time.

``Module`` provides helpers (send_notification, update_dom, ...) and
deliberately defines none of the hooks.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Dict, Mapping, Optional

from hub.errors import UnknownModuleError
from .config_resolver import freeze

if TYPE_CHECKING:  # pragma: no cover
    from hub.display.scheduler import TransitionKind
    from hub.instance import ModuleInstance
    from .lifecycle import LifecycleController

HOOK_NAMES = (
    "init",
    "start",
    "produce_content",
    "on_content_attached",
    "on_notification",
    "on_backend_notification",
    "on_suspend",
    "on_resume",
    "stop",
)


@dataclass(frozen=True)
class ModuleDefinition:
    name: str
    module_class: type
    defaults: Mapping[str, Any]
    scripts: tuple[str, ...] = ()
    styles: tuple[str, ...] = ()
    translations: Mapping[str, str] = field(
        default_factory=lambda: freeze({})
    )
    base_dir: Path | None = None
    hooks: frozenset[str] = frozenset()

    @classmethod
    def from_class(
        cls,
        name: str,
        module_class: type,
        base_dir: str | Path | None = None,
    ) -> "ModuleDefinition":
        if not name or not name.strip():
            raise ValueError("module name cannot be empty")
        hooks = frozenset(
            h for h in HOOK_NAMES if callable(getattr(module_class, h, None))
        )
        return cls(
            name=name,
            module_class=module_class,
            defaults=freeze(dict(getattr(module_class, "defaults", {}) or {})),
            scripts=tuple(getattr(module_class, "scripts", ()) or ()),
            styles=tuple(getattr(module_class, "styles", ()) or ()),
            translations=freeze(
                dict(getattr(module_class, "translations", {}) or {})
            ),
            base_dir=Path(base_dir) if base_dir is not None else None,
            hooks=hooks,
        )

    def create(self) -> Any:
        return self.module_class()

    def provides(self, hook: str) -> bool:
        return hook in self.hooks


class ModuleRegistry:
    """Process-scoped registry of module types.

    Populated at startup, read-only afterwards. Tests build their own.
    """

    def __init__(self) -> None:
        self._defs: Dict[str, ModuleDefinition] = {}

    def register(
        self,
        definition_or_class: ModuleDefinition | type,
        name: str | None = None,
        base_dir: str | Path | None = None,
    ) -> ModuleDefinition:
        if isinstance(definition_or_class, ModuleDefinition):
            definition = definition_or_class
        else:
            module_name = name or getattr(definition_or_class, "name", None)
            definition = ModuleDefinition.from_class(
                module_name or definition_or_class.__name__.lower(),
                definition_or_class,
                base_dir,
            )
        if definition.name in self._defs:
            raise ValueError(
                f"Module '{definition.name}' already registered"
            )
        self._defs[definition.name] = definition
        return definition

    def define(
        self, name: str, base_dir: str | Path | None = None
    ) -> Callable[[type], type]:
        """Class decorator form of ``register``."""

        def _wrap(module_class: type) -> type:
            self.register(module_class, name=name, base_dir=base_dir)
            return module_class

        return _wrap

    def get(self, name: str) -> ModuleDefinition:
        definition = self._defs.get(name)
        if definition is None:
            raise UnknownModuleError(name)
        return definition

    def names(self) -> list[str]:
        return list(self._defs)

    def __contains__(self, name: object) -> bool:
        return name in self._defs

    def __len__(self) -> int:
        return len(self._defs)

    def clear(self) -> None:
        self._defs.clear()


class Module:
    """Convenience base for module classes.

    Helpers are usable once the controller has bound the object to its
    instance (right before ``init``).
    """

    name: str = ""
    defaults: Mapping[str, Any] = {}
    scripts: tuple[str, ...] = ()
    styles: tuple[str, ...] = ()
    translations: Mapping[str, str] = {}

    _instance: Optional["ModuleInstance"] = None
    _controller: Optional["LifecycleController"] = None

    def _bind(
        self, instance: "ModuleInstance", controller: "LifecycleController"
    ) -> None:
        self._instance = instance
        self._controller = controller

    def _require(self) -> tuple["ModuleInstance", "LifecycleController"]:
        if self._instance is None or self._controller is None:
            raise RuntimeError("Module is not bound to an instance")
        return self._instance, self._controller

    # Identity / config ----------------------------------------------------
    @property
    def identifier(self) -> str:
        return self._require()[0].identifier

    @property
    def config(self) -> Mapping[str, Any]:
        return self._require()[0].config

    @property
    def position(self) -> str | None:
        return self._require()[0].position

    @property
    def header(self) -> str | None:
        return self._require()[0].header

    def file(self, relative: str) -> Path:
        base = self._require()[0].definition.base_dir or Path(".")
        return base / relative

    # Messaging ------------------------------------------------------------
    def send_notification(
        self,
        name: str,
        payload: Any = None,
        target: "ModuleInstance | str | None" = None,
    ) -> None:
        instance, controller = self._require()
        controller.bus.publish(instance, name, payload, target=target)

    def send_socket_notification(self, name: str, payload: Any = None) -> bool:
        instance, controller = self._require()
        return controller.send_to_backend(instance, name, payload)

    # Display --------------------------------------------------------------
    def update_dom(
        self,
        duration: float | None = None,
        entry: "TransitionKind | str | None" = None,
        exit: "TransitionKind | str | None" = None,
    ):
        instance, controller = self._require()
        return controller.request_update(
            instance, duration=duration, entry=entry, exit=exit
        )

    def hide(self, lock: str | None = None) -> bool:
        instance, controller = self._require()
        return controller.suspend(instance, lock=lock)

    def show(self, lock: str | None = None, force: bool = False) -> bool:
        instance, controller = self._require()
        return controller.resume(instance, lock=lock, force=force)

    # Translations ---------------------------------------------------------
    def translate(self, key: str, **variables: Any) -> str:
        instance = self._require()[0]
        if instance.resources is None:
            return key
        return instance.resources.translator.translate(key, variables)


__all__ = ["HOOK_NAMES", "ModuleDefinition", "ModuleRegistry", "Module"]
