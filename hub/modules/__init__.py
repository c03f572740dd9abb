"""Module types, instances and their lifecycle."""

from hub.instance import LifecycleState, ModuleInstance  # noqa: F401
from .config_resolver import ConfigResolver  # noqa: F401
from .definition import (  # noqa: F401
    HOOK_NAMES,
    Module,
    ModuleDefinition,
    ModuleRegistry,
)
from .lifecycle import LifecycleController  # noqa: F401
from .resources import LoadedResources, ResourceLoader, Translator  # noqa: F401

__all__ = [
    "HOOK_NAMES",
    "ConfigResolver",
    "LifecycleController",
    "LifecycleState",
    "LoadedResources",
    "Module",
    "ModuleDefinition",
    "ModuleInstance",
    "ModuleRegistry",
    "ResourceLoader",
    "Translator",
]
