"""Per-instance configuration: module defaults ⊕ user overrides.

Result is deep-frozen (MappingProxyType / tuple) so instances cannot
mutate shared defaults or each other's options.

Merge modes:
  - shallow (default): user value replaces the default value per key
  - deep: nested mappings are merged key by key (``deep_merge: true``)

User keys absent from the defaults are kept but reported as a warning.
"""
from __future__ import annotations

import logging
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Dict, Mapping

from hub.events import ConfigUnknownKeys, emit

if TYPE_CHECKING:  # pragma: no cover
    from .definition import ModuleDefinition

log = logging.getLogger("hub.config")


def freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({k: freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze(v) for v in value)
    if isinstance(value, (set, frozenset)):
        return frozenset(freeze(v) for v in value)
    return value


def thaw(value: Any) -> Any:
    """Mutable deep copy of a frozen structure (dict / list)."""
    if isinstance(value, Mapping):
        return {k: thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [thaw(v) for v in value]
    if isinstance(value, frozenset):
        return {thaw(v) for v in value}
    return value


def deep_merge(
    base: Dict[str, Any], override: Mapping[str, Any]
) -> Dict[str, Any]:
    for k, v in override.items():
        if isinstance(v, Mapping) and isinstance(base.get(k), dict):
            base[k] = deep_merge(base[k], v)
        else:
            base[k] = thaw(v)
    return base


class ConfigResolver:
    def __init__(self, deep: bool = False) -> None:
        self.deep = deep

    def resolve(
        self,
        definition: "ModuleDefinition",
        user_config: Mapping[str, Any] | None = None,
    ) -> Mapping[str, Any]:
        user_config = user_config or {}
        merged = thaw(definition.defaults)
        if self.deep:
            deep_merge(merged, user_config)
        else:
            merged.update({k: thaw(v) for k, v in user_config.items()})
        unknown = sorted(
            str(k) for k in user_config if k not in definition.defaults
        )
        if unknown:
            log.warning(
                "module %s: unknown config keys %s",
                definition.name,
                ", ".join(unknown),
                extra={"hub_module": definition.name},
            )
            emit(ConfigUnknownKeys(module=definition.name, keys=unknown))
        return freeze(merged)


__all__ = ["ConfigResolver", "freeze", "thaw", "deep_merge"]
