"""Discovery of module types and backends under ``resources.modules_dir``.

Layout (one directory per module type, directory name = module name):

    modules/
      clock/
        module.py        Module subclass (client side), required
        backend.py       Backend subclass (server side), optional
        clock.css        resources referenced by the class, relative paths
        translations/en.json

A directory whose ``module.py`` fails to import is skipped with an error
log so one broken module cannot take the mirror down. Discovered classes
are cached per directory; registries are filled from the cache.
"""
from __future__ import annotations

import importlib.util
import inspect
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from types import ModuleType
from typing import Dict, Optional

from hub import metrics
from hub.bridge.backends import Backend, BackendRegistry
from hub.modules.definition import Module, ModuleRegistry

log = logging.getLogger("hub.registry")

_discovery_lock = threading.Lock()
_discovery_cache: Dict[Path, Dict[str, "DiscoveredModule"]] = {}


@dataclass(frozen=True)
class DiscoveredModule:
    name: str
    base_dir: Path
    module_class: type
    backend_class: Optional[type] = None


def _import_file(path: Path, qualname: str) -> ModuleType:
    spec = importlib.util.spec_from_file_location(qualname, path)
    if spec is None or spec.loader is None:
        raise ImportError(f"cannot load {path}")
    mod = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(mod)
    return mod


def _find_subclass(mod: ModuleType, base: type) -> Optional[type]:
    """First class defined in ``mod`` itself that derives from ``base``."""
    for _, obj in inspect.getmembers(mod, inspect.isclass):
        if obj is base or obj.__module__ != mod.__name__:
            continue
        if issubclass(obj, base):
            return obj
    return None


def _discover_one(module_dir: Path) -> Optional[DiscoveredModule]:
    name = module_dir.name
    try:
        client = _import_file(module_dir / "module.py", f"hub_modules.{name}")
        module_class = _find_subclass(client, Module)
        if module_class is None:
            raise ImportError("no Module subclass in module.py")
        backend_class = None
        backend_file = module_dir / "backend.py"
        if backend_file.is_file():
            server = _import_file(backend_file, f"hub_backends.{name}")
            backend_class = _find_subclass(server, Backend)
            if backend_class is None:
                raise ImportError("no Backend subclass in backend.py")
    except Exception as e:  # noqa: BLE001
        log.error("skipping module dir %s: %s", module_dir, e)
        metrics.inc("module_discovery_errors_total", {"module": name})
        return None
    return DiscoveredModule(name, module_dir, module_class, backend_class)


def discover(modules_dir: str | Path) -> Dict[str, DiscoveredModule]:
    """Scan ``modules_dir`` once (cached per resolved path)."""
    root = Path(modules_dir).resolve()
    with _discovery_lock:
        if root in _discovery_cache:
            return _discovery_cache[root]
        found: Dict[str, DiscoveredModule] = {}
        if root.is_dir():
            for module_dir in sorted(root.iterdir()):
                if not (module_dir / "module.py").is_file():
                    continue
                item = _discover_one(module_dir)
                if item is not None:
                    found[item.name] = item
        else:
            log.warning("modules dir %s does not exist", root)
        _discovery_cache[root] = found
        return found


def load_modules(
    modules_dir: str | Path, registry: ModuleRegistry | None = None
) -> ModuleRegistry:
    registry = registry if registry is not None else ModuleRegistry()
    for item in discover(modules_dir).values():
        if item.name not in registry:
            registry.register(
                item.module_class, name=item.name, base_dir=item.base_dir
            )
    return registry


def load_backends(
    modules_dir: str | Path,
    registry: BackendRegistry | None = None,
) -> BackendRegistry:
    registry = registry if registry is not None else BackendRegistry()
    for item in discover(modules_dir).values():
        if item.backend_class is None or registry.get(item.name) is not None:
            continue
        registry.register(item.backend_class(item.name))
    return registry


def clear_discovery_cache(modules_dir: str | Path | None = None) -> None:
    with _discovery_lock:
        if modules_dir is None:
            _discovery_cache.clear()
        else:
            _discovery_cache.pop(Path(modules_dir).resolve(), None)
