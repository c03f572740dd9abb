"""Configuration loading & validation.

Precedence (last wins): base.yaml → overrides.local.yaml → ENV (HUB__*).

The loader only produces the host configuration (placements, display,
bridge, logging). Per-module option merging is done later by
``hub.modules.config_resolver`` against each module's declared defaults.

Unknown top-level / sub-schema keys are rejected.
"""
from __future__ import annotations

import logging
import os
import pathlib
import threading
from functools import lru_cache
from typing import Any, Dict, List

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from hub import metrics
from hub.errors import ConfigError
from .schemas.bridge import BridgeConfig
from .schemas.display import (
    DisplayConfig,
    ModulePlacement,
    ResourcesConfig,
)
from .schemas.observability import LoggingConfig

log = logging.getLogger("hub.config")


class AggregatedConfig(BaseModel):
    schema_version: int = 1
    language: str = "en"
    deep_merge: bool = False
    modules: List[ModulePlacement] = Field(default_factory=list)
    display: DisplayConfig = DisplayConfig()
    resources: ResourcesConfig = ResourcesConfig()
    bridge: BridgeConfig = BridgeConfig()
    logging: LoggingConfig = LoggingConfig()

    model_config = ConfigDict(extra="forbid")


DEFAULT_CONFIG_DIR = "configs"
ENV_PREFIX = "HUB__"


def _load_yaml_if_exists(path: pathlib.Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        try:
            return yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path.name}: {e}") from e


def _merge_dict(
    base: Dict[str, Any], override: Dict[str, Any]
) -> Dict[str, Any]:
    for k, v in override.items():
        if isinstance(v, dict) and isinstance(base.get(k), dict):
            base[k] = _merge_dict(base[k], v)
        else:
            base[k] = v
    return base


def _cast_env(value: str) -> Any:
    if value.lower() in {"true", "false"}:
        return value.lower() == "true"
    try:
        return int(value)
    except ValueError:
        try:
            return float(value)
        except ValueError:
            return value


def _apply_env(cfg: Dict[str, Any]) -> None:
    prefix_len = len(ENV_PREFIX)
    for env_key, value in os.environ.items():
        if not env_key.startswith(ENV_PREFIX):
            continue
        path_parts = env_key[prefix_len:].lower().split("__")
        target = cfg
        for part in path_parts[:-1]:
            if part not in target or not isinstance(target[part], dict):
                target[part] = {}
            target = target[part]
        target[path_parts[-1]] = _cast_env(value)
        dotted_path = ".".join(path_parts)
        metrics.inc("env_override_total", {"path": dotted_path})
        log.info("config env override path=%s source=env", dotted_path)


_lock = threading.Lock()


def _resolve_config_dir() -> pathlib.Path:
    """Resolve config directory each call honoring env var changes."""
    return pathlib.Path(os.getenv("HUB_CONFIG_DIR", DEFAULT_CONFIG_DIR))


def _validate_positions(cfg: AggregatedConfig) -> None:
    known = set(cfg.display.positions)
    bad = [
        f"{p.module}@{p.position}"
        for p in cfg.modules
        if p.position is not None and p.position not in known
    ]
    if bad:
        metrics.inc(
            "config_validation_errors_total",
            {"path": "modules.position", "code": "config-invalid"},
        )
        raise ConfigError(
            "config validation failed: unknown positions " + ", ".join(bad)
        )


def load_config(data: Dict[str, Any]) -> AggregatedConfig:
    """Validate an already-merged mapping (no file / env access)."""
    data.setdefault("schema_version", 1)
    try:
        cfg = AggregatedConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(str(e)) from e
    _validate_positions(cfg)
    return cfg


@lru_cache(maxsize=1)
def get_config() -> AggregatedConfig:  # noqa: D401
    with _lock:
        cfg_dir = _resolve_config_dir()
        base_cfg = _load_yaml_if_exists(cfg_dir / "base.yaml")
        overrides_cfg = _load_yaml_if_exists(cfg_dir / "overrides.local.yaml")
        merged = _merge_dict(base_cfg, overrides_cfg)
        _apply_env(merged)
        return load_config(merged)


def clear_config_cache() -> None:
    """Clear cached config (primarily for tests)."""
    get_config.cache_clear()


def as_dict() -> Dict[str, Any]:
    return get_config().model_dump()
