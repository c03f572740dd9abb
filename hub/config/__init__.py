"""Config subsystem public API.

Provides:
    get_config()  -> AggregatedConfig (placements, display, bridge, logging)
    load_config() -> validate an in-memory mapping (embedding / tests)
    as_dict()     -> dict representation
    ConfigError   -> raised on validation / unknown key
"""

from hub.errors import ConfigError  # noqa: F401
from .loader import (  # noqa: F401
    AggregatedConfig,
    get_config,
    load_config,
    as_dict,
    clear_config_cache,
)
from .schemas.bridge import BridgeConfig  # noqa: F401
from .schemas.display import (  # noqa: F401
    DisplayConfig,
    ModulePlacement,
    ResourcesConfig,
)
from .schemas.observability import LoggingConfig  # noqa: F401

__all__ = [
    "AggregatedConfig",
    "BridgeConfig",
    "DisplayConfig",
    "LoggingConfig",
    "ModulePlacement",
    "ResourcesConfig",
    "get_config",
    "load_config",
    "as_dict",
    "ConfigError",
    "clear_config_cache",
]
