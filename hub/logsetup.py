"""stdlib logging wiring driven by ``LoggingConfig``.

Loggers are named ``hub.<component>``. Failure records pass the instance
identity through ``extra`` (``instance``, ``hub_module``, ``phase``); the json
formatter lifts those keys into the output object.
"""
from __future__ import annotations

import json
import logging

from hub.config import LoggingConfig

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}
# ``module`` is a reserved LogRecord attribute, hence ``hub_module``
_EXTRA_KEYS = {
    "instance": "instance",
    "hub_module": "module",
    "phase": "phase",
    "channel": "channel",
    "backend": "backend",
}


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        out = {
            "ts": round(record.created, 3),
            "level": record.levelname.lower(),
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for key, out_key in _EXTRA_KEYS.items():
            if hasattr(record, key):
                out[out_key] = getattr(record, key)
        if record.exc_info:
            out["exc"] = self.formatException(record.exc_info)
        return json.dumps(out, ensure_ascii=False, default=str)


def configure_logging(cfg: LoggingConfig | None = None) -> logging.Logger:
    cfg = cfg or LoggingConfig()
    root = logging.getLogger("hub")
    root.setLevel(_LEVELS[cfg.level])
    for h in list(root.handlers):
        if getattr(h, "_hub_handler", False):
            root.removeHandler(h)
    handler = logging.StreamHandler()
    handler._hub_handler = True  # type: ignore[attr-defined]
    if cfg.format == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("[%(levelname)s] %(name)s: %(message)s")
        )
    root.addHandler(handler)
    return root


__all__ = ["configure_logging", "JsonFormatter"]
