"""Minimal in-memory metrics collector.

Purpose:
    - Counters and simple latency samples for spotting misbehaving modules.
    - Zero external deps; can be swapped by Prometheus exporter later.

Core API (intentionally tiny):
    inc(name, labels=None, value=1)
    observe(name, value, labels=None)
    snapshot() -> dict (copy for safe reading)

The hub runs on one event loop, but backends may push work to threads
(``asyncio.to_thread``), so a coarse RLock is kept.

Metric names (documented for discoverability):
    - module_failures_total{module,phase}
    - module_state_total{state}
    - notifications_published_total{name}
    - notifications_delivered_total{name}
    - dom_updates_total{module}
    - dom_updates_superseded_total{module}
    - resources_loaded_total{kind}
    - resource_load_errors_total{module}
    - config_unknown_keys_total{module}
    - channel_messages_sent_total{channel}
    - channel_messages_received_total{channel}
    - channel_send_failed_total{channel}
    - channel_unroutable_total{channel}
    - bridge_connections_rejected_total
    - backend_failures_total{backend,phase}
"""
from __future__ import annotations

from threading import RLock
from time import time
from typing import Dict, Tuple, Any

_COUNTERS: Dict[Tuple[str, Tuple[Tuple[str, str], ...]], float] = {}
_HIST: Dict[Tuple[str, Tuple[Tuple[str, str], ...]], list] = {}
_LOCK = RLock()


def _norm_labels(labels: dict[str, Any] | None) -> Tuple[Tuple[str, str], ...]:
    if not labels:
        return tuple()
    return tuple(sorted((str(k), str(v)) for k, v in labels.items()))


def _render(name: str, labels: Tuple[Tuple[str, str], ...]) -> str:
    if not labels:
        return name
    return name + "{" + ",".join(f"{k}={v}" for k, v in labels) + "}"


def inc(
    name: str,
    labels: dict[str, Any] | None = None,
    value: float = 1.0,
) -> None:
    key = (name, _norm_labels(labels))
    with _LOCK:
        _COUNTERS[key] = _COUNTERS.get(key, 0.0) + value


def observe(
    name: str,
    value: float,
    labels: dict[str, Any] | None = None,
) -> None:
    key = (name, _norm_labels(labels))
    with _LOCK:
        _HIST.setdefault(key, []).append(value)


def snapshot() -> dict[str, Any]:
    with _LOCK:
        counters = {
            _render(name, labels): v
            for (name, labels), v in _COUNTERS.items()
        }
        hist = {}
        for (name, labels), vals in _HIST.items():
            if not vals:
                continue
            hist[_render(name, labels)] = {
                "count": len(vals),
                "min": min(vals),
                "max": max(vals),
                "p50": sorted(vals)[len(vals) // 2],
                "last": vals[-1],
            }
        return {
            "ts": time(),
            "counters": counters,
            "histograms": hist,
        }


def counter(name: str, labels: dict[str, Any] | None = None) -> float:
    """Read a single counter (0.0 when never incremented)."""
    with _LOCK:
        return _COUNTERS.get((name, _norm_labels(labels)), 0.0)


def reset_for_tests() -> None:  # pragma: no cover
    with _LOCK:
        _COUNTERS.clear()
        _HIST.clear()


__all__ = [
    "inc",
    "observe",
    "snapshot",
    "counter",
    "reset_for_tests",
]


# ------------------- Helper wrappers -------------------

def inc_module_failure(module: str, phase: str) -> None:
    """Increment per-module failure counter.

    phase: hook or transition that failed (init, start, produce_content,
    on_notification, on_backend_notification, ...).
    """
    inc("module_failures_total", {"module": module, "phase": phase})


def inc_backend_failure(backend: str, phase: str) -> None:
    inc("backend_failures_total", {"backend": backend, "phase": phase})


def inc_channel(direction: str, channel: str) -> None:
    """direction: sent | received | send_failed | unroutable."""
    if direction in {"sent", "received"}:
        inc(f"channel_messages_{direction}_total", {"channel": channel})
    else:
        inc(f"channel_{direction}_total", {"channel": channel})


__all__ += [
    "inc_module_failure",
    "inc_backend_failure",
    "inc_channel",
]
