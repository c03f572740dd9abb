"""Telemetry event dataclasses + any-subscriber dispatch.

These are hub-internal observability events (lifecycle transitions,
failures, bridge state). They are NOT module notifications: module
instances talk through ``hub.notifications.NotificationBus``.

``emit(ev)`` hands ``(name, payload)`` to every subscriber registered via
``on`` / ``subscribe``. Subscriber exceptions are counted, not propagated.
"""
from __future__ import annotations

from dataclasses import dataclass, asdict
from time import time
from typing import Any, Callable, Dict, List, Protocol

from hub import metrics as _metrics

EventHandler = Callable[[str, Dict[str, Any]], None]


class SupportsEvent(Protocol):  # pragma: no cover
    def to_event(self) -> Dict[str, Any]:  # noqa: D401
        ...


@dataclass(slots=True)
class BaseEvent:
    def to_event(self) -> Dict[str, Any]:  # noqa: D401
        data = asdict(self)
        data["ts"] = data.get("ts") or time()
        return data


@dataclass(slots=True)
class ModuleRegistered(BaseEvent):
    identifier: str
    module: str
    position: str | None = None


@dataclass(slots=True)
class ModuleStateChanged(BaseEvent):
    identifier: str
    module: str
    previous: str
    state: str


@dataclass(slots=True)
class ModuleFailed(BaseEvent):
    """Instance isolated after a hook failure.

    phase: hook name or transition in which the failure happened.
    error_type: taxonomy code (see hub.errors).
    """
    identifier: str
    module: str
    phase: str
    error_type: str
    message: str | None = None


@dataclass(slots=True)
class ResourceLoadFailed(BaseEvent):
    identifier: str
    module: str
    resource: str
    message: str | None = None


@dataclass(slots=True)
class ConfigUnknownKeys(BaseEvent):
    module: str
    keys: list[str]


@dataclass(slots=True)
class DomUpdateSuperseded(BaseEvent):
    identifier: str
    module: str


@dataclass(slots=True)
class ChannelOpened(BaseEvent):
    channel: str
    side: str  # client|server


@dataclass(slots=True)
class ChannelStateChanged(BaseEvent):
    """Client multiplexer connection state transition."""
    previous: str
    state: str
    channels: list[str] | None = None


@dataclass(slots=True)
class ChannelSendFailed(BaseEvent):
    channel: str
    event: str
    error_type: str
    message: str | None = None


@dataclass(slots=True)
class MessageUnroutable(BaseEvent):
    channel: str
    event: str
    side: str  # client|server


@dataclass(slots=True)
class BackendFailed(BaseEvent):
    backend: str
    phase: str
    error_type: str
    message: str | None = None


@dataclass(slots=True)
class ClientConnected(BaseEvent):
    client_id: str
    remote_address: str | None = None


@dataclass(slots=True)
class ClientDisconnected(BaseEvent):
    client_id: str


@dataclass(slots=True)
class ConnectionRejected(BaseEvent):
    remote_address: str | None


_ANY_SUBS: List[EventHandler] = []


def _metrics_collector(
    name: str, payload: Dict[str, Any]
) -> None:  # noqa: D401
    if name == "ModuleStateChanged":
        _metrics.inc("module_state_total", {"state": payload.get("state")})
    elif name == "ModuleFailed":
        _metrics.inc_module_failure(
            payload.get("module", "unknown"), payload.get("phase", "unknown")
        )
    elif name == "ResourceLoadFailed":
        _metrics.inc(
            "resource_load_errors_total",
            {"module": payload.get("module", "unknown")},
        )
    elif name == "DomUpdateSuperseded":
        _metrics.inc(
            "dom_updates_superseded_total",
            {"module": payload.get("module", "unknown")},
        )
    elif name == "ChannelSendFailed":
        _metrics.inc_channel("send_failed", payload.get("channel", "unknown"))
    elif name == "MessageUnroutable":
        _metrics.inc_channel("unroutable", payload.get("channel", "unknown"))
    elif name == "BackendFailed":
        _metrics.inc_backend_failure(
            payload.get("backend", "unknown"), payload.get("phase", "unknown")
        )
    elif name == "ConnectionRejected":
        _metrics.inc("bridge_connections_rejected_total")
    elif name == "ConfigUnknownKeys":
        _metrics.inc(
            "config_unknown_keys_total",
            {"module": payload.get("module", "unknown")},
            value=len(payload.get("keys") or ()),
        )


_ANY_SUBS.append(_metrics_collector)


def emit(ev: BaseEvent | SupportsEvent) -> None:
    name = ev.__class__.__name__
    payload = ev.to_event()
    for h in list(_ANY_SUBS):  # copy for isolation
        try:
            h(name, dict(payload))
        except Exception:  # noqa: BLE001
            _metrics.inc("handler_exceptions_total", {"event": name})


def on(handler: EventHandler) -> None:
    _ANY_SUBS.append(handler)


def subscribe(handler: EventHandler):
    on(handler)

    def _unsub() -> None:  # noqa: D401
        try:
            _ANY_SUBS.remove(handler)
        except ValueError:
            pass
    return _unsub


def reset_listeners_for_tests() -> None:  # pragma: no cover
    _ANY_SUBS.clear()
    _ANY_SUBS.append(_metrics_collector)


__all__ = [
    "emit",
    "on",
    "subscribe",
    "BaseEvent",
    "ModuleRegistered",
    "ModuleStateChanged",
    "ModuleFailed",
    "ResourceLoadFailed",
    "ConfigUnknownKeys",
    "DomUpdateSuperseded",
    "ChannelOpened",
    "ChannelStateChanged",
    "ChannelSendFailed",
    "MessageUnroutable",
    "BackendFailed",
    "ClientConnected",
    "ClientDisconnected",
    "ConnectionRejected",
    "reset_listeners_for_tests",
]
