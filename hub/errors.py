"""Central error taxonomy + exception hierarchy.

Every exception raised by the hub carries an ``error_type`` code from
``_ALLOWED_ERROR_TYPES``. Codes are what logs, metrics labels and
telemetry events use, so new exception classes must register a code here.

Containment rule: per-instance failures (hooks, resources, channel sends)
are caught at the instance boundary and reported; none of them may
propagate into the event loop.
"""
from __future__ import annotations

_ALLOWED_ERROR_TYPES = {
    # registration / config
    "unknown-module",
    "config-invalid",
    "config-locked",
    # lifecycle
    "hook-failure",
    "resource-load",
    "timeout",
    # bridge
    "channel-unavailable",
    "unroutable-message",
    "malformed-message",
    "transport-closed",
    # infra
    "event-handler-error",
    "internal",
}


def validate_error_type(code: str) -> str:
    assert (
        code in _ALLOWED_ERROR_TYPES
    ), f"Unknown error_type '{code}' (not in taxonomy)"
    return code


class HubError(Exception):
    """Base hub exception."""

    error_type = "internal"


class UnknownModuleError(HubError):
    """Placement names a module type that was never registered."""

    error_type = "unknown-module"

    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown module '{name}'")
        self.name = name


class HookFailure(HubError):
    """A lifecycle / notification hook raised or its awaitable rejected.

    Carries the instance identity and the phase the hook ran in so the
    failure can be reported without the original traceback context.
    """

    error_type = "hook-failure"

    def __init__(
        self, identifier: str, phase: str, cause: BaseException
    ) -> None:
        super().__init__(
            f"{identifier}: hook '{phase}' failed: "
            f"{cause.__class__.__name__}: {cause}"
        )
        self.identifier = identifier
        self.phase = phase
        self.cause = cause


class ResourceLoadError(HubError):
    """Script / style / translation could not be made ready."""

    error_type = "resource-load"

    def __init__(self, resource: str, reason: str) -> None:
        super().__init__(f"Cannot load resource '{resource}': {reason}")
        self.resource = resource
        self.reason = reason


class ChannelUnavailableError(HubError):
    """Send attempted while the transport is down or channel unopened."""

    error_type = "channel-unavailable"


class UnroutableMessageError(HubError):
    """Bridge message tagged with a name nobody registered."""

    error_type = "unroutable-message"

    def __init__(self, channel: str) -> None:
        super().__init__(f"No backend registered for channel '{channel}'")
        self.channel = channel


class MalformedMessageError(HubError):
    error_type = "malformed-message"


class TransportClosed(HubError):
    error_type = "transport-closed"


class ConfigError(HubError):
    error_type = "config-invalid"


class ConfigLockedError(ConfigError):
    """Configuration change attempted after the instance STARTED."""

    error_type = "config-locked"


def map_exception(e: BaseException, phase: str) -> str:
    """Classify an arbitrary exception into a taxonomy code."""
    if isinstance(e, HubError):
        return e.error_type
    name = e.__class__.__name__.lower()
    if "timeout" in name:
        return "timeout"
    if phase.startswith("resource"):
        return "resource-load"
    if phase.startswith("bridge"):
        return "transport-closed"
    return "hook-failure"


__all__ = [
    "validate_error_type",
    "map_exception",
    "HubError",
    "UnknownModuleError",
    "HookFailure",
    "ResourceLoadError",
    "ChannelUnavailableError",
    "UnroutableMessageError",
    "MalformedMessageError",
    "TransportClosed",
    "ConfigError",
    "ConfigLockedError",
]
