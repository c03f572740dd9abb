"""Optional-hook invocation shared by lifecycle, bus, scheduler and bridge.

Module and backend contracts are capability sets: a hook is either
implemented or absent. ``call`` treats an absent hook as a no-op.
A hook may return an awaitable; ``invoke`` awaits it, ``fire`` schedules
it on the running loop and routes its rejection to ``on_error``.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from functools import partial
from typing import Any, Awaitable, Callable

log = logging.getLogger("hub.hooks")

ErrorCallback = Callable[[BaseException], None]

# strong refs so fire-and-forget tasks are not garbage collected mid-flight
_BACKGROUND: set[asyncio.Future] = set()


def provides(obj: Any, hook: str) -> bool:
    return callable(getattr(obj, hook, None))


def call(obj: Any, hook: str, *args: Any) -> Any:
    fn = getattr(obj, hook, None)
    if not callable(fn):
        return None
    return fn(*args)


async def invoke(obj: Any, hook: str, *args: Any) -> Any:
    result = call(obj, hook, *args)
    if inspect.isawaitable(result):
        result = await result
    return result


async def _await(aw: Awaitable[Any]) -> Any:
    return await aw


def _done(on_error: ErrorCallback, fut: asyncio.Future) -> None:
    _BACKGROUND.discard(fut)
    if fut.cancelled():
        return
    exc = fut.exception()
    if exc is not None:
        on_error(exc)


def spawn(aw: Awaitable[Any], on_error: ErrorCallback) -> asyncio.Future | None:
    """Run ``aw`` in the background; errors go to ``on_error``.

    Outside a running loop the awaitable is driven to completion inline.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        try:
            asyncio.run(_await(aw))
        except Exception as e:  # noqa: BLE001
            on_error(e)
        return None
    fut = asyncio.ensure_future(aw)
    _BACKGROUND.add(fut)
    fut.add_done_callback(partial(_done, on_error))
    return fut


def fire(
    obj: Any, hook: str, args: tuple, on_error: ErrorCallback
) -> bool:
    """Invoke ``hook`` without waiting; returns False if it is absent."""
    fn = getattr(obj, hook, None)
    if not callable(fn):
        return False
    try:
        result = fn(*args)
    except Exception as e:  # noqa: BLE001
        on_error(e)
        return True
    if inspect.isawaitable(result):
        spawn(result, on_error)
    return True


def pending_background() -> int:  # pragma: no cover - diagnostics
    return len(_BACKGROUND)


__all__ = ["provides", "call", "invoke", "spawn", "fire"]
