import asyncio

import pytest

from hub.instance import LifecycleState, ModuleInstance
from hub.modules import ModuleDefinition
from hub.notifications import (
    DOM_OBJECTS_CREATED,
    MODULE_DOM_CREATED,
    NotificationBus,
)


class Recorder:
    def __init__(self, log, tag):
        self.log = log
        self.tag = tag

    def on_notification(self, name, payload, sender):
        self.log.append((self.tag, name, payload, sender))


def _instance(index, name, log, cls=Recorder, state=LifecycleState.RUNNING):
    definition = ModuleDefinition.from_class(name, cls)
    inst = ModuleInstance(index, definition, {})
    inst.hooks = cls(log, inst.identifier)
    inst.state = state
    return inst


def test_sender_excluded_and_exactly_once_in_order():
    log = []
    bus = NotificationBus()
    a, b, c = (_instance(i, f"m{i}", log) for i in range(3))
    for inst in (a, b, c):
        bus.register(inst)
    bus.publish(b, "PING", {"n": 1})
    assert [(t, n) for t, n, _, _ in log] == [
        ("module_0_m0", "PING"),
        ("module_2_m2", "PING"),
    ]
    assert all(s is b for _, _, _, s in log)


def test_target_narrows_delivery_but_never_to_sender():
    log = []
    bus = NotificationBus()
    a, b = _instance(0, "a", log), _instance(1, "b", log)
    bus.register(a)
    bus.register(b)
    bus.publish(a, "HELLO", target=b.identifier)
    bus.publish(a, "SELF", target=a)
    assert [(t, n) for t, n, _, _ in log] == [("module_1_b", "HELLO")]


def test_only_running_or_suspended_receive():
    log = []
    bus = NotificationBus()
    running = _instance(0, "r", log)
    suspended = _instance(1, "s", log, state=LifecycleState.SUSPENDED)
    starting = _instance(2, "st", log, state=LifecycleState.STARTED)
    failed = _instance(3, "f", log, state=LifecycleState.FAILED)
    for inst in (running, suspended, starting, failed):
        bus.register(inst)
    bus.publish(None, "TICK")
    assert [t for t, *_ in log] == ["module_0_r", "module_1_s"]


def test_failing_recipient_isolated_delivery_continues():
    log = []
    failures = []

    class Broken(Recorder):
        def on_notification(self, name, payload, sender):
            raise ValueError("bad handler")

    bus = NotificationBus(
        failure_handler=lambda inst, phase, exc: failures.append(
            (inst.identifier, phase, str(exc))
        )
    )
    bad = _instance(0, "bad", log, cls=Broken)
    good = _instance(1, "good", log)
    bus.register(bad)
    bus.register(good)
    bus.publish(None, "EVENT")
    assert failures == [("module_0_bad", "on_notification", "bad handler")]
    assert [t for t, *_ in log] == ["module_1_good"]


def test_nested_publish_is_queued_after_current_delivery():
    log = []

    class Relay(Recorder):
        bus = None

        def on_notification(self, name, payload, sender):
            super().on_notification(name, payload, sender)
            if name == "FIRST":
                self.bus.publish(None, "SECOND")

    bus = NotificationBus()
    Relay.bus = bus
    relay = _instance(0, "relay", log, cls=Relay)
    other = _instance(1, "other", log)
    bus.register(relay)
    bus.register(other)
    bus.publish(None, "FIRST")
    assert [(t, n) for t, n, _, _ in log] == [
        ("module_0_relay", "FIRST"),
        ("module_1_other", "FIRST"),
        ("module_0_relay", "SECOND"),
        ("module_1_other", "SECOND"),
    ]


def test_system_names_reserved_for_modules():
    log = []
    bus = NotificationBus()
    a = _instance(0, "a", log)
    bus.register(a)
    for name in (MODULE_DOM_CREATED, DOM_OBJECTS_CREATED):
        with pytest.raises(ValueError):
            bus.publish(a, name)
    bus.publish(None, DOM_OBJECTS_CREATED)
    assert log == [("module_0_a", DOM_OBJECTS_CREATED, None, None)]


def test_async_hook_rejection_is_isolated():
    failures = []

    class AsyncBroken:
        def __init__(self, log, tag):
            pass

        async def on_notification(self, name, payload, sender):
            raise RuntimeError("async boom")

    async def scenario():
        bus = NotificationBus(
            failure_handler=lambda inst, phase, exc: failures.append(phase)
        )
        inst = _instance(0, "async", [], cls=AsyncBroken)
        bus.register(inst)
        bus.publish(None, "GO")
        await asyncio.sleep(0.01)

    asyncio.run(scenario())
    assert failures == ["on_notification"]
