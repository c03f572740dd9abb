"""End-to-end scenarios across bus, lifecycle and bridge (loopback)."""
import asyncio

import pytest

from hub.bridge import (
    Backend,
    BackendRegistry,
    ChannelMultiplexer,
    LoopbackTransport,
)
from hub.errors import UnknownModuleError
from hub.instance import LifecycleState as S
from hub.modules import LifecycleController, Module, ModuleRegistry
from hub.notifications import DOM_OBJECTS_CREATED


class Clock(Module):
    def __init__(self):
        self.notifications = []
        self.backend = []

    def on_notification(self, name, payload, sender):
        self.notifications.append(name)
        if name == DOM_OBJECTS_CREATED:
            self.send_notification("CLOCK_SECOND", {"second": 42})

    def on_backend_notification(self, event, payload):
        self.backend.append((event, payload))


class Weather(Module):
    def __init__(self):
        self.notifications = []
        self.backend = []

    def on_notification(self, name, payload, sender):
        if name == "CLOCK_SECOND":
            self.notifications.append((name, payload, sender.name))

    def on_backend_notification(self, event, payload):
        self.backend.append((event, payload))
        self.update_dom()

    def produce_content(self):
        if not self.backend:
            return "loading"
        return f"{self.backend[-1][1]['temp']} degrees"


class WeatherBackend(Backend):
    name = "weather"


class ClockBackend(Backend):
    name = "clock"

    def __init__(self, name=None):
        super().__init__(name)
        self.received = []

    def on_notification(self, event, payload):
        self.received.append(event)


def _module_registry():
    registry = ModuleRegistry()
    registry.register(Clock, name="clock")
    registry.register(Weather, name="weather")
    return registry


def _client(backends, registry, address):
    mux = ChannelMultiplexer(
        LoopbackTransport(backends, address), reconnect_interval=0.05
    )
    ctl = LifecycleController(registry, multiplexer=mux)
    return ctl, mux


async def _until(predicate, timeout=1.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        assert loop.time() < deadline, "condition not reached"
        await asyncio.sleep(0.005)


def test_clock_second_reaches_weather_not_clock():
    async def scenario():
        ctl = LifecycleController(_module_registry())
        weather = ctl.register("weather", "top_right")
        clock = ctl.register("clock", "top_left")
        await ctl.boot()
        return clock, weather

    clock, weather = asyncio.run(scenario())
    assert weather.hooks.notifications == [
        ("CLOCK_SECOND", {"second": 42}, "clock")
    ]
    assert "CLOCK_SECOND" not in clock.hooks.notifications


def test_data_ready_reaches_every_client_weather_only():
    async def scenario():
        backends = BackendRegistry()
        weather_backend = backends.register(WeatherBackend())
        clock_backend = backends.register(ClockBackend())
        registry = _module_registry()
        clients = [
            _client(backends, registry, addr) for addr in ("hall", "kitchen")
        ]
        placed = []
        for ctl, mux in clients:
            await mux.connect()
            placed.append(
                (
                    ctl.register("clock", "top_left"),
                    ctl.register("weather", "top_right"),
                )
            )
            await ctl.boot()
        await _until(
            lambda: all(
                c.channels == {"clock", "weather"} for c in backends.clients()
            )
        )
        delivered = weather_backend.send_to_clients("DATA_READY", {"temp": 21})
        await _until(lambda: all(w.hooks.backend for _, w in placed))
        await asyncio.sleep(0.02)
        for ctl, mux in clients:
            await ctl.teardown()
            await mux.close()
        return delivered, placed, clock_backend

    delivered, placed, clock_backend = asyncio.run(scenario())
    assert delivered == 2
    for clock, weather in placed:
        assert weather.hooks.backend == [("DATA_READY", {"temp": 21})]
        assert clock.hooks.backend == []
        assert weather.state is S.TERMINATED
    assert clock_backend.received == []


def test_weather_updates_display_on_data_ready():
    async def scenario():
        backends = BackendRegistry()
        weather_backend = backends.register(WeatherBackend())
        ctl, mux = _client(backends, _module_registry(), "hall")
        await mux.connect()
        weather = ctl.register("weather", "top_right")
        await ctl.boot()
        first = weather.node.content
        await _until(lambda: backends.clients()[0].channels == {"weather"})
        weather_backend.send_to_clients("DATA_READY", {"temp": 19})
        await _until(lambda: weather.node.content == "19 degrees")
        await mux.close()
        return first

    assert asyncio.run(scenario()) == "loading"


def test_ghost_registration_creates_nothing():
    async def scenario():
        backends = BackendRegistry()
        ctl, mux = _client(backends, _module_registry(), "hall")
        await mux.connect()
        with pytest.raises(UnknownModuleError):
            ctl.register("ghost", "top_left")
        channels, instances = mux.channels, ctl.instances()
        await mux.close()
        return channels, instances, ctl

    channels, instances, ctl = asyncio.run(scenario())
    assert channels == [] and instances == []
    assert ctl.bus.registered() == []
