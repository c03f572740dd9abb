import asyncio

import pytest

from hub import metrics
from hub.bridge import (
    CLOSE,
    OPEN,
    Backend,
    BackendRegistry,
    ClientConnection,
    decode,
    encode,
)
from hub.events import subscribe


class Echo(Backend):
    name = "echo"

    def __init__(self, name=None):
        super().__init__(name)
        self.received = []

    def on_notification(self, event, payload):
        self.received.append((event, payload))
        self.send_to_clients("ECHO", payload)


def _connection(sink, remote="10.0.0.2"):
    async def send(frame):
        sink.append(decode(frame))

    return ClientConnection(send, remote)


def test_one_backend_per_name():
    reg = BackendRegistry()
    reg.register(Echo())
    with pytest.raises(ValueError):
        reg.register(Echo())
    assert reg.names() == ["echo"]


def test_routes_by_tag_and_broadcasts_to_subscribers():
    async def scenario():
        reg = BackendRegistry()
        backend = reg.register(Echo())
        got_a, got_b = [], []
        a, b = _connection(got_a), _connection(got_b)
        reg.attach_client(a)
        reg.attach_client(b)
        await reg.handle_message(a, encode("echo", OPEN))
        await reg.handle_message(a, encode("echo", "SAY", {"n": 1}))
        await asyncio.sleep(0.01)
        await reg.handle_message(a, encode("echo", CLOSE))
        await reg.handle_message(b, encode("echo", "SAY", {"n": 2}))
        await asyncio.sleep(0.01)
        return backend, got_a, got_b

    backend, got_a, got_b = asyncio.run(scenario())
    assert backend.received == [("SAY", {"n": 1}), ("SAY", {"n": 2})]
    assert [(m.channel, m.event, m.payload) for m in got_a] == [
        ("echo", "ECHO", {"n": 1})
    ]
    # b never opened the channel
    assert got_b == []


def test_unroutable_and_malformed_frames_dropped(caplog):
    events = []
    subscribe(lambda n, p: events.append((n, p)))

    async def scenario():
        reg = BackendRegistry()
        conn = _connection([])
        reg.attach_client(conn)
        await reg.handle_message(conn, encode("nobody", "HELLO"))
        await reg.handle_message(conn, "{broken")

    with caplog.at_level("WARNING", logger="hub.bridge.server"):
        asyncio.run(scenario())
    unroutable = [p for n, p in events if n == "MessageUnroutable"]
    assert unroutable[0]["channel"] == "nobody"
    assert unroutable[0]["side"] == "server"
    assert "No backend registered for channel 'nobody'" in caplog.text
    assert metrics.counter(
        "channel_unroutable_total", {"channel": "nobody"}
    ) == 1
    assert metrics.counter("channel_malformed_total", {"side": "server"}) == 1


def test_backend_failures_never_escape():
    failures = []
    subscribe(
        lambda n, p: failures.append(p) if n == "BackendFailed" else None
    )

    class Faulty(Backend):
        name = "faulty"

        def start(self):
            raise RuntimeError("start broke")

        async def on_notification(self, event, payload):
            raise ValueError("async broke")

    async def scenario():
        reg = BackendRegistry()
        reg.register(Faulty())
        await reg.start()
        conn = _connection([])
        reg.attach_client(conn)
        await reg.handle_message(conn, encode("faulty", "X"))
        await asyncio.sleep(0.01)
        await reg.stop()

    asyncio.run(scenario())
    assert [(p["backend"], p["phase"]) for p in failures] == [
        ("faulty", "start"),
        ("faulty", "on_notification"),
    ]
    assert metrics.counter(
        "backend_failures_total", {"backend": "faulty", "phase": "start"}
    ) == 1


def test_run_task_timeout_is_reported():
    failures = []
    subscribe(
        lambda n, p: failures.append(p) if n == "BackendFailed" else None
    )

    async def scenario():
        reg = BackendRegistry(backend_timeout=0.05)
        backend = reg.register(Echo())
        assert backend.timeout == 0.05
        task = backend.run_task(asyncio.sleep(1))
        await asyncio.wait([task])

    asyncio.run(scenario())
    assert failures[0]["phase"] == "task"
    assert failures[0]["error_type"] == "timeout"


def test_admission_hook_rejects_and_counts():
    events = []
    subscribe(lambda n, p: events.append(n))
    reg = BackendRegistry(admission=lambda addr: addr == "127.0.0.1")
    assert reg.admit("127.0.0.1") is True
    assert reg.admit("203.0.113.9") is False
    assert events == ["ConnectionRejected"]
    assert metrics.counter("bridge_connections_rejected_total") == 1


def test_send_to_clients_requires_registration():
    with pytest.raises(RuntimeError):
        Echo().send_to_clients("X")
