import pytest
from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient

from hub import metrics
from hub.bridge import OPEN, Backend, BackendRegistry, decode, encode
from hub.config import load_config
from mirrorhub.api.app import create_app


class Echo(Backend):
    name = "echo"

    def on_notification(self, event, payload):
        self.send_to_clients("ECHO", payload)


def _client(registry):
    return TestClient(create_app(registry, config=load_config({})))


def test_ws_subscribe_and_receive_broadcast():
    registry = BackendRegistry()
    registry.register(Echo())
    with _client(registry) as client:
        with client.websocket_connect("/ws") as ws:
            ws.send_text(encode("echo", OPEN))
            ws.send_text(encode("echo", "SAY", {"n": 1}))
            msg = decode(ws.receive_text())
            assert (msg.channel, msg.event, msg.payload) == (
                "echo",
                "ECHO",
                {"n": 1},
            )
            clients = client.get("/channels").json()["clients"]
            assert clients[0]["channels"] == ["echo"]
    assert registry.clients() == []


def test_ws_broadcast_goes_to_subscribed_connection_only():
    registry = BackendRegistry()
    registry.register(Echo())
    with _client(registry) as client:
        with client.websocket_connect("/ws") as listener:
            with client.websocket_connect("/ws") as sender:
                listener.send_text(encode("echo", OPEN))
                for _ in range(100):
                    clients = client.get("/channels").json()["clients"]
                    if ["echo"] in [c["channels"] for c in clients]:
                        break
                sender.send_text(encode("echo", "SAY", "ping"))
                assert decode(listener.receive_text()).payload == "ping"
                subs = sorted(
                    c["channels"]
                    for c in client.get("/channels").json()["clients"]
                )
                assert subs == [[], ["echo"]]


def test_ws_rejected_by_admission_hook():
    registry = BackendRegistry(admission=lambda addr: addr != "testclient")
    with _client(registry) as client:
        with pytest.raises(WebSocketDisconnect) as ei:
            with client.websocket_connect("/ws"):
                pass
    assert ei.value.code == 1008
    assert metrics.counter("bridge_connections_rejected_total") == 1
