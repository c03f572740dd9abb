from fastapi.testclient import TestClient

from hub import metrics
from hub.bridge import Backend, BackendRegistry
from hub.config import load_config
from mirrorhub.api.app import create_app


class Weather(Backend):
    name = "weather"


def _app(registry=None):
    return create_app(registry or BackendRegistry(), config=load_config({}))


def test_api_health_ok():
    client = TestClient(_app())
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"
    assert metrics.counter(
        "api_request_total", {"route": "/health", "method": "GET"}
    ) == 1


def test_api_channels_lists_backends():
    registry = BackendRegistry()
    registry.register(Weather())
    with TestClient(_app(registry)) as client:
        r = client.get("/channels")
    assert r.status_code == 200
    assert r.json() == {"backends": ["weather"], "clients": []}


def test_api_unknown_route_counted_as_error():
    client = TestClient(_app())
    r = client.get("/nope")
    assert r.status_code == 404
    assert metrics.counter(
        "api_request_errors_total",
        {"route": "/nope", "method": "GET", "status": 404},
    ) == 1


def test_api_hosts_client_runtime(tmp_path):
    mod = tmp_path / "note"
    mod.mkdir()
    (mod / "module.py").write_text(
        "from hub.modules import Module\n\n\n"
        "class Note(Module):\n"
        "    def produce_content(self):\n"
        "        return 'hello mirror'\n",
        encoding="utf-8",
    )
    cfg = load_config(
        {
            "resources": {"modules_dir": str(tmp_path)},
            "modules": [{"module": "note", "position": "top_left"}],
        }
    )
    with TestClient(create_app(config=cfg, client=True)) as client:
        r = client.get("/display")
        channels = client.get("/channels").json()
    body = r.json()
    assert body["bridge"] == "connected"
    assert body["instances"] == {"module_0_note": "running"}
    assert body["display"]["top_left"][0]["content"] == "hello mirror"
    assert channels["clients"][0]["remote_address"] == "loopback"
