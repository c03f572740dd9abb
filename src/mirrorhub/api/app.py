"""FastAPI application factory for the MirrorHub backend server.

Endpoints:
    GET  /health    liveness
    GET  /channels  registered backends + connected clients
    GET  /display   client runtime status (only when hosting the client)
    WS   /ws        bridge endpoint; one socket = one physical connection
"""
from __future__ import annotations

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect, status

from hub import metrics
from hub.bridge import BackendRegistry, ClientConnection, LoopbackTransport
from hub.config import AggregatedConfig, get_config
from hub.logsetup import configure_logging
from hub.registry import load_backends
from hub.runtime import ClientRuntime


def create_app(
    registry: BackendRegistry | None = None,
    *,
    config: AggregatedConfig | None = None,
    client: bool = False,
) -> FastAPI:
    """Build the server app.

    Without an explicit ``registry`` the backends are discovered in
    ``resources.modules_dir``. With ``client=True`` the client runtime is
    hosted in the same process and talks to the registry over a loopback
    transport.
    """
    cfg = config or get_config()
    if registry is None:
        registry = load_backends(
            cfg.resources.modules_dir,
            BackendRegistry(backend_timeout=cfg.bridge.backend_timeout_s),
        )
    runtime = (
        ClientRuntime(cfg, transport=LoopbackTransport(registry))
        if client
        else None
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await registry.start()
        if runtime is not None:
            await runtime.start()
        try:
            yield
        finally:
            if runtime is not None:
                await runtime.stop()
            await registry.stop()

    app = FastAPI(
        title="MirrorHub",
        version="0.1.0",
        docs_url=None,
        redoc_url=None,
        lifespan=lifespan,
    )
    app.state.registry = registry
    app.state.runtime = runtime

    @app.get("/health")
    def health():  # noqa: D401
        return {"status": "ok"}

    @app.get("/channels")
    def channels():  # noqa: D401
        return {
            "backends": registry.names(),
            "clients": [
                {
                    "id": c.id,
                    "remote_address": c.remote_address,
                    "channels": sorted(c.channels),
                }
                for c in registry.clients()
            ],
        }

    if runtime is not None:

        @app.get("/display")
        def display():  # noqa: D401
            return runtime.status()

    @app.websocket("/ws")
    async def bridge(websocket: WebSocket):  # noqa: D401
        remote = websocket.client.host if websocket.client else None
        if not registry.admit(remote):
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return
        await websocket.accept()
        conn = ClientConnection(websocket.send_text, remote)
        registry.attach_client(conn)
        try:
            while True:
                text = await websocket.receive_text()
                await registry.handle_message(conn, text)
        except WebSocketDisconnect:
            pass
        finally:
            registry.detach_client(conn)

    @app.middleware("http")
    async def _metrics_mw(request: Request, call_next):  # noqa: D401
        start = time.time()
        labels = {"route": request.url.path, "method": request.method}
        response = None
        try:
            response = await call_next(request)
            return response
        finally:
            duration_ms = (time.time() - start) * 1000.0
            metrics.inc("api_request_total", labels)
            metrics.observe("api_request_latency_ms", duration_ms, labels)
            if response is not None and response.status_code >= 400:
                metrics.inc(
                    "api_request_errors_total",
                    labels | {"status": response.status_code},
                )

    return app


app = create_app()


def main() -> None:  # pragma: no cover
    import uvicorn

    cfg = get_config()
    configure_logging(cfg.logging)
    uvicorn.run(
        create_app(config=cfg, client=True),
        host="127.0.0.1",
        port=8080,
        reload=False,
    )


if __name__ == "__main__":  # pragma: no cover
    main()
