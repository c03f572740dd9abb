"""Run the display client against a separately started server.

Usage:
    python scripts/run_client.py            # uses configs/ + HUB__* env
    HUB__BRIDGE__URL=ws://mirror:8080/ws python scripts/run_client.py
"""
from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from hub.config import get_config  # noqa: E402
from hub.logsetup import configure_logging  # noqa: E402
from hub.runtime import ClientRuntime  # noqa: E402

log = logging.getLogger("hub.client")


async def _main(status_every: float) -> None:
    cfg = get_config()
    configure_logging(cfg.logging)
    runtime = ClientRuntime(cfg)
    running = await runtime.start()
    log.info("%d module instance(s) running", len(running))
    try:
        while True:
            await asyncio.sleep(status_every)
            log.debug(json.dumps(runtime.status(), default=str))
    finally:
        await runtime.stop()


def main() -> None:  # pragma: no cover
    try:
        asyncio.run(_main(status_every=30.0))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":  # pragma: no cover
    main()
