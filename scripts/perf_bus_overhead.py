"""Measure NotificationBus publish cost vs calling the hooks directly.

Publishes N notifications to R running recipients and compares with a
loop that invokes the same hooks without the bus. Outputs JSON with
per-publish latency and the overhead ratio.

Rough number only; useful when touching the recipient filter or the
nested-publish queue.
"""
from __future__ import annotations

import json
import sys
import time
from pathlib import Path
from statistics import mean

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from hub.instance import LifecycleState, ModuleInstance  # noqa: E402
from hub.modules import ModuleDefinition  # noqa: E402
from hub.notifications import NotificationBus  # noqa: E402

N = 2000
RECIPIENTS = 12


class Sink:
    def __init__(self) -> None:
        self.count = 0

    def on_notification(self, name, payload, sender) -> None:
        self.count += 1


def _instances(k: int) -> list[ModuleInstance]:
    definition = ModuleDefinition.from_class("sink", Sink)
    out = []
    for i in range(k):
        inst = ModuleInstance(i, definition, {})
        inst.hooks = Sink()
        inst.state = LifecycleState.RUNNING
        out.append(inst)
    return out


def bench_bus(n: int) -> float:  # ms
    bus = NotificationBus()
    instances = _instances(RECIPIENTS)
    for inst in instances:
        bus.register(inst)
    sender = instances[0]
    start = time.perf_counter()
    for i in range(n):
        bus.publish(sender, "TICK", i)
    return (time.perf_counter() - start) * 1000


def bench_direct(n: int) -> float:  # ms
    instances = _instances(RECIPIENTS)
    sender = instances[0]
    start = time.perf_counter()
    for i in range(n):
        for inst in instances:
            if inst is not sender:
                inst.hooks.on_notification("TICK", i, sender)
    return (time.perf_counter() - start) * 1000


def main():  # noqa: D401
    runs = 5
    bus_ms = [bench_bus(N) for _ in range(runs)]
    direct_ms = [bench_direct(N) for _ in range(runs)]
    bus_avg = mean(bus_ms)
    direct_avg = mean(direct_ms)
    overhead_ratio = (bus_avg - direct_avg) / bus_avg if bus_avg else 0.0
    print(
        json.dumps(
            {
                "iterations": N,
                "recipients": RECIPIENTS - 1,
                "bus_avg_ms": round(bus_avg, 3),
                "direct_avg_ms": round(direct_avg, 3),
                "per_publish_us": round(bus_avg / N * 1000, 3),
                "overhead_ratio": round(overhead_ratio, 4),
            },
            ensure_ascii=False,
        )
    )


if __name__ == "__main__":  # pragma: no cover
    main()
