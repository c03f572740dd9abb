"""Clock: renders the local time, broadcasts CLOCK_MINUTE on each minute."""
from __future__ import annotations

import asyncio
from datetime import datetime

from hub.modules import Module


class Clock(Module):
    defaults = {
        "time_format": "%H:%M",
        "show_date": True,
        "date_format": "%A %d %B",
    }
    styles = ("clock.css",)

    def start(self):
        self._ticker = asyncio.get_running_loop().create_task(self._tick())

    async def _tick(self):
        last = None
        while True:
            now = datetime.now()
            if now.minute != last:
                last = now.minute
                self.update_dom()
                self.send_notification(
                    "CLOCK_MINUTE", {"time": now.isoformat()}
                )
            await asyncio.sleep(1)

    def produce_content(self):
        now = datetime.now()
        text = now.strftime(self.config["time_format"])
        if self.config["show_date"]:
            text += "\n" + now.strftime(self.config["date_format"])
        return text

    def stop(self):
        ticker = getattr(self, "_ticker", None)
        if ticker is not None:
            ticker.cancel()
