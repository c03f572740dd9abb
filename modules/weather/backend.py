"""Weather backend: fetches forecasts and broadcasts DATA_READY."""
from __future__ import annotations

import logging

from hub.bridge import Backend

log = logging.getLogger("hub.backend.weather")


class WeatherBackend(Backend):
    def on_notification(self, event, payload):
        if event == "FETCH":
            self.run_task(self._fetch(payload))

    async def _fetch(self, request):
        data = await self.fetch_json(
            request["url"],
            params={
                "current_weather": "true",
                "location": request["location"],
            },
        )
        current = data.get("current_weather") or {}
        self.send_to_clients(
            "DATA_READY",
            {
                "location": request["location"],
                "temperature": current.get("temperature"),
            },
        )
