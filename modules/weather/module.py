"""Weather: asks its backend for forecasts, refreshes on CLOCK_MINUTE."""
from __future__ import annotations

from hub.modules import Module


class Weather(Module):
    defaults = {
        "location": "",
        "api_url": "https://api.open-meteo.com/v1/forecast",
        "units": "metric",
        "fade_s": 1.0,
    }
    styles = ("weather.css",)
    translations = {"en": "translations/en.json", "nl": "translations/nl.json"}

    def start(self):
        self.forecast = None
        self._request()

    def _request(self):
        self.send_socket_notification(
            "FETCH",
            {
                "url": self.config["api_url"],
                "location": self.config["location"],
                "units": self.config["units"],
            },
        )

    def on_notification(self, name, payload, sender):
        if name == "CLOCK_MINUTE":
            self._request()

    def on_backend_notification(self, event, payload):
        if event == "DATA_READY":
            self.forecast = payload
            self.update_dom(self.config["fade_s"])

    def produce_content(self):
        if self.forecast is None:
            return self.translate("LOADING")
        return self.translate(
            "CURRENT",
            location=self.config["location"],
            temperature=self.forecast.get("temperature"),
        )
