"""Client/server bridge schema."""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class BridgeConfig(BaseModel):
    enabled: bool = True
    url: str = "ws://127.0.0.1:8080/ws"
    reconnect_interval_s: float = Field(2.0, gt=0)
    # outbound fetches made by backends on behalf of modules
    backend_timeout_s: float = Field(10.0, gt=0)

    model_config = ConfigDict(extra="forbid")
