"""Channel wire message: ``{channel, event, payload}`` as one JSON frame.

Every frame carries the module-name tag in ``channel``. Payloads cross the
bridge by value (JSON), so both sides always work on their own copy.
Two control events manage per-connection channel subscriptions.
"""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic_core import PydanticSerializationError

from hub.errors import MalformedMessageError

OPEN = "__open__"
CLOSE = "__close__"
CONTROL_EVENTS = frozenset({OPEN, CLOSE})


class ChannelMessage(BaseModel):
    channel: str = Field(min_length=1)
    event: str = Field(min_length=1)
    payload: Any = None

    model_config = ConfigDict(extra="forbid", frozen=True)

    @property
    def is_control(self) -> bool:
        return self.event in CONTROL_EVENTS


def encode(channel: str, event: str, payload: Any = None) -> str:
    try:
        return ChannelMessage(
            channel=channel, event=event, payload=payload
        ).model_dump_json()
    except (ValidationError, PydanticSerializationError) as e:
        raise MalformedMessageError(
            f"cannot encode '{event}' for channel '{channel}': {e}"
        ) from e


def decode(text: str | bytes) -> ChannelMessage:
    try:
        return ChannelMessage.model_validate_json(text)
    except ValidationError as e:
        raise MalformedMessageError(f"malformed channel frame: {e}") from e


__all__ = [
    "ChannelMessage",
    "encode",
    "decode",
    "OPEN",
    "CLOSE",
    "CONTROL_EVENTS",
]
