"""Module <-> backend bridge: wire codec, transports, both channel ends."""
from .wire import CLOSE, CONTROL_EVENTS, OPEN, ChannelMessage, decode, encode
from .transport import LoopbackTransport, Transport, WebSocketTransport
from .multiplexer import ChannelMultiplexer, ConnectionState
from .backends import Backend, BackendRegistry, ClientConnection

__all__ = [
    "OPEN",
    "CLOSE",
    "CONTROL_EVENTS",
    "ChannelMessage",
    "encode",
    "decode",
    "Transport",
    "WebSocketTransport",
    "LoopbackTransport",
    "ChannelMultiplexer",
    "ConnectionState",
    "Backend",
    "BackendRegistry",
    "ClientConnection",
]
