"""FSD protocol server for ATC clients."""

from .protocol import ErrorCode, Packet, ProtocolError, parse_packet
from .server import ProtocolServer
from .session import ClientSession, SessionConfig, SessionState

__all__ = [
    "ClientSession",
    "ErrorCode",
    "Packet",
    "ProtocolError",
    "ProtocolServer",
    "SessionConfig",
    "SessionState",
    "parse_packet",
]
