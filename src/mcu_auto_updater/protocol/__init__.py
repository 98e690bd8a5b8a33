"""Device protocol layer - serial link and update handshake."""

from .serial_link import SerialLink, list_serial_ports, DEFAULT_BAUDRATE
from .handshake import (
    HandshakeProtocol,
    HandshakeSession,
    HandshakeState,
    build_announcement,
    parse_ack,
    ANNOUNCE_PREFIX,
    DEFAULT_ANNOUNCE_TIMEOUT,
    DEFAULT_READ_TIMEOUT,
    DEFAULT_RETRY_INTERVAL,
    DEFAULT_WAIT,
)

__all__ = [
    # Transport
    "SerialLink",
    "list_serial_ports",
    "DEFAULT_BAUDRATE",
    # Handshake
    "HandshakeProtocol",
    "HandshakeSession",
    "HandshakeState",
    "build_announcement",
    "parse_ack",
    "ANNOUNCE_PREFIX",
    "DEFAULT_ANNOUNCE_TIMEOUT",
    "DEFAULT_READ_TIMEOUT",
    "DEFAULT_RETRY_INTERVAL",
    "DEFAULT_WAIT",
]
