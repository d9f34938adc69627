"""Multiboot protocol layer and Bus Pirate transport."""

from .multiboot import (
    MultibootSession,
    MultibootState,
    MultibootError,
    TransportError,
    HandshakeTimeout,
    PollPolicy,
    upload,
)
from .buspirate_transport import (
    BusPirateTransport,
    BusPirateError,
    BusPirateNoContact,
    SPI_SPEEDS,
    DEFAULT_BAUDRATE,
    DEFAULT_BITRATE,
)

__all__ = [
    # Protocol
    "MultibootSession",
    "MultibootState",
    "MultibootError",
    "TransportError",
    "HandshakeTimeout",
    "PollPolicy",
    "upload",
    # Transport
    "BusPirateTransport",
    "BusPirateError",
    "BusPirateNoContact",
    "SPI_SPEEDS",
    "DEFAULT_BAUDRATE",
    "DEFAULT_BITRATE",
]
