"""
GBA Multiboot - upload programs to a Game Boy Advance over the link cable

Drives the boot ROM's normal-mode (SPI) multiboot protocol through a Bus Pirate.
"""

__version__ = "0.1.0"

from gba_multiboot.firmware import FirmwareImage, FirmwareError, ImageTooLarge
from gba_multiboot.protocol import BusPirateTransport, MultibootSession, PollPolicy, upload

__all__ = [
    "FirmwareImage",
    "FirmwareError",
    "ImageTooLarge",
    "BusPirateTransport",
    "MultibootSession",
    "PollPolicy",
    "upload",
    "__version__",
]
