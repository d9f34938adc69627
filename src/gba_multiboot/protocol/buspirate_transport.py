"""
Bus Pirate SPI Transport Layer

Drives a Bus Pirate in raw binary SPI mode as the link-cable master for a GBA
in normal (SPI) multiboot mode.

This module provides:
- Serial port initialization and configuration
- Entry into binary bitbang mode and SPI mode
- SPI speed and mode 3 configuration
- 32-bit word exchange (bulk transfer, MSB first)
"""

import time
import logging
from typing import Optional

try:
    import serial
except ImportError:
    raise ImportError("PySerial required: pip install pyserial")

from gba_multiboot.protocol.multiboot import TransportError

logger = logging.getLogger(__name__)

DEFAULT_BAUDRATE = 115200
DEFAULT_BITRATE = "125k"

# Index is the low 3 bits of the "set speed" command
SPI_SPEEDS = ("30k", "125k", "250k", "1M", "2M", "2.6M", "4M", "8M")

# Binary mode commands
CMD_RESET_BITBANG = 0x00
CMD_ENTER_SPI = 0x01
CMD_RESET_TERMINAL = 0x0F
CMD_BULK_TRANSFER = 0x10
CMD_SET_SPEED = 0x60
CMD_CONFIGURE = 0x80

CFG_OUTPUT_3V3 = 0x08
CFG_CLOCK_IDLE_HIGH = 0x04
CFG_CLOCK_EDGE = 0x02
CFG_SAMPLE_END = 0x01

BBIO_ID = b"BBIO1"
SPI_ID = b"SPI1"
ACK = b"\x01"
ENTER_BITBANG_TRIES = 20


class BusPirateError(TransportError):
    """Base exception for Bus Pirate errors"""
    pass


class BusPirateNoContact(BusPirateError):
    """Bus Pirate did not enter binary mode"""
    pass


def speed_index(bitrate: str) -> int:
    """
    Map an SPI bitrate name to the Bus Pirate speed index.

    Args:
        bitrate: One of SPI_SPEEDS, case-insensitive (e.g. "125k", "1m")

    Raises:
        ValueError: If the bitrate is not supported
    """
    normalized = bitrate.strip().lower()
    for index, name in enumerate(SPI_SPEEDS):
        if name.lower() == normalized:
            return index
    raise ValueError(
        f"Unsupported SPI bitrate '{bitrate}'. Use one of: {', '.join(SPI_SPEEDS)}"
    )


class BusPirateTransport:
    """
    SPI word transport through a Bus Pirate.

    Handles:
    - Serial port management
    - Binary mode entry and exit
    - SPI mode 3 configuration
    - 32-bit duplex exchanges

    Example:
        with BusPirateTransport(port="/dev/ttyUSB0") as transport:
            reply = transport.exchange(0x00006202)
    """

    def __init__(
        self,
        port: str,
        baudrate: int = DEFAULT_BAUDRATE,
        bitrate: str = DEFAULT_BITRATE,
        timeout: float = 1.0,
        open_drain: bool = False,
    ):
        """
        Initialize transport layer.

        Args:
            port: Serial port (e.g., "/dev/ttyUSB0", "COM3")
            baudrate: Serial baud rate of the Bus Pirate (default 115200)
            bitrate: SPI clock, one of SPI_SPEEDS (default "125k")
            timeout: Read/write timeout in seconds (default 1.0)
            open_drain: Drive outputs open-drain instead of 3.3V push-pull
        """
        self.port = port
        self.baudrate = baudrate
        self.bitrate = bitrate
        self.speed = speed_index(bitrate)
        self.timeout = timeout
        self.open_drain = open_drain
        self.ser: Optional[serial.Serial] = None

    def __enter__(self) -> "BusPirateTransport":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @property
    def config_byte(self) -> int:
        """SPI configuration command for mode 3 (CPOL=1, CPHA=1)."""
        cfg = CMD_CONFIGURE | CFG_CLOCK_IDLE_HIGH
        if not self.open_drain:
            cfg |= CFG_OUTPUT_3V3
        return cfg

    def open(self) -> None:
        """
        Open serial port and put the Bus Pirate into SPI mode.

        Raises:
            BusPirateError: If the port cannot be opened or configured
        """
        try:
            self.ser = serial.Serial(
                port=self.port,
                baudrate=self.baudrate,
                bytesize=8,
                parity='N',
                stopbits=1,
                timeout=self.timeout,
                write_timeout=self.timeout,
            )
            logger.debug(f"Opened {self.port} at {self.baudrate} bps")
        except serial.SerialException as e:
            raise BusPirateError(f"Cannot open port {self.port}: {e}")

        try:
            self.ser.reset_input_buffer()
            self.ser.reset_output_buffer()
            self.enter_bitbang()
            self.enter_spi()
            self.configure()
        except serial.SerialException as e:
            self.close()
            raise BusPirateError(f"Cannot set up {self.port}: {e}")
        except BusPirateError:
            self.close()
            raise

    def close(self) -> None:
        """Return the Bus Pirate to its terminal and close the port."""
        if not self.ser or not self.ser.is_open:
            return
        try:
            self.send_raw(bytes([CMD_RESET_BITBANG]))
            self._drain_junk()
            self.send_raw(bytes([CMD_RESET_TERMINAL]))
            self._drain_junk()
        except BusPirateError as e:
            logger.warning(f"Could not reset Bus Pirate: {e}")
        finally:
            self.ser.close()
            logger.debug(f"Closed {self.port}")

    def send_raw(self, data: bytes) -> None:
        """
        Send raw bytes to the Bus Pirate.

        Raises:
            BusPirateError: If write fails
        """
        if not self.ser or not self.ser.is_open:
            raise BusPirateError("Serial port not open")

        try:
            written = self.ser.write(data)
            if written != len(data):
                raise BusPirateError(
                    f"Incomplete write: sent {written}/{len(data)} bytes"
                )
            logger.debug(f">>> {data.hex().upper()}")
        except serial.SerialException as e:
            raise BusPirateError(f"Write error: {e}")

    def recv_raw(self, length: int) -> bytes:
        """
        Receive exactly ``length`` bytes from the Bus Pirate.

        Raises:
            BusPirateError: If read fails or times out short
        """
        if not self.ser or not self.ser.is_open:
            raise BusPirateError("Serial port not open")

        try:
            data = self.ser.read(length)
        except serial.SerialException as e:
            raise BusPirateError(f"Read error: {e}")

        if len(data) != length:
            raise BusPirateError(
                f"Bus Pirate did not respond (got {len(data)}/{length} bytes)"
            )
        logger.debug(f"<<< {data.hex().upper()}")
        return data

    def _drain_junk(self) -> bytes:
        """Clear any pending data in the receive buffer."""
        old_timeout = self.ser.timeout
        self.ser.timeout = 0.01
        try:
            junk = self.ser.read(256)
        except serial.SerialException as e:
            raise BusPirateError(f"Read error: {e}")
        finally:
            self.ser.timeout = old_timeout
        if junk:
            logger.debug(f"Drained {len(junk)} bytes: {junk!r}")
        return junk

    def _command(self, cmd: int, expected: bytes, what: str) -> None:
        self.send_raw(bytes([cmd]))
        reply = self.recv_raw(len(expected))
        if reply != expected:
            raise BusPirateError(
                f"{what}: expected {expected!r}, got {reply!r}"
            )

    def enter_bitbang(self) -> None:
        """
        Enter raw bitbang mode.

        Sends 0x00 until the Bus Pirate answers BBIO1 (at most 20 times).

        Raises:
            BusPirateNoContact: If the Bus Pirate never answers
        """
        self._drain_junk()
        for attempt in range(ENTER_BITBANG_TRIES):
            self.send_raw(bytes([CMD_RESET_BITBANG]))
            time.sleep(0.01)
            if self._drain_junk().endswith(BBIO_ID):
                logger.debug(f"Binary mode after {attempt + 1} attempts")
                return
        raise BusPirateNoContact(
            f"No {BBIO_ID.decode()} from {self.port} after {ENTER_BITBANG_TRIES} attempts. "
            "Is a Bus Pirate connected?"
        )

    def enter_spi(self) -> None:
        self._command(CMD_ENTER_SPI, SPI_ID, "Enter SPI mode")

    def configure(self) -> None:
        """Set SPI speed and mode 3."""
        self._command(CMD_SET_SPEED | self.speed, ACK, f"Set speed {self.bitrate}")
        self._command(self.config_byte, ACK, "Configure SPI")
        logger.info(f"SPI mode 3 at {self.bitrate} on {self.port}")

    def exchange(self, word: int) -> int:
        """
        Clock one 32-bit word out and return the word clocked in.

        Both directions are MSB first.

        Raises:
            BusPirateError: If the transfer fails
        """
        out = (word & 0xFFFFFFFF).to_bytes(4, "big")
        self.send_raw(bytes([CMD_BULK_TRANSFER | (len(out) - 1)]) + out)
        reply = self.recv_raw(1 + len(out))
        if reply[:1] != ACK:
            raise BusPirateError(f"Bulk transfer not acknowledged (got {reply.hex()})")
        return int.from_bytes(reply[1:], "big")
