"""
GBA Multiboot Protocol Implementation

Normal-mode (SPI) multiboot as implemented by the GBA boot ROM. The host is
the SPI master; every transfer is one 32-bit word clocked out MSB first while
the console's reply is clocked in.

Protocol sequence:
1. Discovery: send 0x6202 until the console answers 0x72026202
2. Recognition: send 0x6202, 0x6102
3. Header: send the 192-byte header as 96 halfwords
4. Header complete: send 0x6200, 0x6202
5. Seeds: send 0x63D1 twice, 0x64hh handshake, length word; derive seeds
6. Payload: send each remaining word obfuscated with the keystream
7. Fold seedF into the CRC
8. CRC handshake: send 0x65 until the console answers 0x00750065
9. CRC exchange: send 0x66, then the CRC

The console computes its own CRC over the payload but never reports whether
it matched, so a successful return means "transfer completed", not
"program verified".
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum, auto
from typing import Callable, Optional, Union

from gba_multiboot.firmware import FirmwareImage, MIN_BOOT_SIZE
from gba_multiboot.utils.crypto import CRC_SEED, advance, crc_step, encode

logger = logging.getLogger(__name__)

# Protocol words
CMD_DISCOVER = 0x00006202
CMD_RECOGNIZE = 0x00006102
CMD_HEADER_DONE = 0x00006200
CMD_PALETTE = 0x000063D1
CMD_HANDSHAKE = 0x00006400
CMD_CRC_READY = 0x00000065
CMD_CRC_EXCHANGE = 0x00000066

REPLY_DISCOVER = 0x72026202
REPLY_CRC_READY = 0x00750065

SEED_M_BASE = 0xFFFF00D1
SEED_H_BASE = 0x0F
SEED_F_MASK = 0xFFFF0000


class MultibootError(Exception):
    """Base exception for multiboot protocol errors"""
    pass


class TransportError(MultibootError):
    """Word exchange with the console failed"""
    pass


class HandshakeTimeout(MultibootError):
    """Console did not answer a polling handshake within the retry budget"""
    pass


class MultibootState(Enum):
    IDLE = auto()
    DISCOVERY = auto()
    RECOGNITION = auto()
    HEADER_TRANSFER = auto()
    HEADER_COMPLETE = auto()
    SEED_ESTABLISHMENT = auto()
    PAYLOAD_TRANSFER = auto()
    FINAL_CHECKSUM = auto()
    CRC_HANDSHAKE = auto()
    CRC_EXCHANGE = auto()


@dataclass(frozen=True)
class PollPolicy:
    """
    Retry policy for the two polling handshakes.

    Attributes:
        interval: Seconds to sleep between attempts
        max_attempts: Give up after this many exchanges (None or 0 = wait forever)
    """
    interval: float = 0.01
    max_attempts: Optional[int] = None

    def __post_init__(self) -> None:
        if self.max_attempts == 0:
            object.__setattr__(self, "max_attempts", None)
        elif self.max_attempts is not None and self.max_attempts < 0:
            raise ValueError(f"max_attempts must not be negative: {self.max_attempts}")


ProgressCallback = Callable[[int, int], None]


class MultibootSession:
    """
    One upload of one image over one transport.

    The transport is any object with ``exchange(word: int) -> int`` that
    performs a single blocking 32-bit SPI transfer. Its lifecycle belongs to
    the caller.

    Example:
        session = MultibootSession(transport, FirmwareImage(data))
        session.run()
        print(f"CRC sent: 0x{session.checksum:04X}")
    """

    def __init__(
        self,
        transport,
        image: FirmwareImage,
        progress_cb: Optional[ProgressCallback] = None,
        poll: Optional[PollPolicy] = None,
    ):
        self.transport = transport
        self.image = image
        self.progress_cb = progress_cb
        self.poll = poll or PollPolicy()

        self.state = MultibootState.IDLE
        self.offset = 0
        self.m = 0
        self.checksum = CRC_SEED
        self.seed_m = 0
        self.seed_h = 0
        self.seed_f = 0

    def exchange(self, word: int, msg: Optional[str] = None) -> int:
        """
        Send one word and return the console's reply.

        Args:
            word: 32-bit word to send
            msg: Step description; if given the transfer is logged at INFO

        Raises:
            TransportError: If the transport fails
        """
        word &= 0xFFFFFFFF
        try:
            reply = self.transport.exchange(word) & 0xFFFFFFFF
        except TransportError:
            raise
        except OSError as e:
            raise TransportError(f"Exchange of 0x{word:08X} failed: {e}") from e

        if msg is not None:
            logger.info(f"0x{reply:08x} 0x{word:08x}  ; {msg}")
        else:
            logger.debug(f"0x{reply:08x} 0x{word:08x}")
        return reply

    def _poll(self, word: int, expected: int, msg: str) -> int:
        """Send ``word`` until the console replies ``expected``."""
        logger.info(f"{msg} 0x{expected:08x}")
        attempts = 0
        while True:
            attempts += 1
            if self.exchange(word) == expected:
                return attempts
            if self.poll.max_attempts is not None and attempts >= self.poll.max_attempts:
                raise HandshakeTimeout(
                    f"No 0x{expected:08X} reply to 0x{word:08X} after {attempts} attempts"
                )
            time.sleep(self.poll.interval)

    def discover(self) -> int:
        """Poll until the console shows up. Returns the number of exchanges."""
        self.state = MultibootState.DISCOVERY
        return self._poll(CMD_DISCOVER, REPLY_DISCOVER, "Looking for GBA")

    def recognize(self) -> None:
        self.state = MultibootState.RECOGNITION
        self.exchange(CMD_DISCOVER, "Found GBA")
        self.exchange(CMD_RECOGNIZE, "Recognition OK")

    def send_header(self) -> None:
        """Send the header in the clear, one halfword per transfer."""
        self.state = MultibootState.HEADER_TRANSFER
        self.offset = 0
        for unit in self.image.header_units():
            self.exchange(unit)
            self.offset += 2

    def finish_header(self) -> None:
        self.state = MultibootState.HEADER_COMPLETE
        self.exchange(CMD_HEADER_DONE, "Transfer of header data complete")
        self.exchange(CMD_DISCOVER, "Exchange master/slave info again")

    def establish_seeds(self) -> None:
        """
        Exchange palette, handshake and length words and derive the seeds.

        seedM starts the keystream, seedF is folded into the CRC after the
        payload.
        """
        self.state = MultibootState.SEED_ESTABLISHMENT
        self.exchange(CMD_PALETTE, "Send palette data")
        r = self.exchange(CMD_PALETTE, "Send palette data, receive 0x73hh****")

        hh = (r >> 16) & 0xFF
        self.seed_m = hh + SEED_M_BASE
        self.seed_h = hh + SEED_H_BASE

        handshake = (((r >> 16) + SEED_H_BASE) & 0xFF) | CMD_HANDSHAKE
        self.exchange(handshake, "Send handshake data")
        r = self.exchange(
            self.image.length_word, "Send length info, receive seed 0x**cc****"
        )

        self.seed_f = (((r >> 16) & 0xFF) + self.seed_h) | SEED_F_MASK
        self.m = self.seed_m
        logger.debug(
            f"Seeds: m=0x{self.seed_m:08X} h=0x{self.seed_h:08X} f=0x{self.seed_f:08X}"
        )

    def send_payload(self) -> None:
        """Send everything after the header, obfuscated word by word."""
        self.state = MultibootState.PAYLOAD_TRANSFER
        total = self.image.padded_size
        for offset, word in self.image.payload_words():
            self.offset = offset
            self.checksum = crc_step(word, self.checksum)
            self.m = advance(self.m)
            self.exchange(encode(word, self.m, offset))
            if self.progress_cb:
                self.progress_cb(offset, total)
        self.offset = total

    def fold_final_checksum(self) -> None:
        self.state = MultibootState.FINAL_CHECKSUM
        self.checksum = crc_step(self.seed_f, self.checksum)

    def wait_for_crc(self) -> int:
        self.state = MultibootState.CRC_HANDSHAKE
        return self._poll(CMD_CRC_READY, REPLY_CRC_READY, "Wait for GBA to respond with CRC")

    def exchange_crc(self) -> None:
        self.state = MultibootState.CRC_EXCHANGE
        self.exchange(CMD_CRC_EXCHANGE, "GBA ready with CRC")
        self.exchange(self.checksum, "Let's exchange CRC!")

    def run(self) -> "MultibootSession":
        """Run the whole protocol. Any exception aborts the session."""
        logger.info(f"GBA file length 0x{self.image.padded_size:08x}")
        if self.image.padded_size < MIN_BOOT_SIZE:
            logger.warning(
                f"Image is {self.image.padded_size} bytes; the boot ROM expects at "
                f"least 0x{MIN_BOOT_SIZE:X}"
            )

        self.discover()
        self.recognize()
        self.send_header()
        self.finish_header()
        self.establish_seeds()
        self.send_payload()
        self.fold_final_checksum()
        self.wait_for_crc()
        self.exchange_crc()

        logger.info(f"CRC 0x{self.checksum:04x} sent ...hope they match!")
        logger.info("MultiBoot done")
        return self


def upload(
    transport,
    image: Union[bytes, bytearray, FirmwareImage],
    progress_cb: Optional[ProgressCallback] = None,
    poll: Optional[PollPolicy] = None,
) -> MultibootSession:
    """
    Upload an image to a GBA waiting in multiboot mode.

    The image is validated before the transport is touched.

    Args:
        transport: Object providing exchange(word) -> word
        image: Raw image bytes or a FirmwareImage
        progress_cb: Optional callback(bytes_sent, total_bytes)
        poll: Retry policy for the polling handshakes

    Returns:
        The completed session (checksum and seeds available for inspection)

    Raises:
        FirmwareError: If the image is empty or larger than 256 KiB
        TransportError: If any exchange fails
        HandshakeTimeout: If a bounded poll policy runs out
    """
    if not isinstance(image, FirmwareImage):
        image = FirmwareImage(bytes(image))

    session = MultibootSession(transport, image, progress_cb=progress_cb, poll=poll)
    session.run()
    return session
