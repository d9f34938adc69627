"""
Multiboot firmware image handling.

A multiboot image is a raw GBA program linked to run from EWRAM (0x02000000).
It starts with the same 192-byte header as a cartridge ROM, which the boot ROM
receives in the clear before the obfuscated payload.

This module provides:
- Size validation and 16-byte padding
- The header-phase reader (16-bit units)
- The payload word reader (32-bit little-endian words)
- Decoding of the cartridge-style ROM header for inspection
"""

import logging
import struct
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Tuple, Union

logger = logging.getLogger(__name__)

MAX_IMAGE_SIZE = 256 * 1024
MIN_BOOT_SIZE = 0x1C0
PAD_ALIGN = 16

HEADER_SIZE = 0xC0
HEADER_UNIT_COUNT = HEADER_SIZE // 2
LENGTH_BASE = 0x190

HEADER_FIXED_VALUE = 0x96
_TITLE_OFFSET = 0xA0
_TITLE_STRUCT = struct.Struct("<12s4s2sBBB7sBB2s")


class FirmwareError(ValueError):
    """Image cannot be uploaded as a multiboot program."""


class ImageTooLarge(FirmwareError):
    """Image exceeds the 256 KiB the boot ROM can receive."""


def padded_size(size: int) -> int:
    """Round an image size up to the 16-byte unit the boot ROM expects."""
    return ((size + PAD_ALIGN - 1) // PAD_ALIGN) * PAD_ALIGN


def header_complement(header: bytes) -> int:
    """Compute the complement check byte over header bytes 0xA0..0xBC."""
    chk = 0
    for byte in header[0xA0:0xBD]:
        chk -= byte
    return (chk - 0x19) & 0xFF


@dataclass(frozen=True)
class RomHeader:
    """Decoded view of the 192-byte GBA header."""

    entry: int
    title: str
    game_code: str
    maker_code: str
    fixed_value: int
    unit_code: int
    device_type: int
    version: int
    complement: int
    complement_ok: bool

    @property
    def fixed_value_ok(self) -> bool:
        return self.fixed_value == HEADER_FIXED_VALUE

    @classmethod
    def parse(cls, header: bytes) -> "RomHeader":
        """
        Parse a header block.

        Args:
            header: At least 192 bytes; shorter input is zero-padded

        Returns:
            RomHeader instance
        """
        if len(header) < HEADER_SIZE:
            header = header + bytes(HEADER_SIZE - len(header))

        (entry,) = struct.unpack_from("<I", header, 0)
        (
            title,
            game_code,
            maker_code,
            fixed_value,
            unit_code,
            device_type,
            _reserved,
            version,
            complement,
            _reserved2,
        ) = _TITLE_STRUCT.unpack_from(header, _TITLE_OFFSET)

        return cls(
            entry=entry,
            title=title.rstrip(b"\x00").decode("ascii", errors="replace"),
            game_code=game_code.rstrip(b"\x00").decode("ascii", errors="replace"),
            maker_code=maker_code.rstrip(b"\x00").decode("ascii", errors="replace"),
            fixed_value=fixed_value,
            unit_code=unit_code,
            device_type=device_type,
            version=version,
            complement=complement,
            complement_ok=complement == header_complement(header),
        )

    def to_dict(self) -> dict:
        return {
            "entry": f"0x{self.entry:08X}",
            "title": self.title,
            "game_code": self.game_code,
            "maker_code": self.maker_code,
            "fixed_value": f"0x{self.fixed_value:02X}",
            "unit_code": self.unit_code,
            "device_type": self.device_type,
            "version": self.version,
            "complement": f"0x{self.complement:02X}",
            "complement_ok": self.complement_ok,
        }


@dataclass(frozen=True)
class FirmwareImage:
    """
    Immutable multiboot image.

    The original bytes are kept as loaded; reads beyond the end of the data
    return zero bytes up to the padded size.

    Example:
        image = FirmwareImage.from_file("demo.mb")
        for unit in image.header_units():
            transport.exchange(unit)
    """

    data: bytes
    padded: bytes = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        data = bytes(self.data)
        if not data:
            raise FirmwareError("Image is empty")
        if len(data) > MAX_IMAGE_SIZE:
            raise ImageTooLarge(
                f"Image is {len(data)} bytes, max is {MAX_IMAGE_SIZE} bytes (256 KiB)"
            )
        object.__setattr__(self, "data", data)
        object.__setattr__(self, "padded", data + bytes(padded_size(len(data)) - len(data)))

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "FirmwareImage":
        """
        Read an image from disk.

        Raises:
            FirmwareError: If the file is empty or too large
            OSError: If the file cannot be read
        """
        path = Path(path)
        data = path.read_bytes()
        logger.debug(f"Read {len(data)} bytes from {path}")
        return cls(data)

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def padded_size(self) -> int:
        return len(self.padded)

    @property
    def length_word(self) -> int:
        """Length field sent during seed establishment."""
        return ((self.padded_size - LENGTH_BASE) // 4) & 0xFFFFFFFF

    @property
    def header(self) -> RomHeader:
        return RomHeader.parse(self.padded[:HEADER_SIZE])

    def header_units(self) -> Iterator[int]:
        """
        Yield the header as 96 little-endian 16-bit units.

        The boot ROM is fed the header a halfword at a time, each one
        zero-extended into a 32-bit transfer.
        """
        header = self.padded[:HEADER_SIZE]
        if len(header) < HEADER_SIZE:
            header = header + bytes(HEADER_SIZE - len(header))
        for (unit,) in struct.iter_unpack("<H", header):
            yield unit

    def payload_words(self) -> Iterator[Tuple[int, int]]:
        """
        Yield (offset, word) pairs for everything after the header.

        Offsets are byte offsets into the padded image.
        """
        for offset in range(HEADER_SIZE, self.padded_size, 4):
            chunk = self.padded[offset:offset + 4]
            if len(chunk) < 4:
                chunk = chunk + bytes(4 - len(chunk))
            yield offset, struct.unpack("<I", chunk)[0]
