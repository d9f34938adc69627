"""Checksum and cipher helpers for the multiboot protocol."""

from .crypto import (
    CRC_SEED,
    CRC_POLY,
    crc_step,
    crc_words,
    advance,
    encode,
    decode,
)

__all__ = [
    "CRC_SEED",
    "CRC_POLY",
    "crc_step",
    "crc_words",
    "advance",
    "encode",
    "decode",
]
