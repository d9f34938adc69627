"""
Multiboot checksum and payload obfuscation helpers.

The GBA boot ROM expects every payload word to be XORed with a keystream
derived from a linear congruential generator, and verifies the upload with a
bit-reversed CRC computed over the plaintext words.
"""

from __future__ import annotations

from typing import Iterable

WORD_MASK = 0xFFFFFFFF

CRC_SEED = 0xC387
CRC_POLY = 0xC37B

LCG_MULTIPLIER = 0x6F646573  # "sedo"
KEY_BASE = 0x02000000
KEY_XOR = 0x43202F2F  # "// C"


def crc_step(word: int, state: int = CRC_SEED) -> int:
    """
    Fold one 32-bit word into the multiboot CRC.

    Bits are consumed least-significant first.

    Args:
        word: 32-bit plaintext word
        state: Current 16-bit CRC state (defaults to the protocol seed)

    Returns:
        Updated 16-bit CRC state
    """
    word &= WORD_MASK
    for _ in range(32):
        if (state ^ word) & 0x01:
            state = (state >> 1) ^ CRC_POLY
        else:
            state >>= 1
        word >>= 1
    return state


def crc_words(words: Iterable[int], state: int = CRC_SEED) -> int:
    """Fold a sequence of words into the CRC."""
    for word in words:
        state = crc_step(word, state)
    return state


def advance(m: int) -> int:
    """Advance the keystream accumulator by one word."""
    return (LCG_MULTIPLIER * m + 1) & WORD_MASK


def encode(word: int, m: int, offset: int) -> int:
    """
    Obfuscate a payload word for transmission.

    Args:
        word: Plaintext word read little-endian from the image
        m: Keystream accumulator, already advanced for this word
        offset: Byte offset of the word within the padded image

    Returns:
        Word to put on the wire
    """
    key = (~(KEY_BASE + offset) + 1) & WORD_MASK
    return (word ^ key ^ m ^ KEY_XOR) & WORD_MASK


# XOR with the same keystream is its own inverse
decode = encode
