"""
Centralized parsing helpers for user-supplied option values.

The CLI wraps these and converts ValueError into typer.BadParameter.
"""

from typing import Optional

from gba_multiboot.protocol.buspirate_transport import SPI_SPEEDS, speed_index


def parse_bitrate(value: str) -> str:
    """
    Normalize an SPI bitrate name.

    Accepts any case and an optional "hz" suffix: "125k", "125K", "125kHz", "1m".

    Returns:
        The canonical entry of SPI_SPEEDS (e.g. "125k", "1M")

    Raises:
        ValueError: If the bitrate is not one the Bus Pirate supports
    """
    text = value.strip()
    if text.lower().endswith("hz"):
        text = text[:-2]
    return SPI_SPEEDS[speed_index(text)]


def parse_max_polls(value: Optional[int]) -> Optional[int]:
    """
    Validate a polling attempt limit.

    None and 0 both mean "wait forever".

    Raises:
        ValueError: If the value is negative
    """
    if value is None or value == 0:
        return None
    if value < 0:
        raise ValueError(f"Invalid poll limit {value}. Use a positive count, or 0 for no limit.")
    return value
