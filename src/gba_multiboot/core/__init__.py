"""
Core module for the GBA multiboot uploader.

This module provides the single source of truth for:
- Option parsing (parsing.py)
- Result objects (results.py)
- Upload and inspection workflows (actions.py)

The CLI calls into this module rather than driving the protocol directly.
"""

from .parsing import parse_bitrate, parse_max_polls
from .results import OperationResult
from .actions import inspect_firmware, image_warnings, upload_firmware

__all__ = [
    # Parsing
    "parse_bitrate",
    "parse_max_polls",
    # Results
    "OperationResult",
    # Actions
    "inspect_firmware",
    "image_warnings",
    "upload_firmware",
]
