"""
Core workflow actions for the GBA multiboot uploader.

This module exposes functions the CLI (and scripts) call. They never raise
protocol errors; the outcome is returned as an OperationResult.
"""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

from gba_multiboot.firmware import FirmwareError, FirmwareImage, MIN_BOOT_SIZE
from gba_multiboot.protocol.multiboot import MultibootError, PollPolicy, upload
from gba_multiboot.protocol.buspirate_transport import (
    BusPirateTransport,
    DEFAULT_BAUDRATE,
    DEFAULT_BITRATE,
    speed_index,
)
from .results import OperationResult

logger = logging.getLogger(__name__)


class _ListLogHandler(logging.Handler):
    """Capture log records into a list of formatted strings."""

    def __init__(self, level: int = logging.INFO) -> None:
        super().__init__(level)
        self.records = []
        self.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(self.format(record))


@contextmanager
def _capture_logs(logger_name: str = "gba_multiboot"):
    """Capture logs for core operations into a list."""
    target_logger = logging.getLogger(logger_name)
    handler = _ListLogHandler()
    previous_level = target_logger.level
    if previous_level in (logging.NOTSET, logging.WARNING, logging.ERROR, logging.CRITICAL):
        target_logger.setLevel(logging.INFO)
    target_logger.addHandler(handler)
    try:
        yield handler.records
    finally:
        target_logger.removeHandler(handler)
        target_logger.setLevel(previous_level)


def _size_warnings(image: FirmwareImage) -> list:
    if image.padded_size < MIN_BOOT_SIZE:
        return [
            f"Image is only {image.padded_size} bytes padded; the boot ROM expects "
            f"at least {MIN_BOOT_SIZE} bytes"
        ]
    return []


def _header_warnings(image: FirmwareImage) -> list:
    warnings = []
    header = image.header
    if not header.fixed_value_ok:
        warnings.append(f"Header fixed byte is 0x{header.fixed_value:02X}, expected 0x96")
    if not header.complement_ok:
        warnings.append(f"Header complement check 0x{header.complement:02X} does not match")
    return warnings


def image_warnings(image: FirmwareImage) -> list:
    """Non-fatal problems worth telling the user about before an upload."""
    return _size_warnings(image) + _header_warnings(image)


def inspect_firmware(image_path: Union[str, Path]) -> Dict[str, Any]:
    """
    Describe an image without touching any hardware.

    Raises:
        FirmwareError: If the image cannot be uploaded
        OSError: If the file cannot be read
    """
    image = FirmwareImage.from_file(image_path)
    return {
        "path": str(image_path),
        "size": image.size,
        "padded_size": image.padded_size,
        "length_word": f"0x{image.length_word:08X}",
        "header": image.header.to_dict(),
        "warnings": image_warnings(image),
    }


def upload_firmware(
    port: str,
    image_path: Union[str, Path],
    baudrate: int = DEFAULT_BAUDRATE,
    bitrate: str = DEFAULT_BITRATE,
    open_drain: bool = False,
    poll: Optional[PollPolicy] = None,
    progress_cb: Optional[Callable[[int, int], None]] = None,
    transport=None,
) -> OperationResult:
    """
    Upload a multiboot image through a Bus Pirate.

    The image is loaded and validated before the port is opened.

    Args:
        port: Serial port of the Bus Pirate
        image_path: Path to the multiboot image
        baudrate: Bus Pirate serial baud rate
        bitrate: SPI clock (see SPI_SPEEDS)
        open_drain: Drive SPI outputs open-drain
        poll: Retry policy for the polling handshakes
        progress_cb: Optional callback(bytes_sent, total_bytes)
        transport: Already-open transport to use instead of a Bus Pirate;
            the caller keeps ownership of it

    Returns:
        OperationResult with upload status
    """
    operation = "upload"

    with _capture_logs() as logs:
        try:
            image = FirmwareImage.from_file(image_path)
        except (FirmwareError, OSError) as e:
            result = OperationResult.failure(operation, str(e), port=port)
            result.logs = logs
            return result

        result = OperationResult(
            ok=False,
            operation=operation,
            port=port,
            bytes_len=image.size,
            padded_len=image.padded_size,
        )
        # the session logs the size warning itself
        for warning in _size_warnings(image):
            result.add_warning(warning)
        for warning in _header_warnings(image):
            logger.warning(warning)
            result.add_warning(warning)

        owned = transport is None
        if owned:
            try:
                speed_index(bitrate)
            except ValueError as e:
                logger.error(f"Upload failed: {e}")
                result.add_error(str(e))
                result.logs = logs
                return result

        try:
            if owned:
                transport = BusPirateTransport(
                    port, baudrate=baudrate, bitrate=bitrate, open_drain=open_drain
                )
                transport.open()
            session = upload(transport, image, progress_cb=progress_cb, poll=poll)
        except MultibootError as e:
            logger.error(f"Upload failed: {e}")
            result.add_error(str(e))
            result.logs = logs
            return result
        finally:
            if owned and transport is not None:
                transport.close()

        result.ok = True
        result.checksum = session.checksum
        result.metadata.update(
            {
                "seed_m": f"0x{session.seed_m:08X}",
                "seed_h": f"0x{session.seed_h:08X}",
                "seed_f": f"0x{session.seed_f:08X}",
                "state": session.state.name,
            }
        )
        result.add_warning("The console does not report whether its CRC matched")
        result.logs = logs
        return result
