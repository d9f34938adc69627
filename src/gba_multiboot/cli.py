"""
GBA Multiboot CLI

Command-line interface for uploading multiboot programs through a Bus Pirate.
"""

import sys
import json
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.logging import RichHandler
from rich.progress import Progress, BarColumn, TextColumn

from gba_multiboot.firmware import FirmwareError
from gba_multiboot.protocol.multiboot import PollPolicy
from gba_multiboot.protocol.buspirate_transport import (
    DEFAULT_BAUDRATE,
    DEFAULT_BITRATE,
    SPI_SPEEDS,
)
from gba_multiboot.core.parsing import (
    parse_bitrate as _parse_bitrate_core,
    parse_max_polls as _parse_max_polls_core,
)
from gba_multiboot.core.actions import inspect_firmware, upload_firmware

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
    handlers=[RichHandler(rich_tracebacks=True)],
)
logger = logging.getLogger("gba_multiboot")

# Setup Rich console
console = Console()

app = typer.Typer(help="GBA Multiboot - upload programs over the link cable via Bus Pirate")


def print_header(text: str) -> None:
    """Print fancy header."""
    console.print(Panel(text, expand=False, style="bold blue"))


def print_success(text: str) -> None:
    console.print(f"✓ {text}", style="green")


def print_warning(text: str) -> None:
    console.print(f"⚠️  {text}", style="yellow")


def print_error(text: str) -> None:
    console.print(f"❌ {text}", style="red")


def parse_bitrate(value: str) -> str:
    """
    Parse SPI bitrate option.

    CLI wrapper around core.parsing.parse_bitrate that converts
    ValueError to typer.BadParameter for proper CLI error handling.
    """
    try:
        return _parse_bitrate_core(value)
    except ValueError as e:
        raise typer.BadParameter(str(e))


def parse_max_polls(value: Optional[int]) -> Optional[int]:
    try:
        return _parse_max_polls_core(value)
    except ValueError as e:
        raise typer.BadParameter(str(e))


@app.command()
def ports() -> None:
    """List available serial ports."""
    print_header("Available Serial Ports")

    try:
        import serial.tools.list_ports

        ports_list = list(serial.tools.list_ports.comports())
        if not ports_list:
            print_warning("No serial ports found")
            return

        table = Table(title="Serial Ports")
        table.add_column("Port", style="cyan")
        table.add_column("Device", style="magenta")
        table.add_column("Description", style="green")

        for port in ports_list:
            table.add_row(port.device, port.name or "-", port.description or "-")

        console.print(table)
    except ImportError:
        print_error("pyserial not installed: pip install pyserial")


@app.command()
def info(
    image: str = typer.Argument(..., help="Path to multiboot image"),
    output_json: bool = typer.Option(False, "--json", "-j", help="Output as JSON for scripting"),
) -> None:
    """Show size, padding and header details of a multiboot image."""
    try:
        details = inspect_firmware(image)
    except (FirmwareError, OSError) as exc:
        if output_json:
            typer.echo(json.dumps({"error": str(exc)}, indent=2))
        else:
            print_error(str(exc))
        sys.exit(1)

    if output_json:
        typer.echo(json.dumps(details, indent=2))
        return

    print_header(f"Multiboot Image: {Path(image).name}")

    table = Table(title="Image")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Size", f"{details['size']:,} bytes")
    table.add_row("Padded Size", f"{details['padded_size']:,} bytes")
    table.add_row("Length Word", details["length_word"])

    header = details["header"]
    table.add_row("Title", header["title"] or "-")
    table.add_row("Game Code", header["game_code"] or "-")
    table.add_row("Maker Code", header["maker_code"] or "-")
    table.add_row("Version", str(header["version"]))
    table.add_row("Entry", header["entry"])
    table.add_row(
        "Complement",
        f"{header['complement']} " + ("[green]OK[/green]" if header["complement_ok"] else "[red]BAD[/red]"),
    )
    console.print(table)

    for warning in details["warnings"]:
        print_warning(warning)


@app.command()
def upload(
    image: str = typer.Argument(..., help="Path to multiboot image"),
    port: str = typer.Option(..., "--port", "-p", help="Bus Pirate serial port"),
    bitrate: str = typer.Option(
        DEFAULT_BITRATE,
        "--bitrate",
        "-b",
        help=f"SPI clock ({', '.join(SPI_SPEEDS)})",
    ),
    baudrate: int = typer.Option(DEFAULT_BAUDRATE, "--baudrate", help="Bus Pirate serial baud rate"),
    max_polls: Optional[int] = typer.Option(
        None,
        "--max-polls",
        help="Give up after this many handshake polls (default: wait forever)",
    ),
    poll_interval: float = typer.Option(0.01, "--poll-interval", help="Seconds between handshake polls"),
    open_drain: bool = typer.Option(False, "--open-drain", help="Drive SPI outputs open-drain"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show every exchanged word"),
) -> None:
    """Upload a multiboot image to a GBA waiting in link mode."""
    print_header("GBA Multiboot Upload")

    bitrate_val = parse_bitrate(bitrate)
    poll = PollPolicy(interval=poll_interval, max_attempts=parse_max_polls(max_polls))

    if verbose:
        logger.setLevel(logging.DEBUG)

    console.print(f"Port: {port} ({baudrate} bps, SPI {bitrate_val})")
    console.print("Power on the GBA without a cartridge to start multiboot.")

    with Progress(
        TextColumn("[{task.description}]"),
        BarColumn(),
        TextColumn("[{task.percentage:.0f}%]"),
        console=console,
    ) as progress:
        task = progress.add_task("Uploading...", total=None)

        def on_progress(done: int, total: int) -> None:
            progress.update(task, completed=done, total=total)

        result = upload_firmware(
            port,
            image,
            baudrate=baudrate,
            bitrate=bitrate_val,
            open_drain=open_drain,
            poll=poll,
            progress_cb=on_progress,
        )
        if result.ok:
            progress.update(task, completed=result.padded_len, total=result.padded_len)

    for warning in result.warnings:
        print_warning(warning)

    if not result.ok:
        for error in result.errors:
            print_error(f"Upload failed: {error}")
        sys.exit(1)

    print_success(f"Upload complete ({result.padded_len:,} bytes, CRC 0x{result.checksum:04X})")


def main() -> None:
    """Main entry point."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        sys.exit(130)


if __name__ == "__main__":
    main()
