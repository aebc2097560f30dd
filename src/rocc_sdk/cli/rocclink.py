"""
rocclink - ROCC Serial Command-Line Interface
==============================================

This module implements the command-line interface for talking to a ROCC
device over a serial port: authenticate, set or read the device clock,
download recorded files and send raw commands.

Usage Examples
--------------
List available serial ports:
    $ rocclink ports

Check the shared secret:
    $ ROCC_SECRET=... rocclink --port /dev/ttyUSB0 auth

Set the device clock to the PC's local time:
    $ rocclink settime

Download the data file:
    $ rocclink read roccdat.csv
    $ rocclink read firmware.bin fw.bin --binary

Send an arbitrary command:
    $ rocclink send gtime

Authentication
--------------
Every device command authenticates first, using the secret from
``--secret`` or the ROCC_SECRET environment variable. Pass ``--no-auth``
to skip the handshake.

Exit Codes
----------
0 - Success
1 - Connection, authentication or transfer error
2 - Invalid arguments or configuration error
"""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import click

from rocc_sdk import __version__
from rocc_sdk.cli.errors import ExitCode, handle_cli_exception
from rocc_sdk.comms import (
    VALID_BAUD_RATES,
    RoccController,
    find_rocc_port,
    format_port_list,
    list_serial_ports,
)
from rocc_sdk.comms.controller import TransportFactory
from rocc_sdk.config import RoccConfig
from rocc_sdk.errors import RoccError

# Configure logging
logger = logging.getLogger(__name__)


# =============================================================================
# CLI Context and Utilities
# =============================================================================

class Context:
    """
    Shared context for CLI commands.

    Stores common options like port, baud rate, secret and verbosity.
    ``transport_factory`` lets callers (tests, demos) substitute a
    virtual device for the serial port.
    """

    def __init__(self) -> None:
        self.port: Optional[str] = None
        self.baud: Optional[int] = None
        self.secret: Optional[str] = None
        self.timeout: Optional[float] = None
        self.authenticate: bool = True
        self.verbose: bool = False
        self.transport_factory: Optional[TransportFactory] = None

    def setup_logging(self) -> None:
        """Configure logging based on verbosity."""
        level = logging.DEBUG if self.verbose else logging.WARNING
        logging.basicConfig(
            level=level,
            format="%(levelname)s: %(message)s" if self.verbose else "%(message)s",
        )

    def build_config(self) -> RoccConfig:
        """Environment configuration overridden by command-line options."""
        config = RoccConfig.from_env()
        if self.port:
            config.port = self.port
        if self.baud:
            config.baud_rate = self.baud
        if self.secret:
            config.secret = self.secret
        if self.timeout:
            config.response_timeout = self.timeout
        return config


pass_context = click.make_pass_decorator(Context, ensure=True)


def progress_bar(current: int, total: int) -> None:
    """Simple text progress bar for file transfers."""
    if total == 0:
        return
    percent = current * 100 // total
    filled = percent // 2
    bar = "=" * filled + "-" * (50 - filled)
    click.echo(f"\r[{bar}] {percent:3d}% ({current}/{total} bytes)", nl=False)
    if current >= total:
        click.echo()  # Newline at end


def fail(message: str) -> None:
    """Report a device-side failure and exit."""
    click.echo(message, err=True)
    raise SystemExit(ExitCode.DEVICE_ERROR)


@contextmanager
def device_session(ctx: Context, authenticate: Optional[bool] = None) -> Iterator[RoccController]:
    """
    Connect, optionally authenticate, and always disconnect.

    Args:
        ctx: CLI context.
        authenticate: Override ctx.authenticate for this session.
    """
    try:
        controller = RoccController(
            config=ctx.build_config(),
            transport_factory=ctx.transport_factory,
        )
        controller.connect()
    except RoccError as e:
        handle_cli_exception(e, ctx.verbose, "Connection")

    try:
        if ctx.authenticate if authenticate is None else authenticate:
            if not controller.authenticate():
                fail(f"Authentication failed: {controller.last_error}")
            click.echo("Authentication succeeded")
        yield controller
    finally:
        controller.disconnect()


# =============================================================================
# Main CLI Group
# =============================================================================

@click.group()
@click.option(
    "-p", "--port",
    type=str,
    default=None,
    help="Serial port device (default: ROCC_PORT or auto-detect)",
)
@click.option(
    "-b", "--baud",
    type=click.Choice([str(b) for b in VALID_BAUD_RATES]),
    default=None,
    help="Baud rate (default: ROCC_BAUD or 9600)",
)
@click.option(
    "--secret",
    type=str,
    default=None,
    help="Authentication secret (default: ROCC_SECRET)",
)
@click.option(
    "--timeout",
    type=float,
    default=None,
    help="Response timeout in seconds (default: 5)",
)
@click.option(
    "--auth/--no-auth",
    default=True,
    help="Authenticate before each command (default: on)",
)
@click.option(
    "-v", "--verbose",
    is_flag=True,
    help="Enable verbose output",
)
@click.version_option(version=__version__, prog_name="rocclink")
@pass_context
def main(
    ctx: Context,
    port: Optional[str],
    baud: Optional[str],
    secret: Optional[str],
    timeout: Optional[float],
    auth: bool,
    verbose: bool,
) -> None:
    """
    Talk to a ROCC device over a serial connection.

    Use 'rocclink ports' to list available serial ports.
    """
    ctx.port = port
    ctx.baud = int(baud) if baud else None
    ctx.secret = secret
    ctx.timeout = timeout
    ctx.authenticate = auth
    ctx.verbose = verbose
    ctx.setup_logging()


# =============================================================================
# Ports Command
# =============================================================================

@main.command()
@click.option(
    "--detailed", "-d",
    is_flag=True,
    help="Show detailed port information",
)
@pass_context
def ports(ctx: Context, detailed: bool) -> None:
    """
    List available serial ports.

    Example:
        rocclink ports
        rocclink ports --detailed
    """
    port_list = list_serial_ports()

    if not port_list:
        click.echo("No serial ports found.")
        click.echo("\nTips:")
        click.echo("  - Connect your USB-serial adapter")
        click.echo("  - On Linux, ensure you have permission (dialout group)")
        return

    click.echo("Available serial ports:")
    click.echo(format_port_list(port_list, verbose=detailed))

    auto_port = find_rocc_port()
    if auto_port:
        click.echo(f"\nSuggested port for ROCC: {auto_port}")
    else:
        click.echo("\nNo USB-serial adapter auto-detected.")


# =============================================================================
# Device Commands
# =============================================================================

@main.command()
@pass_context
def auth(ctx: Context) -> None:
    """
    Check that the device accepts the shared secret.

    Always authenticates, even with --no-auth.
    """
    with device_session(ctx, authenticate=True):
        pass


@main.command()
@pass_context
def settime(ctx: Context) -> None:
    """Set the device clock to this computer's local time."""
    with device_session(ctx) as rocc:
        if not rocc.set_time():
            fail(f"Time failed to set: {rocc.last_error}")
        click.echo("Time set successfully")


@main.command()
@pass_context
def gettime(ctx: Context) -> None:
    """Print the device clock as reported by the device."""
    with device_session(ctx) as rocc:
        reported = rocc.get_time()
        if reported is None:
            fail(f"Failed to read time: {rocc.last_error}")
        click.echo(reported)


@main.command()
@click.argument("remote")
@click.argument("output", type=click.Path(dir_okay=False), required=False)
@click.option(
    "--binary",
    is_flag=True,
    help="Save bytes exactly as received instead of decoding as text",
)
@pass_context
def read(ctx: Context, remote: str, output: Optional[str], binary: bool) -> None:
    """
    Download a file from the device.

    REMOTE is the file name on the device. OUTPUT is the local path
    (default: same name in the current directory).

    Example:
        rocclink read roccdat.csv
        rocclink read roccdat.csv data/today.csv
    """
    output_path = Path(output or Path(remote).name)

    with device_session(ctx) as rocc:
        click.echo(f"Downloading {remote}...")
        if not rocc.download_file(remote, output_path, binary=binary, progress=progress_bar):
            fail(f"Failed to read file: {rocc.last_error}")
        click.echo(f"Saved to: {output_path}")


@main.command()
@click.argument("command")
@pass_context
def send(ctx: Context, command: str) -> None:
    """
    Send a raw command and print the response.

    Example:
        rocclink send gtime
    """
    with device_session(ctx) as rocc:
        response = rocc.send_raw(command)
        click.echo(f"> {command}")
        if response is None:
            fail(f"No response: {rocc.last_error}")
        click.echo(f"< {response}")


@main.command()
@click.argument("remote")
@click.confirmation_option(prompt="Clear the remote file?")
@pass_context
def clear(ctx: Context, remote: str) -> None:
    """Clear a file on the device."""
    with device_session(ctx) as rocc:
        if not rocc.clear_file(remote):
            fail(f"Failed to clear {remote}: {rocc.last_error}")
        click.echo(f"Cleared {remote}")


# =============================================================================
# Entry Point
# =============================================================================

if __name__ == "__main__":
    main()
