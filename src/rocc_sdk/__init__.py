"""
ROCC SDK - Serial Client for ROCC Data Loggers
==============================================

This package talks to ROCC devices over a serial line using their
line-oriented text protocol. It authenticates with a shared secret,
sets and reads the device clock, and downloads recorded files.

Main Components
---------------
- **comms**: Serial transport, line framing, command protocol,
    authentication and file transfer (RoccController)

- **testkit**: VirtualDevice, an in-process device emulator, and pytest
    fixtures built on it

- **cli**: The ``rocclink`` command-line tool

Quick Start
-----------
    >>> from rocc_sdk import RoccController, RoccConfig
    >>> config = RoccConfig.from_env()          # ROCC_PORT, ROCC_SECRET, ...
    >>> with RoccController(config=config) as rocc:
    ...     if rocc.authenticate():
    ...         rocc.download_file("roccdat.csv", "roccdat.csv")

Or use the command-line tool:
    $ rocclink --port /dev/ttyUSB0 read roccdat.csv
"""

__version__ = "1.0.0"

# =============================================================================
# Public API Exports
# =============================================================================

from rocc_sdk.config import DEFAULT_BAUD_RATE, RoccConfig
from rocc_sdk.errors import (
    RoccError,
    ConfigError,
    CommsError,
    ConnectionError,
    ProtocolError,
    TimeoutError,
    LeaseError,
    TransferError,
    ShortTransferError,
)
from rocc_sdk.comms import RoccController

__all__ = [
    "__version__",
    # Configuration
    "DEFAULT_BAUD_RATE",
    "RoccConfig",
    # Controller
    "RoccController",
    # Errors
    "RoccError",
    "ConfigError",
    "CommsError",
    "ConnectionError",
    "ProtocolError",
    "TimeoutError",
    "LeaseError",
    "TransferError",
    "ShortTransferError",
]
