"""
ROCC Communication Module
=========================

This module provides everything needed to talk to a ROCC device over a
serial line: authenticate, set and read the clock, send commands and
download files.

Channel Architecture
--------------------
The device multiplexes two kinds of traffic over one serial line:

- **Line mode**: text responses, one ``\\n``-terminated line per command
- **Raw mode**: file bodies, exactly ``fsize`` unframed bytes after ``fread``

Exactly one reader owns the read side at any moment. The line framer
holds it in line mode; a file transfer takes it over for raw mode and
hands it back when done.

Module Structure
----------------
- **channel**: PortTransport interface, ReadChannel and ReaderLease
- **serial**: Serial port utilities and SerialTransport (pyserial)
- **framer**: Background line reader with FIFO response delivery
- **mode**: Line/raw handoff
- **protocol**: Command vocabulary and request/response correlation
- **auth**: Challenge-response HMAC handshake
- **transfer**: File download state machine
- **controller**: RoccController, one session per connection

Quick Start
-----------
    from rocc_sdk.comms import RoccController

    rocc = RoccController(port='/dev/ttyUSB0', baud_rate=9600)
    rocc.connect()
    if rocc.authenticate(secret):
        rocc.set_time()
        text = rocc.read_text_file('roccdat.csv')
    rocc.disconnect()

Error Handling
--------------
Internally, communication errors inherit from `CommsError`
(`ConnectionError`, `ProtocolError`, `TimeoutError`, `LeaseError`,
`TransferError`). RoccController converts them into False/None results
and a readable `last_error` message.

Thread Safety
-------------
The line framer runs on its own thread. Everything else expects a single
calling thread issuing one operation at a time.
"""

# =============================================================================
# Public API Exports
# =============================================================================

# Channel and leases
from rocc_sdk.comms.channel import (
    DEFAULT_CHUNK_SIZE,
    PortTransport,
    ReadChannel,
    ReaderLease,
)

# Serial port utilities
from rocc_sdk.comms.serial import (
    VALID_BAUD_RATES,
    PortInfo,
    SerialTransport,
    close_serial_port,
    find_rocc_port,
    format_port_list,
    list_serial_ports,
    open_serial_port,
)

# Line mode and handoff
from rocc_sdk.comms.framer import LINE_OWNER, LineFramer
from rocc_sdk.comms.mode import RAW_OWNER, ModeController, ReadMode

# Command protocol
from rocc_sdk.comms.protocol import (
    CMD_AUTH,
    CMD_CHALLENGE,
    CMD_FILE_CLEAR,
    CMD_FILE_READ,
    CMD_FILE_SIZE,
    CMD_GET_TIME,
    CMD_SET_TIME,
    DEVICE_TIME_FORMAT,
    RESPONSE_OK,
    CommandProtocol,
    format_device_time,
    frame_command,
)

# Authentication
from rocc_sdk.comms.auth import (
    authenticate,
    compute_challenge_response,
    decode_challenge,
)

# File transfer
from rocc_sdk.comms.transfer import (
    FileTransfer,
    ProgressCallback,
    TransferState,
)

# Session
from rocc_sdk.comms.controller import RoccController, Session

__all__ = [
    # Channel
    "DEFAULT_CHUNK_SIZE",
    "PortTransport",
    "ReadChannel",
    "ReaderLease",
    # Serial
    "VALID_BAUD_RATES",
    "PortInfo",
    "SerialTransport",
    "close_serial_port",
    "find_rocc_port",
    "format_port_list",
    "list_serial_ports",
    "open_serial_port",
    # Line mode and handoff
    "LINE_OWNER",
    "LineFramer",
    "RAW_OWNER",
    "ModeController",
    "ReadMode",
    # Protocol
    "CMD_AUTH",
    "CMD_CHALLENGE",
    "CMD_FILE_CLEAR",
    "CMD_FILE_READ",
    "CMD_FILE_SIZE",
    "CMD_GET_TIME",
    "CMD_SET_TIME",
    "DEVICE_TIME_FORMAT",
    "RESPONSE_OK",
    "CommandProtocol",
    "format_device_time",
    "frame_command",
    # Authentication
    "authenticate",
    "compute_challenge_response",
    "decode_challenge",
    # Transfer
    "FileTransfer",
    "ProgressCallback",
    "TransferState",
    # Session
    "RoccController",
    "Session",
]
