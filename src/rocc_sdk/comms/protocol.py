"""
ROCC Command Protocol
=====================

Text command/response layer of the ROCC device protocol.

Wire Format
-----------
Outbound commands are UTF-8 text with no separator between the command
name and its argument; the device recognises the fixed vocabulary::

    <name><arg>\\r\\n

Each text command is answered with exactly one ``\\n``-terminated line.
``fread`` is the exception: it is answered by a raw byte stream instead.

Command Vocabulary
------------------
    ========  ====================  ==============================
    Command   Argument              Response
    ========  ====================  ==============================
    chlng     (none)                hex challenge
    auth      uppercase hex HMAC    OK / failure text
    time      MM/dd/yy-HH:mm:ss     OK / failure text
    gtime     (none)                device time as text
    fsize     filename              decimal byte count
    fread     filename              raw stream of fsize bytes
    fclr      filename              OK / failure text
    ========  ====================  ==============================

Correlation
-----------
Only one command is ever in flight: the waiter for its response line is
registered, the command is written, and the line is awaited before the
next command is issued. With the framer's FIFO delivery, each returned
line is the reply to that specific command.
"""

import logging
from datetime import datetime
from typing import Final, Optional

from rocc_sdk.comms.channel import PortTransport
from rocc_sdk.comms.framer import LineFramer
from rocc_sdk.errors import CommsError

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Protocol Constants
# =============================================================================

CMD_CHALLENGE: Final[str] = "chlng"
CMD_AUTH: Final[str] = "auth"
CMD_SET_TIME: Final[str] = "time"
CMD_GET_TIME: Final[str] = "gtime"
CMD_FILE_SIZE: Final[str] = "fsize"
CMD_FILE_READ: Final[str] = "fread"
CMD_FILE_CLEAR: Final[str] = "fclr"

# Literal success response
RESPONSE_OK: Final[str] = "OK"

# Command terminator
LINE_TERMINATOR: Final[str] = "\r\n"

# strftime pattern for MM/dd/yy-HH:mm:ss
DEVICE_TIME_FORMAT: Final[str] = "%m/%d/%y-%H:%M:%S"

# Default wait for one response line (seconds)
DEFAULT_RESPONSE_TIMEOUT: Final[float] = 5.0


def frame_command(name: str, arg: str = "", encoding: str = "utf-8") -> bytes:
    """
    Build the wire form of a command.

    Example:
        >>> frame_command("fsize", "roccdat.csv")
        b'fsizeroccdat.csv\\r\\n'
    """
    return f"{name}{arg}{LINE_TERMINATOR}".encode(encoding)


def format_device_time(moment: datetime) -> str:
    """
    Format a local time as the device expects it (MM/dd/yy-HH:mm:ss).

    Example:
        >>> format_device_time(datetime(2024, 3, 5, 8, 7, 9))
        '03/05/24-08:07:09'
    """
    return moment.strftime(DEVICE_TIME_FORMAT)


# =============================================================================
# Command Protocol
# =============================================================================

class CommandProtocol:
    """
    Issues commands and collects their one-line responses.

    Failures never propagate: ``send_command`` returns None and
    ``send_command_no_resp`` returns False, after logging the cause.
    There is no automatic retry.

    Attributes:
        response_timeout: Seconds to wait for each response line
        last_error: Description of the most recent failure, if any
    """

    def __init__(
        self,
        transport: PortTransport,
        framer: LineFramer,
        response_timeout: float = DEFAULT_RESPONSE_TIMEOUT,
        encoding: str = "utf-8",
    ):
        self._transport = transport
        self._framer = framer
        self._encoding = encoding
        self.response_timeout = response_timeout
        self.last_error: Optional[str] = None

    def write_command(self, name: str, arg: str = "") -> None:
        """
        Write one framed command.

        Raises:
            ValueError: If the command cannot be encoded.
            ConnectionError: If the transport write fails.
        """
        self._write_frame(frame_command(name, arg, self._encoding))

    def _write_frame(self, frame: bytes) -> None:
        logger.debug("TX: %r", frame)
        self._transport.write(frame)

    def _build_frame(self, name: str, arg: str) -> Optional[bytes]:
        try:
            return frame_command(name, arg, self._encoding)
        except ValueError as e:
            self.last_error = f"{name}: cannot encode command: {e}"
            logger.error("Command '%s' not sent: %s", name, e)
            return None

    def send_command(self, name: str, arg: str = "") -> Optional[str]:
        """
        Send a command and return its response line, stripped.

        Returns:
            The response text, or None if the command could not be
            encoded, the write failed, no line arrived in time, or the
            connection was torn down.
        """
        self.last_error = None
        frame = self._build_frame(name, arg)
        if frame is None:
            return None

        owed = self._framer.owed
        if owed:
            logger.warning("Resynchronising: skipping %d late reply(s)", owed)

        waiter = self._framer.expect_line()
        try:
            self._write_frame(frame)
            line = self._framer.wait_line(waiter, self.response_timeout)
        except CommsError as e:
            self._framer.discard(waiter)
            self.last_error = f"{name}: {e}"
            logger.error("Command '%s' failed: %s", name, e)
            return None

        return line.strip()

    def send_command_no_resp(self, name: str, arg: str = "") -> bool:
        """
        Send a command without consuming a response line.

        Used for ``fread``, whose reply is a raw byte stream.

        Returns:
            True if the command was written.
        """
        self.last_error = None
        frame = self._build_frame(name, arg)
        if frame is None:
            return False

        try:
            self._write_frame(frame)
        except CommsError as e:
            self.last_error = f"{name}: {e}"
            logger.error("Command '%s' failed: %s", name, e)
            return False
        return True
