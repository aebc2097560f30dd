"""
ROCC File Transfer
==================

Downloads a remote file by switching the channel from line mode to raw
byte-count mode and back.

Protocol Flow
-------------
```
PC                                 ROCC
 | ── fsize<name>\\r\\n ─────────→ |
 | ←──────────── "128"\\n ──────── |   size, read in line mode
 |                                 |
 |   (line reader asked to stop)   |
 | ── fread<name>\\r\\n ─────────→ |
 |   (line reader confirmed idle,  |
 |    raw lease acquired)          |
 | ←──────── 128 raw bytes ──────  |   no framing, arbitrary chunks
 |                                 |
 |   (raw lease released,          |
 |    line reader restarted)       |
```

State Machine
-------------
    IDLE → SIZE_REQUESTED → RAW_MODE → RECEIVING → LINE_RESTORED → IDLE

Line mode is restored on every path, success or failure, so the
connection stays usable for the next command. A stream that ends or
stalls before the declared size is a ShortTransferError, raised only
after line mode is back.

Text and binary downloads follow the same sequence; text is decoded
incrementally with a final flush of the decoder.
"""

import codecs
import logging
import time
from enum import Enum
from typing import Callable, Final, Optional

from rocc_sdk.comms.channel import DEFAULT_CHUNK_SIZE, ReaderLease
from rocc_sdk.comms.mode import ModeController
from rocc_sdk.comms.protocol import CMD_FILE_READ, CMD_FILE_SIZE, CommandProtocol
from rocc_sdk.errors import ProtocolError, ShortTransferError, TransferError

# Configure module logger
logger = logging.getLogger(__name__)


# Default maximum gap between raw bytes before giving up (seconds)
DEFAULT_IDLE_TIMEOUT: Final[float] = 5.0

# Progress callback: (bytes_received, total_bytes)
ProgressCallback = Callable[[int, int], None]

# Receives each raw chunk as it arrives
ChunkSink = Callable[[bytes], None]


class TransferState(Enum):
    """File transfer state machine states."""

    IDLE = "idle"
    SIZE_REQUESTED = "size_requested"
    RAW_MODE = "raw_mode"
    RECEIVING = "receiving"
    LINE_RESTORED = "line_restored"


class FileTransfer:
    """
    Reads remote files over the raw byte channel.

    Example:
        transfer = FileTransfer(protocol, mode)
        text = transfer.read_text_file("roccdat.csv")

    Thread Safety
    -------------
    Not thread-safe. Transfers are issued by the same caller that issues
    commands, one at a time.
    """

    def __init__(
        self,
        protocol: CommandProtocol,
        mode: ModeController,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        idle_timeout: float = DEFAULT_IDLE_TIMEOUT,
        encoding: str = "utf-8",
    ):
        self._protocol = protocol
        self._mode = mode
        self._chunk_size = chunk_size
        self._idle_timeout = idle_timeout
        self._encoding = encoding
        self._state = TransferState.IDLE

    @property
    def state(self) -> TransferState:
        """Current transfer state."""
        return self._state

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def request_size(self, filename: str) -> int:
        """
        Ask the device for a file's size.

        Returns:
            Size in bytes.

        Raises:
            ProtocolError: If there is no response or it is not a
                non-negative decimal integer.
        """
        self._state = TransferState.SIZE_REQUESTED
        response = self._protocol.send_command(CMD_FILE_SIZE, filename)
        if response is None:
            self._state = TransferState.IDLE
            raise ProtocolError(f"No size response for '{filename}'")

        if not (response.isascii() and response.isdigit()):
            self._state = TransferState.IDLE
            raise ProtocolError(f"Invalid file size for '{filename}': {response!r}")

        size = int(response)
        logger.debug("Size of '%s': %d bytes", filename, size)
        return size

    def read_text_file(
        self,
        filename: str,
        progress: Optional[ProgressCallback] = None,
    ) -> str:
        """
        Download a file and decode it as text.

        Returns:
            Decoded file contents.

        Raises:
            ProtocolError: If the size response is invalid.
            TransferError: If the stream could not be started.
            ShortTransferError: If fewer bytes than declared arrived.
        """
        size = self.request_size(filename)
        decoder = codecs.getincrementaldecoder(self._encoding)(errors="replace")
        parts: list[str] = []

        def sink(chunk: bytes) -> None:
            parts.append(decoder.decode(chunk))

        self._receive(filename, size, sink, progress)

        parts.append(decoder.decode(b"", final=True))
        text = "".join(parts)
        logger.info("Received '%s' (%d bytes)", filename, size)
        return text

    def read_file(
        self,
        filename: str,
        progress: Optional[ProgressCallback] = None,
    ) -> bytes:
        """
        Download a file as raw bytes.

        Raises:
            ProtocolError: If the size response is invalid.
            TransferError: If the stream could not be started.
            ShortTransferError: If fewer bytes than declared arrived.
        """
        size = self.request_size(filename)
        data = bytearray()

        self._receive(filename, size, data.extend, progress)

        logger.info("Received '%s' (%d bytes)", filename, size)
        return bytes(data)

    # -------------------------------------------------------------------------
    # Raw reception
    # -------------------------------------------------------------------------

    def _receive(
        self,
        filename: str,
        size: int,
        sink: ChunkSink,
        progress: Optional[ProgressCallback],
    ) -> None:
        received = 0
        self._mode.begin_handoff()
        try:
            if not self._protocol.send_command_no_resp(CMD_FILE_READ, filename):
                raise TransferError(
                    f"Could not start transfer of '{filename}': "
                    f"{self._protocol.last_error}"
                )

            lease = self._mode.enter_raw_mode()
            self._state = TransferState.RAW_MODE

            self._state = TransferState.RECEIVING
            received = self._pump(lease, size, sink, progress)
        finally:
            self._mode.exit_raw_mode()
            self._state = TransferState.LINE_RESTORED
            logger.debug("Line mode restored")
            self._state = TransferState.IDLE

        if received != size:
            raise ShortTransferError(expected=size, actual=received)

    def _pump(
        self,
        lease: ReaderLease,
        size: int,
        sink: ChunkSink,
        progress: Optional[ProgressCallback],
    ) -> int:
        received = 0
        deadline = time.monotonic() + self._idle_timeout

        while received < size:
            # Never request more than the device still owes
            chunk = lease.read(min(self._chunk_size, size - received))

            if chunk is None:
                logger.warning("Channel ended after %d of %d bytes", received, size)
                break

            if not chunk:
                if time.monotonic() >= deadline:
                    logger.warning(
                        "Transfer stalled after %d of %d bytes", received, size
                    )
                    break
                continue

            sink(chunk)
            received += len(chunk)
            deadline = time.monotonic() + self._idle_timeout

            if progress:
                progress(received, size)

        return received
