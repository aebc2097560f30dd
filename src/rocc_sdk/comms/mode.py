"""
Read Mode Controller
====================

Switches the channel between line mode (LineFramer) and raw byte-count
mode (file bodies) without ever letting two readers coexist.

Handoff Sequence
----------------
    request stop → confirm inactive → acquire raw → raw work
                 → release raw → restart line mode

The raw lease is only requested after the framer has signalled that its
loop exited, and ReadChannel.acquire() refuses a second lease anyway, so
an overlapping reader is impossible rather than merely discouraged.
"""

import logging
from contextlib import contextmanager
from enum import Enum
from typing import Final, Iterator, Optional

from rocc_sdk.comms.channel import ReaderLease, ReadChannel
from rocc_sdk.comms.framer import LineFramer
from rocc_sdk.errors import LeaseError, TimeoutError

# Configure module logger
logger = logging.getLogger(__name__)


# Lease owner name used for raw transfers
RAW_OWNER: Final[str] = "raw"


class ReadMode(Enum):
    """Which consumption discipline currently owns the read side."""

    IDLE = "idle"
    LINE = "line"
    RAW = "raw"


class ModeController:
    """
    Arbitrates the read side between the line framer and raw readers.

    Example:
        mode = ModeController(channel, framer)
        with mode.raw_mode() as lease:
            data = lease.read(128)
        # line mode is running again here
    """

    def __init__(
        self,
        channel: ReadChannel,
        framer: LineFramer,
        stop_timeout: float = 2.0,
    ):
        self._channel = channel
        self._framer = framer
        self._stop_timeout = stop_timeout
        self._raw_lease: Optional[ReaderLease] = None

    @property
    def mode(self) -> ReadMode:
        """Current read mode."""
        if self._raw_lease is not None:
            return ReadMode.RAW
        if self._framer.active:
            return ReadMode.LINE
        return ReadMode.IDLE

    def begin_handoff(self) -> None:
        """Ask the line framer to stop. Does not wait."""
        self._framer.stop()

    def enter_raw_mode(self) -> ReaderLease:
        """
        Take the read side for raw byte reception.

        Returns:
            The raw ReaderLease.

        Raises:
            LeaseError: If raw mode is already active or the read side
                is still held by someone else.
            TimeoutError: If the line framer does not stop in time.
        """
        if self._raw_lease is not None:
            raise LeaseError("Raw mode already active")

        self.begin_handoff()
        if not self._framer.wait_stopped(self._stop_timeout):
            raise TimeoutError(
                f"Line reader did not stop within {self._stop_timeout}s"
            )

        self._raw_lease = self._channel.acquire(RAW_OWNER)
        logger.debug("Entered raw mode")
        return self._raw_lease

    def exit_raw_mode(self) -> None:
        """
        Release the raw lease (if held) and resume line mode.

        Safe to call when raw mode was never entered, so callers can use
        it unconditionally in a ``finally`` block.
        """
        lease, self._raw_lease = self._raw_lease, None
        if lease is not None:
            lease.release()
            logger.debug("Left raw mode")

        if self._channel.transport.is_open:
            self._framer.start()

    @contextmanager
    def raw_mode(self) -> Iterator[ReaderLease]:
        """Context manager around enter_raw_mode()/exit_raw_mode()."""
        lease = self.enter_raw_mode()
        try:
            yield lease
        finally:
            self.exit_raw_mode()
