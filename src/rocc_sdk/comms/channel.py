"""
Read Channel and Reader Leases
==============================

The ROCC device multiplexes two kinds of traffic over one serial line:
newline-terminated text responses and raw file bodies. Both are consumed
from the same read stream, so exactly one reader may own that stream at
any moment.

This module models that ownership explicitly:

- **PortTransport**: the abstract port interface the client consumes.
- **ReadChannel**: wraps a transport and hands out the read side.
- **ReaderLease**: the single exclusive grant on the read side.

Lease Rules
-----------
- ``ReadChannel.acquire()`` fails with LeaseError while any lease is
  outstanding. Two concurrent readers cannot exist.
- ``ReaderLease.release()`` is idempotent and returns the read side.
- Bytes a holder read but must not consume can be handed back with
  ``ReaderLease.unread()``; the next holder receives them first.

Writes never need a lease: commands are issued one at a time by the
caller, so the write side is not contended.

Usage:
    channel = ReadChannel(transport)
    with channel.acquire("raw") as lease:
        chunk = lease.read(128)
"""

import logging
import threading
from typing import Optional, Protocol

from rocc_sdk.errors import LeaseError

# Configure module logger
logger = logging.getLogger(__name__)


# Default number of bytes requested per read
DEFAULT_CHUNK_SIZE = 256


# =============================================================================
# Port Transport Interface
# =============================================================================

class PortTransport(Protocol):
    """
    Abstract serial transport consumed by the ROCC client.

    Read semantics:
        ``read(size)`` returns up to ``size`` bytes. An empty bytes
        object means nothing arrived within the poll interval and is
        NOT end of stream. ``None`` means the channel has ended.
    """

    @property
    def is_open(self) -> bool: ...

    def read(self, size: int) -> Optional[bytes]: ...

    def write(self, data: bytes) -> None: ...

    def cancel_read(self) -> None: ...

    def close(self) -> None: ...


# =============================================================================
# Reader Lease
# =============================================================================

class ReaderLease:
    """
    Exclusive ownership of a channel's read side.

    Leases are created only by ReadChannel.acquire(). A released lease
    refuses further reads, so a stale holder cannot keep consuming bytes
    after handing the channel over.

    Attributes:
        owner: Name of the holder (e.g. "line" or "raw"), used in logs
    """

    def __init__(self, channel: "ReadChannel", owner: str):
        self._channel = channel
        self.owner = owner
        self._released = False

    @property
    def released(self) -> bool:
        """Return True once the lease has been given back."""
        return self._released

    def read(self, size: int = DEFAULT_CHUNK_SIZE) -> Optional[bytes]:
        """
        Read up to ``size`` bytes from the channel.

        Returns:
            Bytes read, b"" if nothing arrived, or None at end of stream.

        Raises:
            LeaseError: If the lease was already released.
            CommsError: On transport failure.
        """
        if self._released:
            raise LeaseError(f"Lease for '{self.owner}' already released")
        return self._channel._read(size)

    def unread(self, data: bytes) -> None:
        """Hand bytes back so the next reader receives them first."""
        if data:
            self._channel._unread(data)

    def release(self) -> None:
        """Return the read side to the channel. Safe to call twice."""
        if self._released:
            return
        self._released = True
        self._channel._release(self)

    def __enter__(self) -> "ReaderLease":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    def __repr__(self) -> str:
        state = "released" if self._released else "held"
        return f"ReaderLease(owner={self.owner!r}, {state})"


# =============================================================================
# Read Channel
# =============================================================================

class ReadChannel:
    """
    Arbitrates the read side of a PortTransport.

    The channel holds at most one ReaderLease. It also keeps a small
    pushback buffer for bytes returned by a previous holder.

    Thread Safety
    -------------
    Acquire, release and pushback are guarded by an internal lock. The
    transport read itself runs outside the lock; only the lease holder
    calls it, so it is never entered concurrently.
    """

    def __init__(self, transport: PortTransport):
        self.transport = transport
        self._lock = threading.Lock()
        self._holder: Optional[ReaderLease] = None
        self._pushback = bytearray()

    @property
    def holder(self) -> Optional[str]:
        """Owner name of the current lease, or None if the read side is free."""
        with self._lock:
            return self._holder.owner if self._holder is not None else None

    @property
    def pending_bytes(self) -> int:
        """Number of bytes waiting in the pushback buffer."""
        with self._lock:
            return len(self._pushback)

    def acquire(self, owner: str) -> ReaderLease:
        """
        Take exclusive ownership of the read side.

        Args:
            owner: Name of the new holder.

        Returns:
            A new ReaderLease.

        Raises:
            LeaseError: If another lease is still outstanding.
        """
        with self._lock:
            if self._holder is not None:
                raise LeaseError(
                    f"Read side held by '{self._holder.owner}', "
                    f"cannot grant to '{owner}'"
                )
            lease = ReaderLease(self, owner)
            self._holder = lease

        logger.debug("Lease granted: %s", owner)
        return lease

    def interrupt(self, owner: str) -> bool:
        """
        Cancel an in-flight read if ``owner`` currently holds the lease.

        Returns:
            True if a cancellation was issued.
        """
        with self._lock:
            held = self._holder is not None and self._holder.owner == owner

        if held:
            self.transport.cancel_read()
            logger.debug("Interrupted read for %s", owner)
        return held

    def reset(self) -> None:
        """Discard pushback bytes (used when a connection is torn down)."""
        with self._lock:
            self._pushback.clear()

    # -------------------------------------------------------------------------
    # Lease callbacks
    # -------------------------------------------------------------------------

    def _read(self, size: int) -> Optional[bytes]:
        with self._lock:
            if self._pushback:
                data = bytes(self._pushback[:size])
                del self._pushback[:size]
                return data
        return self.transport.read(size)

    def _unread(self, data: bytes) -> None:
        with self._lock:
            self._pushback[:0] = data
        logger.debug("Returned %d byte(s) to channel", len(data))

    def _release(self, lease: ReaderLease) -> None:
        with self._lock:
            if self._holder is lease:
                self._holder = None
        logger.debug("Lease released: %s", lease.owner)
