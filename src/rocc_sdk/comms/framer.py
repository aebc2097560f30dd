"""
Line Framer
===========

Background line reader for the ROCC text protocol.

The framer owns the "line mode" consumption discipline: a daemon thread
holds the channel's reader lease, decodes incoming bytes with a
stream-safe incremental decoder, splits the text on newlines and hands
each complete line to the oldest outstanding waiter.

Delivery Rules
--------------
- Lines are delivered newline-inclusive, in arrival order, to waiters in
  the order the waiters were registered (FIFO).
- A line that arrives while nobody is waiting is dropped. The protocol is
  strictly request/response, so unsolicited output carries no context.
- A waiter that times out leaves a reply owed. The next line arriving
  within the grace period is treated as that late reply and dropped, so
  it is never handed to the waiter of a later command.
- The buffer never holds an emitted line; after each chunk it holds at
  most the trailing partial line.

Stopping
--------
``stop()`` raises the cancellation event and interrupts the in-flight read
so the lease is released promptly. It does not wait; ``wait_stopped()``
blocks on the completion signal the loop raises on its way out. The mode
controller uses that pair to hand the read side to a raw reader.
"""

import codecs
import logging
import threading
import time
from collections import deque
from concurrent.futures import CancelledError, Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Deque, Final, Optional

from rocc_sdk.comms.channel import DEFAULT_CHUNK_SIZE, ReaderLease, ReadChannel
from rocc_sdk.errors import CommsError, ConnectionError, TimeoutError

# Configure module logger
logger = logging.getLogger(__name__)


# Lease owner name used by the line reader
LINE_OWNER: Final[str] = "line"

# Pause before re-acquiring after a read error or end of stream
ERROR_BACKOFF: Final[float] = 0.05

# How long start() waits for a previous loop to finish exiting
JOIN_TIMEOUT: Final[float] = 5.0


class LineFramer:
    """
    Decodes the channel's byte stream into lines on a background thread.

    Usage:
        framer = LineFramer(channel)
        framer.start()
        waiter = framer.expect_line()
        transport.write(b"gtime\\r\\n")
        line = framer.wait_line(waiter, timeout=5.0)

    Thread Safety
    -------------
    ``start``, ``stop``, ``read_line`` and ``fail_pending`` may be called
    from any thread. ``feed`` is called by the loop thread; tests call it
    directly while the loop is stopped.
    """

    def __init__(
        self,
        channel: ReadChannel,
        encoding: str = "utf-8",
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        self._channel = channel
        self._encoding = encoding
        self._chunk_size = chunk_size
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")

        self._lock = threading.Lock()
        self._buffer = ""
        self._waiters: Deque[Future] = deque()
        # Deadlines (monotonic) until which a timed-out reply may still arrive
        self._owed: Deque[float] = deque()

        self._thread: Optional[threading.Thread] = None
        self._cancel: Optional[threading.Event] = None
        self._stopped = threading.Event()
        self._stopped.set()

    # -------------------------------------------------------------------------
    # State
    # -------------------------------------------------------------------------

    @property
    def active(self) -> bool:
        """Return True while the loop thread is running."""
        return not self._stopped.is_set()

    @property
    def buffer(self) -> str:
        """Decoded text that does not yet form a complete line."""
        with self._lock:
            return self._buffer

    @property
    def pending(self) -> int:
        """Number of outstanding line waiters."""
        with self._lock:
            return sum(1 for w in self._waiters if not w.done())

    @property
    def owed(self) -> int:
        """Number of timed-out replies that will be skipped if they arrive."""
        with self._lock:
            self._expire_owed()
            return len(self._owed)

    # -------------------------------------------------------------------------
    # Loop control
    # -------------------------------------------------------------------------

    def start(self) -> bool:
        """
        Start the background read loop.

        A call while the loop is already running is a no-op. If a previous
        loop was told to stop but is still exiting, it is joined first so
        that only one lease holder ever exists.

        Returns:
            True if a new loop was started.
        """
        with self._lock:
            if self._cancel is not None:
                return False
            previous = self._thread

        if previous is not None and previous is not threading.current_thread():
            previous.join(JOIN_TIMEOUT)
            if previous.is_alive():
                logger.warning("Previous line reader still running, not restarting")
                return False

        with self._lock:
            if self._cancel is not None:
                return False
            # Partial text from before a raw handoff belongs to nothing
            if self._buffer:
                logger.debug("Discarding partial line: %r", self._buffer)
            self._buffer = ""
            self._decoder.reset()

            cancel = threading.Event()
            self._cancel = cancel
            self._stopped.clear()
            self._thread = threading.Thread(
                target=self._run,
                args=(cancel,),
                name="rocc-line-reader",
                daemon=True,
            )
            self._thread.start()

        logger.debug("Line reader started")
        return True

    def stop(self) -> None:
        """
        Request loop termination without waiting for it.

        The in-flight read is interrupted so the loop releases its lease
        at the next opportunity. Use wait_stopped() to confirm.
        """
        with self._lock:
            cancel, self._cancel = self._cancel, None

        if cancel is None:
            return

        cancel.set()
        self._channel.interrupt(LINE_OWNER)
        logger.debug("Line reader stop requested")

    def wait_stopped(self, timeout: Optional[float] = None) -> bool:
        """
        Block until the loop has exited and released its lease.

        Returns:
            True if the loop is inactive, False on timeout.
        """
        return self._stopped.wait(timeout)

    # -------------------------------------------------------------------------
    # Line requests
    # -------------------------------------------------------------------------

    def expect_line(self) -> Future:
        """
        Register a waiter for the next unclaimed line.

        Register before writing a command so a fast reply cannot arrive
        ahead of its waiter and be dropped.
        """
        waiter: Future = Future()
        with self._lock:
            self._waiters.append(waiter)
        return waiter

    def wait_line(
        self,
        waiter: Future,
        timeout: Optional[float] = None,
        late_grace: Optional[float] = None,
    ) -> str:
        """
        Block until ``waiter`` receives a line.

        On timeout the reply is recorded as owed: a line arriving within
        ``late_grace`` seconds (default: ``timeout``) is dropped instead of
        being delivered to the next waiter.

        Raises:
            TimeoutError: If no line arrives within ``timeout`` seconds.
            ConnectionError: If the connection was torn down meanwhile.
        """
        try:
            return waiter.result(timeout)
        except FutureTimeoutError:
            with self._lock:
                # Cancelling under the lock keeps _dispatch from racing the
                # owed record
                withdrawn = waiter.cancel()
                if withdrawn:
                    try:
                        self._waiters.remove(waiter)
                    except ValueError:
                        pass
                    grace = late_grace if late_grace is not None else (timeout or 0.0)
                    self._owed.append(time.monotonic() + grace)
            if withdrawn:
                raise TimeoutError(f"No response line within {timeout}s")
            # Claimed by the reader between the timeout and cancel()
            return waiter.result()
        except CancelledError:
            raise ConnectionError("Line request cancelled")

    def read_line(self, timeout: Optional[float] = None) -> str:
        """Wait for the next unclaimed line, newline included."""
        return self.wait_line(self.expect_line(), timeout)

    def discard(self, waiter: Future) -> None:
        """Withdraw a waiter that will no longer be awaited."""
        waiter.cancel()
        with self._lock:
            try:
                self._waiters.remove(waiter)
            except ValueError:
                pass

    def fail_pending(self, error: Exception) -> int:
        """
        Resolve every outstanding waiter with ``error`` and forget owed
        replies.

        Returns:
            Number of waiters failed.
        """
        with self._lock:
            waiters = list(self._waiters)
            self._waiters.clear()
            self._owed.clear()

        failed = 0
        for waiter in waiters:
            if waiter.set_running_or_notify_cancel():
                waiter.set_exception(error)
                failed += 1
        return failed

    # -------------------------------------------------------------------------
    # Decoding
    # -------------------------------------------------------------------------

    def feed(self, data: bytes) -> int:
        """
        Decode a chunk and dispatch every completed line.

        Multi-byte sequences split across chunks are reassembled by the
        incremental decoder.

        Returns:
            Number of complete lines extracted.
        """
        lines = []
        with self._lock:
            self._buffer += self._decoder.decode(data)
            while True:
                end = self._buffer.find("\n")
                if end < 0:
                    break
                lines.append(self._buffer[:end + 1])
                self._buffer = self._buffer[end + 1:]

        for line in lines:
            self._dispatch(line)
        return len(lines)

    def _expire_owed(self) -> None:
        # Caller holds self._lock
        now = time.monotonic()
        while self._owed and self._owed[0] <= now:
            self._owed.popleft()
            logger.debug("Late reply never arrived, no longer skipping")

    def _dispatch(self, line: str) -> None:
        waiter = None
        with self._lock:
            self._expire_owed()
            if self._owed:
                self._owed.popleft()
                logger.debug("Dropped late reply: %r", line)
                return
            while self._waiters:
                candidate = self._waiters.popleft()
                if candidate.set_running_or_notify_cancel():
                    waiter = candidate
                    break

        if waiter is None:
            logger.debug("Dropped unsolicited line: %r", line)
            return

        logger.debug("RX: %r", line)
        waiter.set_result(line)

    # -------------------------------------------------------------------------
    # Loop body
    # -------------------------------------------------------------------------

    def _run(self, cancel: threading.Event) -> None:
        try:
            while not cancel.is_set() and self._channel.transport.is_open:
                lease = self._channel.acquire(LINE_OWNER)
                try:
                    self._pump(lease, cancel)
                except CommsError as e:
                    if cancel.is_set():
                        break
                    logger.error("Line reader error: %s", e)
                finally:
                    lease.release()

                # Interruptible pause before the next acquire cycle
                cancel.wait(ERROR_BACKOFF)
        except Exception:
            logger.exception("Line reader crashed")
        finally:
            with self._lock:
                if self._cancel is cancel:
                    self._cancel = None
            self._stopped.set()
            logger.debug("Line reader stopped")

    def _pump(self, lease: ReaderLease, cancel: threading.Event) -> None:
        while not cancel.is_set():
            chunk = lease.read(self._chunk_size)
            if chunk is None:
                logger.debug("Channel ended")
                return
            if cancel.is_set():
                lease.unread(chunk)
                return
            if not chunk:
                continue
            self.feed(chunk)
