"""
ROCC Testing Framework - Virtual Device
=======================================

An in-process ROCC device that implements the PortTransport interface.
It parses the command lines the client writes and queues the replies a
real device would send, including raw file streams after ``fread``.

Knobs for exercising failure paths:

    chunk_plan       split raw file streams into these chunk sizes
    truncate_at      end the raw stream after this many bytes
    delays           per-command response delay in seconds
    scripted         per-command canned responses, consumed in order
    fail_writes      make every write raise ConnectionError
    read_errors      number of reads that raise ConnectionError

Example:
    device = VirtualDevice(secret="s3cret", files={"log.csv": b"a,b\\n"})
    rocc = RoccController(transport_factory=lambda: device)
    rocc.connect()
    assert rocc.authenticate("s3cret")
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import os
import threading
from collections import deque
from datetime import datetime
from typing import Deque, Dict, List, Optional

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
    format_device_time,
)
from rocc_sdk.errors import ConnectionError

logger = logging.getLogger(__name__)


# Longest names first so "gtime" is not mistaken for "time"
COMMANDS = (
    CMD_CHALLENGE,
    CMD_AUTH,
    CMD_GET_TIME,
    CMD_SET_TIME,
    CMD_FILE_SIZE,
    CMD_FILE_READ,
    CMD_FILE_CLEAR,
)

RESPONSE_FAIL = "FAIL"
RESPONSE_ERROR = "ERR"
RESPONSE_DENIED = "DENIED"

# End-of-stream marker in the outbound queue
_END = None


class VirtualDevice:
    """
    Emulated ROCC device speaking over an in-memory byte queue.

    Attributes:
        secret: Shared secret for the HMAC handshake
        files: Remote files by name
        challenge: Fixed challenge bytes (random per request if None)
        require_auth: Refuse non-auth commands until authenticated
        clock: Last time string accepted by the ``time`` command
        received: Every command line received, without the terminator
    """

    def __init__(
        self,
        secret: str = "",
        files: Optional[Dict[str, bytes]] = None,
        challenge: Optional[bytes] = None,
        require_auth: bool = False,
        poll_interval: float = 0.01,
        line_ending: str = "\r\n",
    ):
        self.secret = secret
        self.files: Dict[str, bytes] = dict(files or {})
        self.challenge = challenge
        self.require_auth = require_auth
        self.poll_interval = poll_interval
        self.line_ending = line_ending

        self.chunk_plan: List[int] = []
        self.truncate_at: Optional[int] = None
        self.delays: Dict[str, float] = {}
        self.scripted: Dict[str, List[str]] = {}
        self.fail_writes = False
        self.read_errors = 0

        self.clock: Optional[str] = None
        self.authenticated = False
        self.received: List[str] = []

        self._issued: Optional[bytes] = None
        self._inbox = bytearray()
        self._outbox: Deque[Optional[bytes]] = deque()
        self._cond = threading.Condition()
        self._open = True
        self._cancelled = False
        self._timers: List[threading.Timer] = []

    # -------------------------------------------------------------------------
    # PortTransport interface
    # -------------------------------------------------------------------------

    @property
    def is_open(self) -> bool:
        return self._open

    def read(self, size: int) -> Optional[bytes]:
        with self._cond:
            if self.read_errors > 0:
                self.read_errors -= 1
                raise ConnectionError("Simulated read fault")

            if self._open and not self._outbox and not self._cancelled:
                self._cond.wait(self.poll_interval)

            if not self._open:
                return None
            if self._cancelled:
                self._cancelled = False
                return b""
            if not self._outbox:
                return b""

            item = self._outbox.popleft()
            if item is _END:
                return None
            if len(item) > size:
                self._outbox.appendleft(item[size:])
                item = item[:size]
            return item

    def write(self, data: bytes) -> None:
        if not self._open:
            raise ConnectionError("Virtual device closed")
        if self.fail_writes:
            raise ConnectionError("Simulated write fault")

        self._inbox.extend(data)
        while True:
            end = self._inbox.find(b"\n")
            if end < 0:
                break
            line = bytes(self._inbox[:end]).decode("utf-8").rstrip("\r")
            del self._inbox[:end + 1]
            self._handle(line)

    def cancel_read(self) -> None:
        with self._cond:
            self._cancelled = True
            self._cond.notify_all()

    def close(self) -> None:
        with self._cond:
            self._open = False
            self._cond.notify_all()
        for timer in self._timers:
            timer.cancel()

    # -------------------------------------------------------------------------
    # Test helpers
    # -------------------------------------------------------------------------

    def inject(self, data: bytes) -> None:
        """Queue unsolicited output, as if the device printed it."""
        self._enqueue(data)

    def end_stream(self) -> None:
        """Make the next read report end of stream."""
        self._enqueue(_END)

    def expected_proof(self, challenge: bytes) -> str:
        """The ``auth`` argument this device accepts for ``challenge``."""
        mac = hmac.new(self.secret.encode("utf-8"), challenge, hashlib.sha256)
        return mac.hexdigest().upper()

    @property
    def commands(self) -> List[str]:
        """Names of the commands received so far, in order."""
        return [self._split(line)[0] for line in self.received]

    # -------------------------------------------------------------------------
    # Command handling
    # -------------------------------------------------------------------------

    def _handle(self, line: str) -> None:
        self.received.append(line)
        name, arg = self._split(line)
        logger.debug("Device RX: %s %r", name, arg)

        if self.scripted.get(name):
            self._reply(name, self.scripted[name].pop(0))
            return

        if self.require_auth and not self.authenticated and name not in (
            CMD_CHALLENGE, CMD_AUTH
        ):
            self._reply(name, RESPONSE_DENIED)
            return

        if name == CMD_CHALLENGE:
            self._issued = self.challenge if self.challenge is not None else os.urandom(16)
            self._reply(name, self._issued.hex().upper())
        elif name == CMD_AUTH:
            issued, self._issued = self._issued, None
            self.authenticated = issued is not None and arg == self.expected_proof(issued)
            self._reply(name, RESPONSE_OK if self.authenticated else RESPONSE_FAIL)
        elif name == CMD_SET_TIME:
            try:
                datetime.strptime(arg, DEVICE_TIME_FORMAT)
            except ValueError:
                self._reply(name, RESPONSE_ERROR)
            else:
                self.clock = arg
                self._reply(name, RESPONSE_OK)
        elif name == CMD_GET_TIME:
            self._reply(name, self.clock or format_device_time(datetime.now()))
        elif name == CMD_FILE_SIZE:
            if arg in self.files:
                self._reply(name, str(len(self.files[arg])))
            else:
                self._reply(name, RESPONSE_ERROR)
        elif name == CMD_FILE_READ:
            if arg in self.files:
                self._stream(name, self.files[arg])
        elif name == CMD_FILE_CLEAR:
            if arg in self.files:
                self.files[arg] = b""
                self._reply(name, RESPONSE_OK)
            else:
                self._reply(name, RESPONSE_ERROR)
        else:
            self._reply(name, RESPONSE_ERROR)

    @staticmethod
    def _split(line: str) -> tuple:
        for name in COMMANDS:
            if line.startswith(name):
                return name, line[len(name):]
        return line, ""

    def _reply(self, name: str, text: str) -> None:
        self._send(name, [(text + self.line_ending).encode("utf-8")])

    def _stream(self, name: str, data: bytes) -> None:
        if self.truncate_at is not None:
            data = data[:self.truncate_at]

        chunks: List[Optional[bytes]] = []
        offset = 0
        for size in self.chunk_plan:
            if offset >= len(data):
                break
            chunks.append(data[offset:offset + size])
            offset += size
        if offset < len(data):
            chunks.append(data[offset:])

        if self.truncate_at is not None:
            chunks.append(_END)
        self._send(name, chunks)

    def _send(self, name: str, items: List[Optional[bytes]]) -> None:
        delay = self.delays.get(name, 0.0)
        if delay > 0:
            timer = threading.Timer(delay, self._enqueue_all, args=(items,))
            timer.daemon = True
            self._timers.append(timer)
            timer.start()
        else:
            self._enqueue_all(items)

    def _enqueue(self, item: Optional[bytes]) -> None:
        self._enqueue_all([item])

    def _enqueue_all(self, items: List[Optional[bytes]]) -> None:
        with self._cond:
            self._outbox.extend(items)
            self._cond.notify_all()
