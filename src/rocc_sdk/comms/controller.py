"""
ROCC Controller
===============

One session object per device connection. It wires the transport, read
channel, line framer, mode controller, command protocol and file
transfer together and exposes the operations a user actually runs.

Every operation returns a definite result (bool, value or None) and
records a human-readable reason in ``last_error`` on failure. Only
``connect()`` raises, because there is nothing to return without a port.

Usage:
    config = RoccConfig.from_env()
    with RoccController(port="/dev/ttyUSB0", config=config) as rocc:
        if rocc.authenticate():
            rocc.set_time()
            rocc.download_file("roccdat.csv", "roccdat.csv")
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, Union

from rocc_sdk.comms.auth import authenticate as run_handshake
from rocc_sdk.comms.channel import PortTransport, ReadChannel
from rocc_sdk.comms.framer import LineFramer
from rocc_sdk.comms.mode import ModeController
from rocc_sdk.comms.protocol import (
    CMD_FILE_CLEAR,
    CMD_GET_TIME,
    CMD_SET_TIME,
    RESPONSE_OK,
    CommandProtocol,
    format_device_time,
)
from rocc_sdk.comms.serial import SerialTransport, find_rocc_port
from rocc_sdk.comms.transfer import FileTransfer, ProgressCallback
from rocc_sdk.config import RoccConfig
from rocc_sdk.errors import CommsError, ConnectionError

# Configure module logger
logger = logging.getLogger(__name__)


TransportFactory = Callable[[], PortTransport]


@dataclass
class Session:
    """Per-connection state, created by connect() and dropped by disconnect()."""

    transport: PortTransport
    channel: ReadChannel
    framer: LineFramer
    mode: ModeController
    protocol: CommandProtocol
    transfer: FileTransfer


class RoccController:
    """
    Client for one ROCC device.

    Args:
        port: Serial device path. Falls back to the config, then to
            auto-detection.
        baud_rate: Serial speed; overrides the config when given.
        config: Client configuration (defaults to RoccConfig()).
        transport_factory: Builds the transport instead of opening a
            serial port (virtual devices, tests).
    """

    def __init__(
        self,
        port: Optional[str] = None,
        baud_rate: Optional[int] = None,
        config: Optional[RoccConfig] = None,
        transport_factory: Optional[TransportFactory] = None,
    ):
        config = config or RoccConfig()
        if port is not None:
            config = replace(config, port=port)
        if baud_rate is not None:
            config = replace(config, baud_rate=baud_rate)
        config.validate()
        self.config = config

        self._transport_factory = transport_factory
        self._session: Optional[Session] = None
        self.last_error: Optional[str] = None

    # -------------------------------------------------------------------------
    # Connection Management
    # -------------------------------------------------------------------------

    @property
    def connected(self) -> bool:
        """Return True while a session with an open transport exists."""
        return self._session is not None and self._session.transport.is_open

    def connect(self) -> None:
        """
        Open the transport and start line mode.

        An existing connection is closed first, so a controller never
        holds more than one.

        Raises:
            ConnectionError: If no port is available or it cannot be opened.
        """
        if self._session is not None:
            logger.warning("Already connected, disconnecting first")
            self.disconnect()

        transport = self._open_transport()
        cfg = self.config

        channel = ReadChannel(transport)
        framer = LineFramer(channel, encoding=cfg.encoding, chunk_size=cfg.chunk_size)
        mode = ModeController(channel, framer, stop_timeout=cfg.stop_timeout)
        protocol = CommandProtocol(
            transport,
            framer,
            response_timeout=cfg.response_timeout,
            encoding=cfg.encoding,
        )
        transfer = FileTransfer(
            protocol,
            mode,
            chunk_size=cfg.chunk_size,
            idle_timeout=cfg.transfer_idle_timeout,
            encoding=cfg.encoding,
        )
        self._session = Session(transport, channel, framer, mode, protocol, transfer)

        framer.start()
        logger.info("Connected")

    def disconnect(self) -> None:
        """Tear down the session. Safe to call when not connected."""
        session, self._session = self._session, None
        if session is None:
            logger.debug("Not connected, nothing to disconnect")
            return

        session.framer.stop()
        session.framer.fail_pending(ConnectionError("Disconnected"))
        try:
            session.transport.close()
        except CommsError as e:
            logger.warning("Error closing transport: %s", e)

        # Transport is closed, so this only drops a raw lease
        session.mode.exit_raw_mode()
        if not session.framer.wait_stopped(self.config.stop_timeout):
            logger.warning("Line reader did not stop within %.1fs", self.config.stop_timeout)
        session.channel.reset()
        logger.info("Disconnected")

    def __enter__(self) -> "RoccController":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.disconnect()

    def _open_transport(self) -> PortTransport:
        if self._transport_factory is not None:
            return self._transport_factory()

        device = self.config.port or find_rocc_port()
        if not device:
            raise ConnectionError(
                "No serial port specified and auto-detect failed. "
                "Use 'rocclink ports' to list available ports."
            )
        try:
            return SerialTransport.open(
                device,
                baud_rate=self.config.baud_rate,
                timeout=self.config.poll_interval,
            )
        except ValueError as e:
            raise ConnectionError(str(e))

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def authenticate(self, secret: Optional[str] = None) -> bool:
        """
        Authenticate with ``secret`` (or the configured secret).

        Returns:
            True if the device accepted the proof.
        """
        session = self._begin("authenticate")
        if session is None:
            return False

        secret = secret if secret is not None else self.config.secret
        if not secret:
            return self._fail("No authentication secret configured (set ROCC_SECRET)")

        if run_handshake(session.protocol, secret):
            return True
        return self._fail(session.protocol.last_error or "Authentication rejected")

    def set_time(self, moment: Optional[datetime] = None) -> bool:
        """
        Set the device clock (local time, defaults to now).

        Returns:
            True if the device answered OK.
        """
        session = self._begin("set_time")
        if session is None:
            return False

        formatted = format_device_time(moment or datetime.now())
        response = session.protocol.send_command(CMD_SET_TIME, formatted)
        if response == RESPONSE_OK:
            logger.info("Device time set to %s", formatted)
            return True
        return self._fail(self._describe(session, response, "set time"))

    def get_time(self) -> Optional[str]:
        """Return the device's reported time, unvalidated."""
        session = self._begin("get_time")
        if session is None:
            return None

        response = session.protocol.send_command(CMD_GET_TIME)
        if response is None:
            self._fail(self._describe(session, response, "get time"))
        return response

    def send_raw(self, command: str) -> Optional[str]:
        """Send an arbitrary command line and return its response."""
        session = self._begin("send_raw")
        if session is None:
            return None

        response = session.protocol.send_command(command)
        if response is None:
            self._fail(self._describe(session, response, command))
        return response

    def clear_file(self, filename: str) -> bool:
        """
        Clear a remote file.

        Returns:
            True if the device answered OK.
        """
        session = self._begin("clear_file")
        if session is None:
            return False

        response = session.protocol.send_command(CMD_FILE_CLEAR, filename)
        if response == RESPONSE_OK:
            logger.info("Cleared '%s'", filename)
            return True
        return self._fail(self._describe(session, response, f"clear '{filename}'"))

    def read_text_file(
        self,
        filename: str,
        progress: Optional[ProgressCallback] = None,
    ) -> Optional[str]:
        """
        Download a remote file as text.

        Returns:
            File contents, or None on failure.
        """
        session = self._begin("read_text_file")
        if session is None:
            return None

        try:
            return session.transfer.read_text_file(filename, progress=progress)
        except CommsError as e:
            self._fail(f"Failed to read '{filename}': {e}")
            return None

    def read_file(
        self,
        filename: str,
        progress: Optional[ProgressCallback] = None,
    ) -> Optional[bytes]:
        """
        Download a remote file as raw bytes.

        Returns:
            File contents, or None on failure.
        """
        session = self._begin("read_file")
        if session is None:
            return None

        try:
            return session.transfer.read_file(filename, progress=progress)
        except CommsError as e:
            self._fail(f"Failed to read '{filename}': {e}")
            return None

    def download_file(
        self,
        filename: str,
        destination: Union[str, Path],
        binary: bool = False,
        progress: Optional[ProgressCallback] = None,
    ) -> bool:
        """
        Download a remote file and save it locally.

        Text downloads are written without newline translation so the
        saved file matches what the device sent.

        Returns:
            True if the file was received and written.
        """
        path = Path(destination)

        if binary:
            payload = self.read_file(filename, progress=progress)
        else:
            payload = self.read_text_file(filename, progress=progress)
        if payload is None:
            return False

        try:
            if isinstance(payload, bytes):
                path.write_bytes(payload)
            else:
                with open(path, "w", encoding=self.config.encoding, newline="") as f:
                    f.write(payload)
        except OSError as e:
            return self._fail(f"Cannot write {path}: {e}")

        logger.info("Saved '%s' to %s", filename, path)
        return True

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _begin(self, operation: str) -> Optional[Session]:
        self.last_error = None
        if not self.connected:
            self._fail(f"Cannot {operation}: not connected")
            return None
        return self._session

    def _fail(self, message: str) -> bool:
        self.last_error = message
        logger.error("%s", message)
        return False

    @staticmethod
    def _describe(session: Session, response: Optional[str], action: str) -> str:
        if response is None:
            return f"Failed to {action}: {session.protocol.last_error or 'no response'}"
        return f"Failed to {action}: device answered {response!r}"
