"""
Serial Port Utilities for ROCC Communication
============================================

This module provides the pyserial-backed side of the ROCC client:

- Port enumeration and detection
- Automatic detection of likely USB-serial adapters
- Port configuration for ROCC communication
- SerialTransport, the PortTransport implementation over serial.Serial

Serial Port Settings
--------------------
ROCC devices use:
- Baud Rate: 9600 by default (caller-supplied, fixed per connection)
- Data Bits: 8
- Parity: None
- Stop Bits: 1
- Flow Control: None

Reads use a short timeout (the poll interval) so a cancelled reader is
never stuck for long, even on platforms where pyserial cannot cancel an
outstanding read.
"""

import logging
from dataclasses import dataclass
from typing import Final, Optional

import serial
import serial.tools.list_ports

from rocc_sdk.config import DEFAULT_BAUD_RATE
from rocc_sdk.errors import ConnectionError

# Configure module logger
logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Baud rates accepted by the ROCC serial interface
VALID_BAUD_RATES: Final[tuple[int, ...]] = (
    1200, 2400, 4800, 9600, 19200, 38400, 57600, 115200,
)

# Default read timeout in seconds
DEFAULT_TIMEOUT: Final[float] = 0.1

# USB Vendor IDs for common USB-serial adapters
USB_VENDOR_IDS: Final[dict[int, str]] = {
    0x0403: "FTDI",       # Future Technology Devices International
    0x10C4: "Silicon Labs",  # Silicon Labs CP210x
    0x067B: "Prolific",   # Prolific Technology
    0x1A86: "QinHeng",    # QinHeng Electronics (CH340)
    0x2341: "Arduino",    # Arduino native USB
}


# =============================================================================
# Port Information
# =============================================================================

@dataclass(frozen=True)
class PortInfo:
    """
    Information about an available serial port.

    Attributes:
        device: System device path (e.g., '/dev/ttyUSB0', 'COM3')
        description: Human-readable description from the driver
        manufacturer: Device manufacturer (if available)
        serial_number: Device serial number (if available)
        vid: USB Vendor ID (None for non-USB ports)
        pid: USB Product ID (None for non-USB ports)
    """

    device: str
    description: str
    manufacturer: Optional[str]
    serial_number: Optional[str]
    vid: Optional[int]
    pid: Optional[int]

    @property
    def is_usb(self) -> bool:
        """Return True if this is a USB-serial adapter."""
        return self.vid is not None

    @property
    def vendor_name(self) -> Optional[str]:
        """Return the vendor name for known USB adapters."""
        if self.vid is not None:
            return USB_VENDOR_IDS.get(self.vid)
        return None

    def __str__(self) -> str:
        """Format port info for display."""
        parts = [self.device]
        if self.description:
            parts.append(f"- {self.description}")
        if self.vendor_name:
            parts.append(f"({self.vendor_name})")
        return " ".join(parts)


# =============================================================================
# Port Enumeration
# =============================================================================

def list_serial_ports() -> list[PortInfo]:
    """
    List all available serial ports on the system.

    Returns:
        List of PortInfo objects describing available ports.
    """
    ports = []

    for port in serial.tools.list_ports.comports():
        info = PortInfo(
            device=port.device,
            description=port.description or "",
            manufacturer=port.manufacturer,
            serial_number=port.serial_number,
            vid=port.vid,
            pid=port.pid,
        )
        ports.append(info)
        logger.debug(
            "Found port: %s (vid=%s, pid=%s)",
            port.device,
            f"{port.vid:04X}" if port.vid else "N/A",
            f"{port.pid:04X}" if port.pid else "N/A",
        )

    return ports


def find_rocc_port() -> Optional[str]:
    """
    Attempt to auto-detect the serial port a ROCC device is attached to.

    Detection Priority:
    1. FTDI adapters
    2. Silicon Labs CP210x adapters
    3. Any other USB-serial adapter
    4. None if no USB port is present

    Returns:
        Device path of the detected port, or None if not found.
    """
    ports = list_serial_ports()
    usb_ports = [p for p in ports if p.is_usb]

    if not usb_ports:
        logger.debug("No USB serial ports found")
        return None

    for vid in [0x0403, 0x10C4]:  # FTDI, Silicon Labs
        for port in usb_ports:
            if port.vid == vid:
                logger.info(
                    "Auto-detected port: %s (%s)",
                    port.device, port.vendor_name
                )
                return port.device

    first_usb = usb_ports[0]
    logger.info(
        "Using first USB serial port: %s (%s)",
        first_usb.device, first_usb.description
    )
    return first_usb.device


# =============================================================================
# Port Configuration
# =============================================================================

def open_serial_port(
    device: str,
    baud_rate: int = DEFAULT_BAUD_RATE,
    timeout: float = DEFAULT_TIMEOUT,
) -> serial.Serial:
    """
    Open and configure a serial port for ROCC communication.

    The port is opened 8N1 with no flow control and a short read
    timeout so reads behave as polls.

    Args:
        device: Serial port device path (e.g., '/dev/ttyUSB0', 'COM3').
        baud_rate: Baud rate, one of VALID_BAUD_RATES.
        timeout: Read timeout in seconds.

    Returns:
        Configured and opened serial.Serial object.

    Raises:
        ConnectionError: If the port cannot be opened or configured.
        ValueError: If baud_rate is not a valid value.
    """
    if baud_rate not in VALID_BAUD_RATES:
        valid_str = ", ".join(str(b) for b in VALID_BAUD_RATES)
        raise ValueError(
            f"Invalid baud rate: {baud_rate}. Valid rates: {valid_str}"
        )

    logger.info("Opening serial port: %s at %d baud", device, baud_rate)

    try:
        port = serial.Serial(
            port=device,
            baudrate=baud_rate,
            bytesize=serial.EIGHTBITS,
            parity=serial.PARITY_NONE,
            stopbits=serial.STOPBITS_ONE,
            timeout=timeout,
            xonxoff=False,
            rtscts=False,
            dsrdtr=False,
        )

        # Discard anything the device printed before we connected
        port.reset_input_buffer()
        port.reset_output_buffer()

        logger.debug("Port opened: %s (timeout=%.2f)", device, timeout)
        return port

    except serial.SerialException as e:
        error_msg = str(e)

        if "Permission denied" in error_msg:
            raise ConnectionError(
                f"Permission denied accessing {device}. "
                "You may need to add your user to the 'dialout' group: "
                "sudo usermod -a -G dialout $USER"
            )
        elif "No such file" in error_msg or "not found" in error_msg.lower():
            raise ConnectionError(
                f"Serial port not found: {device}. "
                "Use 'rocclink ports' to list available ports."
            )
        elif "busy" in error_msg.lower() or "in use" in error_msg.lower():
            raise ConnectionError(
                f"Serial port {device} is busy. "
                "Close any other programs using the port."
            )
        else:
            raise ConnectionError(f"Cannot open {device}: {e}")


def close_serial_port(port: serial.Serial) -> None:
    """
    Safely close a serial port.

    Errors during close are logged and ignored; the port is unusable
    afterwards either way.
    """
    if port is None:
        return

    try:
        if port.is_open:
            port.reset_output_buffer()
            port.close()
            logger.debug("Serial port closed")
    except (serial.SerialException, OSError) as e:
        logger.warning("Error closing serial port: %s", e)


def format_port_list(ports: list[PortInfo], verbose: bool = False) -> str:
    """
    Format a list of ports for display to the user.

    Args:
        ports: List of PortInfo objects to format.
        verbose: If True, include additional details.

    Returns:
        Formatted string with one port per line.
    """
    if not ports:
        return "No serial ports found."

    lines = []
    for port in ports:
        if verbose:
            line = f"  {port.device}"
            if port.description:
                line += f"\n    Description: {port.description}"
            if port.manufacturer:
                line += f"\n    Manufacturer: {port.manufacturer}"
            if port.vid is not None:
                line += f"\n    USB VID:PID: {port.vid:04X}:{port.pid:04X}"
                if port.vendor_name:
                    line += f" ({port.vendor_name})"
            if port.serial_number:
                line += f"\n    Serial: {port.serial_number}"
            lines.append(line)
        else:
            lines.append(f"  {port}")

    return "\n".join(lines)


# =============================================================================
# Serial Transport
# =============================================================================

class SerialTransport:
    """
    PortTransport implementation backed by a pyserial port.

    ``read()`` returns whatever is already buffered (at least one byte
    is waited for, up to the port timeout). A closed port reads as end
    of stream.

    Example:
        transport = SerialTransport.open('/dev/ttyUSB0', baud_rate=9600)
        transport.write(b"gtime\\r\\n")
        chunk = transport.read(256)
        transport.close()
    """

    def __init__(self, port: serial.Serial):
        self.port = port

    @classmethod
    def open(
        cls,
        device: str,
        baud_rate: int = DEFAULT_BAUD_RATE,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> "SerialTransport":
        """Open ``device`` and wrap it."""
        return cls(open_serial_port(device, baud_rate=baud_rate, timeout=timeout))

    @property
    def is_open(self) -> bool:
        return bool(self.port.is_open)

    def read(self, size: int) -> Optional[bytes]:
        if not self.port.is_open:
            return None
        try:
            waiting = self.port.in_waiting
            return self.port.read(min(size, max(1, waiting)))
        except serial.SerialException as e:
            if not self.port.is_open:
                return None
            raise ConnectionError(f"Serial read failed: {e}") from e

    def write(self, data: bytes) -> None:
        if not self.port.is_open:
            raise ConnectionError("Serial port is closed")
        try:
            self.port.write(data)
            self.port.flush()
        except serial.SerialException as e:
            raise ConnectionError(f"Serial write failed: {e}") from e

    def cancel_read(self) -> None:
        # Only the native POSIX and Windows backends can cancel; URL
        # handlers fall back to the read timeout.
        cancel = getattr(self.port, "cancel_read", None)
        if cancel is None or not self.port.is_open:
            return
        try:
            cancel()
        except (serial.SerialException, OSError) as e:
            logger.debug("cancel_read failed: %s", e)

    def close(self) -> None:
        close_serial_port(self.port)
