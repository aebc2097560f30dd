"""
ROCC SDK Error Hierarchy
========================

This module defines the exception hierarchy for the ROCC SDK. All
exceptions inherit from RoccError, allowing callers to catch every
SDK-related error with a single except clause if desired.

Exception Hierarchy
-------------------
RoccError (base)
├── ConfigError - invalid client configuration
└── CommsError (serial communication)
    ├── ConnectionError - cannot open, read or write the port
    ├── ProtocolError - missing or malformed device response
    ├── TimeoutError - no response within the allotted time
    ├── LeaseError - read side ownership violated
    └── TransferError - error during file transfer
        └── ShortTransferError - fewer bytes than the declared size

Design Philosophy
-----------------
Exceptions are raised inside the comms layer and converted into plain
success/failure results at the boundary of each public controller
operation. A failed command never tears the connection down implicitly;
the caller decides whether to retry, reconnect or give up.
"""


# =============================================================================
# Base Exception Class
# =============================================================================

class RoccError(Exception):
    """
    Base exception for all ROCC SDK errors.

    All exceptions in the SDK inherit from this class, allowing callers
    to catch all SDK-related errors with a single except clause:

        try:
            controller.connect()
        except RoccError as e:
            print(f"Error: {e}")
    """
    pass


class ConfigError(RoccError):
    """
    Invalid client configuration.

    Raised when a configuration value is out of range, for example a
    non-positive timeout or an unsupported baud rate.
    """
    pass


# =============================================================================
# Communication Exceptions
# =============================================================================

class CommsError(RoccError):
    """Base exception for serial communication errors."""
    pass


class ConnectionError(CommsError):
    """
    Cannot use the connection to the ROCC device.

    Raised when:
    - Serial port not found
    - Permission denied
    - Port closed or broken during a read or write
    - Operation attempted while disconnected
    """
    pass


class ProtocolError(CommsError):
    """
    Device protocol violation.

    Raised when the device sends no response where one is required,
    or the response cannot be interpreted (e.g. a non-numeric file
    size or a malformed hex challenge).
    """
    pass


class TimeoutError(CommsError):
    """
    Communication timeout error.

    Raised when no response line arrives within the response timeout,
    or when the line reader fails to stop in time for a mode switch.

    Note:
        This is a ROCC-specific TimeoutError, distinct from the
        Python builtin TimeoutError. It inherits from CommsError
        for consistent error handling in the comms module.
    """
    pass


class LeaseError(CommsError):
    """
    Read side ownership violated.

    Only one reader may hold the port's read side at a time. Raised
    when a second reader tries to acquire it, or when a reader keeps
    using a lease it has already released.
    """
    pass


class TransferError(CommsError):
    """
    Error during file transfer.

    Raised when:
    - The fread command could not be sent
    - Raw mode could not be entered
    - The byte stream ended early
    """
    pass


class ShortTransferError(TransferError):
    """
    Fewer bytes received than the device announced.

    The device declares the file size via ``fsize`` and then streams
    exactly that many bytes. If the stream ends or stalls before the
    declared size is reached, the transfer is reported as failed.
    """

    def __init__(self, expected: int, actual: int, message: str = ""):
        self.expected = expected
        self.actual = actual
        if not message:
            message = f"Short transfer: expected {expected} bytes, got {actual}"
        super().__init__(message)
