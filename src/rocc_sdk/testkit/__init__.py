"""
ROCC Testing Framework
======================

Tools for testing code that talks to a ROCC device without hardware.

VirtualDevice implements the same PortTransport interface as the serial
transport, so a RoccController can be pointed at it directly::

    from rocc_sdk import RoccController
    from rocc_sdk.testkit import VirtualDevice

    device = VirtualDevice(secret="s3cret", files={"log.csv": b"a,b\\n"})
    with RoccController(transport_factory=lambda: device) as rocc:
        assert rocc.authenticate("s3cret")
        assert rocc.read_text_file("log.csv") == "a,b\\n"

Pytest fixtures live in ``rocc_sdk.testkit.fixtures``.
"""

from .device import (
    COMMANDS,
    RESPONSE_DENIED,
    RESPONSE_ERROR,
    RESPONSE_FAIL,
    VirtualDevice,
)

__all__ = [
    "COMMANDS",
    "RESPONSE_DENIED",
    "RESPONSE_ERROR",
    "RESPONSE_FAIL",
    "VirtualDevice",
]
