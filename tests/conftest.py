"""
ROCC SDK - Test Configuration
=============================

pytest configuration shared by every test module.

It registers the testkit fixtures (``rocc_config``, ``virtual_device``
and ``rocc``) so tests can run against an emulated device without
hardware.
"""

# Import and register ROCC testing fixtures
from rocc_sdk.testkit.fixtures import (
    rocc,
    rocc_config,
    virtual_device,
)


# Re-export fixtures so pytest can discover them
__all__ = [
    "rocc",
    "rocc_config",
    "virtual_device",
]
