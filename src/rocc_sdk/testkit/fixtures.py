"""
ROCC Testing Framework - Pytest Fixtures
========================================

Pytest fixtures built on VirtualDevice:

    rocc_config      - Client configuration with short timeouts
    virtual_device   - Fresh emulated device with a sample file
    rocc             - RoccController connected to virtual_device

Usage:
    In your conftest.py, import the fixtures so pytest discovers them:

        from rocc_sdk.testkit.fixtures import rocc, rocc_config, virtual_device

    Then use in tests:

        def test_clock(rocc, virtual_device):
            assert rocc.set_time()
            assert virtual_device.clock is not None
"""

from __future__ import annotations

from typing import Generator

import pytest

from rocc_sdk.comms.controller import RoccController
from rocc_sdk.config import RoccConfig

from .device import VirtualDevice


# Secret shared by the fixtures' device and client
TEST_SECRET = "s3cret"

# Name and contents of the file every fixture device carries
SAMPLE_FILENAME = "roccdat.csv"
SAMPLE_CSV = (
    b"timestamp,temperature,pressure\r\n"
    b"03/05/24-08:00:00,21.5,1013.2\r\n"
    b"03/05/24-08:15:00,21.7,1013.0\r\n"
    b"03/05/24-08:30:00,22.1,1012.8\r\n"
)


@pytest.fixture
def rocc_config() -> RoccConfig:
    """
    Fixture: Client configuration tuned for the virtual device.

    Timeouts are short so failure paths resolve quickly.
    """
    return RoccConfig(
        secret=TEST_SECRET,
        response_timeout=1.0,
        transfer_idle_timeout=0.5,
        stop_timeout=1.0,
        poll_interval=0.01,
        chunk_size=64,
    )


@pytest.fixture
def virtual_device() -> Generator[VirtualDevice, None, None]:
    """Fixture: Emulated device holding SAMPLE_FILENAME."""
    device = VirtualDevice(
        secret=TEST_SECRET,
        files={SAMPLE_FILENAME: SAMPLE_CSV},
    )
    yield device
    device.close()


@pytest.fixture
def rocc(
    virtual_device: VirtualDevice,
    rocc_config: RoccConfig,
) -> Generator[RoccController, None, None]:
    """Fixture: RoccController connected to ``virtual_device``."""
    controller = RoccController(
        config=rocc_config,
        transport_factory=lambda: virtual_device,
    )
    controller.connect()
    yield controller
    controller.disconnect()
