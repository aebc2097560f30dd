#!/usr/bin/env python3
"""
ROCC Client Demo
================

This script demonstrates how to use the ROCC SDK to:
1. Connect to a device
2. Authenticate with the shared secret
3. Set and read back the device clock
4. Download the data file
5. Clear the data file

It runs against the in-process VirtualDevice by default. Pass a serial
port to talk to real hardware instead.

Usage:
    source .venv/bin/activate
    python examples/rocc_demo.py                   # virtual device
    ROCC_SECRET=... python examples/rocc_demo.py /dev/ttyUSB0
"""

import sys
from pathlib import Path

from rocc_sdk import RoccConfig, RoccController
from rocc_sdk.testkit import VirtualDevice

DATA_FILE = "roccdat.csv"


def main():
    config = RoccConfig.from_env()

    # ==========================================================================
    # 1. Connect
    # ==========================================================================
    # A port on the command line selects real hardware. Otherwise a
    # VirtualDevice stands in for the serial port.

    if len(sys.argv) > 1:
        config.port = sys.argv[1]
        device = None
        print(f"Connecting to {config.port} at {config.baud_rate} baud...")
    else:
        config.secret = config.secret or "demo-secret"
        device = VirtualDevice(
            secret=config.secret,
            files={DATA_FILE: b"timestamp,value\r\n03/05/24-08:00:00,21.5\r\n"},
        )
        device.chunk_plan = [10, 7]
        print("Connecting to virtual device...")

    factory = (lambda: device) if device is not None else None
    with RoccController(config=config, transport_factory=factory) as rocc:

        # ======================================================================
        # 2. Authenticate
        # ======================================================================

        if not rocc.authenticate():
            print(f"  Authentication failed: {rocc.last_error}")
            return 1
        print("  Authenticated")

        # ======================================================================
        # 3. Clock
        # ======================================================================

        if rocc.set_time():
            print(f"  Device time: {rocc.get_time()}")
        else:
            print(f"  Could not set time: {rocc.last_error}")

        # ======================================================================
        # 4. Download
        # ======================================================================

        output = Path("trash") / DATA_FILE
        output.parent.mkdir(exist_ok=True)

        def progress(received, total):
            print(f"  {received}/{total} bytes")

        if rocc.download_file(DATA_FILE, output, progress=progress):
            print(f"  Saved {output}")
            print(output.read_text())
        else:
            print(f"  Download failed: {rocc.last_error}")
            return 1

        # ======================================================================
        # 5. Clear
        # ======================================================================
        # Skipped on real hardware so the demo never destroys data.

        if factory is not None:
            print(f"  Cleared: {rocc.clear_file(DATA_FILE)}")

    print("Done.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
