"""
Tests for the Command Protocol and Authentication
=================================================

This module tests the text command layer against a VirtualDevice:
- Command framing and device time formatting
- Request/response correlation, including delayed replies
- Failure reporting (write faults, timeouts)
- HMAC-SHA256 challenge-response handshake
"""

import time
from datetime import datetime

import pytest

from rocc_sdk.comms.auth import (
    authenticate,
    compute_challenge_response,
    decode_challenge,
)
from rocc_sdk.comms.channel import ReadChannel
from rocc_sdk.comms.framer import LineFramer
from rocc_sdk.comms.protocol import (
    CMD_CHALLENGE,
    CMD_GET_TIME,
    CMD_SET_TIME,
    CommandProtocol,
    format_device_time,
    frame_command,
)
from rocc_sdk.errors import ProtocolError
from rocc_sdk.testkit import VirtualDevice

CHALLENGE = bytes([0x00, 0x01, 0x02, 0x03])
SECRET = "s3cret"

# HMAC-SHA256(key=b"s3cret", msg=00010203), from `openssl dgst -sha256 -hmac`
KNOWN_PROOF = "FE23E1B19B4880C722880D8AF7063BADB1D452FDDE99A78103521E872794EE56"


@pytest.fixture
def device():
    device = VirtualDevice(secret=SECRET, challenge=CHALLENGE)
    yield device
    device.close()


@pytest.fixture
def framer(device):
    framer = LineFramer(ReadChannel(device))
    framer.start()
    yield framer
    framer.stop()
    framer.wait_stopped(2.0)


@pytest.fixture
def protocol(device, framer):
    return CommandProtocol(device, framer, response_timeout=0.5)


# =============================================================================
# Framing Tests
# =============================================================================

class TestFraming:
    """Tests for command framing helpers."""

    def test_frame_without_argument(self):
        """Bare commands are terminated with CRLF."""
        assert frame_command("gtime") == b"gtime\r\n"

    def test_frame_with_argument(self):
        """The argument follows the name with no separator."""
        assert frame_command("fsize", "roccdat.csv") == b"fsizeroccdat.csv\r\n"

    def test_frame_is_utf8(self):
        """Non-ASCII arguments are UTF-8 encoded."""
        assert frame_command("fsize", "é") == b"fsize\xc3\xa9\r\n"

    def test_format_device_time(self):
        """Device time is MM/dd/yy-HH:mm:ss, zero-padded."""
        assert format_device_time(datetime(2024, 3, 5, 8, 7, 9)) == "03/05/24-08:07:09"

    def test_format_device_time_afternoon(self):
        """Hours use the 24-hour clock."""
        assert format_device_time(datetime(2025, 12, 31, 23, 59, 58)) == "12/31/25-23:59:58"


# =============================================================================
# Command Protocol Tests
# =============================================================================

class TestCommandProtocol:
    """Tests for send_command() and send_command_no_resp()."""

    def test_send_command_returns_stripped_line(self, protocol, device):
        """The response is returned without its terminator."""
        device.clock = "01/02/24-03:04:05"
        assert protocol.send_command(CMD_GET_TIME) == "01/02/24-03:04:05"
        assert device.received == ["gtime"]

    def test_send_command_with_argument(self, protocol, device):
        """Arguments reach the device verbatim."""
        assert protocol.send_command(CMD_SET_TIME, "03/05/24-08:07:09") == "OK"
        assert device.clock == "03/05/24-08:07:09"

    def test_delayed_reply_is_correlated(self, protocol, device):
        """A slow reply still lands with its own command."""
        device.delays[CMD_CHALLENGE] = 0.1
        assert protocol.send_command(CMD_CHALLENGE) == "00010203"

        device.clock = "01/01/24-00:00:00"
        assert protocol.send_command(CMD_GET_TIME) == "01/01/24-00:00:00"

    def test_write_failure_returns_none(self, protocol, device):
        """A write fault yields None and records the cause."""
        device.fail_writes = True
        assert protocol.send_command(CMD_GET_TIME) is None
        assert "Simulated write fault" in protocol.last_error

    def test_timeout_returns_none(self, protocol, device):
        """No response within the timeout yields None."""
        device.delays[CMD_GET_TIME] = 2.0
        assert protocol.send_command(CMD_GET_TIME) is None
        assert protocol.last_error is not None

    def test_failure_does_not_break_next_command(self, protocol, device):
        """The connection stays usable after a failed command."""
        device.fail_writes = True
        assert protocol.send_command(CMD_GET_TIME) is None

        device.fail_writes = False
        device.clock = "06/07/24-10:11:12"
        assert protocol.send_command(CMD_GET_TIME) == "06/07/24-10:11:12"
        assert protocol.last_error is None

    def test_late_reply_not_given_to_next_command(self, protocol, framer, device):
        """A reply arriving after its timeout is skipped, not misdelivered."""
        device.clock = "01/01/24-00:00:00"
        device.delays[CMD_GET_TIME] = 0.8
        device.delays[CMD_SET_TIME] = 0.4
        assert protocol.send_command(CMD_GET_TIME) is None
        assert framer.owed == 1

        assert protocol.send_command(CMD_SET_TIME, "03/05/24-08:07:09") == "OK"
        assert framer.owed == 0

        device.delays.clear()
        assert protocol.send_command(CMD_GET_TIME) == "03/05/24-08:07:09"

    def test_owed_reply_expires(self, protocol, framer, device):
        """A reply that never arrives stops being skipped after the grace period."""
        device.delays[CMD_GET_TIME] = 30.0
        assert protocol.send_command(CMD_GET_TIME) is None
        assert framer.owed == 1

        time.sleep(0.6)
        assert framer.owed == 0
        assert protocol.send_command(CMD_SET_TIME, "03/05/24-08:07:09") == "OK"

    def test_unencodable_command_returns_none(self, protocol, framer, device):
        """A command the encoding cannot represent is refused before writing."""
        assert protocol.send_command("gtime\udc80") is None
        assert "encode" in protocol.last_error
        assert framer.pending == 0
        assert device.received == []

        device.clock = "06/07/24-10:11:12"
        assert protocol.send_command(CMD_GET_TIME) == "06/07/24-10:11:12"

    def test_unencodable_argument_no_response(self, protocol, device):
        """send_command_no_resp refuses unencodable arguments with False."""
        assert not protocol.send_command_no_resp("fread", "x\udc80")
        assert "encode" in protocol.last_error
        assert device.received == []

    def test_unknown_command(self, protocol):
        """Unknown commands get the device's error text back."""
        assert protocol.send_command("bogus") == "ERR"

    def test_send_no_response(self, protocol, device):
        """send_command_no_resp writes without waiting."""
        assert protocol.send_command_no_resp("fclr", "missing.csv")
        assert device.received == ["fclrmissing.csv"]

    def test_send_no_response_failure(self, protocol, device):
        """send_command_no_resp reports write faults as False."""
        device.fail_writes = True
        assert not protocol.send_command_no_resp("fread", "x")
        assert protocol.last_error is not None


# =============================================================================
# Authentication Tests
# =============================================================================

class TestChallengeResponse:
    """Tests for the HMAC computation."""

    def test_known_vector(self):
        """The proof is uppercase hex HMAC-SHA256 over the challenge bytes."""
        assert compute_challenge_response("00010203", SECRET) == KNOWN_PROOF

    def test_lowercase_challenge_accepted(self):
        """Hex case in the challenge does not matter."""
        assert compute_challenge_response("abcdef", SECRET) == compute_challenge_response(
            "ABCDEF", SECRET
        )

    def test_secret_changes_proof(self):
        """Different secrets produce different proofs."""
        assert compute_challenge_response("00010203", "a") != compute_challenge_response(
            "00010203", "b"
        )

    def test_decode_challenge(self):
        """Hex challenges decode to raw bytes."""
        assert decode_challenge("00010203") == CHALLENGE

    @pytest.mark.parametrize("bad", ["", "0", "XYZ1", "00 01", "123"])
    def test_malformed_challenge(self, bad):
        """Empty, odd-length or non-hex challenges are rejected."""
        with pytest.raises(ProtocolError):
            decode_challenge(bad)


class TestAuthenticate:
    """Tests for the full handshake."""

    def test_success(self, protocol, device):
        """The device accepts the correct proof."""
        assert authenticate(protocol, SECRET)
        assert device.authenticated
        assert device.commands == ["chlng", "auth"]
        assert device.received[1] == "auth" + device.expected_proof(CHALLENGE)
        assert device.received[1] == "auth" + KNOWN_PROOF

    def test_wrong_secret(self, protocol, device):
        """A wrong secret is rejected."""
        assert not authenticate(protocol, "wrong")
        assert not device.authenticated

    def test_rejected_by_device(self, protocol, device):
        """Any answer other than OK is failure."""
        device.scripted["auth"] = ["FAIL"]
        assert not authenticate(protocol, SECRET)
        assert "FAIL" in protocol.last_error

    def test_malformed_challenge(self, protocol, device):
        """A non-hex challenge fails without sending auth."""
        device.scripted["chlng"] = ["not-hex"]
        assert not authenticate(protocol, SECRET)
        assert device.commands == ["chlng"]
        assert "Malformed challenge" in protocol.last_error

    def test_empty_challenge(self, protocol, device):
        """An empty challenge line fails without sending auth."""
        device.scripted["chlng"] = [""]
        assert not authenticate(protocol, SECRET)
        assert device.commands == ["chlng"]
        assert "empty challenge" in protocol.last_error

    def test_no_challenge(self, protocol, device):
        """No reply to chlng is failure, not an exception."""
        device.delays["chlng"] = 2.0
        assert not authenticate(protocol, SECRET)
        assert "no challenge" in protocol.last_error

    def test_write_fault(self, protocol, device):
        """I/O errors are reported as failure."""
        device.fail_writes = True
        assert not authenticate(protocol, SECRET)
