"""
Tests for RoccController and Configuration
==========================================

End-to-end tests of the public client API against a VirtualDevice,
plus configuration loading and validation.

All operations report failure through their return value and
``last_error``; none of them should raise once connected.
"""

from datetime import datetime
from unittest.mock import patch

import pytest

from rocc_sdk import RoccConfig, RoccController
from rocc_sdk.errors import ConfigError, ConnectionError
from rocc_sdk.testkit import VirtualDevice
from rocc_sdk.testkit.fixtures import SAMPLE_CSV, SAMPLE_FILENAME, TEST_SECRET


# =============================================================================
# Connection Tests
# =============================================================================

class TestConnection:
    """Tests for connect/disconnect."""

    def test_connected(self, rocc):
        """The fixture controller is connected."""
        assert rocc.connected

    def test_disconnect(self, rocc, virtual_device):
        """disconnect() closes the transport."""
        rocc.disconnect()
        assert not rocc.connected
        assert not virtual_device.is_open

    def test_disconnect_twice(self, rocc):
        """A second disconnect is harmless."""
        rocc.disconnect()
        rocc.disconnect()
        assert not rocc.connected

    def test_disconnect_fails_pending_reads(self, rocc):
        """A line request outstanding at disconnect fails instead of hanging."""
        framer = rocc._session.framer
        waiter = framer.expect_line()
        rocc.disconnect()
        with pytest.raises(ConnectionError, match="Disconnected"):
            framer.wait_line(waiter, timeout=1.0)

    def test_context_manager(self, rocc_config):
        """The with block connects and disconnects."""
        device = VirtualDevice()
        with RoccController(config=rocc_config, transport_factory=lambda: device) as rocc:
            assert rocc.connected
        assert not rocc.connected
        assert not device.is_open

    def test_reconnect(self, rocc_config):
        """connect() on a connected controller replaces the session."""
        rocc = RoccController(config=rocc_config, transport_factory=VirtualDevice)
        rocc.connect()
        rocc.connect()
        assert rocc.connected
        assert rocc.send_raw("gtime") is not None
        rocc.disconnect()

    def test_no_port_found(self):
        """Without a port and nothing detected, connect() raises."""
        rocc = RoccController()
        with patch("rocc_sdk.comms.controller.find_rocc_port", return_value=None):
            with pytest.raises(ConnectionError, match="auto-detect failed"):
                rocc.connect()

    def test_invalid_baud_rate(self):
        """An unsupported baud rate surfaces as ConnectionError."""
        rocc = RoccController(port="/dev/ttyUSB0", baud_rate=1234)
        with pytest.raises(ConnectionError, match="Invalid baud rate"):
            rocc.connect()

    def test_config_not_mutated(self, rocc_config):
        """Constructor overrides do not leak into the caller's config."""
        rocc = RoccController(port="/dev/ttyS1", baud_rate=19200, config=rocc_config)
        assert rocc.config.port == "/dev/ttyS1"
        assert rocc.config.baud_rate == 19200
        assert rocc_config.port is None
        assert rocc_config.baud_rate == 9600


class TestNotConnected:
    """Operations on a disconnected controller fail cleanly."""

    @pytest.fixture
    def idle(self, rocc_config):
        return RoccController(config=rocc_config)

    def test_authenticate(self, idle):
        assert not idle.authenticate()
        assert "not connected" in idle.last_error

    def test_set_time(self, idle):
        assert not idle.set_time()
        assert "not connected" in idle.last_error

    def test_get_time(self, idle):
        assert idle.get_time() is None

    def test_read_text_file(self, idle):
        assert idle.read_text_file(SAMPLE_FILENAME) is None
        assert idle.last_error is not None

    def test_download_file(self, idle, tmp_path):
        assert not idle.download_file(SAMPLE_FILENAME, tmp_path / "out.csv")
        assert not (tmp_path / "out.csv").exists()


# =============================================================================
# Operation Tests
# =============================================================================

class TestAuthenticate:
    """Tests for RoccController.authenticate()."""

    def test_configured_secret(self, rocc, virtual_device):
        """The configured secret is used by default."""
        assert rocc.authenticate()
        assert virtual_device.authenticated
        assert rocc.last_error is None

    def test_explicit_secret(self, rocc):
        """An explicit secret overrides the configured one."""
        assert rocc.authenticate(TEST_SECRET)

    def test_wrong_secret(self, rocc):
        """A wrong secret fails with a reason."""
        assert not rocc.authenticate("nope")
        assert rocc.last_error

    @pytest.mark.parametrize("challenge, reason", [
        ("not-hex", "Malformed challenge"),
        ("", "empty challenge"),
    ])
    def test_bad_challenge_reason(self, rocc, virtual_device, challenge, reason):
        """A bad challenge is reported as such, not as a rejection."""
        virtual_device.scripted["chlng"] = [challenge]
        assert not rocc.authenticate()
        assert reason in rocc.last_error
        assert "rejected" not in rocc.last_error

    def test_no_secret(self, virtual_device):
        """Without any secret the handshake is not attempted."""
        rocc = RoccController(transport_factory=lambda: virtual_device)
        rocc.connect()
        try:
            assert not rocc.authenticate()
            assert "ROCC_SECRET" in rocc.last_error
            assert virtual_device.received == []
        finally:
            rocc.disconnect()

    def test_device_requires_auth(self, rocc_config):
        """Commands are refused until the handshake succeeds."""
        device = VirtualDevice(secret=TEST_SECRET, require_auth=True)
        device.clock = "03/05/24-08:07:09"
        with RoccController(config=rocc_config, transport_factory=lambda: device) as rocc:
            assert rocc.get_time() == "DENIED"
            assert rocc.authenticate()
            assert rocc.get_time() == "03/05/24-08:07:09"


class TestClock:
    """Tests for set_time() and get_time()."""

    def test_set_time(self, rocc, virtual_device):
        """The device receives MM/dd/yy-HH:mm:ss."""
        assert rocc.set_time(datetime(2024, 3, 5, 8, 7, 9))
        assert virtual_device.clock == "03/05/24-08:07:09"
        assert virtual_device.received[-1] == "time03/05/24-08:07:09"

    def test_set_time_now(self, rocc, virtual_device):
        """Without an argument, the local time is sent."""
        assert rocc.set_time()
        assert virtual_device.clock is not None

    def test_set_time_rejected(self, rocc, virtual_device):
        """Any answer other than OK is failure."""
        virtual_device.scripted["time"] = ["ERR"]
        assert not rocc.set_time()
        assert "'ERR'" in rocc.last_error

    def test_get_time(self, rocc, virtual_device):
        """The device time is returned unvalidated."""
        virtual_device.scripted["gtime"] = ["not a date"]
        assert rocc.get_time() == "not a date"

    def test_get_time_timeout(self, rocc, virtual_device):
        """No answer gives None and a reason."""
        virtual_device.delays["gtime"] = 3.0
        assert rocc.get_time() is None
        assert "get time" in rocc.last_error

    def test_late_reply_does_not_shift_responses(self, rocc, virtual_device):
        """After a timed-out command the next command still gets its own reply."""
        virtual_device.clock = "01/01/24-00:00:00"
        virtual_device.delays["gtime"] = 1.3
        virtual_device.delays["time"] = 0.8
        assert rocc.get_time() is None

        assert rocc.set_time(datetime(2024, 3, 5, 8, 7, 9))
        assert rocc.last_error is None

        virtual_device.delays.clear()
        assert rocc.get_time() == "03/05/24-08:07:09"


class TestCommands:
    """Tests for send_raw() and clear_file()."""

    def test_send_raw(self, rocc, virtual_device):
        """Raw commands return the stripped response line."""
        assert rocc.send_raw("fsize" + SAMPLE_FILENAME) == str(len(SAMPLE_CSV))

    def test_clear_file(self, rocc, virtual_device):
        """Clearing empties the remote file."""
        assert rocc.clear_file(SAMPLE_FILENAME)
        assert virtual_device.files[SAMPLE_FILENAME] == b""
        assert virtual_device.received[-1] == "fclr" + SAMPLE_FILENAME

    def test_clear_missing_file(self, rocc):
        """Clearing an unknown file fails."""
        assert not rocc.clear_file("missing.csv")
        assert "missing.csv" in rocc.last_error

    def test_unencodable_command(self, rocc, virtual_device):
        """A command that cannot be encoded fails cleanly and leaves no stale waiter."""
        assert rocc.send_raw("gtime\udc80") is None
        assert "encode" in rocc.last_error

        virtual_device.clock = "06/07/24-10:11:12"
        assert rocc.get_time() == "06/07/24-10:11:12"

    def test_unencodable_filename(self, rocc, virtual_device):
        """File operations refuse names the encoding cannot represent."""
        assert not rocc.clear_file("x\udc80")
        assert rocc.read_text_file("x\udc80") is None
        assert rocc.last_error
        assert virtual_device.received == []


class TestFiles:
    """Tests for file downloads."""

    def test_read_text_file(self, rocc):
        """The sample file is returned as text."""
        assert rocc.read_text_file(SAMPLE_FILENAME) == SAMPLE_CSV.decode("utf-8")

    def test_read_file(self, rocc):
        """Binary reads return the exact bytes."""
        assert rocc.read_file(SAMPLE_FILENAME) == SAMPLE_CSV

    def test_read_missing_file(self, rocc):
        """An unknown file fails with a reason."""
        assert rocc.read_text_file("missing.csv") is None
        assert "missing.csv" in rocc.last_error

    def test_short_transfer(self, rocc, virtual_device):
        """A truncated stream fails and the connection survives."""
        virtual_device.truncate_at = 10
        assert rocc.read_text_file(SAMPLE_FILENAME) is None
        assert "Short transfer" in rocc.last_error

        virtual_device.truncate_at = None
        assert rocc.read_text_file(SAMPLE_FILENAME) == SAMPLE_CSV.decode("utf-8")

    def test_operations_interleave(self, rocc, virtual_device):
        """Commands and downloads can be mixed freely."""
        virtual_device.chunk_plan = [17, 40]
        assert rocc.authenticate()
        assert rocc.read_file(SAMPLE_FILENAME) == SAMPLE_CSV
        assert rocc.set_time(datetime(2024, 1, 2, 3, 4, 5))
        assert rocc.read_file(SAMPLE_FILENAME) == SAMPLE_CSV
        assert rocc.get_time() == "01/02/24-03:04:05"

    def test_download_text(self, rocc, tmp_path):
        """Text downloads are saved without newline translation."""
        path = tmp_path / "roccdat.csv"
        assert rocc.download_file(SAMPLE_FILENAME, path)
        assert path.read_bytes() == SAMPLE_CSV

    def test_download_binary(self, rocc, tmp_path):
        """Binary downloads are saved byte for byte."""
        path = tmp_path / "roccdat.bin"
        assert rocc.download_file(SAMPLE_FILENAME, str(path), binary=True)
        assert path.read_bytes() == SAMPLE_CSV

    def test_download_progress(self, rocc, tmp_path):
        """The progress callback sees the full size."""
        calls = []
        rocc.download_file(
            SAMPLE_FILENAME,
            tmp_path / "out.csv",
            progress=lambda n, total: calls.append((n, total)),
        )
        assert calls[-1] == (len(SAMPLE_CSV), len(SAMPLE_CSV))

    def test_download_unwritable(self, rocc, tmp_path):
        """A local write failure is reported, not raised."""
        path = tmp_path / "no" / "such" / "dir.csv"
        assert not rocc.download_file(SAMPLE_FILENAME, path)
        assert "Cannot write" in rocc.last_error

    def test_download_failure_writes_nothing(self, rocc, tmp_path):
        """A failed transfer leaves no partial file."""
        path = tmp_path / "missing.csv"
        assert not rocc.download_file("missing.csv", path)
        assert not path.exists()


# =============================================================================
# Configuration Tests
# =============================================================================

class TestConfig:
    """Tests for RoccConfig."""

    def test_defaults(self):
        config = RoccConfig()
        assert config.port is None
        assert config.baud_rate == 9600
        assert config.secret is None
        assert config.response_timeout == 5.0

    def test_secret_not_in_repr(self):
        """The secret is never printed."""
        assert "hunter2" not in repr(RoccConfig(secret="hunter2"))

    def test_from_env(self, monkeypatch):
        """Environment variables populate the config."""
        monkeypatch.setenv("ROCC_PORT", "/dev/ttyUSB3")
        monkeypatch.setenv("ROCC_BAUD", "19200")
        monkeypatch.setenv("ROCC_SECRET", "envsecret")
        monkeypatch.setenv("ROCC_RESPONSE_TIMEOUT", "2.5")
        monkeypatch.setenv("ROCC_TRANSFER_TIMEOUT", "9")

        config = RoccConfig.from_env()
        assert config.port == "/dev/ttyUSB3"
        assert config.baud_rate == 19200
        assert config.secret == "envsecret"
        assert config.response_timeout == 2.5
        assert config.transfer_idle_timeout == 9.0

    def test_from_env_ignores_invalid_numbers(self, monkeypatch):
        """Unparseable numbers fall back to defaults."""
        monkeypatch.setenv("ROCC_BAUD", "fast")
        monkeypatch.setenv("ROCC_RESPONSE_TIMEOUT", "soon")
        config = RoccConfig.from_env()
        assert config.baud_rate == 9600
        assert config.response_timeout == 5.0

    @pytest.mark.parametrize("overrides", [
        {"baud_rate": 0},
        {"response_timeout": 0},
        {"transfer_idle_timeout": -1},
        {"stop_timeout": 0},
        {"poll_interval": 0},
        {"chunk_size": 0},
        {"encoding": "no-such-codec"},
    ])
    def test_validate(self, overrides):
        """Out-of-range values are rejected."""
        with pytest.raises(ConfigError):
            RoccConfig(**overrides).validate()

    def test_controller_validates(self):
        """A bad config fails at construction time."""
        with pytest.raises(ConfigError):
            RoccController(config=RoccConfig(response_timeout=0))
