"""
ROCC Client Configuration
=========================

Connection settings and timing defaults for the ROCC client.
Configuration can come from:
- Default values (defined here)
- Explicit constructor arguments
- Environment variables

All timing values are in seconds.
"""

from dataclasses import dataclass, field
from typing import Optional
import os

from rocc_sdk.errors import ConfigError


# Default serial speed used by ROCC devices
DEFAULT_BAUD_RATE = 9600


@dataclass
class RoccConfig:
    """
    Configuration for a ROCC client session.

    Attributes:
        port: Serial device path (None to auto-detect)
        baud_rate: Serial speed, fixed for the life of a connection
        secret: Shared authentication secret (never logged or repr'd)
        response_timeout: Maximum wait for one response line
        transfer_idle_timeout: Maximum gap between raw file bytes
        stop_timeout: Maximum wait for the line reader to stop
        poll_interval: Serial read timeout; bounds cancellation latency
        chunk_size: Maximum bytes requested per read
        encoding: Text encoding for commands, responses and text files
    """

    # ═══════════════════════════════════════════════════════════════════════════
    # CONNECTION
    # ═══════════════════════════════════════════════════════════════════════════

    port: Optional[str] = None
    baud_rate: int = DEFAULT_BAUD_RATE
    secret: Optional[str] = field(default=None, repr=False)

    # ═══════════════════════════════════════════════════════════════════════════
    # TIMING
    # ═══════════════════════════════════════════════════════════════════════════

    response_timeout: float = 5.0  # one command, one line
    transfer_idle_timeout: float = 5.0  # stall detection during fread
    stop_timeout: float = 2.0  # line reader handoff
    poll_interval: float = 0.1  # serial read timeout

    # ═══════════════════════════════════════════════════════════════════════════
    # FRAMING
    # ═══════════════════════════════════════════════════════════════════════════

    chunk_size: int = 256
    encoding: str = "utf-8"

    # ═══════════════════════════════════════════════════════════════════════════
    # FACTORY METHODS
    # ═══════════════════════════════════════════════════════════════════════════

    @classmethod
    def from_env(cls) -> "RoccConfig":
        """
        Create RoccConfig from environment variables.

        Environment variables (all optional):
            ROCC_PORT: Serial device path
            ROCC_BAUD: Baud rate (integer)
            ROCC_SECRET: Shared authentication secret
            ROCC_RESPONSE_TIMEOUT: Response timeout in seconds
            ROCC_TRANSFER_TIMEOUT: Raw transfer idle timeout in seconds

        Returns:
            RoccConfig with values from environment variables
        """
        config = cls()

        if port := os.environ.get("ROCC_PORT"):
            config.port = port

        if baud := os.environ.get("ROCC_BAUD"):
            try:
                config.baud_rate = int(baud)
            except ValueError:
                pass  # Ignore invalid values

        if secret := os.environ.get("ROCC_SECRET"):
            config.secret = secret

        if timeout := os.environ.get("ROCC_RESPONSE_TIMEOUT"):
            try:
                config.response_timeout = float(timeout)
            except ValueError:
                pass

        if timeout := os.environ.get("ROCC_TRANSFER_TIMEOUT"):
            try:
                config.transfer_idle_timeout = float(timeout)
            except ValueError:
                pass

        return config

    # ═══════════════════════════════════════════════════════════════════════════
    # HELPER METHODS
    # ═══════════════════════════════════════════════════════════════════════════

    def validate(self) -> None:
        """
        Check that all values are usable.

        Raises:
            ConfigError: If any value is out of range.
        """
        if self.baud_rate <= 0:
            raise ConfigError(f"Invalid baud rate: {self.baud_rate}")

        for name in (
            "response_timeout",
            "transfer_idle_timeout",
            "stop_timeout",
            "poll_interval",
        ):
            value = getattr(self, name)
            if value <= 0:
                raise ConfigError(f"{name} must be positive, got {value}")

        if self.chunk_size <= 0:
            raise ConfigError(f"chunk_size must be positive, got {self.chunk_size}")

        try:
            "".encode(self.encoding)
        except LookupError:
            raise ConfigError(f"Unknown encoding: {self.encoding}")
