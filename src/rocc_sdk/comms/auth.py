"""
Challenge-Response Authentication
=================================

The client proves knowledge of a secret shared with the device:

1. ``chlng``            → device answers with a hex nonce
2. HMAC-SHA256(key=secret, msg=nonce bytes), uppercase hex
3. ``auth<MAC>``        → device answers ``OK`` on success

The secret is always supplied by the caller (argument, ROCC_SECRET or
the CLI ``--secret`` option); there is no built-in default.
"""

import hashlib
import hmac
import logging
import re

from rocc_sdk.comms.protocol import CMD_AUTH, CMD_CHALLENGE, RESPONSE_OK, CommandProtocol
from rocc_sdk.errors import CommsError, ProtocolError

# Configure module logger
logger = logging.getLogger(__name__)

_HEX_RE = re.compile(r"(?:[0-9A-Fa-f]{2})+")


def decode_challenge(challenge_hex: str) -> bytes:
    """
    Decode a hex challenge string.

    Raises:
        ProtocolError: If the challenge is empty, odd-length or not hex.
    """
    if not challenge_hex:
        raise ProtocolError("Empty challenge")
    if not _HEX_RE.fullmatch(challenge_hex):
        raise ProtocolError(f"Malformed challenge: {challenge_hex!r}")
    return bytes.fromhex(challenge_hex)


def compute_challenge_response(challenge_hex: str, secret: str) -> str:
    """
    Compute the ``auth`` argument for a challenge.

    Args:
        challenge_hex: Hex challenge as sent by the device.
        secret: Shared secret; its UTF-8 bytes are the HMAC key.

    Returns:
        64-character uppercase hex HMAC-SHA256 digest.

    Raises:
        ProtocolError: If the challenge is malformed.
    """
    challenge = decode_challenge(challenge_hex)
    mac = hmac.new(secret.encode("utf-8"), challenge, hashlib.sha256)
    return mac.hexdigest().upper()


def authenticate(protocol: CommandProtocol, secret: str) -> bool:
    """
    Run the challenge-response handshake.

    Returns:
        True only if the device answered ``OK``. Every failure (no
        challenge, malformed challenge, I/O error, rejection) yields
        False with the reason left in ``protocol.last_error``; nothing
        is raised.
    """
    try:
        challenge = protocol.send_command(CMD_CHALLENGE)
        if challenge is None:
            return _failed(protocol, f"no challenge received ({protocol.last_error})")
        if not challenge:
            return _failed(protocol, "device sent an empty challenge")

        proof = compute_challenge_response(challenge, secret)
        response = protocol.send_command(CMD_AUTH, proof)
    except (CommsError, ValueError) as e:
        return _failed(protocol, str(e))

    if response is None:
        return _failed(protocol, f"no answer to proof ({protocol.last_error})")
    if response != RESPONSE_OK:
        protocol.last_error = f"Authentication rejected: device answered {response!r}"
        logger.warning("%s", protocol.last_error)
        return False

    logger.info("Authenticated")
    return True


def _failed(protocol: CommandProtocol, reason: str) -> bool:
    protocol.last_error = f"Authentication failed: {reason}"
    logger.error("%s", protocol.last_error)
    return False
