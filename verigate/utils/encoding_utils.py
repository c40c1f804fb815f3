"""
verigate/utils/encoding_utils.py

Purpose: Session id encoding

- URL-safe, unpadded base64 for registration service session ids
- Strict decoding so malformed ids never reach the registration service
"""

import base64
import binascii
import re

_URLSAFE_ALPHABET = re.compile(r"^[A-Za-z0-9_-]+$")


def encode_session_id(session_id: bytes) -> str:
    """
    Encodes raw session id bytes as URL-safe base64 without padding.
    """
    return base64.urlsafe_b64encode(session_id).decode("ascii").rstrip("=")


def decode_session_id(encoded: str) -> bytes:
    """
    Decodes a URL-safe base64 session id. Padding is optional.

    Raises:
        ValueError: If the id contains characters outside the URL-safe alphabet
                    or has an impossible length
    """
    if not encoded:
        raise ValueError("empty session id")

    stripped = encoded.rstrip("=")
    if not _URLSAFE_ALPHABET.match(stripped):
        raise ValueError("session id contains characters outside the URL-safe base64 alphabet")

    # A single leftover character can never be valid base64
    if len(stripped) % 4 == 1:
        raise ValueError("session id has an invalid length")

    padded = stripped + "=" * (-len(stripped) % 4)
    try:
        return base64.urlsafe_b64decode(padded)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"session id is not valid base64: {e}") from e
