"""
verigate/utils/validation_utils.py

Purpose: Input validation

- Account identifier normalization
- Push token / token type pairing
"""

import re
from typing import Optional, Tuple

from verigate.utils.client_utils import PushTokenType

ACCOUNT_NUMBER_PATTERN = re.compile(r"^\+?[a-zA-Z0-9]+$")
MAX_ACCOUNT_NUMBER_LENGTH = 64


def normalize_account_number(number: Optional[str]) -> Optional[str]:
    """
    Normalizes the account identifier a session is created for.

    A leading "@" is dropped. What remains must be alphanumeric, optionally
    prefixed by "+" for E.164 numbers.

    Args:
        number: Identifier as submitted by the client

    Returns:
        Normalized identifier, or None if it is not acceptable
    """
    if not number:
        return None

    number = number.strip()
    if number.startswith("@"):
        number = number[1:]

    if not number or len(number) > MAX_ACCOUNT_NUMBER_LENGTH:
        return None

    if not ACCOUNT_NUMBER_PATTERN.match(number):
        return None

    return number


def validate_push_token_pair(
    push_token: Optional[str],
    push_token_type: Optional[PushTokenType],
) -> Tuple[Optional[str], Optional[PushTokenType]]:
    """
    Ensures a push token and its type are supplied together or not at all.

    Raises:
        ValueError: If exactly one of the two is present
    """
    if (push_token is None) != (push_token_type is None):
        raise ValueError("must specify both pushToken and pushTokenType or neither")
    return push_token, push_token_type

