"""
verigate/utils/client_utils.py

Purpose: Client and transport classification

- Maps the client string sent with a code request to a ClientType
- Message transports accepted for code delivery
- Coarse platform/locale tags for metrics
"""

import re
from enum import Enum
from typing import Optional


class ClientType(str, Enum):
    IOS = "IOS"
    ANDROID_WITH_FCM = "ANDROID_WITH_FCM"
    ANDROID_WITHOUT_FCM = "ANDROID_WITHOUT_FCM"
    UNKNOWN = "UNKNOWN"


class MessageTransport(str, Enum):
    SMS = "sms"
    VOICE = "voice"


class PushTokenType(str, Enum):
    APN = "apn"
    FCM = "fcm"


_USER_AGENT_PATTERN = re.compile(r"^[^-/\s]+-(android|ios|desktop)/", re.IGNORECASE)


def classify_client(client: Optional[str]) -> ClientType:
    """
    Exact matches first, then any other string starting with "android" (any case).
    """
    if client == "ios":
        return ClientType.IOS
    if client == "android-2021-03":
        return ClientType.ANDROID_WITH_FCM
    if client and client.lower().startswith("android"):
        return ClientType.ANDROID_WITHOUT_FCM
    return ClientType.UNKNOWN


def platform_tag(user_agent: Optional[str]) -> str:
    """
    Platform from a `<App>-<Platform>/<version>` user agent, e.g. "Verigate-Android/6.1.0".
    """
    if not user_agent:
        return "unrecognized"
    match = _USER_AGENT_PATTERN.match(user_agent.strip())
    if not match:
        return "unrecognized"
    return match.group(1).lower()


def locale_tag(accept_language: Optional[str]) -> str:
    """
    First language range of an Accept-Language header, without its quality value.
    """
    if not accept_language:
        return "unknown"
    first = accept_language.split(",")[0].split(";")[0].strip()
    if not first or first == "*":
        return "unknown"
    return first
