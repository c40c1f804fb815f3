from datetime import timedelta

import pytest

from verigate.core import metrics
from verigate.utils.client_utils import ClientType, PushTokenType, classify_client, locale_tag, platform_tag
from verigate.utils.encoding_utils import decode_session_id, encode_session_id
from verigate.utils.time_utils import retry_after_seconds
from verigate.utils.validation_utils import normalize_account_number, validate_push_token_pair


@pytest.mark.parametrize("client,expected", [
    ("ios", ClientType.IOS),
    ("android-2021-03", ClientType.ANDROID_WITH_FCM),
    ("android", ClientType.ANDROID_WITHOUT_FCM),
    ("ANDROID-ng", ClientType.ANDROID_WITHOUT_FCM),
    ("IOS", ClientType.UNKNOWN),
    ("", ClientType.UNKNOWN),
    (None, ClientType.UNKNOWN),
])
def test_classify_client(client, expected):
    assert classify_client(client) == expected


def test_platform_tag():
    assert platform_tag("Verigate-Android/6.1.0 Android/33") == "android"
    assert platform_tag("Verigate-iOS/5.0") == "ios"
    assert platform_tag("curl/8.0") == "unrecognized"
    assert platform_tag(None) == "unrecognized"


def test_locale_tag():
    assert locale_tag("en-GB,en;q=0.8") == "en-GB"
    assert locale_tag("*") == "unknown"
    assert locale_tag(None) == "unknown"


def test_session_id_encoding_is_unpadded_and_url_safe():
    raw = b"\xfb\xff\xfe"
    encoded = encode_session_id(raw)

    assert "=" not in encoded
    assert "+" not in encoded and "/" not in encoded
    assert decode_session_id(encoded) == raw
    assert decode_session_id(encode_session_id(b"ab") + "==") == b"ab"


@pytest.mark.parametrize("encoded", ["", "a", "abc+", "abc/", "ab cd", "abcde"])
def test_decode_rejects_malformed_ids(encoded):
    with pytest.raises(ValueError):
        decode_session_id(encoded)


def test_normalize_account_number():
    assert normalize_account_number("+14155550123") == "+14155550123"
    assert normalize_account_number("@alice") == "alice"
    assert normalize_account_number("+1 415") is None
    assert normalize_account_number("@") is None
    assert normalize_account_number("x" * 65) is None


def test_push_token_pair():
    assert validate_push_token_pair(None, None) == (None, None)
    assert validate_push_token_pair("t", PushTokenType.FCM) == ("t", PushTokenType.FCM)
    with pytest.raises(ValueError):
        validate_push_token_pair("t", None)
    with pytest.raises(ValueError):
        validate_push_token_pair(None, PushTokenType.APN)


def test_retry_after_seconds():
    assert retry_after_seconds(None) is None
    assert retry_after_seconds(timedelta(0)) is None
    assert retry_after_seconds(timedelta(seconds=-3)) is None
    assert retry_after_seconds(timedelta(milliseconds=100)) == 1
    assert retry_after_seconds(timedelta(seconds=30)) == 30


def test_metrics_tags():
    metrics.increment("things", color="red", fresh=True)
    metrics.increment("things", color="blue", fresh=False)

    assert metrics.get_count("things") == 2
    assert metrics.get_count("things", fresh=True) == 1
    assert metrics.snapshot() == {
        "things{color=red,fresh=true}": 1,
        "things{color=blue,fresh=false}": 1,
    }
