import asyncio
import json
from datetime import timedelta

import httpx
import pytest

from verigate.core import metrics
from verigate.services.push_service import PushGatewayService
from verigate.services.captcha_service import CaptchaService, CaptchaUnavailableError
from verigate.services.rate_limit_service import RateLimitExceeded
from verigate.services.registration_service import (
    HttpRegistrationServiceClient,
    InvalidArgumentError,
    RegistrationServiceError,
    RegistrationServiceFailure,
    RegistrationServiceSenderError,
    RegistrationServiceUnavailableError,
    TransportNotAllowedError,
)
from verigate.utils.client_utils import ClientType, MessageTransport, PushTokenType
from verigate.utils.encoding_utils import encode_session_id

SESSION_ID = b"\x01\x02\x03\x04\x05\x06\x07\x08\xfa\xfb\xfc\xfd\xfe\xff\x00\x01"
ENCODED = encode_session_id(SESSION_ID)

SESSION_JSON = {
    "sessionId": ENCODED,
    "number": "+14155550123",
    "verified": False,
    "nextSms": "2030-01-01T00:00:00Z",
    "nextVoiceCall": None,
    "nextVerificationAttempt": None,
    "expiration": "2030-01-01T00:10:00Z",
}


def registration_client(handler) -> HttpRegistrationServiceClient:
    return HttpRegistrationServiceClient(
        base_url="http://registration.test",
        timeout=1.0,
        api_key="secret",
        transport=httpx.MockTransport(handler),
    )


def replying(status, body=None, headers=None):
    def handler(request):
        return httpx.Response(status, json=body, headers=headers)
    return handler


def test_get_session_parses_reply():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=SESSION_JSON)

    session = asyncio.run(registration_client(handler).get_session(SESSION_ID))

    assert session.id == SESSION_ID
    assert session.next_sms is not None
    assert seen[0].url.path == f"/v1/sessions/{ENCODED}"
    assert seen[0].headers["Authorization"] == "Bearer secret"


def test_get_missing_session_is_none():
    assert asyncio.run(registration_client(replying(404)).get_session(SESSION_ID)) is None


def test_account_exists():
    client = registration_client(replying(200, {"exists": True}))
    assert asyncio.run(client.account_exists("+14155550123")) is True
    assert asyncio.run(registration_client(replying(404)).account_exists("+14155550123")) is False


def test_create_registration_session_sends_number():
    bodies = []

    def handler(request):
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json=SESSION_JSON)

    asyncio.run(registration_client(handler).create_registration_session("+14155550123", True))

    assert bodies == [{"number": "+14155550123", "accountExistsWithNumber": True}]


def test_send_verification_code_payload():
    bodies = []

    def handler(request):
        bodies.append((request.method, json.loads(request.content)))
        return httpx.Response(200, json=SESSION_JSON)

    asyncio.run(registration_client(handler).send_verification_code(
        SESSION_ID, MessageTransport.SMS, ClientType.IOS, "en-US"
    ))

    assert bodies == [("POST", {"transport": "sms", "clientType": "IOS", "acceptLanguage": "en-US"})]


def test_bad_request_is_invalid_argument():
    with pytest.raises(InvalidArgumentError):
        asyncio.run(registration_client(replying(400, {"message": "bad"})).get_session(SESSION_ID))


def test_rate_limit_reads_retry_after_and_session():
    client = registration_client(replying(429, {"session": SESSION_JSON}, {"Retry-After": "17"}))

    with pytest.raises(RateLimitExceeded) as excinfo:
        asyncio.run(client.send_verification_code(SESSION_ID, MessageTransport.SMS, ClientType.UNKNOWN, None))

    assert excinfo.value.retry_after == timedelta(seconds=17)
    assert excinfo.value.registration_session.encoded_session_id == ENCODED


def test_rate_limit_retry_after_from_body():
    client = registration_client(replying(429, {"retryAfterSeconds": 8}))

    with pytest.raises(RateLimitExceeded) as excinfo:
        asyncio.run(client.check_verification_code(SESSION_ID, "123456"))

    assert excinfo.value.retry_after == timedelta(seconds=8)
    assert excinfo.value.registration_session is None


def test_transport_not_allowed():
    client = registration_client(replying(418, {"session": SESSION_JSON}))

    with pytest.raises(TransportNotAllowedError) as excinfo:
        asyncio.run(client.send_verification_code(SESSION_ID, MessageTransport.VOICE, ClientType.UNKNOWN, None))

    assert excinfo.value.registration_session is not None


def test_conflict_without_session():
    client = registration_client(replying(409, {"message": "no code requested"}))

    with pytest.raises(RegistrationServiceError) as excinfo:
        asyncio.run(client.check_verification_code(SESSION_ID, "123456"))

    assert excinfo.value.registration_session is None


def test_sender_rejection():
    client = registration_client(replying(502, {"reason": "providerRejected", "permanentFailure": True}))

    with pytest.raises(RegistrationServiceSenderError) as excinfo:
        asyncio.run(client.send_verification_code(SESSION_ID, MessageTransport.SMS, ClientType.UNKNOWN, None))

    assert excinfo.value.reason == "providerRejected"
    assert excinfo.value.permanent is True


def test_unexpected_status_is_generic_failure():
    with pytest.raises(RegistrationServiceFailure) as excinfo:
        asyncio.run(registration_client(replying(500)).get_session(SESSION_ID))
    assert not isinstance(excinfo.value, RegistrationServiceUnavailableError)


def test_malformed_payload_is_generic_failure():
    with pytest.raises(RegistrationServiceFailure):
        asyncio.run(registration_client(replying(200, {"unexpected": True})).get_session(SESSION_ID))


def test_network_error_is_unavailable():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(RegistrationServiceUnavailableError):
        asyncio.run(registration_client(handler).get_session(SESSION_ID))


def test_timeout_is_unavailable():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(RegistrationServiceUnavailableError):
        asyncio.run(registration_client(handler).get_session(SESSION_ID))


def test_push_gateway_failure_is_reported_not_raised():
    service = PushGatewayService(
        base_url="http://push.test",
        transport=httpx.MockTransport(replying(503, {"error": "overloaded"})),
    )

    result = asyncio.run(service.send_registration_challenge("token", PushTokenType.FCM, "abc"))

    assert result["success"] is False


def test_push_gateway_success():
    bodies = []

    def handler(request):
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"messageId": "m-1"})

    service = PushGatewayService(base_url="http://push.test", transport=httpx.MockTransport(handler))
    result = asyncio.run(service.send_registration_challenge("token", PushTokenType.APN, "abc"))

    assert result["success"] is True
    assert bodies == [{"token": "token", "tokenType": "apn", "challenge": "abc"}]


def test_captcha_service_assessment():
    service = CaptchaService(
        base_url="http://captcha.test",
        transport=httpx.MockTransport(replying(200, {"valid": True, "score": 0.7})),
    )

    result = asyncio.run(service.assess("captcha-token", "10.0.0.1"))

    assert result.is_valid(0.5)
    assert not result.is_valid(0.8)
    assert result.score_string == "0.7"


def test_captcha_service_unavailable():
    service = CaptchaService(
        base_url="http://captcha.test",
        transport=httpx.MockTransport(replying(500)),
    )

    with pytest.raises(CaptchaUnavailableError):
        asyncio.run(service.assess("captcha-token", None))


def test_push_gateway_accepts_non_json_body():
    service = PushGatewayService(
        base_url="http://push.test",
        transport=httpx.MockTransport(lambda request: httpx.Response(202, text="queued")),
    )

    result = asyncio.run(service.send_registration_challenge("token", PushTokenType.FCM, "abc"))

    assert result == {"success": True, "message_id": None}
    assert metrics.get_count(metrics.PUSH_CHALLENGE_DELIVERY_COUNTER, success=True) == 1
    assert metrics.get_count(metrics.PUSH_CHALLENGE_DELIVERY_COUNTER, success=False) == 0


@pytest.mark.parametrize("body", [
    {"valid": True, "score": "high"},
    {"valid": True, "score": [0.9]},
    ["valid"],
])
def test_captcha_service_unusable_reply_is_unavailable(body):
    service = CaptchaService(
        base_url="http://captcha.test",
        transport=httpx.MockTransport(replying(200, body)),
    )

    with pytest.raises(CaptchaUnavailableError):
        asyncio.run(service.assess("captcha-token", None))
