import asyncio
import logging
from datetime import timedelta

import pytest

from verigate.core import metrics
from verigate.flow.dispatcher import dispatch_update
from verigate.flow.handlers.captcha import handle_captcha
from verigate.flow.handlers.push_challenge import challenge_matches, handle_push_challenge
from verigate.flow.handlers.push_token import handle_push_token
from verigate.flow.results import HandlerContext, Outcome
from verigate.flow.states import Information, VerificationSession, issue_push_challenge
from verigate.schemas.verification import UpdateVerificationSessionRequest
from verigate.services.captcha_service import AssessmentResult, CaptchaUnavailableError
from verigate.services.rate_limit_service import RateLimiters
from verigate.utils.client_utils import PushTokenType

from tests.fakes import (
    CHALLENGE,
    FakeCaptchaAssessor,
    FakeClock,
    FakePushSender,
    FakeRateLimiter,
    FakeRegistrationClient,
)


def make_context(request: UpdateVerificationSessionRequest, **overrides):
    registration = FakeRegistrationClient().add_session()
    values = dict(
        registration_session=registration,
        request=request,
        rate_limiters=RateLimiters(push_challenge=FakeRateLimiter(), captcha=FakeRateLimiter()),
        push_sender=FakePushSender(),
        captcha_assessor=FakeCaptchaAssessor(),
        captcha_score_threshold=0.5,
        clock=FakeClock(),
        challenge_factory=lambda: CHALLENGE,
    )
    values.update(overrides)
    return HandlerContext(**values)


def fresh_session(requested=()):
    return VerificationSession.new(1, 600, requested)


def challenged_session():
    return issue_push_challenge(fresh_session(), CHALLENGE, 1)


def test_challenge_matches():
    assert challenge_matches(CHALLENGE, CHALLENGE)
    assert not challenge_matches("nope", CHALLENGE)


def test_push_token_issues_and_sends_challenge():
    request = UpdateVerificationSessionRequest(push_token="token", push_token_type=PushTokenType.FCM)
    context = make_context(request)

    result = asyncio.run(handle_push_token(context, fresh_session()))

    assert result.ok
    assert result.session.push_challenge == CHALLENGE
    assert result.session.requested_information == (Information.PUSH_CHALLENGE,)
    assert context.push_sender.sent == [("token", PushTokenType.FCM, CHALLENGE)]


def test_push_token_resends_existing_challenge():
    request = UpdateVerificationSessionRequest(push_token="token", push_token_type=PushTokenType.APN)
    context = make_context(request, challenge_factory=lambda: "different")
    session = challenged_session()

    result = asyncio.run(handle_push_token(context, session))

    assert result.session is session
    assert context.push_sender.sent == [("token", PushTokenType.APN, CHALLENGE)]


def test_push_delivery_failure_is_not_fatal():
    request = UpdateVerificationSessionRequest(push_token="token", push_token_type=PushTokenType.FCM)
    sender = FakePushSender()
    sender.succeed = False
    context = make_context(request, push_sender=sender)

    result = asyncio.run(handle_push_token(context, fresh_session()))

    assert result.ok
    assert Information.PUSH_CHALLENGE in result.session.requested_information


def test_push_challenge_correct_answer_satisfies():
    context = make_context(UpdateVerificationSessionRequest(push_challenge=CHALLENGE))

    result = asyncio.run(handle_push_challenge(context, challenged_session()))

    assert result.ok
    assert result.session.submitted_information == (Information.PUSH_CHALLENGE,)
    assert result.session.allowed_to_request_code is True
    assert metrics.get_count(metrics.PUSH_CHALLENGE_COUNTER, present=True, matches=True) == 1


def test_push_challenge_wrong_answer_is_rejected():
    context = make_context(UpdateVerificationSessionRequest(push_challenge="wrong"))
    session = challenged_session()

    result = asyncio.run(handle_push_challenge(context, session))

    assert result.outcome == Outcome.REJECTED
    assert result.session is session
    assert metrics.get_count(metrics.PUSH_CHALLENGE_COUNTER, present=True, matches=False) == 1


def test_push_challenge_without_issued_challenge_is_rejected():
    context = make_context(UpdateVerificationSessionRequest(push_challenge=CHALLENGE))
    result = asyncio.run(handle_push_challenge(context, fresh_session()))
    assert result.outcome == Outcome.REJECTED


def test_push_challenge_absent_counts_but_passes():
    context = make_context(UpdateVerificationSessionRequest())

    result = asyncio.run(handle_push_challenge(context, challenged_session()))

    assert result.ok
    assert context.rate_limiters.push_challenge.attempts == []
    assert metrics.get_count(metrics.PUSH_CHALLENGE_COUNTER, present=False) == 1


def test_push_challenge_rate_limited_before_comparison():
    limiter = FakeRateLimiter()
    limiter.refuse = True
    limiter.retry_after = timedelta(seconds=42)
    context = make_context(
        UpdateVerificationSessionRequest(push_challenge=CHALLENGE),
        rate_limiters=RateLimiters(push_challenge=limiter, captcha=FakeRateLimiter()),
    )

    result = asyncio.run(handle_push_challenge(context, challenged_session()))

    assert result.outcome == Outcome.RATE_LIMITED
    assert result.retry_after == timedelta(seconds=42)
    assert result.session.submitted_information == ()
    assert metrics.get_count(metrics.PUSH_CHALLENGE_COUNTER) == 0


def test_captcha_valid_satisfies_push_challenge_too():
    context = make_context(UpdateVerificationSessionRequest(captcha="captcha-token"), source_host="10.0.0.1")
    session = issue_push_challenge(fresh_session([Information.CAPTCHA]), CHALLENGE, 1)

    result = asyncio.run(handle_captcha(context, session))

    assert result.ok
    assert result.session.requested_information == ()
    assert result.session.allowed_to_request_code is True
    assert context.captcha_assessor.assessed == [("captcha-token", "10.0.0.1")]
    assert metrics.get_count(metrics.CAPTCHA_ATTEMPT_COUNTER, success=True) == 1


def test_captcha_below_threshold_is_rejected():
    assessor = FakeCaptchaAssessor()
    assessor.result = AssessmentResult(valid=True, score=0.2)
    context = make_context(UpdateVerificationSessionRequest(captcha="captcha-token"), captcha_assessor=assessor)

    result = asyncio.run(handle_captcha(context, fresh_session([Information.CAPTCHA])))

    assert result.outcome == Outcome.REJECTED
    assert metrics.get_count(metrics.CAPTCHA_ATTEMPT_COUNTER, success=False, score="0.2") == 1


def test_captcha_assessor_unavailable():
    assessor = FakeCaptchaAssessor()
    assessor.error = CaptchaUnavailableError("down")
    context = make_context(UpdateVerificationSessionRequest(captcha="captcha-token"), captcha_assessor=assessor)

    result = asyncio.run(handle_captcha(context, fresh_session([Information.CAPTCHA])))

    assert result.outcome == Outcome.UNAVAILABLE


def test_dispatch_persists_session_after_rejection():
    clock = FakeClock()
    context = make_context(UpdateVerificationSessionRequest(push_challenge="wrong"), clock=clock)
    stored = []

    async def persist(session):
        stored.append(session)

    session = challenged_session()
    result = asyncio.run(dispatch_update(context, session, persist, captcha_enabled=False))

    assert result.outcome == Outcome.REJECTED
    assert stored == [result.session]
    assert result.session.updated_timestamp == clock.now
    assert result.session.requested_information == session.requested_information


def test_dispatch_persists_even_when_a_handler_raises():
    class ExplodingSender:
        async def send_registration_challenge(self, token, token_type, challenge):
            raise RuntimeError("boom")

    clock = FakeClock()
    context = make_context(
        UpdateVerificationSessionRequest(push_token="token", push_token_type=PushTokenType.FCM),
        push_sender=ExplodingSender(),
        clock=clock,
    )
    stored = []

    async def persist(session):
        stored.append(session)

    with pytest.raises(RuntimeError):
        asyncio.run(dispatch_update(context, fresh_session(), persist, captcha_enabled=False))

    assert len(stored) == 1
    assert stored[0].updated_timestamp == clock.now


def test_dispatch_logs_stopping_handler_and_outcome(caplog):
    context = make_context(UpdateVerificationSessionRequest(push_challenge="wrong"))

    async def persist(session):
        pass

    with caplog.at_level(logging.INFO, logger="verigate.flow.dispatcher"):
        asyncio.run(dispatch_update(context, challenged_session(), persist, captcha_enabled=False))

    record = [r for r in caplog.records if r.name == "verigate.flow.dispatcher"][-1]
    assert record.handler == "push_challenge"
    assert record.outcome == "rejected"
