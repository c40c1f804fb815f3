"""
Shared fixtures: fakes for every collaborator and a TestClient wired to them
through dependency overrides.
"""

import pytest
from fastapi.testclient import TestClient

from verigate.core import metrics
from verigate.services.rate_limit_service import RateLimiters
from verigate.services.verification_service import VerificationService, get_verification_service

from tests.fakes import (
    CHALLENGE,
    FakeCaptchaAssessor,
    FakeClock,
    FakePushSender,
    FakeRateLimiter,
    FakeRecoveryStore,
    FakeRegistrationClient,
    FakeSessionStore,
)


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registration_client():
    return FakeRegistrationClient()


@pytest.fixture
def session_store():
    return FakeSessionStore()


@pytest.fixture
def push_limiter():
    return FakeRateLimiter()


@pytest.fixture
def captcha_limiter():
    return FakeRateLimiter()


@pytest.fixture
def push_sender():
    return FakePushSender()


@pytest.fixture
def captcha_assessor():
    return FakeCaptchaAssessor()


@pytest.fixture
def recovery_store():
    return FakeRecoveryStore()


@pytest.fixture
def make_service(
    registration_client,
    session_store,
    push_limiter,
    captcha_limiter,
    push_sender,
    captcha_assessor,
    recovery_store,
    clock,
):
    def _make(captcha_enabled: bool = False) -> VerificationService:
        return VerificationService(
            registration_client=registration_client,
            session_store=session_store,
            rate_limiters=RateLimiters(push_challenge=push_limiter, captcha=captcha_limiter),
            push_sender=push_sender,
            recovery_store=recovery_store,
            captcha_assessor=captcha_assessor,
            captcha_enabled=captcha_enabled,
            captcha_score_threshold=0.5,
            clock=clock,
            challenge_factory=lambda: CHALLENGE,
        )
    return _make


@pytest.fixture
def service(make_service):
    return make_service()


def _client_for(service: VerificationService):
    from verigate.main import app

    app.dependency_overrides[get_verification_service] = lambda: service
    return app


@pytest.fixture
def client(service):
    app = _client_for(service)
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


@pytest.fixture
def captcha_client(make_service):
    app = _client_for(make_service(captcha_enabled=True))
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()
