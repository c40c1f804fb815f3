"""
verigate/flow/results.py

Purpose: Challenge handler contract

- HandlerContext: everything a handler may read or call for one update
- HandlerResult: the session a handler produced plus how it ended
"""

import secrets
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Callable, Optional

from verigate.flow.states import VerificationSession
from verigate.models.registration_session import RegistrationSession
from verigate.schemas.verification import UpdateVerificationSessionRequest
from verigate.services.captcha_service import CaptchaAssessor
from verigate.services.push_service import PushNotificationSender
from verigate.services.rate_limit_service import RateLimiters
from verigate.utils.time_utils import now_millis


class Outcome(str, Enum):
    OK = "ok"
    RATE_LIMITED = "rate_limited"
    REJECTED = "rejected"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class HandlerResult:
    session: VerificationSession
    outcome: Outcome = Outcome.OK
    retry_after: Optional[timedelta] = None

    @property
    def ok(self) -> bool:
        return self.outcome == Outcome.OK


def generate_push_challenge() -> str:
    return secrets.token_hex(16)


@dataclass(frozen=True)
class HandlerContext:
    registration_session: RegistrationSession
    request: UpdateVerificationSessionRequest
    rate_limiters: RateLimiters
    push_sender: PushNotificationSender
    captcha_assessor: Optional[CaptchaAssessor] = None
    captcha_score_threshold: float = 0.5
    source_host: Optional[str] = None
    user_agent: Optional[str] = None
    clock: Callable[[], int] = field(default=now_millis)
    challenge_factory: Callable[[], str] = field(default=generate_push_challenge)

    @property
    def encoded_session_id(self) -> str:
        return self.registration_session.encoded_session_id
