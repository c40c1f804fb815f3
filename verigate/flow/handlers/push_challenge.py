"""
verigate/flow/handlers/push_challenge.py

Handles: push challenge verification

- Skips once PUSH_CHALLENGE has been submitted
- Rate limits submissions per session before comparing anything
- Compares in constant time; a present but wrong value is rejected
"""

import hmac

from verigate.core import metrics
from verigate.core.logging import get_logger, LogContext
from verigate.flow.results import HandlerContext, HandlerResult, Outcome
from verigate.flow.states import Information, VerificationSession, satisfy_push_challenge
from verigate.services.rate_limit_service import RateLimitExceeded

logger = get_logger(__name__)


def challenge_matches(submitted: str, expected: str) -> bool:
    return hmac.compare_digest(submitted.encode("utf-8"), expected.encode("utf-8"))


async def handle_push_challenge(context: HandlerContext, session: VerificationSession) -> HandlerResult:
    if session.is_submitted(Information.PUSH_CHALLENGE):
        return HandlerResult(session)

    submitted = context.request.push_challenge
    present = submitted is not None

    with LogContext(session_id=context.encoded_session_id, handler="push_challenge"):
        if present:
            try:
                await context.rate_limiters.push_challenge.validate(context.encoded_session_id)
            except RateLimitExceeded as e:
                logger.info("Push challenge submission rate limited")
                return HandlerResult(session, Outcome.RATE_LIMITED, e.retry_after)

        matches = present and session.push_challenge is not None and challenge_matches(
            submitted, session.push_challenge
        )

        metrics.increment(metrics.PUSH_CHALLENGE_COUNTER, present=present, matches=matches)

        if matches:
            logger.info("Push challenge accepted")
            return HandlerResult(satisfy_push_challenge(session, context.clock()))

        if present:
            logger.info("Push challenge rejected")
            return HandlerResult(session, Outcome.REJECTED)

        return HandlerResult(session)
