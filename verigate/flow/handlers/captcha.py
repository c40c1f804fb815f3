"""
verigate/flow/handlers/captcha.py

Handles: captcha verification (only when the captcha gate is enabled)

- Rate limits captcha submissions per session
- Assesses the token against the configured score threshold
- A valid captcha also stands in for an undelivered push challenge
"""

from verigate.core import metrics
from verigate.core.logging import get_logger, LogContext
from verigate.flow.results import HandlerContext, HandlerResult, Outcome
from verigate.flow.states import Information, VerificationSession, satisfy_captcha
from verigate.services.captcha_service import CaptchaUnavailableError
from verigate.services.rate_limit_service import RateLimitExceeded
from verigate.utils.client_utils import platform_tag

logger = get_logger(__name__)


async def handle_captcha(context: HandlerContext, session: VerificationSession) -> HandlerResult:
    captcha = context.request.captcha
    if captcha is None or session.is_submitted(Information.CAPTCHA):
        return HandlerResult(session)

    with LogContext(session_id=context.encoded_session_id, handler="captcha"):
        try:
            await context.rate_limiters.captcha.validate(context.encoded_session_id)
        except RateLimitExceeded as e:
            logger.info("Captcha submission rate limited")
            return HandlerResult(session, Outcome.RATE_LIMITED, e.retry_after)

        try:
            assessment = await context.captcha_assessor.assess(captcha, context.source_host)
        except CaptchaUnavailableError as e:
            logger.warning(f"Captcha assessment unavailable: {e}")
            return HandlerResult(session, Outcome.UNAVAILABLE)

        valid = assessment.is_valid(context.captcha_score_threshold)
        metrics.increment(
            metrics.CAPTCHA_ATTEMPT_COUNTER,
            success=valid,
            platform=platform_tag(context.user_agent),
            score=assessment.score_string,
        )

        if not valid:
            logger.info(f"Captcha rejected (score={assessment.score_string})")
            return HandlerResult(session, Outcome.REJECTED)

        logger.info("Captcha accepted")
        return HandlerResult(satisfy_captcha(session, context.clock()))
