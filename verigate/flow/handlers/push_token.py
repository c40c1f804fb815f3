"""
verigate/flow/handlers/push_token.py

Handles: push token registration

- Issues a push challenge the first time a token is supplied
- Re-sends the existing challenge on every later call, so a client can ask for
  re-delivery without invalidating what it may already have received
"""

from verigate.core.logging import get_logger, LogContext
from verigate.flow.results import HandlerContext, HandlerResult
from verigate.flow.states import VerificationSession, issue_push_challenge

logger = get_logger(__name__)


async def handle_push_token(context: HandlerContext, session: VerificationSession) -> HandlerResult:
    request = context.request
    if request.push_token is None:
        return HandlerResult(session)

    with LogContext(session_id=context.encoded_session_id, handler="push_token"):
        if session.push_challenge is None:
            session = issue_push_challenge(session, context.challenge_factory(), context.clock())
            logger.info("Issued push challenge")

        result = await context.push_sender.send_registration_challenge(
            request.push_token,
            request.push_token_type,
            session.push_challenge,
        )
        if not result.get("success"):
            # PUSH_CHALLENGE simply stays outstanding
            logger.warning(f"Push challenge delivery failed: {result.get('error')}")

        return HandlerResult(session)
