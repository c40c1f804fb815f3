"""
verigate/flow/dispatcher.py

Purpose: Runs challenge handlers for one session update

- Fixed order, least likely to fail first: push token, push challenge, captcha
- Each handler sees the session produced by the previous one
- Stops at the first handler that does not end OK
- Always persists the last session value, including when a handler raises
"""

from typing import Awaitable, Callable, List, Tuple

from verigate.core.logging import get_logger, LogContext
from verigate.flow.handlers.captcha import handle_captcha
from verigate.flow.handlers.push_challenge import handle_push_challenge
from verigate.flow.handlers.push_token import handle_push_token
from verigate.flow.results import HandlerContext, HandlerResult
from verigate.flow.states import VerificationSession

logger = get_logger(__name__)

Handler = Callable[[HandlerContext, VerificationSession], Awaitable[HandlerResult]]
Persist = Callable[[VerificationSession], Awaitable[None]]


def build_handler_chain(captcha_enabled: bool) -> List[Tuple[str, Handler]]:
    # these are ordered from least likely to fail to most; take care when reordering
    chain: List[Tuple[str, Handler]] = [
        ("push_token", handle_push_token),
        ("push_challenge", handle_push_challenge),
    ]
    if captcha_enabled:
        chain.append(("captcha", handle_captcha))
    return chain


async def dispatch_update(
    context: HandlerContext,
    session: VerificationSession,
    persist: Persist,
    captcha_enabled: bool,
) -> HandlerResult:
    """
    Applies the handler chain and stores the resulting session.

    Returns:
        The last handler's result; its session is what was persisted
    """
    result = HandlerResult(session)

    with LogContext(session_id=context.encoded_session_id):
        try:
            for name, handler in build_handler_chain(captcha_enabled):
                result = await handler(context, result.session)
                if not result.ok:
                    logger.info(
                        f"Handler {name} ended with {result.outcome.value}",
                        extra={"handler": name, "outcome": result.outcome.value},
                    )
                    break
        finally:
            # Evidence validated before a later failure must still be stored
            stored = result.session.touch(context.clock())
            await persist(stored)

    return HandlerResult(stored, result.outcome, result.retry_after)
