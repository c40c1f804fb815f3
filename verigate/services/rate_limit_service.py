"""
verigate/services/rate_limit_service.py

Purpose: Per-session rate limiting

- Sliding-window limiters keyed by encoded session id
- One limiter for push challenge submissions, one for captcha submissions
- A single RateLimitExceeded error with an optional retry duration
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol, TYPE_CHECKING

from pymongo import ReturnDocument

from verigate.core.config import settings
from verigate.core.logging import get_logger
from verigate.db.mongo import get_rate_limits_collection

if TYPE_CHECKING:
    from verigate.models.registration_session import RegistrationSession

logger = get_logger(__name__)


class RateLimitExceeded(Exception):
    """
    Raised when a limiter (local or at the registration service) refuses a request.

    Args:
        retry_after: How long the caller should wait, if known
        registration_session: The registration service's view of the session at
                              the time of refusal, when it reported one
    """
    def __init__(
        self,
        retry_after: Optional[timedelta] = None,
        registration_session: Optional["RegistrationSession"] = None,
    ):
        self.retry_after = retry_after
        self.registration_session = registration_session
        super().__init__(f"rate limit exceeded (retry after {retry_after})")


class RateLimiter(Protocol):
    async def validate(self, key: str) -> None: ...


class SlidingWindowRateLimiter:
    """
    Allows `max_requests` per `window_seconds` for each key.
    """

    def __init__(self, name: str, max_requests: int, window_seconds: int):
        self.name = name
        self.max_requests = max_requests
        self.window_seconds = window_seconds

    async def validate(self, key: str) -> None:
        """
        Records one attempt for `key`.

        The attempt is appended only while the bucket holds fewer than
        `max_requests` entries, in a single conditional update, so concurrent
        callers cannot all pass on the same read.

        Raises:
            RateLimitExceeded: If the window is already full
        """
        buckets = get_rate_limits_collection()
        bucket_key = f"{self.name}:{key}"

        now = datetime.now(timezone.utc)
        window = timedelta(seconds=self.window_seconds)
        window_start = now - window

        await buckets.update_one(
            {"bucket_key": bucket_key},
            {"$setOnInsert": {"requests": [], "expires_at": now + window}},
            upsert=True,
        )
        await buckets.update_one(
            {"bucket_key": bucket_key},
            {"$pull": {"requests": {"$lte": window_start}}},
        )

        # requests.<max - 1> exists once the bucket is full
        recorded = await buckets.find_one_and_update(
            {
                "bucket_key": bucket_key,
                f"requests.{self.max_requests - 1}": {"$exists": False},
            },
            {
                "$push": {"requests": now},
                "$set": {"expires_at": now + window},
            },
            return_document=ReturnDocument.AFTER,
        )
        if recorded is not None:
            return

        bucket = await buckets.find_one({"bucket_key": bucket_key})
        recent_requests = [
            _aware(req) for req in (bucket or {}).get("requests", [])
            if _aware(req) > window_start
        ]
        retry_after = None
        if recent_requests:
            retry_after = (min(recent_requests) + window) - now

        logger.warning(
            f"Rate limit exceeded for {self.name}",
            extra={
                "limiter": self.name,
                "count": len(recent_requests),
                "max": self.max_requests
            }
        )
        raise RateLimitExceeded(retry_after=retry_after)


def _aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class RateLimiters:
    """
    The limiters consulted while resolving session challenges.
    """

    def __init__(self, push_challenge: RateLimiter, captcha: RateLimiter):
        self.push_challenge = push_challenge
        self.captcha = captcha


_rate_limiters: Optional[RateLimiters] = None


def get_rate_limiters() -> RateLimiters:
    """Get or create the global rate limiters."""
    global _rate_limiters
    if _rate_limiters is None:
        _rate_limiters = RateLimiters(
            push_challenge=SlidingWindowRateLimiter(
                "verification_push_challenge",
                settings.RATE_LIMIT_PUSH_CHALLENGE_ATTEMPTS,
                settings.RATE_LIMIT_PUSH_CHALLENGE_WINDOW_SECONDS,
            ),
            captcha=SlidingWindowRateLimiter(
                "verification_captcha",
                settings.RATE_LIMIT_CAPTCHA_ATTEMPTS,
                settings.RATE_LIMIT_CAPTCHA_WINDOW_SECONDS,
            ),
        )
    return _rate_limiters
