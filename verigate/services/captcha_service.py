"""
verigate/services/captcha_service.py

Purpose: Captcha assessment

- Forwards a client's captcha token to the assessment service
- Compares the returned score against a threshold
- Surfaces assessor outages as CaptchaUnavailableError
"""

from dataclasses import dataclass
from typing import Optional, Protocol

import httpx

from verigate.core.config import settings
from verigate.core.logging import get_logger

logger = get_logger(__name__)


class CaptchaUnavailableError(Exception):
    """Raised when the assessment service cannot be reached or answers unusably."""
    pass


@dataclass(frozen=True)
class AssessmentResult:
    valid: bool
    score: Optional[float] = None

    def is_valid(self, threshold: float) -> bool:
        # Assessors that report no score only get to say valid/invalid
        if not self.valid:
            return False
        if self.score is None:
            return True
        return self.score >= threshold

    @property
    def score_string(self) -> str:
        if self.score is None:
            return "none"
        return f"{self.score:.1f}"


class CaptchaAssessor(Protocol):
    async def assess(self, token: str, source_host: Optional[str]) -> AssessmentResult: ...


class CaptchaService:
    """
    HTTP client for the captcha assessment service.
    """

    def __init__(self, base_url: Optional[str] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = (base_url or settings.CAPTCHA_SERVICE_URL).rstrip("/")
        self.timeout = settings.CAPTCHA_TIMEOUT_SECONDS
        self._transport = transport

    async def assess(self, token: str, source_host: Optional[str]) -> AssessmentResult:
        """
        Raises:
            CaptchaUnavailableError: If the assessment could not be obtained
        """
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.base_url}/v1/assessments",
                    json={"token": token, "sourceHost": source_host},
                )
        except httpx.TimeoutException as e:
            logger.error("Captcha assessment timeout")
            raise CaptchaUnavailableError("captcha assessment timed out") from e
        except httpx.RequestError as e:
            logger.error(f"Network error during captcha assessment: {e}")
            raise CaptchaUnavailableError("captcha assessment service unreachable") from e

        if response.status_code != 200:
            logger.error(f"Captcha assessment failed: {response.status_code}")
            raise CaptchaUnavailableError(f"captcha assessment returned {response.status_code}")

        try:
            data = response.json()
            score = data.get("score")
            return AssessmentResult(
                valid=bool(data.get("valid", False)),
                score=float(score) if score is not None else None,
            )
        except (TypeError, ValueError, AttributeError) as e:
            logger.error(f"Unusable captcha assessment reply: {e}")
            raise CaptchaUnavailableError("captcha assessment returned an unusable reply") from e


# Global captcha service instance
_captcha_service: Optional[CaptchaService] = None


def get_captcha_service() -> CaptchaService:
    """Get or create the global captcha service instance."""
    global _captcha_service
    if _captcha_service is None:
        _captcha_service = CaptchaService()
    return _captcha_service
