"""
verigate/services/verification_service.py

Purpose: Verification session orchestration

- Creates local sessions alongside registration service sessions
- Applies challenge evidence through the flow dispatcher
- Gates and forwards verification code requests and submissions
- Maps registration service and store failures onto client-visible errors
"""

import asyncio
from typing import Callable, Optional

from pymongo.errors import PyMongoError

from verigate.core import metrics
from verigate.core.config import settings
from verigate.core.exceptions import (
    ConflictError,
    EvidenceRejectedError,
    InternalServiceError,
    InvalidInputError,
    MalformedSessionIdError,
    RateLimitExceededError,
    ResourceNotFoundError,
    SenderRejectedError,
    ServiceUnavailableError,
    TransportNotPermittedError,
    ValidationError,
)
from verigate.core.logging import get_logger, LogContext
from verigate.flow.dispatcher import dispatch_update
from verigate.flow.results import HandlerContext, Outcome, generate_push_challenge
from verigate.flow.states import Information, VerificationSession
from verigate.models.registration_session import RegistrationSession
from verigate.schemas.response import VerificationSessionResponse
from verigate.schemas.verification import UpdateVerificationSessionRequest, VerificationCodeRequest
from verigate.services.captcha_service import CaptchaAssessor, get_captcha_service
from verigate.services.push_service import PushNotificationSender, push_service
from verigate.services.rate_limit_service import RateLimitExceeded, RateLimiters, get_rate_limiters
from verigate.services.recovery_service import RecoveryPasswordStore, get_recovery_store
from verigate.services.registration_service import (
    InvalidArgumentError,
    RegistrationServiceClient,
    RegistrationServiceError,
    RegistrationServiceFailure,
    RegistrationServiceSenderError,
    RegistrationServiceUnavailableError,
    TransportNotAllowedError,
    get_registration_client,
)
from verigate.services.session_service import (
    SessionAlreadyExistsError,
    SessionStoreError,
    VerificationSessionStore,
    get_session_store,
)
from verigate.utils.client_utils import classify_client, locale_tag, platform_tag
from verigate.utils.encoding_utils import decode_session_id
from verigate.utils.time_utils import now_millis, retry_after_seconds
from verigate.utils.validation_utils import normalize_account_number, validate_push_token_pair

logger = get_logger(__name__)


def build_response(
    registration_session: RegistrationSession,
    verification_session: VerificationSession,
) -> VerificationSessionResponse:
    return VerificationSessionResponse(
        encoded_session_id=registration_session.encoded_session_id,
        next_sms=registration_session.next_sms,
        next_voice_call=registration_session.next_voice_call,
        next_verification_attempt=registration_session.next_verification_attempt,
        allowed_to_request_code=verification_session.allowed_to_request_code,
        requested_information=list(verification_session.requested_information),
        verified=registration_session.verified,
    )


def snapshot(
    registration_session: RegistrationSession,
    verification_session: VerificationSession,
) -> dict:
    """
    Session view attached to error bodies.
    """
    return build_response(registration_session, verification_session).model_dump(by_alias=True, mode="json")


def rate_limited(
    registration_session: Optional[RegistrationSession],
    verification_session: VerificationSession,
    retry_after=None,
) -> RateLimitExceededError:
    details = None
    if registration_session is not None:
        details = snapshot(registration_session, verification_session)
    return RateLimitExceededError(details=details, retry_after_seconds=retry_after_seconds(retry_after))


class VerificationService:
    """
    Orchestrates one verification session per registration service session.
    """

    def __init__(
        self,
        registration_client: RegistrationServiceClient,
        session_store: VerificationSessionStore,
        rate_limiters: RateLimiters,
        push_sender: PushNotificationSender,
        recovery_store: RecoveryPasswordStore,
        captcha_assessor: Optional[CaptchaAssessor] = None,
        captcha_enabled: Optional[bool] = None,
        captcha_score_threshold: Optional[float] = None,
        clock: Callable[[], int] = now_millis,
        challenge_factory: Callable[[], str] = generate_push_challenge,
    ):
        self.registration_client = registration_client
        self.session_store = session_store
        self.rate_limiters = rate_limiters
        self.push_sender = push_sender
        self.recovery_store = recovery_store
        self.captcha_assessor = captcha_assessor
        self.captcha_enabled = settings.CAPTCHA_ENABLED if captcha_enabled is None else captcha_enabled
        self.captcha_score_threshold = (
            settings.CAPTCHA_SCORE_THRESHOLD if captcha_score_threshold is None else captcha_score_threshold
        )
        self.clock = clock
        self.challenge_factory = challenge_factory

        if self.captcha_enabled and self.captcha_assessor is None:
            raise ValueError("captcha_assessor is required when the captcha gate is enabled")

    # ------------------------------------------------------------------
    # Session creation
    # ------------------------------------------------------------------

    async def create_session(self, number: str) -> VerificationSessionResponse:
        """
        Creates a registration service session and its local verification session.

        Raises:
            InvalidInputError: If the number is not an acceptable identifier
            RateLimitExceededError: If the registration service rate limited creation
            ServiceUnavailableError: If the registration service or store timed out
            InternalServiceError: For any other registration service failure
        """
        normalized = normalize_account_number(number)
        if normalized is None:
            raise InvalidInputError("Account number must contain only letters and digits")

        try:
            account_exists = await self.registration_client.account_exists(normalized)
            registration_session = await self.registration_client.create_registration_session(
                normalized, account_exists
            )
        except RegistrationServiceUnavailableError as e:
            logger.warning(f"Registration service unavailable during session creation: {e}")
            raise ServiceUnavailableError("Registration service unavailable")
        except RateLimitExceeded as e:
            raise RateLimitExceededError(retry_after_seconds=retry_after_seconds(e.retry_after))
        except InvalidArgumentError:
            raise InvalidInputError("Registration service rejected the number")
        except RegistrationServiceFailure as e:
            logger.error(f"Registration service failure during session creation: {e}", exc_info=True)
            raise InternalServiceError()

        now = self.clock()
        requested = (Information.CAPTCHA,) if self.captcha_enabled else ()
        verification_session = VerificationSession.new(
            now, registration_session.expiration_seconds, requested
        )

        with LogContext(session_id=registration_session.encoded_session_id):
            try:
                await self.session_store.insert(registration_session.encoded_session_id, verification_session)
            except SessionAlreadyExistsError:
                logger.error("Registration service reused a session id")
                raise InternalServiceError()
            except SessionStoreError as e:
                logger.error(f"Could not store new verification session: {e}")
                raise ServiceUnavailableError("Session store unavailable")

            logger.info("Verification session created")

        return build_response(registration_session, verification_session)

    # ------------------------------------------------------------------
    # Challenge evidence
    # ------------------------------------------------------------------

    async def update_session(
        self,
        encoded_session_id: str,
        request: UpdateVerificationSessionRequest,
        source_host: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> VerificationSessionResponse:
        """
        Applies push token, push challenge and (when enabled) captcha evidence.

        The resulting session is stored even when a handler rejects the request.

        Raises:
            ValidationError: If only one of pushToken/pushTokenType is present
            RateLimitExceededError: With the stored session view and Retry-After
            EvidenceRejectedError: With the stored session view
            ServiceUnavailableError: If the captcha assessor or an upstream is unavailable
        """
        try:
            validate_push_token_pair(request.push_token, request.push_token_type)
        except ValueError as e:
            raise ValidationError(str(e))

        registration_session = await self._retrieve_registration_session(encoded_session_id)
        verification_session = await self._retrieve_verification_session(registration_session)

        context = HandlerContext(
            registration_session=registration_session,
            request=request,
            rate_limiters=self.rate_limiters,
            push_sender=self.push_sender,
            captcha_assessor=self.captcha_assessor,
            captcha_score_threshold=self.captcha_score_threshold,
            source_host=source_host,
            user_agent=user_agent,
            clock=self.clock,
            challenge_factory=self.challenge_factory,
        )

        async def persist(session: VerificationSession) -> None:
            try:
                await self.session_store.update(registration_session.encoded_session_id, session)
            except SessionStoreError as e:
                logger.error(f"Could not store updated verification session: {e}")
                raise ServiceUnavailableError("Session store unavailable")

        result = await dispatch_update(context, verification_session, persist, self.captcha_enabled)

        if result.outcome == Outcome.RATE_LIMITED:
            raise rate_limited(registration_session, result.session, result.retry_after)
        if result.outcome == Outcome.REJECTED:
            raise EvidenceRejectedError(details=snapshot(registration_session, result.session))
        if result.outcome == Outcome.UNAVAILABLE:
            raise ServiceUnavailableError("Captcha assessment unavailable")

        return build_response(registration_session, result.session)

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    async def get_session(self, encoded_session_id: str) -> VerificationSessionResponse:
        registration_session = await self._retrieve_registration_session(encoded_session_id)
        verification_session = await self._retrieve_verification_session(registration_session)
        return build_response(registration_session, verification_session)

    # ------------------------------------------------------------------
    # Verification codes
    # ------------------------------------------------------------------

    async def request_code(
        self,
        encoded_session_id: str,
        request: VerificationCodeRequest,
        user_agent: Optional[str] = None,
        accept_language: Optional[str] = None,
    ) -> VerificationSessionResponse:
        """
        Asks the registration service to send a code, once the session allows it.

        A closed gate with nothing outstanding is a timing problem (429); a closed
        gate with outstanding requirements means the client has work to do (409).
        """
        registration_session = await self._retrieve_registration_session(encoded_session_id)
        verification_session = await self._retrieve_verification_session(registration_session)

        if registration_session.verified:
            raise ConflictError(
                "Session is already verified",
                details=snapshot(registration_session, verification_session),
            )

        if not verification_session.allowed_to_request_code:
            if not verification_session.requested_information:
                raise rate_limited(registration_session, verification_session)
            raise ConflictError(
                "Session has outstanding requirements",
                details=snapshot(registration_session, verification_session),
            )

        client_type = classify_client(request.client)

        with LogContext(
            session_id=registration_session.encoded_session_id,
            transport=request.transport.value,
            client_type=client_type.value,
        ):
            try:
                result_session = await self.registration_client.send_verification_code(
                    registration_session.id,
                    request.transport,
                    client_type,
                    accept_language,
                )
            except RegistrationServiceUnavailableError as e:
                logger.warning(f"Registration service unavailable while sending code: {e}")
                raise ServiceUnavailableError("Registration service unavailable")
            except RateLimitExceeded as e:
                raise rate_limited(e.registration_session, verification_session, e.retry_after)
            except RegistrationServiceError as e:
                if e.registration_session is None:
                    raise ResourceNotFoundError("Session not found")
                details = snapshot(e.registration_session, verification_session)
                if isinstance(e, TransportNotAllowedError):
                    raise TransportNotPermittedError(details=details)
                raise ConflictError("Registration service refused to send a code", details=details)
            except RegistrationServiceSenderError as e:
                logger.warning(f"Code delivery refused by sender: {e.reason}")
                raise SenderRejectedError(e.reason, e.permanent)
            except InvalidArgumentError:
                raise InvalidInputError("Registration service rejected the request")
            except RegistrationServiceFailure as e:
                logger.error(f"Registration service failure while sending code: {e}", exc_info=True)
                raise InternalServiceError()

            logger.info("Verification code requested")

        metrics.increment(
            metrics.CODE_REQUESTED_COUNTER,
            platform=platform_tag(user_agent),
            transport=request.transport.value,
            locale=locale_tag(accept_language),
        )

        return build_response(result_session, verification_session)

    async def verify_code(
        self,
        encoded_session_id: str,
        code: str,
        user_agent: Optional[str] = None,
        accept_language: Optional[str] = None,
    ) -> VerificationSessionResponse:
        """
        Forwards a submitted code to the registration service.
        """
        registration_session = await self._retrieve_registration_session(encoded_session_id)
        verification_session = await self._retrieve_verification_session(registration_session)

        with LogContext(session_id=registration_session.encoded_session_id):
            try:
                result_session = await self.registration_client.check_verification_code(
                    registration_session.id, code
                )
            except RegistrationServiceUnavailableError as e:
                logger.warning(f"Unexpected cancellation from registration service: {e}")
                raise ServiceUnavailableError("Registration service unavailable")
            except RateLimitExceeded as e:
                raise rate_limited(e.registration_session, verification_session, e.retry_after)
            except RegistrationServiceError as e:
                if e.registration_session is None:
                    raise ResourceNotFoundError("Session not found")
                raise ConflictError(
                    "Registration service refused the code",
                    details=snapshot(e.registration_session, verification_session),
                )
            except InvalidArgumentError:
                raise InvalidInputError("Registration service rejected the request")
            except RegistrationServiceFailure as e:
                logger.error(f"Registration service failure while checking code: {e}", exc_info=True)
                raise InternalServiceError()

            if result_session.verified:
                await self._clear_recovery_password(registration_session.number)
                logger.info("Session verified")

        metrics.increment(
            metrics.VERIFIED_COUNTER,
            success=result_session.verified,
            platform=platform_tag(user_agent),
            locale=locale_tag(accept_language),
        )

        return build_response(result_session, verification_session)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _retrieve_registration_session(self, encoded_session_id: str) -> RegistrationSession:
        """
        Raises:
            MalformedSessionIdError: If the id cannot be decoded (422)
            InvalidInputError: If the registration service calls the id invalid (400)
            ResourceNotFoundError: If the registration service has no such session
            ServiceUnavailableError: For any other registration service failure
        """
        try:
            session_id = decode_session_id(encoded_session_id)
        except ValueError:
            raise MalformedSessionIdError()

        try:
            registration_session = await self.registration_client.get_session(session_id)
        except InvalidArgumentError:
            raise InvalidInputError("Registration service rejected the session id")
        except (RegistrationServiceFailure, RateLimitExceeded) as e:
            logger.error(f"Registration service failure: {e}")
            raise ServiceUnavailableError("Registration service unavailable")

        if registration_session is None:
            raise ResourceNotFoundError("Session not found")

        if registration_session.verified:
            await self._clear_recovery_password(registration_session.number)

        return registration_session

    async def _clear_recovery_password(self, number: str) -> None:
        """
        Best-effort removal of a verified number's recovery password.

        Failures are logged, not raised; the removal is repeated on every
        later retrieval of a verified session.
        """
        try:
            await asyncio.wait_for(
                self.recovery_store.remove_for_number(number),
                timeout=settings.SESSION_STORE_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError:
            logger.warning("Timed out removing registration recovery password")
        except PyMongoError as e:
            logger.warning(f"Could not remove registration recovery password: {e}")

    async def _retrieve_verification_session(self, registration_session: RegistrationSession) -> VerificationSession:
        try:
            verification_session = await self.session_store.find(registration_session.encoded_session_id)
        except SessionStoreError as e:
            logger.error(f"Could not read verification session: {e}")
            raise ServiceUnavailableError("Session store unavailable")

        if verification_session is None:
            raise ResourceNotFoundError("Session not found")
        return verification_session


# Global verification service instance
_verification_service: Optional[VerificationService] = None


def get_verification_service() -> VerificationService:
    """Get or create the global verification service, wired to the real collaborators."""
    global _verification_service
    if _verification_service is None:
        _verification_service = VerificationService(
            registration_client=get_registration_client(),
            session_store=get_session_store(),
            rate_limiters=get_rate_limiters(),
            push_sender=push_service,
            recovery_store=get_recovery_store(),
            captcha_assessor=get_captcha_service() if settings.CAPTCHA_ENABLED else None,
        )
    return _verification_service


def reset_verification_service():
    global _verification_service
    _verification_service = None
