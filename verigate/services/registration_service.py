"""
verigate/services/registration_service.py

Purpose: Registration service integration

- Creates and fetches authoritative registration sessions
- Checks whether an account already exists for a number
- Sends and checks verification codes
- Bounds every call by REGISTRATION_RPC_TIMEOUT_SECONDS
- Translates the service's replies into a typed error taxonomy
"""

import asyncio
from datetime import timedelta
from typing import Any, Dict, Optional, Protocol

import httpx
from pydantic import ValidationError as PydanticValidationError

from verigate.core.config import settings
from verigate.core.logging import get_logger
from verigate.models.registration_session import RegistrationSession
from verigate.services.rate_limit_service import RateLimitExceeded
from verigate.utils.client_utils import ClientType, MessageTransport
from verigate.utils.encoding_utils import encode_session_id

logger = get_logger(__name__)


class RegistrationServiceFailure(Exception):
    """Base class for registration service failures."""
    pass


class RegistrationServiceUnavailableError(RegistrationServiceFailure):
    """The call was cancelled, timed out, or the service could not be reached."""
    pass


class InvalidArgumentError(RegistrationServiceFailure):
    """The service rejected the call's arguments as malformed."""
    pass


class RegistrationServiceError(RegistrationServiceFailure):
    """
    The service refused the operation. Carries its view of the session when it sent one.
    """
    def __init__(self, message: str, registration_session: Optional[RegistrationSession] = None):
        super().__init__(message)
        self.registration_session = registration_session


class TransportNotAllowedError(RegistrationServiceError):
    """The requested transport may not be used for this session."""
    pass


class RegistrationServiceSenderError(RegistrationServiceFailure):
    """The upstream SMS/voice provider refused to deliver the code."""
    def __init__(self, reason: str, permanent: bool):
        super().__init__(f"sender rejected code delivery: {reason}")
        self.reason = reason
        self.permanent = permanent


class RegistrationServiceClient(Protocol):
    async def account_exists(self, number: str) -> bool: ...

    async def create_registration_session(self, number: str, account_exists_with_number: bool) -> RegistrationSession: ...

    async def get_session(self, session_id: bytes) -> Optional[RegistrationSession]: ...

    async def send_verification_code(
        self,
        session_id: bytes,
        transport: MessageTransport,
        client_type: ClientType,
        accept_language: Optional[str],
    ) -> RegistrationSession: ...

    async def check_verification_code(self, session_id: bytes, code: str) -> RegistrationSession: ...


class HttpRegistrationServiceClient:
    """
    JSON-over-HTTP client for the registration service.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._timeout = timeout if timeout is not None else settings.REGISTRATION_RPC_TIMEOUT_SECONDS
        headers = {"Accept": "application/json"}
        api_key = api_key if api_key is not None else settings.REGISTRATION_SERVICE_API_KEY
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        self._client = httpx.AsyncClient(
            base_url=base_url or settings.REGISTRATION_SERVICE_URL,
            timeout=self._timeout,
            headers=headers,
            transport=transport,
        )

    async def _call(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> httpx.Response:
        try:
            return await asyncio.wait_for(
                self._client.request(method, path, json=json),
                timeout=self._timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            logger.error(f"Registration service timeout: {method} {path}")
            raise RegistrationServiceUnavailableError("registration service timed out") from e
        except httpx.RequestError as e:
            logger.error(f"Network error calling registration service: {e}")
            raise RegistrationServiceUnavailableError("registration service unreachable") from e

    def _raise_for_status(self, response: httpx.Response) -> None:
        """
        Maps a non-2xx reply to the matching failure.
        """
        status = response.status_code
        if status < 300:
            return

        body = _json_body(response)
        session = _embedded_session(body)

        if status == 400:
            raise InvalidArgumentError(body.get("message", "invalid argument"))
        if status == 429:
            raise RateLimitExceeded(
                retry_after=_retry_after(response, body),
                registration_session=session,
            )
        if status == 418:
            raise TransportNotAllowedError("transport not allowed", session)
        if status in (409, 422):
            raise RegistrationServiceError(body.get("message", "registration service refused the request"), session)
        if status == 502 and "reason" in body:
            raise RegistrationServiceSenderError(
                reason=str(body["reason"]),
                permanent=bool(body.get("permanentFailure", False)),
            )

        logger.error(f"Unexpected registration service status {status}")
        raise RegistrationServiceFailure(f"registration service returned {status}")

    def _parse_session(self, response: httpx.Response) -> RegistrationSession:
        try:
            return RegistrationSession.model_validate(response.json())
        except (ValueError, PydanticValidationError) as e:
            logger.error(f"Malformed registration session payload: {e}")
            raise RegistrationServiceFailure("malformed registration session payload") from e

    async def account_exists(self, number: str) -> bool:
        response = await self._call("GET", f"/v1/accounts/{number}")
        if response.status_code == 404:
            return False
        self._raise_for_status(response)
        return bool(_json_body(response).get("exists", False))

    async def create_registration_session(self, number: str, account_exists_with_number: bool) -> RegistrationSession:
        logger.info("Creating registration session")
        response = await self._call(
            "POST",
            "/v1/sessions",
            json={"number": number, "accountExistsWithNumber": account_exists_with_number},
        )
        self._raise_for_status(response)
        return self._parse_session(response)

    async def get_session(self, session_id: bytes) -> Optional[RegistrationSession]:
        response = await self._call("GET", f"/v1/sessions/{encode_session_id(session_id)}")
        if response.status_code == 404:
            return None
        self._raise_for_status(response)
        return self._parse_session(response)

    async def send_verification_code(
        self,
        session_id: bytes,
        transport: MessageTransport,
        client_type: ClientType,
        accept_language: Optional[str],
    ) -> RegistrationSession:
        response = await self._call(
            "POST",
            f"/v1/sessions/{encode_session_id(session_id)}/code",
            json={
                "transport": transport.value,
                "clientType": client_type.value,
                "acceptLanguage": accept_language,
            },
        )
        self._raise_for_status(response)
        return self._parse_session(response)

    async def check_verification_code(self, session_id: bytes, code: str) -> RegistrationSession:
        response = await self._call(
            "PUT",
            f"/v1/sessions/{encode_session_id(session_id)}/code",
            json={"code": code},
        )
        self._raise_for_status(response)
        return self._parse_session(response)

    async def close(self):
        await self._client.aclose()


def _json_body(response: httpx.Response) -> Dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _embedded_session(body: Dict[str, Any]) -> Optional[RegistrationSession]:
    raw = body.get("session")
    if not isinstance(raw, dict):
        return None
    try:
        return RegistrationSession.model_validate(raw)
    except PydanticValidationError:
        logger.warning("Ignoring malformed session attached to registration service error")
        return None


def _retry_after(response: httpx.Response, body: Dict[str, Any]) -> Optional[timedelta]:
    raw = response.headers.get("Retry-After", body.get("retryAfterSeconds"))
    if raw is None:
        return None
    try:
        return timedelta(seconds=float(raw))
    except (TypeError, ValueError):
        return None


# Global registration service client
_registration_client: Optional[HttpRegistrationServiceClient] = None


def get_registration_client() -> HttpRegistrationServiceClient:
    """Get or create the global registration service client."""
    global _registration_client
    if _registration_client is None:
        _registration_client = HttpRegistrationServiceClient()
    return _registration_client


async def close_registration_client():
    """Close the registration service client and its connection pool."""
    global _registration_client
    if _registration_client:
        await _registration_client.close()
        _registration_client = None
