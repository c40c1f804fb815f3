from typing import Optional, Any, Dict


class VerigateError(Exception):
    """
    Base exception for client-visible verigate failures.

    `details` carries the session view snapshot when one is attached, and
    `headers` carries extra response headers such as Retry-After.
    """
    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        status_code: int = 500,
        details: Optional[Any] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details
        self.headers = headers or {}
        super().__init__(self.message)


class InvalidInputError(VerigateError):
    """
    Raised when client input is malformed in a way request validation cannot catch.
    """
    def __init__(self, message: str = "Invalid input", details: Optional[Any] = None):
        super().__init__(message, code="BAD_REQUEST", status_code=400, details=details)


class ValidationError(VerigateError):
    """
    Raised when input validation fails.
    """
    def __init__(self, message: str = "Validation error", details: Optional[Any] = None):
        super().__init__(message, code="VALIDATION_ERROR", status_code=422, details=details)


class MalformedSessionIdError(ValidationError):
    """
    Raised when a session id is not valid URL-safe base64.
    """
    def __init__(self, message: str = "Malformed session ID"):
        super().__init__(message)
        self.code = "MALFORMED_SESSION_ID"


class ResourceNotFoundError(VerigateError):
    """
    Raised when a requested resource is not found.
    """
    def __init__(self, message: str = "Resource not found", details: Optional[Any] = None):
        super().__init__(message, code="NOT_FOUND", status_code=404, details=details)


class EvidenceRejectedError(VerigateError):
    """
    Raised when submitted challenge evidence does not match or fails assessment.
    """
    def __init__(self, message: str = "Submitted evidence was rejected", details: Optional[Any] = None):
        super().__init__(message, code="EVIDENCE_REJECTED", status_code=403, details=details)


class ConflictError(VerigateError):
    """
    Raised when the session state does not permit the operation.
    """
    def __init__(self, message: str = "Conflict", details: Optional[Any] = None):
        super().__init__(message, code="CONFLICT", status_code=409, details=details)


class RateLimitExceededError(VerigateError):
    """
    Raised when a rate limit was hit.
    Retry-After is only emitted for a known, positive duration.
    """
    def __init__(
        self,
        message: str = "Rate limit exceeded",
        details: Optional[Any] = None,
        retry_after_seconds: Optional[int] = None,
    ):
        headers = {}
        if retry_after_seconds is not None and retry_after_seconds > 0:
            headers["Retry-After"] = str(retry_after_seconds)
        super().__init__(message, code="RATE_LIMITED", status_code=429, details=details, headers=headers)
        self.retry_after_seconds = retry_after_seconds


class TransportNotPermittedError(VerigateError):
    """
    Raised when the registration service refuses the requested transport.
    """
    def __init__(self, message: str = "Transport not allowed", details: Optional[Any] = None):
        super().__init__(message, code="TRANSPORT_NOT_ALLOWED", status_code=418, details=details)


class SenderRejectedError(VerigateError):
    """
    Raised when the upstream code sender refused to deliver a verification code.
    """
    def __init__(self, reason: str, permanent_failure: bool):
        super().__init__(
            "Verification code could not be delivered",
            code="SENDER_REJECTED",
            status_code=502,
            details={"reason": reason, "permanentFailure": permanent_failure},
        )


class ServiceUnavailableError(VerigateError):
    """
    Raised when an upstream dependency timed out or could not be reached.
    """
    def __init__(self, message: str = "Service unavailable"):
        super().__init__(message, code="SERVICE_UNAVAILABLE", status_code=503)


class InternalServiceError(VerigateError):
    """
    Raised for unclassified upstream failures. Never carries upstream error text.
    """
    def __init__(self, message: str = "Internal error"):
        super().__init__(message, code="INTERNAL_ERROR", status_code=500)
