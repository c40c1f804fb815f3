from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, Any, List
from datetime import datetime

from verigate.flow.states import Information


class ErrorResponse(BaseModel):
    """
    Standard error response structure.
    """
    error: str
    code: str
    details: Optional[Any] = None


class VerificationSessionResponse(BaseModel):
    """
    Client-visible view of a verification session.
    Combines the registration service's session with local challenge progress.
    """
    model_config = ConfigDict(populate_by_name=True)

    encoded_session_id: str = Field(..., alias="encodedSessionId")
    next_sms: Optional[datetime] = Field(None, alias="nextSms")
    next_voice_call: Optional[datetime] = Field(None, alias="nextVoiceCall")
    next_verification_attempt: Optional[datetime] = Field(None, alias="nextVerificationAttempt")
    allowed_to_request_code: bool = Field(..., alias="allowedToRequestCode")
    requested_information: List[Information] = Field(default_factory=list, alias="requestedInformation")
    verified: bool = False
