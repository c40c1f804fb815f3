"""
verigate/models/registration_session.py

Purpose: Registration service session model

- Authoritative session record owned by the registration service
- Read-only here; parsed from the registration service's JSON
- Exposes both the raw id and its URL-safe encoding
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from verigate.utils.encoding_utils import decode_session_id


class RegistrationSession(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    encoded_session_id: str = Field(..., alias="sessionId")
    number: str
    verified: bool = False
    next_sms: Optional[datetime] = Field(None, alias="nextSms")
    next_voice_call: Optional[datetime] = Field(None, alias="nextVoiceCall")
    next_verification_attempt: Optional[datetime] = Field(None, alias="nextVerificationAttempt")
    expiration: datetime

    @field_validator("encoded_session_id")
    @classmethod
    def validate_session_id(cls, v: str) -> str:
        decode_session_id(v)
        return v.rstrip("=")

    @property
    def id(self) -> bytes:
        return decode_session_id(self.encoded_session_id)

    @property
    def expiration_seconds(self) -> int:
        return int(self.expiration.timestamp())
