"""
verigate/schemas/verification.py

Purpose: Verification API request schemas

- Session creation, challenge evidence update, code request and code submission
- Wire names follow the client protocol (camelCase)
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Optional

from verigate.utils.client_utils import MessageTransport, PushTokenType


class CreateVerificationSessionRequest(BaseModel):
    number: str = Field(..., min_length=1, description="Account identifier to verify")

    model_config = ConfigDict(
        json_schema_extra={"example": {"number": "+14155550123"}}
    )


class UpdateVerificationSessionRequest(BaseModel):
    """
    Challenge evidence. Every field is optional; pushToken and pushTokenType
    travel together.
    """
    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "pushToken": "fcm-device-token",
                "pushTokenType": "fcm",
                "pushChallenge": None,
                "captcha": None,
            }
        },
    )

    push_token: Optional[str] = Field(None, alias="pushToken")
    push_token_type: Optional[PushTokenType] = Field(None, alias="pushTokenType")
    push_challenge: Optional[str] = Field(None, alias="pushChallenge")
    captcha: Optional[str] = None


class VerificationCodeRequest(BaseModel):
    transport: MessageTransport
    client: str = ""


class SubmitVerificationCodeRequest(BaseModel):
    code: str = Field(..., min_length=1)
