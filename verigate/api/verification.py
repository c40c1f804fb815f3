"""
verigate/api/verification.py

Purpose: Verification session endpoints

- Create, update, and fetch verification sessions
- Request and submit verification codes
- Reads client metadata headers and hands off to the verification service
- Errors are raised as VerigateError and rendered by core.errors
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header

from verigate.core.logging import get_logger
from verigate.schemas.response import VerificationSessionResponse
from verigate.schemas.verification import (
    CreateVerificationSessionRequest,
    SubmitVerificationCodeRequest,
    UpdateVerificationSessionRequest,
    VerificationCodeRequest,
)
from verigate.services.verification_service import VerificationService, get_verification_service

logger = get_logger(__name__)
router = APIRouter()


def source_host_from(forwarded_for: Optional[str]) -> Optional[str]:
    """Most recent hop in X-Forwarded-For, i.e. the address our proxy saw."""
    if not forwarded_for:
        return None
    hops = [hop.strip() for hop in forwarded_for.split(",") if hop.strip()]
    return hops[-1] if hops else None


@router.post("/session", response_model=VerificationSessionResponse, response_model_by_alias=True)
async def create_session(
    body: CreateVerificationSessionRequest,
    service: VerificationService = Depends(get_verification_service),
):
    return await service.create_session(body.number)


@router.patch("/session/{session_id}", response_model=VerificationSessionResponse, response_model_by_alias=True)
async def update_session(
    session_id: str,
    body: UpdateVerificationSessionRequest,
    user_agent: Optional[str] = Header(None),
    x_forwarded_for: Optional[str] = Header(None),
    service: VerificationService = Depends(get_verification_service),
):
    """
    Submits challenge evidence: a push token, a push challenge answer, or a captcha.
    """
    return await service.update_session(
        session_id,
        body,
        source_host=source_host_from(x_forwarded_for),
        user_agent=user_agent,
    )


@router.get("/session/{session_id}", response_model=VerificationSessionResponse, response_model_by_alias=True)
async def get_session(
    session_id: str,
    service: VerificationService = Depends(get_verification_service),
):
    return await service.get_session(session_id)


@router.post("/session/{session_id}/code", response_model=VerificationSessionResponse, response_model_by_alias=True)
async def request_verification_code(
    session_id: str,
    body: VerificationCodeRequest,
    user_agent: Optional[str] = Header(None),
    accept_language: Optional[str] = Header(None),
    service: VerificationService = Depends(get_verification_service),
):
    """
    Asks for a verification code over SMS or voice.

    Only allowed once every requested challenge has been satisfied.
    """
    return await service.request_code(
        session_id,
        body,
        user_agent=user_agent,
        accept_language=accept_language,
    )


@router.put("/session/{session_id}/code", response_model=VerificationSessionResponse, response_model_by_alias=True)
async def submit_verification_code(
    session_id: str,
    body: SubmitVerificationCodeRequest,
    user_agent: Optional[str] = Header(None),
    accept_language: Optional[str] = Header(None),
    service: VerificationService = Depends(get_verification_service),
):
    return await service.verify_code(
        session_id,
        body.code,
        user_agent=user_agent,
        accept_language=accept_language,
    )
