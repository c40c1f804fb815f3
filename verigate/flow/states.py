"""
verigate/flow/states.py

Purpose: Verification session state and transitions

- Requested/submitted information tags
- Immutable VerificationSession record
- Pure transition functions used by the challenge handlers
- Single source of truth for the "allowed to request a code" gate
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Iterable, Optional, Tuple


class Information(str, Enum):
    """
    Requirements a client must satisfy before it may request a code.
    """
    PUSH_CHALLENGE = "PUSH_CHALLENGE"
    CAPTCHA = "CAPTCHA"


@dataclass(frozen=True)
class VerificationSession:
    """
    Local challenge progress for one registration service session.

    Every transition returns a new value; handlers never mutate in place.
    """
    push_challenge: Optional[str]
    requested_information: Tuple[Information, ...]
    submitted_information: Tuple[Information, ...]
    allowed_to_request_code: bool
    created_timestamp: int
    updated_timestamp: int
    remote_expiration_seconds: int

    @classmethod
    def new(
        cls,
        now_millis: int,
        remote_expiration_seconds: int,
        requested: Iterable[Information] = (),
    ) -> "VerificationSession":
        return cls(
            push_challenge=None,
            requested_information=_dedupe(requested),
            submitted_information=(),
            allowed_to_request_code=False,
            created_timestamp=now_millis,
            updated_timestamp=now_millis,
            remote_expiration_seconds=remote_expiration_seconds,
        )

    def is_submitted(self, info: Information) -> bool:
        return info in self.submitted_information

    def touch(self, now_millis: int) -> "VerificationSession":
        return replace(self, updated_timestamp=now_millis)

    def to_document(self) -> dict:
        return {
            "push_challenge": self.push_challenge,
            "requested_information": [i.value for i in self.requested_information],
            "submitted_information": [i.value for i in self.submitted_information],
            "allowed_to_request_code": self.allowed_to_request_code,
            "created_timestamp": self.created_timestamp,
            "updated_timestamp": self.updated_timestamp,
            "remote_expiration_seconds": self.remote_expiration_seconds,
        }

    @classmethod
    def from_document(cls, doc: dict) -> "VerificationSession":
        return cls(
            push_challenge=doc.get("push_challenge"),
            requested_information=_dedupe(Information(i) for i in doc.get("requested_information", [])),
            submitted_information=_dedupe(Information(i) for i in doc.get("submitted_information", [])),
            allowed_to_request_code=bool(doc.get("allowed_to_request_code", False)),
            created_timestamp=int(doc["created_timestamp"]),
            updated_timestamp=int(doc["updated_timestamp"]),
            remote_expiration_seconds=int(doc.get("remote_expiration_seconds", 0)),
        )


def _dedupe(items: Iterable[Information]) -> Tuple[Information, ...]:
    seen = []
    for item in items:
        if item not in seen:
            seen.append(item)
    return tuple(seen)


def issue_push_challenge(
    session: VerificationSession,
    challenge: str,
    now_millis: int,
) -> VerificationSession:
    """
    Stores a new push challenge and makes PUSH_CHALLENGE the first outstanding requirement.

    A session that already holds a challenge is returned unchanged.
    """
    if session.push_challenge is not None:
        return session

    requested = session.requested_information
    if not session.is_submitted(Information.PUSH_CHALLENGE):
        requested = (Information.PUSH_CHALLENGE,) + tuple(
            i for i in requested if i != Information.PUSH_CHALLENGE
        )

    return replace(
        session,
        push_challenge=challenge,
        requested_information=requested,
        allowed_to_request_code=not requested,
        updated_timestamp=now_millis,
    )


def satisfy(
    session: VerificationSession,
    info: Information,
    also_clears: Iterable[Information],
    now_millis: int,
) -> VerificationSession:
    """
    Moves `info` from requested to submitted and drops any requirement it substitutes for.

    The gate is recomputed from what remains outstanding.
    """
    if session.is_submitted(info):
        return session

    cleared = {info, *also_clears}
    requested = tuple(i for i in session.requested_information if i not in cleared)
    submitted = session.submitted_information + (info,)

    return replace(
        session,
        requested_information=requested,
        submitted_information=submitted,
        allowed_to_request_code=not requested,
        updated_timestamp=now_millis,
    )


def satisfy_push_challenge(session: VerificationSession, now_millis: int) -> VerificationSession:
    # a push challenge satisfies a requested captcha
    return satisfy(session, Information.PUSH_CHALLENGE, (Information.CAPTCHA,), now_millis)


def satisfy_captcha(session: VerificationSession, now_millis: int) -> VerificationSession:
    # a captcha satisfies a push challenge, in case of push deliverability issues
    return satisfy(session, Information.CAPTCHA, (Information.PUSH_CHALLENGE,), now_millis)
