"""
Wire Envelopes - Pydantic models for messages on the channel.

Intent:     participant -> host, "please apply this"
Acceptance: host -> participant, "applied, record is now at version N"
Rejection:  host -> participant, "not applied, because ..."

Envelopes are validated on receipt; a message that fails validation is
answered with a MALFORMED rejection when its actor can be identified.
"""

from __future__ import annotations
from enum import Enum
from typing import Any, Literal, Optional, Union
import time
import uuid

from pydantic import BaseModel, Field, ValidationError

from ..engine_core.action import ActionType


class RejectReason(str, Enum):
    """Why the host refused an intent."""
    STALE = "stale"
    INVALID_MOVE = "invalid_move"
    NOT_SEATED = "not_seated"
    SESSION_FINISHED = "session_finished"
    NO_SESSION = "no_session"
    MALFORMED = "malformed"
    STORE_UNAVAILABLE = "store_unavailable"


def new_intent_id() -> str:
    return uuid.uuid4().hex


class Intent(BaseModel):
    """A requested state mutation, tagged with the version it was formed against."""
    kind: Literal["intent"] = "intent"
    intent_id: str = Field(default_factory=new_intent_id)
    session_id: str
    action: ActionType
    actor_id: str = Field(min_length=1)
    payload: dict[str, Any] = Field(default_factory=dict)
    observed_version: int = Field(ge=0)
    ref: Optional[str] = Field(None, description="Sender reference, used to drop echoes")
    sent_at: float = Field(default_factory=time.time)


class Acceptance(BaseModel):
    kind: Literal["accepted"] = "accepted"
    intent_id: str
    actor_id: str
    version: int


class Rejection(BaseModel):
    kind: Literal["rejected"] = "rejected"
    intent_id: Optional[str] = None
    actor_id: str
    reason: RejectReason
    message: str
    expected_version: Optional[int] = None


Reply = Union[Acceptance, Rejection]


def parse_reply(message: dict[str, Any]) -> Reply | None:
    """Parse a reply message; None for anything that is not a reply."""
    kind = message.get("kind")
    try:
        if kind == "accepted":
            return Acceptance.model_validate(message)
        if kind == "rejected":
            return Rejection.model_validate(message)
    except ValidationError:
        return None
    return None


def intents_topic(session_id: str) -> str:
    return f"{session_id}:intents"


def replies_topic(session_id: str) -> str:
    return f"{session_id}:replies"
