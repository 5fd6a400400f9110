"""Protocol and conversation payloads. All are Pydantic models."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Literal, NamedTuple, Union

from pydantic import BaseModel, Field


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ConversationKey(NamedTuple):
    """Workspace + agent pair addressing one conversation and its stream."""

    workspace_id: str
    agent_id: str

    def __str__(self) -> str:
        return f"{self.workspace_id}:{self.agent_id}"


class Message(BaseModel):
    """One conversation entry. Content grows while streaming; frozen once final."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    role: Role
    content: str = ""
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    final: bool = False


class StreamRequest(BaseModel):
    """JSON body of the streaming POST."""

    message: str


class TokenEvent(BaseModel):
    kind: Literal["token"] = "token"
    text: str


class DoneEvent(BaseModel):
    kind: Literal["done"] = "done"


class ErrorEvent(BaseModel):
    kind: Literal["error"] = "error"
    message: str


ProtocolEvent = Union[TokenEvent, DoneEvent, ErrorEvent]
