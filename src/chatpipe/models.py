"""
Defines the core Pydantic data models for the message pipeline.

These models are the data contract between the transport, the optimistic
ledger, the page cache and whatever renders the conversation. Field aliases
follow the camelCase wire format of the chat service, so payloads can be
validated directly with ``model_validate``.
"""

import itertools
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

# --- Constants ---
USER_ROLE = "user"
ASSISTANT_ROLE = "assistant"
Role = Literal[USER_ROLE, ASSISTANT_ROLE]

LOCAL_ID_PREFIX = "local"

_local_counter = itertools.count(1)


def new_local_id(role: str) -> str:
    """Returns a placeholder id that can never collide with a store id.

    Store ids are plain integers, local ids are namespaced strings such as
    ``local-user-1718000000000-3``.
    """
    return f"{LOCAL_ID_PREFIX}-{role}-{int(time.time() * 1000)}-{next(_local_counter)}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Status(str, Enum):
    """User-visible state of the conversation controller."""

    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"
    FAILED = "failed"


class FrameKind(str, Enum):
    DELTA = "delta"
    DONE = "done"
    ERROR = "error"
    NONE = "none"


# --- Models ---
class Message(BaseModel):
    """A message confirmed by the backing store. Immutable once created."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: Union[int, str]
    role: Role
    content: str
    created_at: datetime = Field(alias="createdAt")
    client_token: Optional[str] = Field(default=None, alias="clientToken")

    @property
    def pending(self) -> bool:
        return False


class OptimisticEntry(BaseModel):
    """A locally-created message shown before the store confirms it."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    local_id: str = Field(alias="localId")
    role: Role
    content: str
    created_at: datetime = Field(default_factory=_utcnow, alias="createdAt")
    pending: Literal[True] = True
    client_token: Optional[str] = Field(default=None, alias="clientToken")

    @property
    def id(self) -> str:
        return self.local_id


Entry = Union[Message, OptimisticEntry]


class Page(BaseModel):
    """One page of confirmed history. Page 1 is always the most recent slice."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    number: int = 1
    messages: Tuple[Message, ...] = ()
    total: int = 0
    total_pages: int = Field(default=0, alias="totalPages")


class Frame(BaseModel):
    """One decoded unit of the streaming protocol."""

    model_config = ConfigDict(frozen=True)

    kind: FrameKind
    content: str = ""
    error: Optional[str] = None


class Note(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    content: str = ""
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")


class ArchivedSession(BaseModel):
    """Summary of one archived batch of history."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    archived_at: str = Field(alias="archivedAt")
    message_count: int = Field(alias="messageCount")
    preview: str = ""


class ConversationView(BaseModel):
    """Immutable snapshot of what the conversation currently looks like.

    For page 1 ``entries`` is the confirmed page followed by any optimistic
    entries still pending. For older pages it is exactly that page's messages.
    """

    model_config = ConfigDict(frozen=True)

    page: int = 1
    entries: Tuple[Entry, ...] = ()
    total: int = 0
    total_pages: int = 0
    status: Status = Status.IDLE
    partial: Optional[str] = None
    error: Optional[str] = None
