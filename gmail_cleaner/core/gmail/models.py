"""
Mailbox data types shared by the gateway, the engines and the store.
"""
from pydantic import BaseModel, Field
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import List, Optional


@dataclass(frozen=True)
class GmailCredentials:
    """
    Per-call mailbox capability.

    Carries the OAuth access token for exactly one request; never stored in
    module state. Acquisition and refresh belong to the caller.
    """
    access_token: str

    def __repr__(self) -> str:
        return "GmailCredentials(access_token=***)"


@dataclass(frozen=True)
class SyncCursor:
    """
    Opaque resume point in reverse-chronological mailbox history.

    Only ever produced from a gateway page token and handed back to the gateway.
    """
    token: str

    def __str__(self) -> str:
        return self.token


class MessageIdPage(BaseModel):
    """One page of message ids from the mailbox listing."""
    ids: List[str] = Field(default_factory=list)
    next_page_token: Optional[str] = None


class MessageMetadata(BaseModel):
    """Headers and snippet of a remote message, as returned by the mailbox."""
    from_address: str = ""
    subject: str = ""
    snippet: str = ""
    date: str = Field("", description="Raw Date header text")


class IncomingMessage(BaseModel):
    """A message ready to be stored for the first time."""
    id: str
    from_address: str = ""
    subject: str = ""
    snippet: str = ""
    date: datetime


class BatchAction(str, Enum):
    """Bulk actions that mutate the remote mailbox."""
    ARCHIVE = "archive"
    DELETE = "delete"


class SuggestedAction(str, Enum):
    """Actions the classifier may suggest for a message."""
    ARCHIVE = "archive"
    DELETE = "delete"
    KEEP = "keep"
