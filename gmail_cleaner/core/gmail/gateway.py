"""
Mailbox Gateway

Abstract interface over the remote mailbox plus the Gmail API implementation.
The core only ever talks to MailboxGateway; GmailGateway is built per request
from an explicit GmailCredentials capability.
"""
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Sequence
import asyncio
import html
import logging

from google.auth.exceptions import GoogleAuthError
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from httplib2 import HttpLib2Error

from gmail_cleaner.core.config import Settings, get_settings
from .models import GmailCredentials, MessageIdPage, MessageMetadata

logger = logging.getLogger(__name__)

METADATA_HEADERS = ["From", "Subject", "Date"]


class MailboxGatewayError(Exception):
    """Transport failure talking to the remote mailbox"""
    pass


class MailboxAuthError(MailboxGatewayError):
    """The mailbox rejected the supplied credentials"""
    pass


class MailboxGateway(ABC):
    """
    Remote mailbox capability used by the sync and reconciliation engines.

    Implementations raise MailboxGatewayError for every transport failure.
    """

    @abstractmethod
    async def list_message_ids(self, page_token: Optional[str] = None) -> MessageIdPage:
        """
        List one page of message ids, newest first.

        Args:
            page_token: Continuation token from a previous page; None means newest page
        """

    @abstractmethod
    async def get_message_metadata(self, message_id: str) -> MessageMetadata:
        """Fetch From/Subject/Date headers and the snippet of one message."""

    @abstractmethod
    async def batch_mutate_labels(self,
                                  message_ids: Sequence[str],
                                  add_labels: Sequence[str],
                                  remove_labels: Sequence[str]) -> None:
        """Add/remove labels on many messages at once."""


def _header(headers: List[Dict[str, str]], name: str) -> str:
    """Case-insensitive header lookup, empty string when missing."""
    for header in headers:
        if header.get("name", "").lower() == name.lower():
            return header.get("value") or ""
    return ""


class GmailGateway(MailboxGateway):
    """Gmail API (v1) implementation of MailboxGateway."""

    def __init__(self,
                 service: Any,
                 user_id: str = "me",
                 page_size: int = 50,
                 label_ids: Optional[Sequence[str]] = None,
                 batch_modify_limit: int = 1000):
        """
        Initialize gateway around a googleapiclient Gmail resource.

        Args:
            service: Result of googleapiclient.discovery.build("gmail", "v1", ...)
            user_id: Gmail user id ("me" for the token owner)
            page_size: maxResults for message listing
            label_ids: Restrict listing to these labels (None lists everything)
            batch_modify_limit: Max ids per batchModify request
        """
        self.service = service
        self.user_id = user_id
        self.page_size = page_size
        self.label_ids = list(label_ids) if label_ids else None
        self.batch_modify_limit = batch_modify_limit

    @classmethod
    def from_credentials(cls, credentials: GmailCredentials, settings: Optional[Settings] = None) -> "GmailGateway":
        """Build a gateway bound to one access token."""
        settings = settings or get_settings()
        google_credentials = Credentials(token=credentials.access_token)
        service = build("gmail", "v1", credentials=google_credentials, cache_discovery=False)
        return cls(
            service,
            page_size=settings.sync_page_size,
            label_ids=settings.sync_label_ids_list,
            batch_modify_limit=settings.gmail_batch_modify_limit,
        )

    async def _execute(self, request_factory: Callable[[], Any], operation: str) -> Dict[str, Any]:
        """
        Run a blocking googleapiclient request off the event loop.

        Raises:
            MailboxAuthError: On 401/403 or credential errors
            MailboxGatewayError: On any other transport failure
        """
        try:
            return await asyncio.to_thread(lambda: request_factory().execute())
        except HttpError as e:
            status = getattr(e.resp, "status", None)
            if status in (401, 403):
                raise MailboxAuthError(f"Gmail rejected credentials during {operation} ({status})") from e
            raise MailboxGatewayError(f"Gmail {operation} failed ({status}): {e}") from e
        except GoogleAuthError as e:
            raise MailboxAuthError(f"Gmail authentication failed during {operation}: {e}") from e
        except (HttpLib2Error, OSError) as e:
            raise MailboxGatewayError(f"Gmail {operation} failed: {e}") from e

    async def list_message_ids(self, page_token: Optional[str] = None) -> MessageIdPage:
        params: Dict[str, Any] = {"userId": self.user_id, "maxResults": self.page_size}
        if page_token:
            params["pageToken"] = page_token
        if self.label_ids:
            params["labelIds"] = self.label_ids

        messages = self.service.users().messages()
        data = await self._execute(lambda: messages.list(**params), "list")

        ids = [item["id"] for item in data.get("messages", []) if item.get("id")]
        return MessageIdPage(ids=ids, next_page_token=data.get("nextPageToken") or None)

    async def get_message_metadata(self, message_id: str) -> MessageMetadata:
        messages = self.service.users().messages()
        data = await self._execute(
            lambda: messages.get(
                userId=self.user_id,
                id=message_id,
                format="metadata",
                metadataHeaders=METADATA_HEADERS,
            ),
            f"get {message_id}",
        )

        headers = (data.get("payload") or {}).get("headers") or []
        return MessageMetadata(
            from_address=_header(headers, "From"),
            subject=_header(headers, "Subject"),
            snippet=html.unescape(data.get("snippet") or ""),
            date=_header(headers, "Date"),
        )

    async def batch_mutate_labels(self,
                                  message_ids: Sequence[str],
                                  add_labels: Sequence[str],
                                  remove_labels: Sequence[str]) -> None:
        ids = list(message_ids)
        messages = self.service.users().messages()

        for start in range(0, len(ids), self.batch_modify_limit):
            chunk = ids[start:start + self.batch_modify_limit]
            body: Dict[str, Any] = {"ids": chunk}
            if add_labels:
                body["addLabelIds"] = list(add_labels)
            if remove_labels:
                body["removeLabelIds"] = list(remove_labels)

            await self._execute(
                lambda body=body: messages.batchModify(userId=self.user_id, body=body),
                "batchModify",
            )
            logger.debug(f"batchModify applied to {len(chunk)} message(s)")
