"""
Sync Engine

Incrementally mirrors one page of mailbox history into the local store.

The engine is stateless with respect to cursors: the caller passes the cursor
it got from the previous call and persists the one returned. Ingestion is
at-least-once and idempotent; a message that fails this round is picked up on a
later sync of the same range if it is still absent.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Optional, Tuple
import asyncio
import logging

from sqlalchemy.exc import SQLAlchemyError

from gmail_cleaner.core.database.repository import MessageRepository
from .gateway import MailboxAuthError, MailboxGateway, MailboxGatewayError
from .models import IncomingMessage, MessageMetadata, SyncCursor

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    """Outcome of syncing one page."""
    synced_count: int = 0
    next_cursor: Optional[SyncCursor] = None
    skipped_count: int = 0
    failed_count: int = 0
    error: Optional[str] = None
    auth_failed: bool = False

    @property
    def success(self) -> bool:
        return self.error is None


def parse_message_date(raw: Optional[str], now: Optional[datetime] = None) -> datetime:
    """
    Parse an RFC 2822 Date header, falling back to the ingestion time.

    Naive results are taken as UTC. The result is always normalized to UTC so
    dates order correctly on backends that drop the offset.
    """
    fallback = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    if not raw:
        return fallback

    try:
        parsed = parsedate_to_datetime(raw.strip())
    except (TypeError, ValueError, IndexError):
        logger.debug(f"Unparsable Date header {raw!r}, using ingestion time")
        return fallback

    if parsed is None:
        return fallback
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


class SyncEngine:
    """Drives ingestion from a MailboxGateway into the MessageRepository."""

    def __init__(self, repository: MessageRepository, max_concurrency: int = 10):
        """
        Args:
            repository: Local message store
            max_concurrency: Parallel metadata fetches per page
        """
        self.repository = repository
        self.max_concurrency = max(1, max_concurrency)

    async def sync(self,
                   mailbox: MailboxGateway,
                   user_id: str,
                   cursor: Optional[SyncCursor] = None) -> SyncResult:
        """
        Ingest one page of message ids.

        Args:
            mailbox: Gateway bound to the caller's credentials
            user_id: Local user owning the mirror
            cursor: Resume point from a previous call; None means the newest page

        Returns:
            SyncResult with the count of newly stored messages and the cursor for
            the next (older) page, absent when history is exhausted
        """
        try:
            page = await mailbox.list_message_ids(cursor.token if cursor else None)
        except MailboxGatewayError as e:
            logger.error(f"Sync for {user_id} failed listing messages: {e}")
            return SyncResult(error=str(e), auth_failed=isinstance(e, MailboxAuthError))

        result = SyncResult(
            next_cursor=SyncCursor(page.next_page_token) if page.next_page_token else None
        )

        pending = []
        seen = set()
        for message_id in page.ids:
            if message_id in seen:
                continue
            seen.add(message_id)
            if self._already_stored(user_id, message_id):
                result.skipped_count += 1
            else:
                pending.append(message_id)

        if not pending:
            logger.info(f"Sync for {user_id}: nothing new in page of {len(page.ids)}")
            return result

        semaphore = asyncio.Semaphore(self.max_concurrency)
        fetched = await asyncio.gather(
            *(self._fetch_metadata(mailbox, message_id, semaphore) for message_id in pending)
        )

        # Store writes stay on this task; the session is not shared across threads
        for message_id, metadata in fetched:
            if metadata is None:
                result.failed_count += 1
                continue

            incoming = IncomingMessage(
                id=message_id,
                from_address=metadata.from_address,
                subject=metadata.subject,
                snippet=metadata.snippet,
                date=parse_message_date(metadata.date),
            )

            try:
                inserted = self.repository.upsert_if_absent(user_id, incoming)
            except SQLAlchemyError as e:
                logger.warning(f"Failed to store message {message_id} for {user_id}: {e}")
                result.failed_count += 1
                continue

            if inserted:
                result.synced_count += 1
            else:
                result.skipped_count += 1

        logger.info(
            f"Sync for {user_id}: {result.synced_count} new, {result.skipped_count} already stored, "
            f"{result.failed_count} failed (more history: {result.next_cursor is not None})"
        )
        return result

    def _already_stored(self, user_id: str, message_id: str) -> bool:
        try:
            return self.repository.exists(user_id, message_id)
        except SQLAlchemyError as e:
            # The insert path still enforces uniqueness
            logger.warning(f"Existence check failed for {message_id}: {e}")
            self.repository.db.rollback()
            return False

    async def _fetch_metadata(self,
                              mailbox: MailboxGateway,
                              message_id: str,
                              semaphore: asyncio.Semaphore) -> Tuple[str, Optional[MessageMetadata]]:
        async with semaphore:
            try:
                return message_id, await mailbox.get_message_metadata(message_id)
            except MailboxGatewayError as e:
                logger.warning(f"Skipping message {message_id}: metadata fetch failed: {e}")
                return message_id, None
