"""
Database Repository - High-level operations on the local message mirror.

Every operation is scoped by the local user id. Each write commits on its own,
so one message's ingestion or update never depends on its neighbours.
"""
from typing import Optional, List, Dict, Any, Iterable
from dataclasses import dataclass
from sqlalchemy.orm import Session
from sqlalchemy import desc
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
import logging

from .models import Message, utcnow
from gmail_cleaner.core.gmail.models import IncomingMessage, SuggestedAction

logger = logging.getLogger(__name__)

# Columns callers may change through update_by_id
UPDATABLE_FIELDS = frozenset({
    "category", "suggested_action", "reasoning", "is_analyzed",
    "from_address", "subject", "snippet", "date",
})

# Large IN clauses are split to stay under driver parameter limits
DELETE_CHUNK_SIZE = 500


def sanitize_text(text: Optional[str], field_name: str = "text", max_length: Optional[int] = None) -> Optional[str]:
    """
    Remove NUL bytes and undecodable surrogates, optionally truncating.

    PostgreSQL text fields cannot contain NUL (0x00) characters and Gmail
    snippets occasionally carry them.

    Args:
        text: Input text
        field_name: Name of field being sanitized (for logging)
        max_length: Maximum length for field (truncates if longer)

    Returns:
        Sanitized text, or None if input was None
    """
    if text is None:
        return None

    sanitized = text
    if '\x00' in sanitized:
        logger.debug(f"Sanitized {sanitized.count(chr(0))} NUL byte(s) from {field_name}")
        sanitized = sanitized.replace('\x00', '')

    try:
        sanitized.encode('utf-8', errors='strict')
    except UnicodeEncodeError:
        sanitized = sanitized.encode('utf-8', errors='replace').decode('utf-8', errors='replace')
        logger.debug(f"Removed surrogate characters from {field_name}")

    if max_length is not None and len(sanitized) > max_length:
        logger.debug(f"Truncated {field_name} from {len(sanitized)} to {max_length} characters")
        sanitized = sanitized[:max_length]

    return sanitized


@dataclass
class MessagePage:
    """One page of locally stored messages."""
    items: List[Message]
    total: int
    page: int
    page_size: int

    @property
    def pages(self) -> int:
        return (self.total + self.page_size - 1) // self.page_size


class MessageRepository:
    """
    Repository pattern for message store operations.
    Shared by the sync, classification and reconciliation engines and the API.
    """

    def __init__(self, db: Session, snippet_max_chars: Optional[int] = None):
        """
        Initialize repository with database session.

        Args:
            db: SQLAlchemy session
            snippet_max_chars: Truncate stored snippets to this length
        """
        self.db = db
        self.snippet_max_chars = snippet_max_chars

    def exists(self, user_id: str, message_id: str) -> bool:
        """Check whether a message is already mirrored for this user."""
        found = self.db.query(Message.id).filter(
            Message.user_id == user_id,
            Message.message_id == message_id
        ).first()
        return found is not None

    def upsert_if_absent(self, user_id: str, message: IncomingMessage) -> bool:
        """
        Insert a new unanalyzed message unless the (user, id) pair already exists.

        The unique index is the final arbiter: a concurrent insert of the same id
        surfaces as IntegrityError and is treated as "already present".

        Returns:
            True if a row was inserted, False if it was already there

        Raises:
            SQLAlchemyError: For storage failures other than the uniqueness conflict
        """
        row = Message(
            user_id=user_id,
            message_id=message.id,
            from_address=sanitize_text(message.from_address, "from_address", 500) or "",
            subject=sanitize_text(message.subject, "subject") or "",
            snippet=sanitize_text(message.snippet, "snippet", self.snippet_max_chars) or "",
            date=message.date,
            is_analyzed=False,
        )

        try:
            self.db.add(row)
            self.db.commit()
            return True
        except IntegrityError:
            self.db.rollback()
            logger.debug(f"Message {message.id} already stored for {user_id}, skipping")
            return False
        except SQLAlchemyError:
            self.db.rollback()
            raise

    def find_unanalyzed(self, user_id: str, limit: int) -> List[Message]:
        """Pending messages for classification, most recent first."""
        return (
            self.db.query(Message)
            .filter(Message.user_id == user_id, Message.is_analyzed.is_(False))
            .order_by(desc(Message.date))
            .limit(limit)
            .all()
        )

    def find_distinct_categories(self, user_id: str) -> List[str]:
        """Distinct non-null categories already assigned for this user (sorted)."""
        rows = (
            self.db.query(Message.category)
            .filter(Message.user_id == user_id, Message.category.isnot(None))
            .distinct()
            .all()
        )
        return sorted(category for (category,) in rows if category)

    def find_page(self,
                  user_id: str,
                  category: Optional[str] = None,
                  page: int = 1,
                  page_size: int = 20,
                  suggested_action: Optional[str] = None,
                  is_analyzed: Optional[bool] = None) -> MessagePage:
        """
        Paginated listing, most recent first.

        Args:
            user_id: Local user
            category: Exact category filter; None or "All" disables it
            page: 1-based page number
            page_size: Items per page
            suggested_action: Optional action filter (archive/delete/keep)
            is_analyzed: Optional analyzed-state filter
        """
        page = max(page, 1)
        query = self.db.query(Message).filter(Message.user_id == user_id)

        if category and category != "All":
            query = query.filter(Message.category == category)

        if suggested_action:
            query = query.filter(Message.suggested_action == suggested_action.lower())

        if is_analyzed is not None:
            query = query.filter(Message.is_analyzed.is_(is_analyzed))

        total = query.count()
        offset = (page - 1) * page_size
        items = query.order_by(desc(Message.date)).offset(offset).limit(page_size).all()

        return MessagePage(items=items, total=total, page=page, page_size=page_size)

    def update_by_id(self, user_id: str, message_id: str, fields: Dict[str, Any]) -> int:
        """
        Update one message in place.

        A message deleted concurrently simply yields zero affected rows.

        Returns:
            Number of affected rows (0 or 1)

        Raises:
            ValueError: If fields contains a column that may not be updated, an
                unknown suggested action, or marks the message analyzed without
                both a category and a suggested action
        """
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        values = dict(fields)
        if values.get("suggested_action") is not None:
            try:
                values["suggested_action"] = SuggestedAction(values["suggested_action"]).value
            except ValueError:
                raise ValueError(f"Unknown suggested action: {values['suggested_action']!r}")

        # An analyzed message always carries both a category and an action
        if values.get("is_analyzed") and not (values.get("category") and values.get("suggested_action")):
            raise ValueError("is_analyzed requires category and suggested_action in the same update")

        values["updated_at"] = utcnow()

        try:
            affected = (
                self.db.query(Message)
                .filter(Message.user_id == user_id, Message.message_id == message_id)
                .update(values, synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise

        return affected

    def mark_classified(self, user_id: str, message_id: str, category: str,
                        suggested_action: str, reasoning: str = "") -> int:
        """Store a classification; category and action are always set together."""
        return self.update_by_id(user_id, message_id, {
            "category": category,
            "suggested_action": suggested_action,
            "reasoning": reasoning,
            "is_analyzed": True,
        })

    def delete_many(self, user_id: str, message_ids: Iterable[str]) -> int:
        """
        Delete the given messages for this user regardless of their classification state.

        Returns:
            Number of deleted rows
        """
        ids = list(message_ids)
        if not ids:
            return 0

        deleted = 0
        try:
            for start in range(0, len(ids), DELETE_CHUNK_SIZE):
                chunk = ids[start:start + DELETE_CHUNK_SIZE]
                deleted += (
                    self.db.query(Message)
                    .filter(Message.user_id == user_id, Message.message_id.in_(chunk))
                    .delete(synchronize_session=False)
                )
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise

        return deleted
