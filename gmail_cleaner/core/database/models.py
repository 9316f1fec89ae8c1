"""
SQLAlchemy Database Models

Stores the local mirror of a user's mailbox:
- Message metadata fetched from Gmail (sender, subject, snippet, date)
- AI classification (category, suggested action, reasoning)

Identity: a message is identified by the Gmail id, unique per local user.
The same Gmail id may appear for two different users without conflict.
"""
from sqlalchemy import Column, String, Boolean, DateTime, Text, Index, Uuid
from sqlalchemy.orm import declarative_base
from datetime import datetime, timezone
import uuid

Base = declarative_base()


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class Message(Base):
    """
    Mirrored Gmail message.

    Created unanalyzed by the sync engine, updated once by the classification
    engine, removed by the reconciliation engine after a confirmed remote
    archive/delete.
    """
    __tablename__ = "messages"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(String(200), nullable=False)
    message_id = Column(String(200), nullable=False)  # Gmail message id, never reassigned

    # Headers
    from_address = Column(String(500), nullable=False, default="")
    subject = Column(Text, nullable=False, default="")
    snippet = Column(Text, nullable=False, default="")
    date = Column(DateTime(timezone=True), nullable=False)

    # Classification (null until analyzed)
    is_analyzed = Column(Boolean, nullable=False, default=False)
    category = Column(String(200))
    suggested_action = Column(String(20))  # archive | delete | keep
    reasoning = Column(Text)

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index('ix_messages_user_message_id', 'user_id', 'message_id', unique=True),  # Unique per user
        Index('ix_messages_user_analyzed_date', 'user_id', 'is_analyzed', 'date'),  # For pending selection
        Index('ix_messages_user_category', 'user_id', 'category'),
    )

    def __repr__(self) -> str:
        return f"<Message {self.user_id}/{self.message_id} analyzed={self.is_analyzed}>"
