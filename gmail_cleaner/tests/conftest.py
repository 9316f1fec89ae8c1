"""
Shared fixtures: an in-memory message store plus in-memory fakes for the
mailbox and the LLM provider.
"""
import os

# Keep a developer's .env from leaking into tests
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LLM_PROVIDER", "openai")

import pytest
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from gmail_cleaner.core.ai.providers.base import BaseLLMProvider, LLMResponse, TokenUsage
from gmail_cleaner.core.config import Settings
from gmail_cleaner.core.database.models import Base
from gmail_cleaner.core.database.repository import MessageRepository
from gmail_cleaner.core.gmail.gateway import MailboxGateway, MailboxGatewayError
from gmail_cleaner.core.gmail.models import IncomingMessage, MessageIdPage, MessageMetadata

USER_ID = "user-123"
BASE_DATE = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)


class FakeMailbox(MailboxGateway):
    """
    In-memory mailbox.

    pages maps a page token (None for the newest page) to (ids, next_token).
    """

    def __init__(self,
                 pages: Optional[Dict[Optional[str], Tuple[List[str], Optional[str]]]] = None,
                 metadata: Optional[Dict[str, MessageMetadata]] = None,
                 failing_ids: Sequence[str] = (),
                 list_error: Optional[Exception] = None,
                 mutate_error: Optional[Exception] = None):
        self.pages = pages or {}
        self.metadata = metadata or {}
        self.failing_ids = set(failing_ids)
        self.list_error = list_error
        self.mutate_error = mutate_error

        self.list_calls: List[Optional[str]] = []
        self.metadata_calls: List[str] = []
        self.mutations: List[Tuple[List[str], List[str], List[str]]] = []

    async def list_message_ids(self, page_token: Optional[str] = None) -> MessageIdPage:
        self.list_calls.append(page_token)
        if self.list_error:
            raise self.list_error
        ids, next_token = self.pages.get(page_token, ([], None))
        return MessageIdPage(ids=list(ids), next_page_token=next_token)

    async def get_message_metadata(self, message_id: str) -> MessageMetadata:
        self.metadata_calls.append(message_id)
        if message_id in self.failing_ids:
            raise MailboxGatewayError(f"metadata fetch failed for {message_id}")
        if message_id in self.metadata:
            return self.metadata[message_id]
        return MessageMetadata(
            from_address=f"sender-{message_id}@example.com",
            subject=f"Subject {message_id}",
            snippet=f"Snippet for {message_id}",
            date="Mon, 15 Jan 2024 12:00:00 +0000",
        )

    async def batch_mutate_labels(self,
                                  message_ids: Sequence[str],
                                  add_labels: Sequence[str],
                                  remove_labels: Sequence[str]) -> None:
        if self.mutate_error:
            raise self.mutate_error
        self.mutations.append((list(message_ids), list(add_labels), list(remove_labels)))


class FakeLLMProvider(BaseLLMProvider):
    """Provider returning canned replies (or the output of reply_fn) and recording prompts."""

    def __init__(self,
                 replies: Sequence[str] = (),
                 reply_fn: Optional[Callable[[str, str], str]] = None,
                 error: Optional[Exception] = None):
        super().__init__(model="fake-model", temperature=0.0)
        self.replies = list(replies)
        self.reply_fn = reply_fn
        self.error = error
        self.calls: List[Tuple[str, str]] = []

    async def _complete_impl(self, system_prompt: str, user_prompt: str) -> LLMResponse:
        self.calls.append((system_prompt, user_prompt))
        if self.error:
            raise self.error
        if self.reply_fn:
            text = self.reply_fn(system_prompt, user_prompt)
        else:
            text = self.replies.pop(0) if self.replies else "[]"
        return LLMResponse(text=text, usage=TokenUsage.estimate(system_prompt + user_prompt, text))


@pytest.fixture
def db_engine():
    """Fresh in-memory SQLite database per test"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(db_engine):
    session = sessionmaker(bind=db_engine, autocommit=False, autoflush=False)()
    yield session
    session.close()


@pytest.fixture
def repository(db_session):
    return MessageRepository(db_session, snippet_max_chars=500)


@pytest.fixture
def settings():
    """Settings isolated from the environment"""
    return Settings(
        _env_file=None,
        database_url="sqlite://",
        default_user_id=USER_ID,
        classification_batch_size=20,
        classification_snippet_chars=200,
    )


@pytest.fixture
def user_id():
    return USER_ID


@pytest.fixture
def make_mailbox():
    """Factory for FakeMailbox"""
    return FakeMailbox


@pytest.fixture
def make_provider():
    """Factory for FakeLLMProvider"""
    return FakeLLMProvider


@pytest.fixture
def store_message(repository):
    """Insert an unanalyzed message; age_minutes pushes its date into the past."""
    def _store(message_id: str, user_id: str = USER_ID, age_minutes: int = 0, **fields) -> None:
        incoming = IncomingMessage(
            id=message_id,
            from_address=fields.pop("from_address", f"sender-{message_id}@example.com"),
            subject=fields.pop("subject", f"Subject {message_id}"),
            snippet=fields.pop("snippet", f"Snippet for {message_id}"),
            date=BASE_DATE - timedelta(minutes=age_minutes),
        )
        assert repository.upsert_if_absent(user_id, incoming)
        if fields:
            repository.update_by_id(user_id, message_id, fields)
    return _store
