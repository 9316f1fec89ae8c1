"""
FastAPI dependencies wiring the engines to their collaborators.

Tests override these through app.dependency_overrides.
"""
from typing import Optional
import logging

from fastapi import Depends, HTTPException, status
from sqlalchemy.orm import Session

from gmail_cleaner.api.auth import get_gmail_credentials
from gmail_cleaner.core.ai.providers import BaseLLMProvider, ClassificationProviderError, get_provider
from gmail_cleaner.core.config import Settings, get_settings
from gmail_cleaner.core.database import MessageRepository, get_db
from gmail_cleaner.core.gmail.gateway import GmailGateway, MailboxGateway
from gmail_cleaner.core.gmail.models import GmailCredentials

logger = logging.getLogger(__name__)

_provider: Optional[BaseLLMProvider] = None


def get_app_settings() -> Settings:
    return get_settings()


def get_repository(db: Session = Depends(get_db),
                   settings: Settings = Depends(get_app_settings)) -> MessageRepository:
    return MessageRepository(db, snippet_max_chars=settings.snippet_max_chars)


def get_mailbox(credentials: GmailCredentials = Depends(get_gmail_credentials),
                settings: Settings = Depends(get_app_settings)) -> MailboxGateway:
    """Gmail gateway bound to this request's access token."""
    return GmailGateway.from_credentials(credentials, settings)


def get_classification_provider(settings: Settings = Depends(get_app_settings)) -> BaseLLMProvider:
    """
    Shared LLM provider (kept across requests so usage stats accumulate).

    Raises:
        HTTPException: 503 if the provider is not configured
    """
    global _provider
    if _provider is None:
        try:
            _provider = get_provider(settings)
        except ClassificationProviderError as e:
            logger.error(f"Classification provider unavailable: {e}")
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Classification provider not configured",
            )
    return _provider
