"""
Gmail mirror API endpoints

Sync, classify, list and batch-act on the locally mirrored mailbox.
All endpoints act for the configured default user.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status
import logging

from gmail_cleaner.api.dependencies import (
    get_app_settings,
    get_classification_provider,
    get_mailbox,
    get_repository,
)
from gmail_cleaner.api.schemas import (
    BatchActionRequest,
    BatchActionResponse,
    ClassificationResponse,
    MessageListResponse,
    MessageResponse,
    SyncResponse,
)
from gmail_cleaner.core.ai.classifier import ClassificationEngine
from gmail_cleaner.core.ai.providers import BaseLLMProvider
from gmail_cleaner.core.config import Settings
from gmail_cleaner.core.database import MessageRepository
from gmail_cleaner.core.gmail.actions import InvalidBatchActionError, ReconciliationEngine, parse_batch_action
from gmail_cleaner.core.gmail.gateway import MailboxGateway
from gmail_cleaner.core.gmail.models import SyncCursor
from gmail_cleaner.core.gmail.sync import SyncEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/gmail", tags=["gmail"])


def _mailbox_failure(error: Optional[str], auth_failed: bool) -> HTTPException:
    if auth_failed:
        return HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail=f"Mailbox request failed: {error}",
    )


@router.get("/sync", response_model=SyncResponse)
async def sync_messages(
    next_token: Optional[str] = Query(None, description="Cursor from a previous sync; omit for the newest page"),
    mailbox: MailboxGateway = Depends(get_mailbox),
    repository: MessageRepository = Depends(get_repository),
    settings: Settings = Depends(get_app_settings),
):
    """Sync one page of mail. Pass next_cursor back as next_token to go further back in history."""
    engine = SyncEngine(repository, max_concurrency=settings.sync_max_concurrency)
    cursor = SyncCursor(next_token) if next_token else None

    result = await engine.sync(mailbox, settings.default_user_id, cursor)
    if result.error:
        raise _mailbox_failure(result.error, result.auth_failed)

    return SyncResponse(
        synced_count=result.synced_count,
        next_cursor=result.next_cursor.token if result.next_cursor else None,
        skipped_count=result.skipped_count,
        failed_count=result.failed_count,
    )


@router.get("/categories", response_model=List[str])
async def list_categories(
    repository: MessageRepository = Depends(get_repository),
    settings: Settings = Depends(get_app_settings),
):
    """Categories assigned so far."""
    return repository.find_distinct_categories(settings.default_user_id)


@router.get("/analyze", response_model=ClassificationResponse)
async def analyze_messages(
    repository: MessageRepository = Depends(get_repository),
    provider: BaseLLMProvider = Depends(get_classification_provider),
    settings: Settings = Depends(get_app_settings),
):
    """
    Classify the next batch of unanalyzed messages.

    A malformed model reply is reported in the error field with status 200.
    """
    engine = ClassificationEngine(
        repository,
        provider,
        batch_size=settings.classification_batch_size,
        snippet_chars=settings.classification_snippet_chars,
    )
    result = await engine.classify_pending(settings.default_user_id)
    return ClassificationResponse(
        processed_count=result.processed_count,
        error=result.error,
        selected_count=result.selected_count,
        malformed_count=result.malformed_count,
    )


@router.get("/list", response_model=MessageListResponse)
async def list_messages(
    page: int = Query(1, ge=1, description="Page number"),
    category: str = Query("All", description="Category filter; 'All' disables it"),
    page_size: Optional[int] = Query(None, ge=1, le=100, description="Items per page"),
    suggested_action: Optional[str] = Query(None, description="Filter by suggested action (archive/delete/keep)"),
    is_analyzed: Optional[bool] = Query(None, description="Filter by analyzed state"),
    repository: MessageRepository = Depends(get_repository),
    settings: Settings = Depends(get_app_settings),
):
    """Paginated list of locally mirrored messages, newest first."""
    result = repository.find_page(
        settings.default_user_id,
        category=category,
        page=page,
        page_size=page_size or settings.list_page_size,
        suggested_action=suggested_action,
        is_analyzed=is_analyzed,
    )
    return MessageListResponse(
        items=[MessageResponse.model_validate(item) for item in result.items],
        total=result.total,
        page=result.page,
        page_size=result.page_size,
        pages=result.pages,
    )


@router.post("/batch-action", response_model=BatchActionResponse)
async def batch_action(
    request: BatchActionRequest,
    mailbox: MailboxGateway = Depends(get_mailbox),
    repository: MessageRepository = Depends(get_repository),
    settings: Settings = Depends(get_app_settings),
):
    """Archive or delete several messages in Gmail, then drop them from the local mirror."""
    try:
        action = parse_batch_action(request.action)
    except InvalidBatchActionError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    engine = ReconciliationEngine(repository, settings)
    try:
        result = await engine.apply_batch_action(mailbox, settings.default_user_id, request.ids, action)
    except InvalidBatchActionError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    if not result.success:
        raise _mailbox_failure(result.error, result.auth_failed)

    return BatchActionResponse(
        success=True,
        count=result.count,
        action=action,
        deleted_locally=result.deleted_locally,
    )
