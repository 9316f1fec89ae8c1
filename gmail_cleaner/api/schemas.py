"""
Pydantic schemas for FastAPI endpoints
"""
from typing import Optional, List
from datetime import datetime
from pydantic import BaseModel, Field

from gmail_cleaner.core.gmail.models import BatchAction


class MessageResponse(BaseModel):
    """Locally mirrored message"""
    id: str = Field(..., validation_alias="message_id")
    from_address: str
    subject: str
    snippet: str
    date: datetime
    is_analyzed: bool
    category: Optional[str] = None
    suggested_action: Optional[str] = None
    reasoning: Optional[str] = None

    class Config:
        from_attributes = True
        populate_by_name = True


class MessageListResponse(BaseModel):
    """Paginated local listing"""
    items: List[MessageResponse]
    total: int
    page: int
    page_size: int
    pages: int


class SyncResponse(BaseModel):
    """Result of syncing one page of mailbox history"""
    synced_count: int
    next_cursor: Optional[str] = Field(None, description="Pass back as next_token to continue with older mail")
    skipped_count: int = 0
    failed_count: int = 0


class ClassificationResponse(BaseModel):
    """Result of one classification batch"""
    processed_count: int
    error: Optional[str] = None
    selected_count: int = 0
    malformed_count: int = 0


class BatchActionRequest(BaseModel):
    """Request to archive or delete several messages"""
    ids: List[str] = Field(..., min_length=1)
    action: str = Field(..., description="archive or delete")


class BatchActionResponse(BaseModel):
    """Result of a batch action"""
    success: bool
    count: int
    action: BatchAction
    deleted_locally: int = 0
