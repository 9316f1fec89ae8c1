"""
Batch Actions Service

Applies bulk archive/delete to the remote mailbox, then drops the affected
messages from the local mirror:
- delete: add TRASH, remove INBOX
- archive: remove INBOX

The remote mailbox is the source of truth. Local rows are only removed after
the remote mutation succeeded; a failed remote call leaves the store untouched.
"""
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple, Union
import logging

from sqlalchemy.exc import SQLAlchemyError

from gmail_cleaner.core.config import Settings, get_settings
from gmail_cleaner.core.database.repository import MessageRepository
from .gateway import MailboxAuthError, MailboxGateway, MailboxGatewayError
from .models import BatchAction

logger = logging.getLogger(__name__)


class InvalidBatchActionError(ValueError):
    """Batch action request rejected before any remote call"""
    pass


@dataclass
class BatchActionResult:
    """Outcome of a batch action."""
    success: bool
    count: int = 0
    deleted_locally: int = 0
    error: Optional[str] = None
    auth_failed: bool = False


def parse_batch_action(action: Union[str, BatchAction]) -> BatchAction:
    """
    Validate an action value.

    Raises:
        InvalidBatchActionError: For anything other than archive/delete
    """
    if isinstance(action, BatchAction):
        return action
    try:
        return BatchAction(str(action).strip().lower())
    except ValueError:
        allowed = ", ".join(a.value for a in BatchAction)
        raise InvalidBatchActionError(f"Unknown action '{action}'. Use one of: {allowed}")


class ReconciliationEngine:
    """Service for bulk remote label mutations kept in step with the local store"""

    def __init__(self, repository: MessageRepository, settings: Optional[Settings] = None):
        self.repository = repository
        self.settings = settings or get_settings()

    def label_changes(self, action: BatchAction) -> Tuple[List[str], List[str]]:
        """Labels to (add, remove) for an action."""
        if action is BatchAction.DELETE:
            return [self.settings.label_trash], [self.settings.label_inbox]
        return [], [self.settings.label_inbox]

    async def apply_batch_action(self,
                                 mailbox: MailboxGateway,
                                 user_id: str,
                                 message_ids: Iterable[str],
                                 action: Union[str, BatchAction]) -> BatchActionResult:
        """
        Archive or delete many messages.

        Args:
            mailbox: Gateway bound to the caller's credentials
            user_id: Local user owning the mirror
            message_ids: Non-empty collection of Gmail message ids
            action: "archive" or "delete"

        Returns:
            BatchActionResult; success=False only when the remote call failed

        Raises:
            InvalidBatchActionError: Unknown action or no ids (nothing is sent)
        """
        parsed_action = parse_batch_action(action)

        # De-duplicate, keep caller order
        ids = list(dict.fromkeys(mid for mid in message_ids if mid))
        if not ids:
            raise InvalidBatchActionError("At least one message id is required")

        add_labels, remove_labels = self.label_changes(parsed_action)

        try:
            await mailbox.batch_mutate_labels(ids, add_labels, remove_labels)
        except MailboxGatewayError as e:
            logger.error(f"Batch {parsed_action.value} of {len(ids)} message(s) failed for {user_id}: {e}")
            return BatchActionResult(
                success=False, count=0, error=str(e), auth_failed=isinstance(e, MailboxAuthError)
            )

        logger.info(f"Batch {parsed_action.value} applied remotely to {len(ids)} message(s) for {user_id}")

        try:
            deleted = self.repository.delete_many(user_id, ids)
        except SQLAlchemyError as e:
            # Remote already changed; the next sync pass no longer lists these ids
            logger.warning(
                f"Remote {parsed_action.value} succeeded but local cleanup failed for {user_id}: {e}"
            )
            return BatchActionResult(success=True, count=len(ids), deleted_locally=0)

        if deleted != len(ids):
            logger.debug(f"Removed {deleted}/{len(ids)} local message(s); the rest were not mirrored")

        return BatchActionResult(success=True, count=len(ids), deleted_locally=deleted)
