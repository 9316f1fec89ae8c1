"""Gmail mailbox access and mailbox data types"""
from .models import (
    GmailCredentials,
    SyncCursor,
    MessageIdPage,
    MessageMetadata,
    IncomingMessage,
    BatchAction,
    SuggestedAction,
)
from .gateway import MailboxGateway, GmailGateway, MailboxGatewayError, MailboxAuthError

__all__ = [
    'GmailCredentials',
    'SyncCursor',
    'MessageIdPage',
    'MessageMetadata',
    'IncomingMessage',
    'BatchAction',
    'SuggestedAction',
    'MailboxGateway',
    'GmailGateway',
    'MailboxGatewayError',
    'MailboxAuthError',
]
