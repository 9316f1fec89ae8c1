"""Local message store"""
from .models import Base, Message
from .connection import get_db, init_db, create_tables, drop_tables
from .repository import MessageRepository, MessagePage

__all__ = [
    'Base',
    'Message',
    'MessageRepository',
    'MessagePage',
    'get_db',
    'init_db',
    'create_tables',
    'drop_tables',
]
