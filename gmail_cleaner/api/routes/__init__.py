"""
API Routes
"""
from gmail_cleaner.api.routes import gmail

__all__ = ["gmail"]
