"""
Bearer token extraction for FastAPI

The Authorization header carries the caller's Gmail OAuth access token. It is
turned into a per-request GmailCredentials capability and never stored.
"""
from typing import Optional
from fastapi import HTTPException, Security, status
from fastapi.security import APIKeyHeader

from gmail_cleaner.core.gmail.models import GmailCredentials

AUTH_HEADER_NAME = "Authorization"
BEARER_PREFIX = "Bearer "

auth_header = APIKeyHeader(name=AUTH_HEADER_NAME, auto_error=False)


async def get_gmail_credentials(
    authorization: Optional[str] = Security(auth_header)
) -> GmailCredentials:
    """
    Read the access token from the Authorization header.

    Accepts "Bearer <token>" as well as a bare token.

    Raises:
        HTTPException: 401 if the header is missing or empty
    """
    token = (authorization or "").strip()
    if token[:len(BEARER_PREFIX)].lower() == BEARER_PREFIX.lower():
        token = token[len(BEARER_PREFIX):].strip()

    if not token or token.lower() == BEARER_PREFIX.strip().lower():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No Access Token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return GmailCredentials(access_token=token)
