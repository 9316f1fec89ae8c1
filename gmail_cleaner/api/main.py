"""
FastAPI backend for the Gmail cleaner

Mirrors the mailbox locally, classifies it with an LLM and applies bulk
archive/delete actions.
"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
import logging
import re
import uuid

from gmail_cleaner.api.routes import gmail
from gmail_cleaner.core.config import get_settings
from gmail_cleaner.core.database import create_tables, get_db, init_db

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format=settings.log_format,
)
for noisy in ("httpx", "httpcore", "openai"):
    logging.getLogger(noisy).setLevel(logging.WARNING)
logging.getLogger("googleapiclient.discovery_cache").setLevel(logging.ERROR)

logger = logging.getLogger(__name__)
error_logger = logging.getLogger("api.errors")

app = FastAPI(
    title="Gmail Cleaner API",
    description="Gmail mirror with AI classification and batch archive/delete",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)


def _sanitize_error_message(message: str) -> str:
    """
    Scrub potential secrets from exception messages before logging.

    Covers database URLs with passwords, API keys and bearer tokens.
    """
    sanitized = re.sub(
        r'(postgresql|postgres|mysql|sqlite)://[^:]+:[^@]+@',
        r'\1://[USER]:[REDACTED]@',
        message,
        flags=re.IGNORECASE
    )

    sensitive_patterns = [
        (r'(OPENAI_API_KEY|ANTHROPIC_API_KEY|GMAIL_ACCESS_TOKEN)[=:\s]+[^\s,;]+', r'\1=[REDACTED]'),
        (r'(password|passwd|secret|token|key)["\']?\s*[=:]\s*["\']?[^"\'\s,;]+', r'\1=[REDACTED]'),
        (r'Bearer\s+[A-Za-z0-9._~+/=-]+', 'Bearer [REDACTED]'),
        # Google OAuth access tokens
        (r'ya29\.[A-Za-z0-9._-]+', '[REDACTED_TOKEN]'),
        (r'sk-[A-Za-z0-9_-]{16,}', '[REDACTED_KEY]'),
    ]
    for pattern, replacement in sensitive_patterns:
        sanitized = re.sub(pattern, replacement, sanitized, flags=re.IGNORECASE)

    return sanitized


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """
    Log unexpected errors with an error id and return a generic message.
    """
    error_id = str(uuid.uuid4())

    error_logger.error(
        f"Error {error_id}: {type(exc).__name__}: {_sanitize_error_message(str(exc))}",
        exc_info=True,
        extra={
            "error_id": error_id,
            "path": request.url.path,
            "method": request.method,
        }
    )

    return JSONResponse(
        status_code=500,
        content={
            "detail": "An internal error occurred",
            "error_id": error_id,
            "message": "The error has been logged. If you need assistance, reference this error ID."
        }
    )


@app.on_event("startup")
async def startup_event():
    """Initialize database connection and schema on startup"""
    try:
        init_db()
        create_tables()
        logger.info("Database initialized successfully")
    except RuntimeError as e:
        logger.error(f"Failed to initialize database: {e}")
        # Continue anyway; /health reports the database as unavailable


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Authorization", "Content-Type"],
)

app.include_router(gmail.router)


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "name": "Gmail Cleaner API",
        "version": "1.0.0",
        "status": "running",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint (no auth required)"""
    health = {
        "status": "healthy",
        "version": "1.0.0",
        "database": "unknown",
    }

    try:
        db = next(get_db())
        try:
            db.execute(text("SELECT 1"))
        finally:
            db.close()
        health["database"] = "connected"
    except (RuntimeError, SQLAlchemyError) as e:
        health["status"] = "degraded"
        health["database"] = "unavailable"
        logger.warning(f"Health check database error: {_sanitize_error_message(str(e))}")

    return health


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.api_port)
