"""
FastAPI Application Entry Point

This module initializes the FastAPI application and configures:
- API routes
- Middleware (logging, CORS)
- Rate limiting and error handlers
- The record store handle shared by all requests (app.state.store)

Run with:
    uvicorn shortener.main:app
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from shortener.api import endpoints
from shortener.api.errors import register_exception_handlers
from shortener.core.rate_limit import limiter
from shortener.core.setting import settings
from shortener.db.session import RecordStore
from shortener.middleware.logging import add_logging_middleware

logger = logging.getLogger(__name__)

VERSION = "1.0.0"

app = FastAPI(
    title="URL Shortener Service",
    description="Short links with custom codes, expiry, visit counts and API-key ownership",
    version=VERSION,
    docs_url="/docs",  # Swagger UI documentation
    redoc_url="/redoc",  # ReDoc documentation
)

# Created once per process; connects lazily on first use
app.state.store = RecordStore(
    settings.DATABASE_URL,
    create_tables=settings.AUTO_CREATE_TABLES
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
register_exception_handlers(app)

add_logging_middleware(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Health endpoints defined before router to match before catch-all route
@app.get("/", tags=["Health"])
async def root():
    return {
        "message": "URL Shortener Service",
        "version": VERSION,
        "docs": "/docs"
    }


@app.get("/health", tags=["Health"])
async def health_check(request: Request):
    """
    Health check endpoint for monitoring.

    Returns 503 when the record store cannot be reached.
    """
    store: RecordStore = request.app.state.store
    try:
        await store.connect()
        async with store.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        logger.warning(f"Health check failed: {e}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unhealthy", "database": "unreachable"}
        )
    return {"status": "healthy", "database": "ok"}


app.include_router(endpoints.router, tags=["URL Shortener"])


@app.on_event("startup")
async def startup_event():
    """Configure logging and connect the record store."""
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    await app.state.store.connect()
    logger.info(f"URL shortener started (env={settings.ENV_SETTING.value})")


@app.on_event("shutdown")
async def shutdown_event():
    """Release database connections."""
    await app.state.store.dispose()
