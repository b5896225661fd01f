"""
FastAPI Endpoints for URL Shortener Service

This module defines all REST API endpoints with minimal logic.
Endpoints only handle:
- Request parsing (Pydantic models)
- Rate limiting
- Shaping HTTP responses
- Delegating to the link registry and access gate

Typed service errors are turned into status codes by the handlers in
shortener.api.errors, so endpoints only catch where a route needs a status
different from the default mapping.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import RedirectResponse

from shortener.api.dependencies import get_caller, get_registry
from shortener.api.schemas import (
    BulkEntry,
    BulkFailure,
    BulkShortenRequest,
    BulkShortenResponse,
    DeleteRequest,
    DeleteResponse,
    LinkRecord,
    ShortenRequest,
    ShortenResponse,
    StatsResponse,
    UpdateExpiryRequest,
    UpdateExpiryResponse,
)
from shortener.core.clock import utcnow
from shortener.core.exceptions import NotFoundError, ValidationError
from shortener.core.rate_limit import RATE_LIMITS, limiter
from shortener.core.setting import settings
from shortener.core.validators import sanitize_short_code
from shortener.db.models import User
from shortener.services.access_gate import AccessGate
from shortener.services.link_registry import LinkRegistry

router = APIRouter()


def build_short_url(short_code: str) -> str:
    return f"{settings.BASE_URL.rstrip('/')}/{short_code}"


def require_short_code(short_code: Optional[str], field: str) -> str:
    """Reject missing or malformed codes before they reach the store."""
    if short_code is None or not short_code.strip():
        raise ValidationError("Short code is required.", field=field)

    sanitized = sanitize_short_code(short_code)
    if not sanitized:
        raise ValidationError(
            f"Invalid short code format: '{short_code}'. "
            "Short codes must contain only alphanumeric characters.",
            field=field
        )
    return sanitized


@router.post(
    "/shorten",
    response_model=ShortenResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a short URL",
    description="Takes a long URL and returns a short code, optionally custom and with an expiry date"
)
@limiter.limit(RATE_LIMITS["shorten"])
async def create_short_url(
    request: Request,  # Required for rate limiting (slowapi expects parameter named 'request')
    body: ShortenRequest,
    caller: Optional[User] = Depends(get_caller),
    registry: LinkRegistry = Depends(get_registry)
) -> ShortenResponse:
    """
    Create a new short URL.

    A plain request (no custom code, no expiry) for a URL the caller has
    already shortened returns the existing code instead of a new one.
    """
    if body.custom_code is None and body.expiry_date is None and body.long_url:
        existing = await registry.find_existing(body.long_url.strip(), owner=caller)
        if existing is not None:
            return ShortenResponse(
                short_code=existing.short_code,
                short_url=build_short_url(existing.short_code),
                expiry_date=existing.expiry_date.isoformat() if existing.expiry_date else None
            )

    link = await registry.create(
        body.long_url,
        owner=caller,
        expiry_date=body.expiry_at,
        custom_code=body.custom_code
    )

    return ShortenResponse(
        short_code=link.short_code,
        short_url=build_short_url(link.short_code),
        expiry_date=body.expiry_date
    )


@router.post(
    "/shorten/bulk",
    response_model=BulkShortenResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create many short URLs",
    description="Shortens a list of URLs in one call. Reserved for the enterprise tier."
)
@limiter.limit(RATE_LIMITS["bulk"])
async def bulk_create_short_urls(
    request: Request,
    body: BulkShortenRequest,
    caller: Optional[User] = Depends(get_caller),
    registry: LinkRegistry = Depends(get_registry)
) -> BulkShortenResponse:
    """
    Returns:
        BulkShortenResponse with one batch entry per created link and one
        error entry per URL that could not be shortened
    """
    AccessGate.require_tier(caller, settings.BULK_TIER)

    result = await registry.bulk_create(body.long_urls or [], owner=caller)

    return BulkShortenResponse(
        batch=[
            BulkEntry(original_url=item.original_url, short_code=item.short_code)
            for item in result.created
        ],
        errors=[
            BulkFailure(original_url=item.original_url, error=item.error)
            for item in result.failed
        ]
    )


@router.get(
    "/redirect",
    status_code=status.HTTP_302_FOUND,
    summary="Redirect to original URL",
    description="Takes a short code as ?code= and redirects to the original long URL"
)
@limiter.limit(RATE_LIMITS["redirect"])
async def redirect_by_query(
    request: Request,
    code: Optional[str] = Query(None, description="The short code to resolve"),
    caller: Optional[User] = Depends(get_caller),
    registry: LinkRegistry = Depends(get_registry)
) -> RedirectResponse:
    """
    Raises:
        400: If the code is missing or malformed
        404: If the code is unknown, deleted or owned by another caller
        410: If the link has expired
    """
    short_code = require_short_code(code, field="code")
    original_url = await registry.resolve_for_redirect(short_code, caller=caller)
    return RedirectResponse(url=original_url, status_code=status.HTTP_302_FOUND)


@router.get(
    "/all",
    response_model=list[LinkRecord],
    summary="List all links",
    description="Dumps every stored link, soft-deleted ones included, for diagnostics"
)
@limiter.limit(RATE_LIMITS["list"])
async def list_all_links(
    request: Request,
    limit: Optional[int] = Query(None, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    registry: LinkRegistry = Depends(get_registry)
) -> list[LinkRecord]:
    links = await registry.list_all(limit=limit, offset=offset)
    return [LinkRecord.model_validate(link) for link in links]


@router.get(
    "/stats/{short_code}",
    response_model=StatsResponse,
    summary="Get URL statistics",
    description="Returns the stored record of a link, including its visit count"
)
@limiter.limit(RATE_LIMITS["stats"])
async def get_url_stats(
    short_code: str,
    request: Request,
    caller: Optional[User] = Depends(get_caller),
    registry: LinkRegistry = Depends(get_registry)
) -> StatsResponse:
    link = await registry.get_link(require_short_code(short_code, field="short_code"), caller=caller)
    stats = StatsResponse.model_validate(link)
    stats.expired = link.is_expired(utcnow())
    return stats


@router.put(
    "/code/{short_code}",
    response_model=UpdateExpiryResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Update expiry date",
    description="Sets a new expiry date on an existing link"
)
@limiter.limit(RATE_LIMITS["mutate"])
async def update_expiry(
    short_code: str,
    request: Request,
    body: UpdateExpiryRequest,
    caller: Optional[User] = Depends(get_caller),
    registry: LinkRegistry = Depends(get_registry)
) -> UpdateExpiryResponse:
    """
    Raises:
        400: If the code is unknown or the expiry date is missing/invalid
    """
    short_code = require_short_code(short_code, field="short_code")
    try:
        link = await registry.update_expiry(short_code, body.expiry_at, caller=caller)
    except NotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )

    return UpdateExpiryResponse(short_code=link.short_code, expiry_date=body.expiry_date)


@router.delete(
    "/delete",
    response_model=DeleteResponse,
    summary="Delete a short URL",
    description="Soft-deletes a link; it stops resolving immediately"
)
@limiter.limit(RATE_LIMITS["mutate"])
async def delete_short_url(
    request: Request,
    body: Optional[DeleteRequest] = None,
    caller: Optional[User] = Depends(get_caller),
    registry: LinkRegistry = Depends(get_registry)
) -> DeleteResponse:
    short_code = require_short_code(body.short_code if body else None, field="short_code")
    deleted_code = await registry.delete(short_code, caller=caller)
    return DeleteResponse(
        short_code=deleted_code,
        message=f"{deleted_code} deleted successfully!"
    )


# Catch-all route: keep it last so fixed paths above match first
@router.get(
    "/{short_code}",
    status_code=status.HTTP_302_FOUND,
    summary="Redirect by path",
    description="Same as /redirect?code=, for the short URLs this service hands out"
)
@limiter.limit(RATE_LIMITS["redirect"])
async def redirect_by_path(
    short_code: str,
    request: Request,
    caller: Optional[User] = Depends(get_caller),
    registry: LinkRegistry = Depends(get_registry)
) -> RedirectResponse:
    original_url = await registry.resolve_for_redirect(
        require_short_code(short_code, field="short_code"),
        caller=caller
    )
    return RedirectResponse(url=original_url, status_code=status.HTTP_302_FOUND)
