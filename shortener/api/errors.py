"""
Error to HTTP status mapping.

Services raise typed exceptions; these handlers turn them into JSON error
responses of the form {"detail": "..."} so endpoints stay free of
try/except boilerplate.
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from shortener.core.exceptions import (
    AuthenticationError,
    CodeSpaceExhaustedError,
    ConflictError,
    GoneError,
    InsufficientTierError,
    NotFoundError,
    ShortenerException,
    StoreUnavailable,
    ValidationError,
)

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    ValidationError: status.HTTP_400_BAD_REQUEST,
    ConflictError: status.HTTP_400_BAD_REQUEST,
    InsufficientTierError: status.HTTP_400_BAD_REQUEST,
    AuthenticationError: status.HTTP_403_FORBIDDEN,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    GoneError: status.HTTP_410_GONE,
    StoreUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
    CodeSpaceExhaustedError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def status_for(exc: ShortenerException) -> int:
    for exc_type, status_code in ERROR_STATUS.items():
        if isinstance(exc, exc_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def shortener_exception_handler(request: Request, exc: ShortenerException) -> JSONResponse:
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": jsonable_encoder(exc.errors())}
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ShortenerException, shortener_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
