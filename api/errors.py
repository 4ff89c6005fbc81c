"""Mapping of engine errors onto HTTP responses."""
from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from marketplace.errors import (
    AuthorizationError,
    ConflictError,
    IllegalTransitionError,
    MarketplaceError,
    NotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)

STATUS_BY_KIND: tuple[tuple[type[MarketplaceError], int], ...] = (
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (AuthorizationError, status.HTTP_403_FORBIDDEN),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (IllegalTransitionError, status.HTTP_409_CONFLICT),
)


def status_for(exc: MarketplaceError) -> int:
    for kind, code in STATUS_BY_KIND:
        if isinstance(exc, kind):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def marketplace_error_handler(request: Request, exc: MarketplaceError) -> JSONResponse:
    code = status_for(exc)
    logger.info(
        "Request rejected",
        extra={"action": f"{request.method} {request.url.path}", "status": code, "reason": exc.code},
    )
    headers = {"Retry-After": "1"} if exc.retryable else None
    return JSONResponse(
        status_code=code,
        content={"code": exc.code, "detail": exc.message, "retryable": exc.retryable},
        headers=headers,
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(MarketplaceError, marketplace_error_handler)
