"""HTTP surface of the order engine.

``create_app()`` wires the routers under ``/api/v1`` and maps engine errors to
status codes. Identity comes from bearer tokens issued by the auth service.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from api.errors import register_error_handlers
from api.routers import api_router
from core.db import dispose_engine
from core.logging_setup import configure_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("OrderHub API started")
    yield
    await dispose_engine()


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(
        title="OrderHub",
        description="Service marketplace order engine",
        version="1.0.0",
        lifespan=lifespan,
    )
    register_error_handlers(app)
    app.include_router(api_router, prefix="/api/v1")
    return app
