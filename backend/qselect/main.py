"""FastAPI application factory and main entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError

import qselect.models  # noqa: F401  registers tables on Base.metadata
from qselect import __version__
from qselect.api.v1.router import api_router
from qselect.common.request_id import RequestIDMiddleware
from qselect.core.config import settings
from qselect.core.errors import (
    general_exception_handler,
    http_exception_handler,
    selection_exception_handler,
    validation_exception_handler,
)
from qselect.core.logging import setup_logging
from qselect.core.redis_client import close_redis, init_redis
from qselect.db.base import Base
from qselect.db.engine import engine
from qselect.middleware.prometheus_metrics import PrometheusMetricsMiddleware
from qselect.selection.errors import SelectionError


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    setup_logging()
    init_redis()
    # Schema is owned by deploy tooling outside dev/test
    if settings.ENV in ("dev", "test"):
        Base.metadata.create_all(bind=engine)
    yield
    close_redis()


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=__version__,
        description="Deterministic question selection with anti-repetition policies",
        openapi_url="/openapi.json" if settings.ENV != "prod" else None,
        docs_url="/docs" if settings.ENV != "prod" else None,
        redoc_url=None,
        lifespan=lifespan,
    )

    # First added is innermost
    app.add_middleware(PrometheusMetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(SelectionError, selection_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    app.include_router(api_router, prefix=settings.API_PREFIX)

    return app


app = create_app()
