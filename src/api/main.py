"""StreamVault billing FastAPI application — operator and payment collaborator API."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from src.api.models.schemas import ErrorResponse
from src.core.exceptions import BillingBaseError, InvalidBillingConfiguration
from src.core.logging import get_logger, setup_logging
from src.data.db import close_engine, get_engine

log = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Validate the billing catalog and open the DB engine before serving."""
    from src.api.deps import close_payment_gateway, get_catalog

    setup_logging()
    catalog = get_catalog()
    await get_engine()
    log.info("billing_api_started", plans=len(catalog.plans))
    try:
        yield
    finally:
        await close_payment_gateway()
        await close_engine()
        log.info("billing_api_stopped")


async def _billing_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Billing errors the routes do not map themselves."""
    context = getattr(exc, "context", {})
    log.error(
        "billing_api_error",
        path=request.url.path,
        error_type=type(exc).__name__,
        error=str(exc),
        context=context,
    )
    if isinstance(exc, InvalidBillingConfiguration):
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    else:
        code = status.HTTP_400_BAD_REQUEST
    return JSONResponse(status_code=code, content=ErrorResponse(detail=str(exc)).model_dump())


def create_app() -> FastAPI:
    app = FastAPI(
        title="StreamVault Billing API",
        description="Usage metering and tiered overage billing",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.add_exception_handler(BillingBaseError, _billing_error_handler)

    from src.api.routes.billing import router as billing_router
    from src.api.routes.health import router as health_router

    app.include_router(health_router, prefix="/api")
    app.include_router(billing_router, prefix="/api")
    return app


app = create_app()
