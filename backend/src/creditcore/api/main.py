"""FastAPI application exposing the billing engine."""

import uuid
from contextlib import asynccontextmanager

import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from creditcore import __version__
from creditcore.api.v1.credits import router as credits_router
from creditcore.api.v1.discounts import router as discounts_router
from creditcore.api.v1.referral import router as referral_router
from creditcore.api.v1.subscriptions import router as subscriptions_router
from creditcore.errors import BillingError
from creditcore.logging_config import configure_logging, get_logger
from creditcore.settings import settings
from creditcore.storage.db import Database, db, get_db

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind a request id to every log line emitted while serving a request.

    A caller-supplied ``X-Request-ID`` is reused, otherwise one is generated.
    The id is echoed back on the response.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        with structlog.contextvars.bound_contextvars(request_id=request_id):
            response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    logger.info("app_starting", env=settings.env, version=__version__)

    db.create_tables()

    yield

    logger.info("app_shutting_down")
    db.dispose()


def create_app() -> FastAPI:
    """Build the API app.

    Every ``BillingError`` is answered with its own ``status_code`` and a
    ``{"detail", "error"}`` body, so routers only call services.
    """
    is_production = settings.env == "production"

    app = FastAPI(
        title=f"{settings.app_name} API",
        description="Credit ledger and subscription billing API",
        version=__version__,
        docs_url=None if is_production else "/api/docs",
        redoc_url=None if is_production else "/api/redoc",
        openapi_url=None if is_production else "/api/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(RequestContextMiddleware)

    @app.exception_handler(BillingError)
    async def billing_error_handler(request: Request, exc: BillingError):
        logger.info(
            "billing_error",
            path=request.url.path,
            error=type(exc).__name__,
            status=exc.status_code,
            detail=str(exc),
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": str(exc), "error": type(exc).__name__},
        )

    for router in (credits_router, discounts_router, referral_router, subscriptions_router):
        app.include_router(router, prefix="/api/v1")

    @app.get("/health")
    async def health_check(database: Database = Depends(get_db)):
        database_ok = database.ping()
        return JSONResponse(
            status_code=200 if database_ok else 503,
            content={
                "status": "healthy" if database_ok else "degraded",
                "database": "ok" if database_ok else "unreachable",
                "version": __version__,
                "env": settings.env,
            },
        )

    return app


app = create_app()
