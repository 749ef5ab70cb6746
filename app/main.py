from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.courses import router as courses_router
from app.api.discounts import router as discounts_router
from app.api.groups import router as groups_router
from app.api.health import router as health_router
from app.api.metrics_endpoint import router as metrics_router
from app.api.payments import router as payments_router
from app.api.wallet import router as wallet_router
from app.core.config import SETTINGS
from app.core.logging import setup_logging
from app.db.engine import lifespan_db
from app.db.redis import lifespan_redis
from app.middleware.metrics import MetricsMiddleware
from app.middleware.request_context import RequestContextMiddleware
from app.services.errors import GatewayError, ServiceError

# Configure logging before anything else runs.
setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    # Torn down in reverse order.
    async with lifespan_db():
        async with lifespan_redis():
            yield


app = FastAPI(
    title="irac-commerce",
    lifespan=lifespan,
    docs_url="/docs" if SETTINGS.is_dev else None,
    redoc_url="/redoc" if SETTINGS.is_dev else None,
)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    """Map the domain error taxonomy to ``{"detail", "code"}`` responses."""
    if isinstance(exc, GatewayError):
        # Provider text and codes stay in the logs.
        logger.warning(
            "Gateway error on %s %s code=%s internal=%s: %s",
            request.method,
            request.url.path,
            exc.code,
            exc.internal_code,
            exc.message,
            extra={"error_code": exc.code},
        )
        generic = GatewayError()
        return JSONResponse(
            status_code=generic.status_code,
            content={"detail": generic.message, "code": generic.code},
        )
    if exc.status_code >= 500:
        logger.error("Service error on %s %s: %s", request.method, request.url.path, exc.message)
    else:
        logger.info(
            "Request rejected %s %s code=%s: %s",
            request.method,
            request.url.path,
            exc.code,
            exc.message,
            extra={"error_code": exc.code},
        )
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Last added runs first: RequestContext -> Metrics -> CORS -> route.
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestContextMiddleware)

app.include_router(metrics_router)
app.include_router(health_router)
app.include_router(courses_router)
app.include_router(discounts_router)
app.include_router(groups_router)
app.include_router(payments_router)
app.include_router(wallet_router)

logger.info(
    "irac-commerce started  env=%s log_level=%s port=%d docs=%s gateway=%s",
    SETTINGS.app_env,
    SETTINGS.log_level,
    SETTINGS.port,
    "on" if SETTINGS.is_dev else "off",
    "zarinpal" if SETTINGS.zarinpal_merchant_id else "in-memory",
)
