"""FastAPI application entry point.

Run with: uvicorn src.main:app --reload --port 8000
"""

# ruff: noqa: E402  -- uvloop.install() must run before other imports

import uvloop

uvloop.install()

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

from config.settings import settings
from src.vd_common.database import engine
from src.vd_common.errors import AppError, InternalError
from src.vd_common.redis_client import close_redis, get_redis
from src.vd_common.response import error_response
from src.vd_external.api.router import customer_router, internal_router, partner_router
from src.vd_gateway.middleware.request_log import RequestLogMiddleware
from src.vd_notify.application.fanout import get_fanout
from src.vd_order.api.router import router as order_router

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup: verify DB + Redis connections. Shutdown: flush notifications, dispose."""
    # Startup
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
    await get_redis()
    if not settings.CUSTOMER_WEBHOOK_URL:
        logger.warning("CUSTOMER_WEBHOOK_URL not set; customer webhooks disabled")
    if not settings.PUSH_GATEWAY_URL:
        logger.warning("PUSH_GATEWAY_URL not set; vendor push disabled")
    yield
    # Shutdown
    fanout = get_fanout()
    if fanout.pending:
        logger.info("Waiting for %d in-flight notifications", fanout.pending)
    await fanout.drain()
    await engine.dispose()
    await close_redis()


app = FastAPI(
    title=settings.APP_NAME,
    version="0.1.0",
    lifespan=lifespan,
)


app.add_middleware(RequestLogMiddleware)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    resp = error_response(exc.code, exc.message, request, getattr(exc, "details", None))
    return JSONResponse(
        status_code=exc.http_status,
        content=resp.model_dump(),
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    err = InternalError()
    resp = error_response(err.code, err.message, request)
    return JSONResponse(status_code=err.http_status, content=resp.model_dump())


app.include_router(order_router, prefix="/api/v1")
app.include_router(customer_router, prefix="/api/v1")
app.include_router(partner_router, prefix="/api/v1")
app.include_router(internal_router, prefix="/api/v1")


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok", "version": "0.1.0"}
