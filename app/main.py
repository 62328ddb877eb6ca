"""
FastAPI application entry point.
Configures routes, error handlers, and lifecycle events.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.config import settings
from app.database import close_db
from app.logging_config import configure_logging
from app.redis import RedisClient
from app.services.exceptions import PaymentWebhookError

from app.api.webhooks.payments import router as payment_webhook_router
from app.api.admin.payments import router as admin_payments_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifecycle manager."""
    # Startup
    configure_logging()
    logger.info("Starting up clinic payments service...")

    # Initialize Redis
    try:
        RedisClient.get_client()
    except Exception as e:
        logger.warning(f"Failed to initialize Redis: {e}")

    yield

    # Shutdown
    await RedisClient.close()
    await close_db()
    logger.info("Shutting down...")


app = FastAPI(
    title="Clinic Payments",
    description="Payment webhook reconciliation for the clinic portal",
    version="1.0.0",
    lifespan=lifespan,
    debug=settings.debug,
)


@app.exception_handler(PaymentWebhookError)
async def payment_webhook_exception_handler(request: Request, exc: PaymentWebhookError):
    if exc.status_code >= 500:
        logger.error(f"Payment webhook error on {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"status": "error", "message": exc.message},
    )


# Global Exception Handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Global exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"status": "error", "message": "Internal Server Error"},
    )


# Health check endpoint
@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "app": settings.app_name,
        "env": settings.app_env,
    }


# Register webhook routes
app.include_router(
    payment_webhook_router,
    prefix="/webhooks",
    tags=["webhooks"],
)

# Register admin routes
app.include_router(
    admin_payments_router,
    prefix="/admin",
    tags=["admin"],
)
