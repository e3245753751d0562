"""Main module of the FastAPI application.

This module sets up the FastAPI application, the middleware that logs requests and
unhandled exceptions, and the handlers that turn domain errors into error envelopes.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError

from billflow.api.deps import close_gateways
from billflow.api.middleware import (
    add_request_id,
    billflow_exception_handler,
    exception_logging_middleware,
    external_service_exception_handler,
    invalid_input_exception_handler,
    invalid_state_exception_handler,
    log_requests,
    not_found_exception_handler,
    validation_exception_handler,
    webhook_processing_exception_handler,
    webhook_signature_exception_handler,
)
from billflow.api.router import TrailingSlashRouter
from billflow.api.v1.api import api_router
from billflow.api.v1.endpoints import health, webhooks
from billflow.core.config import settings
from billflow.core.exceptions import (
    BillflowException,
    ExternalServiceError,
    InvalidInputError,
    InvalidStateError,
    NotFoundException,
    WebhookProcessingError,
    WebhookSignatureError,
)
from billflow.core.logging import logger
from billflow.db.init_db import init_db
from billflow.db.session import async_engine


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create missing tables on startup and release gateway clients on shutdown."""
    await init_db(async_engine)
    logger.info(f"{settings.PROJECT_NAME} started")

    yield

    await close_gateways()
    await async_engine.dispose()


# Create FastAPI app with our custom router and disable FastAPI's built-in redirects
app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url="/openapi.json",
    lifespan=lifespan,
    router=TrailingSlashRouter(),
    redirect_slashes=False,
)

app.include_router(health.router, prefix="/health", tags=["health"])
app.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])
app.include_router(api_router, prefix=settings.API_V1_STR)

# Register middleware directly
app.middleware("http")(log_requests)
app.middleware("http")(exception_logging_middleware)
app.middleware("http")(add_request_id)

# Register exception handlers
app.exception_handler(RequestValidationError)(validation_exception_handler)
app.exception_handler(ValidationError)(validation_exception_handler)
app.exception_handler(NotFoundException)(not_found_exception_handler)
app.exception_handler(InvalidStateError)(invalid_state_exception_handler)
app.exception_handler(InvalidInputError)(invalid_input_exception_handler)
app.exception_handler(ExternalServiceError)(external_service_exception_handler)
app.exception_handler(WebhookSignatureError)(webhook_signature_exception_handler)
app.exception_handler(WebhookProcessingError)(webhook_processing_exception_handler)
app.exception_handler(BillflowException)(billflow_exception_handler)
