"""Middleware and exception handlers for the FastAPI application.

Every error leaves the API in the same envelope:
``{"success": false, "error": {"code": ..., "message": ...}}``.
"""

import time
import traceback
import uuid
from typing import Any, Optional, Union

from fastapi import Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from billflow.core.config import settings
from billflow.core.exceptions import (
    BillflowException,
    ExternalServiceError,
    InvalidInputError,
    InvalidStateError,
    NotFoundException,
    WebhookProcessingError,
    WebhookSignatureError,
    unpack_validation_error,
)
from billflow.core.logging import logger


def error_response(
    status_code: int, code: str, message: str, details: Optional[Any] = None
) -> JSONResponse:
    """Build the error envelope."""
    error: dict[str, Any] = {"code": code, "message": message}
    if details is not None:
        error["details"] = details
    return JSONResponse(status_code=status_code, content={"success": False, "error": error})


async def add_request_id(request: Request, call_next: callable) -> Response:
    """Middleware to generate and add a request ID to the request for tracing.

    Args:
    ----
        request (Request): The incoming request.
        call_next (callable): The next middleware in the chain.

    Returns:
    -------
        Response: The response, carrying the id in ``X-Request-ID``.

    """
    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


async def log_requests(request: Request, call_next: callable) -> Response:
    """Middleware to log incoming requests with their duration and status code."""
    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time
    logger.with_context(request_id=getattr(request.state, "request_id", None)).info(
        f"Handled request {request.method} {request.url.path} in {duration:.2f} seconds. "
        f"Response code: {response.status_code}"
    )
    return response


async def exception_logging_middleware(request: Request, call_next: callable) -> Response:
    """Middleware to log unhandled exceptions and answer them with a 500 envelope."""
    try:
        return await call_next(request)
    except Exception as exc:
        logger.error(f"Unhandled exception: {exc}\n{traceback.format_exc()}")
        details = traceback.format_exc() if settings.LOCAL_DEVELOPMENT else None
        return error_response(
            500,
            "INTERNAL_ERROR",
            f"Internal Server Error: {exc.__class__.__name__}: {str(exc)}",
            details,
        )


# Exception handlers


async def validation_exception_handler(
    request: Request, exc: Union[RequestValidationError, ValidationError]
) -> JSONResponse:
    """Answer request validation failures with 422 and one message per field.

    Example of JSON output:
        {
            "success": false,
            "error": {
                "code": "VALIDATION_ERROR",
                "message": "Request validation failed",
                "details": [{"body.quantity": "Input should be greater than or equal to 1"}]
            }
        }
    """
    error_messages = unpack_validation_error(exc)
    return error_response(
        422, "VALIDATION_ERROR", "Request validation failed", error_messages["errors"]
    )


async def not_found_exception_handler(request: Request, exc: NotFoundException) -> JSONResponse:
    """Referenced entity is absent."""
    return error_response(404, "NOT_FOUND", str(exc))


async def invalid_state_exception_handler(
    request: Request, exc: InvalidStateError
) -> JSONResponse:
    """Operation is illegal for the entity's current status."""
    return error_response(409, "INVALID_STATE", str(exc))


async def invalid_input_exception_handler(
    request: Request, exc: InvalidInputError
) -> JSONResponse:
    """A caller-supplied value fails a precondition."""
    return error_response(400, "INVALID_INPUT", str(exc))


async def external_service_exception_handler(
    request: Request, exc: ExternalServiceError
) -> JSONResponse:
    """A gateway call failed; the cause is logged, never swallowed."""
    logger.error(f"Gateway error from {exc.service_name}: {exc.message}", exc_info=exc)
    return error_response(500, "GATEWAY_ERROR", str(exc))


async def webhook_signature_exception_handler(
    request: Request, exc: WebhookSignatureError
) -> JSONResponse:
    """A webhook delivery failed authentication."""
    logger.warning(f"Rejected webhook delivery: {exc}")
    return error_response(401, "INVALID_SIGNATURE", str(exc))


async def webhook_processing_exception_handler(
    request: Request, exc: WebhookProcessingError
) -> JSONResponse:
    """A verified delivery could not be applied; the gateway retries it."""
    logger.error(f"Webhook processing failed: {exc}", exc_info=exc)
    return error_response(500, "WEBHOOK_PROCESSING_FAILED", str(exc))


async def billflow_exception_handler(request: Request, exc: BillflowException) -> JSONResponse:
    """Fallback for billflow errors without a dedicated handler."""
    logger.error(f"Billflow error: {exc}")
    return error_response(500, "INTERNAL_ERROR", str(exc))
