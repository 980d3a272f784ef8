import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from orderflow.core.exceptions import (
    DuplicateResourceError, InternalError, InvalidOrderStateError, OrderCoreError,
    ResourceNotFoundError, ValidationError,
)

logger = logging.getLogger(__name__)

# Most specific first
BUSINESS_STATUS_CODES = (
    (ResourceNotFoundError, 404),
    (DuplicateResourceError, 409),
    (ValidationError, 400),
    (InvalidOrderStateError, 400),
)


def status_code_for(exc: OrderCoreError) -> int:
    for error_type, status_code in BUSINESS_STATUS_CODES:
        if isinstance(exc, error_type):
            return status_code
    return 400


async def business_error_handler(request: Request, exc: OrderCoreError) -> JSONResponse:
    status_code = status_code_for(exc)
    logger.info(f"{request.method} {request.url.path} rejected with {status_code}: {exc.message}")
    return JSONResponse(status_code=status_code, content={"detail": exc.message, "code": exc.code})


async def internal_error_handler(request: Request, exc: InternalError) -> JSONResponse:
    logger.warning(f"{request.method} {request.url.path} failed: {exc.__class__.__name__}")
    return JSONResponse(status_code=503, content={"detail": exc.message, "code": InternalError.code})


async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "code": InternalError.code},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(OrderCoreError, business_error_handler)
    app.add_exception_handler(InternalError, internal_error_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)
