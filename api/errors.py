"""
Exception handlers: every error leaves the API as {"error", "message"}
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from core.exceptions import ConnectorException

logger = logging.getLogger(__name__)


def _describe_validation(exc: RequestValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(p) for p in error.get("loc", ()) if p != "body")
        parts.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return "; ".join(parts) or "Invalid request"


async def connector_exception_handler(request: Request, exc: ConnectorException) -> JSONResponse:
    request_id = getattr(request.state, "request_id", "-")
    if exc.http_status >= 500:
        logger.error(f"[{request_id}] {exc}", extra={"error_context": exc.to_dict()})
    else:
        logger.info(f"[{request_id}] {exc.http_status} {exc.error_code}: {exc.message}")
    return JSONResponse(status_code=exc.http_status, content=exc.to_payload())


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"error": "ValidationError", "message": _describe_validation(exc)},
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    request_id = getattr(request.state, "request_id", "-")
    logger.exception(f"[{request_id}] Unhandled error: {exc}")
    return JSONResponse(
        status_code=500,
        content={"error": "InternalError", "message": "Internal server error"},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ConnectorException, connector_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
