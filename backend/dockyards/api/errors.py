"""Mapping of error kinds to HTTP responses.

This is the only place where a DockyardsError becomes a status code.
"""
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
import logging
import uuid

from dockyards.errors import DockyardsError

logger = logging.getLogger(__name__)


def error_body(exc: DockyardsError) -> dict:
    body = {"error": exc.message}
    if exc.name is not None:
        body["name"] = exc.name
    if exc.details is not None:
        body["details"] = exc.details
    return body


async def handle_dockyards_error(request: Request, exc: DockyardsError) -> JSONResponse:
    if exc.status_code >= 500:
        # Upstream and internal failures are not echoed to clients
        correlation_id = str(uuid.uuid4())
        logger.error(f"{request.method} {request.url.path} failed [{correlation_id}]: {type(exc).__name__}: {exc.message}")
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": "internal server error", "correlationId": correlation_id},
        )

    logger.debug(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=error_body(exc))


async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.debug(f"{request.method} {request.url.path} -> 400: {exc.errors()}")
    return JSONResponse(
        status_code=400,
        content={"error": "failed to read body", "details": jsonable_encoder(exc.errors())},
    )


def register_exception_handlers(app: FastAPI):
    app.add_exception_handler(DockyardsError, handle_dockyards_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
