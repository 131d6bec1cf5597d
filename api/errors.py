"""Exception handlers: stable ``{success: false, ...}`` envelopes, no stack leaks.

FreeGiftError subclasses carry their own status code (400 validation and
invalid input, 404 not found, 503 transient). Request-body schema failures
become 400 with the offending field. Anything else is a 500 with a generic
message; the traceback goes to the log only.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from core.errors import FreeGiftError

logger = logging.getLogger("geeta.errors")


async def handle_free_gift_error(request: Request, exc: FreeGiftError) -> JSONResponse:
    if exc.retryable:
        logger.warning("%s %s: %s", request.method, request.url.path, exc.message)
    headers = {"Retry-After": "1"} if exc.retryable else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


async def handle_request_validation(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    loc = [str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path")]
    body = {
        "success": False,
        "message": first.get("msg", "Invalid request"),
        "field": loc[-1] if loc else None,
    }
    return JSONResponse(status_code=400, content=body)


async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"success": False, "message": "Internal server error"},
    )


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(FreeGiftError, handle_free_gift_error)
    app.add_exception_handler(RequestValidationError, handle_request_validation)
    app.add_exception_handler(Exception, handle_unexpected)
