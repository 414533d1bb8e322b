"""FastAPI middleware for request tracing, error handling, and CORS.

Middleware stack (applied bottom-up):
    1. RequestIDMiddleware — injects X-Request-ID into every request/response
    2. ErrorHandlerMiddleware — catches domain exceptions -> JSON error envelope
    3. CORSMiddleware — handles the browser frontend

Every error body has the shape
    {"success": false, "error": CODE, "message": str, ...extra}
"""

from __future__ import annotations

import traceback
import uuid
from typing import TYPE_CHECKING

import structlog
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from lending_marketplace.domain.exceptions import (
    AccessDeniedError,
    AuthenticationError,
    DuplicateOperationError,
    InvalidStateError,
    InvalidStateTransitionError,
    MarketplaceError,
    NotFoundError,
    ServiceUnavailableError,
    StorageError,
    ValidationError,
)

if TYPE_CHECKING:
    from fastapi import FastAPI, Request, Response
    from starlette.types import ASGIApp

logger = structlog.get_logger(__name__)

_STATUS_BY_ERROR: tuple[tuple[type[MarketplaceError], int], ...] = (
    (ValidationError, 400),
    (AuthenticationError, 401),
    (AccessDeniedError, 403),
    (NotFoundError, 404),
    (InvalidStateError, 409),
    (DuplicateOperationError, 409),
    (StorageError, 500),
    (ServiceUnavailableError, 503),
)


def error_body(code: str, message: str, **extra: object) -> dict:
    return {"success": False, "error": code, "message": message, **extra}


def status_for(exc: MarketplaceError) -> int:
    for error_cls, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_cls):
            return status_code
    return 500


# ---------------------------------------------------------------------------
# 1. Request ID Middleware
# ---------------------------------------------------------------------------
class RequestIDMiddleware(BaseHTTPMiddleware):
    """Inject a unique X-Request-ID into every request for log correlation."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        # Use client-provided ID or generate one
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


# ---------------------------------------------------------------------------
# 2. Error Handler Middleware
# ---------------------------------------------------------------------------
class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Catch domain exceptions and return the JSON error envelope."""

    def __init__(self, app: ASGIApp, expose_tracebacks: bool = False) -> None:
        super().__init__(app)
        self._expose_tracebacks = expose_tracebacks

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        try:
            return await call_next(request)
        except NotFoundError as exc:
            logger.warning("resource.not_found", error=exc.message)
            return JSONResponse(status_code=404, content=error_body(exc.code, exc.message))
        except InvalidStateTransitionError as exc:
            logger.warning(
                "state_machine.invalid_transition",
                entity=exc.entity,
                current=exc.current_status,
                attempted=exc.attempted_event,
            )
            return JSONResponse(
                status_code=409,
                content=error_body(exc.code, exc.message, **exc.extra()),
            )
        except DuplicateOperationError as exc:
            logger.warning("idempotency.duplicate", error=exc.message)
            return JSONResponse(status_code=409, content=error_body(exc.code, exc.message))
        except MarketplaceError as exc:
            status_code = status_for(exc)
            log = logger.error if status_code >= 500 else logger.warning
            log("domain.error", error=exc.message, code=exc.code, status=status_code)
            return JSONResponse(
                status_code=status_code,
                content=error_body(exc.code, exc.message, **exc.extra()),
            )
        except Exception as exc:
            logger.exception("unhandled.error", error=str(exc))
            extra = {"traceback": traceback.format_exc()} if self._expose_tracebacks else {}
            return JSONResponse(
                status_code=500,
                content=error_body("INTERNAL_ERROR", "An unexpected error occurred", **extra),
            )


# ---------------------------------------------------------------------------
# Exception handlers for errors raised inside FastAPI itself
# ---------------------------------------------------------------------------
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    details = [
        f"{'.'.join(str(part) for part in err['loc'] if part != 'body')}: {err['msg']}"
        for err in exc.errors()
    ]
    logger.warning("request.validation_failed", path=request.url.path, errors=len(details))
    return JSONResponse(
        status_code=400,
        content=error_body("VALIDATION_ERROR", "Validation failed", details=details),
    )


async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body("HTTP_ERROR", str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


# ---------------------------------------------------------------------------
# Setup function
# ---------------------------------------------------------------------------
def setup_middleware(app: FastAPI, expose_tracebacks: bool = False) -> None:
    """Register middleware and exception handlers on the FastAPI application.

    Order matters — middleware is applied bottom-up, so the last added
    middleware runs first.
    """
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)

    # CORS (runs first)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Tighten in production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Error handling (runs second)
    app.add_middleware(ErrorHandlerMiddleware, expose_tracebacks=expose_tracebacks)

    # Request ID (runs last = outermost)
    app.add_middleware(RequestIDMiddleware)
