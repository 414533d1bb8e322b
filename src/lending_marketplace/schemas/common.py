"""Response envelope shared by every route.

Successful responses inherit `success: true`; errors are rendered by the
middleware as `{"success": false, "error": CODE, "message": ...}`.
"""

from __future__ import annotations

from pydantic import BaseModel


class SuccessResponse(BaseModel):
    """Base for all 2xx response bodies."""

    success: bool = True


class ErrorResponse(BaseModel):
    """Shape of every error body (documentation only; built by the middleware)."""

    success: bool = False
    error: str
    message: str
    details: list[str] | None = None
    current_status: str | None = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str = "0.1.0"
    database: str = "unknown"
    redis: str = "unknown"
