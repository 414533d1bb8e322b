"""Domain exceptions for the lending marketplace.

These exceptions are framework-agnostic and represent business rule violations.
They are caught and translated to HTTP responses by the API layer's middleware.
"""

from __future__ import annotations


class MarketplaceError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, code: str = "MARKETPLACE_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)

    def extra(self) -> dict:
        """Additional fields merged into the error response body."""
        return {}


# --- Input Errors ---


class ValidationError(MarketplaceError):
    """Raised when input is malformed or violates a business rule on creation.

    Example: milestone percentages that do not add up to 100%.
    """

    def __init__(self, message: str, details: list[str] | None = None) -> None:
        super().__init__(message=message, code="VALIDATION_ERROR")
        self.details = details or []

    def extra(self) -> dict:
        return {"details": self.details} if self.details else {}


# --- Identity Errors ---


class AuthenticationError(MarketplaceError):
    """Raised when the bearer credential is missing, malformed or expired."""

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message=message, code="AUTHENTICATION_REQUIRED")


class AccessDeniedError(MarketplaceError):
    """Raised when an authenticated caller may not act on a resource."""

    def __init__(self, message: str = "Access denied") -> None:
        super().__init__(message=message, code="ACCESS_DENIED")


# --- Lookup Errors ---


class NotFoundError(MarketplaceError):
    """Raised when an entity does not exist (or must not be revealed)."""

    def __init__(self, entity: str, entity_id: object) -> None:
        super().__init__(
            message=f"{entity} not found: {entity_id}",
            code=f"{entity.upper().replace(' ', '_')}_NOT_FOUND",
        )
        self.entity = entity
        self.entity_id = entity_id


# --- State Errors ---


class InvalidStateError(MarketplaceError):
    """Raised when an operation is not legal for the entity's current status."""

    def __init__(
        self,
        message: str,
        current_status: str | None = None,
        code: str = "INVALID_STATE",
    ) -> None:
        super().__init__(message=message, code=code)
        self.current_status = current_status

    def extra(self) -> dict:
        return {"current_status": self.current_status} if self.current_status else {}


class InvalidStateTransitionError(InvalidStateError):
    """Raised when a state machine refuses a transition.

    Example: an approved milestone cannot be rejected.
    """

    def __init__(
        self,
        entity: str,
        current_state: str,
        attempted_event: str,
        message: str | None = None,
    ) -> None:
        super().__init__(
            message=message
            or f"Invalid {entity} transition: '{attempted_event}' not allowed from {current_state}",
            current_status=current_state,
            code="INVALID_STATE_TRANSITION",
        )
        self.entity = entity
        self.attempted_event = attempted_event


class ConcurrentUpdateError(InvalidStateError):
    """Raised when a row changed between read and write (stale version)."""

    def __init__(self, entity: str) -> None:
        super().__init__(
            message=f"{entity} was modified concurrently; reload and retry",
            code="CONCURRENT_UPDATE",
        )
        self.entity = entity


class DuplicateOperationError(MarketplaceError):
    """Raised when a duplicate idempotency key is detected."""

    def __init__(self, idempotency_key: str) -> None:
        super().__init__(
            message=f"Duplicate operation detected for key: {idempotency_key}",
            code="DUPLICATE_OPERATION",
        )
        self.idempotency_key = idempotency_key


# --- Infrastructure Errors ---


class ServiceUnavailableError(MarketplaceError):
    """Raised when a required backing service is not configured."""

    def __init__(self, service: str) -> None:
        super().__init__(
            message=f"Service not configured: {service}",
            code="SERVICE_UNAVAILABLE",
        )
        self.service = service


class StorageError(MarketplaceError):
    """Raised when the database rejects or fails an operation."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="STORAGE_ERROR")


class OracleError(MarketplaceError):
    """Raised by oracle adapters when a tokenization or chain call fails."""

    def __init__(self, message: str, operation: str) -> None:
        super().__init__(message=message, code="ORACLE_ERROR")
        self.operation = operation
